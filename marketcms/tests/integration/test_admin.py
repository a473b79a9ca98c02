from __future__ import annotations

import pytest

from marketcms.tests.utils.auth import DEFAULT_PASSWORD, create_test_user, create_user_with_headers
from marketcms.tests.utils.content import create_category, report_payload


@pytest.mark.asyncio
async def test_audit_logs_are_admin_only_and_filterable(client, audit_sink) -> None:
    admin = await create_test_user(role="admin", email="root@example.com")
    await client.post("/api/v1/auth/login", json={"email": "root@example.com", "password": DEFAULT_PASSWORD})
    await client.post("/api/v1/auth/login", json={"email": "root@example.com", "password": "wrong-password"})
    await audit_sink.flush()

    _, editor_headers = await create_user_with_headers("editor")
    assert (await client.get("/api/v1/audit-logs", headers=editor_headers)).status_code == 403

    login = await client.post("/api/v1/auth/login", json={"email": "root@example.com", "password": DEFAULT_PASSWORD})
    headers = {"Authorization": f"Bearer {login.json()['data']['access_token']}"}
    await audit_sink.flush()

    failures = await client.get("/api/v1/audit-logs?status=failure", headers=headers)
    assert [log["action"] for log in failures.json()["data"]] == ["auth.login_failed"]
    assert failures.json()["data"][0]["error_message"] == "Invalid email or password"

    logins = await client.get(f"/api/v1/audit-logs?action=auth.login&user_id={admin.id}", headers=headers)
    assert logins.json()["meta"]["total"] == 2
    first = logins.json()["data"][0]
    assert first["ip_address"] == "127.0.0.1"

    single = await client.get(f"/api/v1/audit-logs/{first['id']}", headers=headers)
    assert single.json()["data"]["action"] == "auth.login"
    missing = await client.get("/api/v1/audit-logs/99999", headers=headers)
    assert missing.status_code == 404
    assert missing.json()["error"] == "Audit log not found"


@pytest.mark.asyncio
async def test_dashboard_stats_depend_on_role(client, fake_redis) -> None:
    category = await create_category()
    _, editor_headers = await create_user_with_headers("editor")
    _, admin_headers = await create_user_with_headers("admin")
    await client.post("/api/v1/reports", json=report_payload(category.id), headers=editor_headers)

    editor_stats = await client.get("/api/v1/dashboard/stats", headers=editor_headers)
    data = editor_stats.json()["data"]
    assert data["reports"] == {"draft": 1, "review": 0, "published": 0, "total": 1}
    assert data["content_creation"]["reports_this_month"] == 1
    assert "users" not in data

    admin_stats = await client.get("/api/v1/dashboard/stats", headers=admin_headers)
    assert admin_stats.json()["data"]["users"]["total"] == 2
    assert fake_redis.keys_matching("dashboard:stats:*") == ["dashboard:stats:admin", "dashboard:stats:editor"]

    # Content writes drop both cached views.
    await client.post(
        "/api/v1/reports", json=report_payload(category.id, title="Second Oncology Report"), headers=editor_headers
    )
    assert fake_redis.keys_matching("dashboard:stats:*") == []

    _, viewer_headers = await create_user_with_headers("viewer")
    assert (await client.get("/api/v1/dashboard/stats", headers=viewer_headers)).status_code == 403


@pytest.mark.asyncio
async def test_dashboard_activity_lists_recent_audit_entries(client, audit_sink) -> None:
    category = await create_category()
    _, headers = await create_user_with_headers("editor")
    await client.post("/api/v1/reports", json=report_payload(category.id), headers=headers)
    await audit_sink.flush()

    activity = await client.get("/api/v1/dashboard/activity?limit=500", headers=headers)
    assert [item["action"] for item in activity.json()["data"]] == ["report.create"]
