from __future__ import annotations

import pytest
from sqlalchemy import select

from marketcms.domain.models import AuditLog
from marketcms.persistence.db import SessionLocal
from marketcms.tests.utils.auth import create_user_with_headers


CONTACT = {
    "category": "contact",
    "data": {
        "fullName": "Jamie Buyer",
        "email": "jamie@pharmaco.example",
        "company": "PharmaCo",
        "subject": "Licensing",
        "message": "Interested in a multi-seat license.",
    },
}
SAMPLE = {
    "category": "request-sample",
    "data": {
        "fullName": "Alex Analyst",
        "email": "alex@medtech.example",
        "company": "MedTech",
        "jobTitle": "Strategy Lead",
        "reportTitle": "Global Oncology Drugs Market 2026",
    },
}


async def _csrf_headers(client) -> dict[str, str]:
    response = await client.get("/api/v1/csrf-token")
    assert response.status_code == 200
    token = response.json()["data"]["csrf_token"]
    assert response.headers["X-CSRF-Token"] == token
    return {"X-CSRF-Token": token}


async def _submit(client, payload: dict) -> dict:
    response = await client.post("/api/v1/forms/submissions", json=payload, headers=await _csrf_headers(client))
    assert response.status_code == 201, response.text
    return response.json()["data"]


@pytest.mark.asyncio
async def test_submission_requires_csrf_token(client) -> None:
    missing = await client.post("/api/v1/forms/submissions", json=CONTACT)
    assert missing.status_code == 403
    assert missing.json() == {"success": False, "error": "CSRF token missing"}

    headers = await _csrf_headers(client)
    forged = await client.post(
        "/api/v1/forms/submissions", json=CONTACT, headers={"X-CSRF-Token": headers["X-CSRF-Token"] + "x"}
    )
    assert forged.status_code == 403
    assert forged.json()["error"] == "CSRF token mismatch"

    accepted = await client.post("/api/v1/forms/submissions", json=CONTACT, headers=headers)
    assert accepted.status_code == 201
    body = accepted.json()
    assert body["message"] == "Form submitted successfully"
    assert body["data"]["category"] == "contact"
    assert set(body["data"]) == {"submission_id", "category", "message", "created_at"}


@pytest.mark.asyncio
async def test_submission_validation(client) -> None:
    cases = [
        ({"category": "newsletter", "data": CONTACT["data"]}, "Invalid form category (must be 'contact' or 'request-sample')"),
        ({"category": "contact"}, "Form data is required"),
        ({"category": "contact", "data": {**CONTACT["data"], "subject": " "}}, "subject is required"),
        ({"category": "request-sample", "data": CONTACT["data"]}, "jobTitle is required"),
        ({"category": "contact", "data": {**CONTACT["data"], "email": "jamie"}}, "Invalid email format"),
    ]
    for payload, message in cases:
        response = await client.post("/api/v1/forms/submissions", json=payload, headers=await _csrf_headers(client))
        assert response.status_code == 400
        assert response.json()["error"] == message


@pytest.mark.asyncio
async def test_staff_list_filter_and_process(client, audit_sink) -> None:
    contact = await _submit(client, CONTACT)
    await _submit(client, SAMPLE)
    editor, headers = await create_user_with_headers("editor")

    anonymous = await client.get("/api/v1/forms/submissions")
    assert anonymous.status_code == 401

    listed = await client.get("/api/v1/forms/submissions?category=request-sample", headers=headers)
    assert [item["data"]["company"] for item in listed.json()["data"]] == ["MedTech"]

    by_company = await client.get("/api/v1/forms/submissions?sortBy=company&sortOrder=asc", headers=headers)
    assert [item["data"]["company"] for item in by_company.json()["data"]] == ["MedTech", "PharmaCo"]

    searched = await client.get("/api/v1/forms/submissions?search=pharmaco", headers=headers)
    assert [item["id"] for item in searched.json()["data"]] == [contact["submission_id"]]

    bad_sort = await client.get("/api/v1/forms/submissions?sortBy=email", headers=headers)
    assert bad_sort.status_code == 400

    processed = await client.patch(
        f"/api/v1/forms/submissions/{contact['submission_id']}/status",
        json={"status": "processed", "notes": "Sent pricing"},
        headers=headers,
    )
    assert processed.status_code == 200
    data = processed.json()["data"]
    assert data["status"] == "processed"
    assert data["processed_by"] == editor.id
    assert data["processed_at"] is not None
    assert data["notes"] == "Sent pricing"

    invalid = await client.patch(
        f"/api/v1/forms/submissions/{contact['submission_id']}/status", json={"status": "done"}, headers=headers
    )
    assert invalid.status_code == 400

    await audit_sink.flush()
    async with SessionLocal() as session:
        actions = (await session.execute(select(AuditLog.action).order_by(AuditLog.id))).scalars().all()
    assert actions == ["form.submit", "form.submit", "form.status_change"]


@pytest.mark.asyncio
async def test_stats_are_cached_and_invalidated(client, fake_redis) -> None:
    await _submit(client, CONTACT)
    _, headers = await create_user_with_headers("editor")

    stats = await client.get("/api/v1/forms/submissions/stats", headers=headers)
    assert stats.json()["data"]["total"] == 1
    assert stats.json()["data"]["by_category"] == {"contact": 1}
    assert stats.json()["data"]["recent"]["today"] == 1
    assert fake_redis.keys_matching("forms:stats") == ["forms:stats"]

    await _submit(client, SAMPLE)
    assert fake_redis.keys_matching("forms:stats") == []
    stats = await client.get("/api/v1/forms/submissions/stats", headers=headers)
    assert stats.json()["data"]["by_category"] == {"contact": 1, "request-sample": 1}


@pytest.mark.asyncio
async def test_deletes_are_admin_only(client) -> None:
    first = await _submit(client, CONTACT)
    second = await _submit(client, SAMPLE)
    _, editor_headers = await create_user_with_headers("editor")
    _, admin_headers = await create_user_with_headers("admin")

    forbidden = await client.delete(f"/api/v1/forms/submissions/{first['submission_id']}", headers=editor_headers)
    assert forbidden.status_code == 403

    deleted = await client.delete(f"/api/v1/forms/submissions/{first['submission_id']}", headers=admin_headers)
    assert deleted.json()["message"] == "Submission deleted successfully"
    missing = await client.get(f"/api/v1/forms/submissions/{first['submission_id']}", headers=admin_headers)
    assert missing.status_code == 404
    assert missing.json()["error"] == "Form submission not found"

    bulk = await client.post(
        "/api/v1/forms/submissions/bulk-delete", json={"ids": [second["submission_id"], 9999]}, headers=admin_headers
    )
    assert bulk.json()["data"] == {"deleted": 1}
    empty = await client.post("/api/v1/forms/submissions/bulk-delete", json={"ids": []}, headers=admin_headers)
    assert empty.status_code == 400
