from __future__ import annotations

import pytest


@pytest.mark.asyncio
async def test_health_reports_dependencies(client) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {
        "success": True,
        "data": {"status": "ok", "database": "ok", "cache": "ok"},
    }
    assert response.headers["X-Request-Id"]

    prefixed = await client.get("/api/v1/health")
    assert prefixed.status_code == 200


@pytest.mark.asyncio
async def test_cache_outage_only_degrades(client, fake_redis) -> None:
    fake_redis.fail = True
    response = await client.get("/health", headers={"X-Request-Id": "req-123"})
    assert response.status_code == 200
    assert response.json()["data"]["cache"] == "degraded"
    assert response.headers["X-Request-Id"] == "req-123"


@pytest.mark.asyncio
async def test_unknown_routes_use_error_envelope(client) -> None:
    response = await client.get("/api/v1/does-not-exist")
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Not Found"}


@pytest.mark.asyncio
async def test_validation_errors_are_bad_requests(client) -> None:
    response = await client.post("/api/v1/auth/login", json={"email": "a@example.com"})
    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["error"].startswith("password:")
