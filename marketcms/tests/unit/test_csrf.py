from __future__ import annotations

from fastapi import HTTPException, Response
import pytest

from marketcms.apps.api.csrf import CSRF_COOKIE, CSRF_HEADER, CSRFGuard, csrf_key
from marketcms.services.cache import Cache
from marketcms.tests.utils.fake_redis import FakeRedis


async def _assert_rejected(guard: CSRFGuard, message: str, **kwargs) -> None:
    with pytest.raises(HTTPException) as exc_info:
        await guard.validate(**kwargs)
    assert exc_info.value.status_code == 403
    assert exc_info.value.detail["message"] == message


@pytest.mark.asyncio
async def test_issued_token_validates_with_matching_cookie() -> None:
    fake = FakeRedis()
    guard = CSRFGuard(Cache(redis=fake), ttl_s=3600)
    token = await guard.issue()

    assert fake.keys_matching("csrf:*") == [csrf_key(token)]
    await guard.validate(method="POST", header_token=token, cookie_token=token)


@pytest.mark.asyncio
async def test_rejects_missing_mismatched_and_unknown_tokens() -> None:
    guard = CSRFGuard(Cache(redis=FakeRedis()), ttl_s=3600)
    token = await guard.issue()

    await _assert_rejected(guard, "CSRF token missing", method="POST", header_token=None, cookie_token=token)
    await _assert_rejected(guard, "CSRF token missing", method="POST", header_token=token, cookie_token=None)
    await _assert_rejected(guard, "CSRF token mismatch", method="POST", header_token=token, cookie_token="other")
    await _assert_rejected(
        guard, "CSRF token invalid or expired", method="POST", header_token="forged", cookie_token="forged"
    )


@pytest.mark.asyncio
async def test_expired_token_is_rejected() -> None:
    fake = FakeRedis()
    guard = CSRFGuard(Cache(redis=fake), ttl_s=60)
    token = await guard.issue()
    fake.advance(61)
    await _assert_rejected(
        guard, "CSRF token invalid or expired", method="PUT", header_token=token, cookie_token=token
    )


@pytest.mark.asyncio
async def test_safe_methods_skip_validation() -> None:
    guard = CSRFGuard(Cache(redis=FakeRedis()), ttl_s=3600)
    for method in ("GET", "HEAD", "OPTIONS"):
        await guard.validate(method=method, header_token=None, cookie_token=None)


def test_attach_sets_strict_http_only_cookie_and_header() -> None:
    guard = CSRFGuard(Cache(redis=FakeRedis()), ttl_s=3600)
    response = Response()
    guard.attach(response, "tok")

    cookie = response.headers["set-cookie"]
    assert cookie.startswith(f"{CSRF_COOKIE}=tok")
    assert "HttpOnly" in cookie
    assert "SameSite=strict" in cookie
    assert "Max-Age=3600" in cookie
    assert response.headers[CSRF_HEADER] == "tok"
