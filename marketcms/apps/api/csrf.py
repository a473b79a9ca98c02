from __future__ import annotations

import base64
import logging
import secrets

from fastapi import HTTPException, Request, Response, status

from marketcms.core.config import get_settings
from marketcms.services.cache import Cache, get_cache


logger = logging.getLogger(__name__)

CSRF_HEADER = "X-CSRF-Token"
CSRF_COOKIE = "csrf_token"
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
_TOKEN_BYTES = 32


def csrf_key(token: str) -> str:
    return f"csrf:{token}"


def generate_csrf_token() -> str:
    return base64.urlsafe_b64encode(secrets.token_bytes(_TOKEN_BYTES)).decode("ascii")


def _csrf_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "CSRF_FAILED", "message": message},
    )


class CSRFGuard:
    """Double-submit cookie check backed by issued tokens in the cache."""

    def __init__(self, cache: Cache, *, ttl_s: int) -> None:
        self._cache = cache
        self._ttl_s = ttl_s

    async def issue(self) -> str:
        token = generate_csrf_token()
        await self._cache.set(csrf_key(token), True, self._ttl_s)
        return token

    async def validate(self, *, method: str, header_token: str | None, cookie_token: str | None) -> None:
        if method.upper() in SAFE_METHODS:
            return
        if not header_token or not cookie_token:
            raise _csrf_error("CSRF token missing")
        if not secrets.compare_digest(header_token, cookie_token):
            raise _csrf_error("CSRF token mismatch")
        if not await self._cache.exists(csrf_key(header_token)):
            raise _csrf_error("CSRF token invalid or expired")

    def attach(self, response: Response, token: str) -> None:
        settings = get_settings()
        response.set_cookie(
            key=CSRF_COOKIE,
            value=token,
            max_age=self._ttl_s,
            path="/",
            secure=settings.csrf_cookie_secure,
            httponly=True,
            samesite="strict",
        )
        response.headers[CSRF_HEADER] = token


def get_csrf_guard() -> CSRFGuard:
    return CSRFGuard(get_cache(), ttl_s=get_settings().csrf_token_ttl_s)


async def require_csrf(request: Request) -> None:
    # Route dependency for unsafe requests that arrive without bearer credentials.
    if not get_settings().csrf_enabled:
        return
    guard = get_csrf_guard()
    try:
        await guard.validate(
            method=request.method,
            header_token=request.headers.get(CSRF_HEADER),
            cookie_token=request.cookies.get(CSRF_COOKIE),
        )
    except HTTPException:
        logger.info("csrf_rejected path=%s", request.url.path)
        raise
