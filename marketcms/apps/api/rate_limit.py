from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import Callable

from fastapi import Request, Response

from marketcms.core.config import get_settings
from marketcms.core.errors import RateLimitedError
from marketcms.services.cache import MISS, Cache, get_cache


logger = logging.getLogger(__name__)

THROTTLE_MESSAGE = "Too many requests. Please try again later."


@dataclass(frozen=True)
class RateLimitDecision:
    # Capture the outcome plus the header values reported to the client.
    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after_s: int = 0
    degraded: bool = False

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }


def rate_limit_key(client_ip: str, path: str) -> str:
    return f"rate_limit:{client_ip}:{path}"


class RateLimiter:
    """Fixed-window counter per (client ip, path) stored in the cache.

    Read, compare, then increment; concurrent requests may over-count by a
    small constant, which is accepted. The window TTL is set on the first
    increment only so the window does not slide.
    """

    def __init__(self, cache: Cache, *, time_provider: Callable[[], float] | None = None) -> None:
        # Allow injecting time for deterministic tests.
        self._cache = cache
        self._time_provider = time_provider or time.time

    async def check(self, *, client_ip: str, path: str, max_requests: int, window_s: int) -> RateLimitDecision:
        key = rate_limit_key(client_ip, path)
        now = int(self._time_provider())
        current = await self._cache.get(key)
        count = int(current) if current is not MISS and current is not None else 0

        if count >= max_requests:
            ttl = await self._cache.ttl(key)
            retry_after = ttl if ttl is not None and ttl > 0 else window_s
            return RateLimitDecision(
                allowed=False,
                limit=max_requests,
                remaining=0,
                reset_at=now + retry_after,
                retry_after_s=retry_after,
            )

        new_count = await self._cache.incr(key)
        if new_count is None:
            # Counter store unavailable: fail open.
            return RateLimitDecision(
                allowed=True,
                limit=max_requests,
                remaining=max(0, max_requests - count - 1),
                reset_at=now + window_s,
                degraded=True,
            )
        if new_count == 1:
            await self._cache.expire(key, window_s)
            ttl = window_s
        else:
            ttl = await self._cache.ttl(key)
            if ttl is None:
                # A counter without expiry would block forever; re-arm it.
                await self._cache.expire(key, window_s)
                ttl = window_s
        return RateLimitDecision(
            allowed=True,
            limit=max_requests,
            remaining=max(0, max_requests - new_count),
            reset_at=now + ttl,
        )


_rate_limiter: RateLimiter | None = None


def _get_rate_limiter() -> RateLimiter:
    # Cache the rate limiter so requests share one cache client and time provider.
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(get_cache())
    return _rate_limiter


def reset_rate_limiter_state() -> None:
    global _rate_limiter
    _rate_limiter = None


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _throttle_error(*, decision: RateLimitDecision) -> RateLimitedError:
    # The adapter adds Retry-After; the window headers travel with the error.
    return RateLimitedError(THROTTLE_MESSAGE, retry_after_s=decision.retry_after_s, headers=decision.headers())


async def enforce_rate_limit(
    *,
    request: Request,
    response: Response,
    max_requests: int,
    window_s: int,
) -> None:
    settings = get_settings()
    if not settings.rate_limit_enabled:
        return
    limiter = _get_rate_limiter()
    decision = await limiter.check(
        client_ip=client_ip(request),
        path=request.url.path,
        max_requests=max_requests,
        window_s=window_s,
    )
    if not decision.allowed:
        logger.info("rate_limited ip=%s path=%s retry_after=%s", client_ip(request), request.url.path, decision.retry_after_s)
        raise _throttle_error(decision=decision)
    for name, value in decision.headers().items():
        response.headers[name] = value
    if decision.degraded:
        response.headers["X-RateLimit-Status"] = "degraded"


def rate_limit(*, max_requests: Callable[[], int], window_s: Callable[[], int]):
    # Dependency factory; limits are read lazily so env overrides apply per app instance.
    async def _dependency(request: Request, response: Response) -> None:
        await enforce_rate_limit(
            request=request,
            response=response,
            max_requests=max_requests(),
            window_s=window_s(),
        )

    return _dependency


login_rate_limit = rate_limit(
    max_requests=lambda: get_settings().rate_limit_login_max_attempts,
    window_s=lambda: get_settings().rate_limit_login_window_s,
)

api_rate_limit = rate_limit(
    max_requests=lambda: get_settings().rate_limit_api_max_requests,
    window_s=lambda: get_settings().rate_limit_api_window_s,
)
