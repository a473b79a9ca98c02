from __future__ import annotations

import asyncio
from datetime import date, datetime
from decimal import Decimal
import json
import logging
from typing import Any, Awaitable, Callable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from marketcms.core.config import get_settings


logger = logging.getLogger(__name__)

SCAN_BATCH_SIZE = 100

# TTLs in seconds for the derived representations kept in the cache.
TTL_REPORT_LIST = 600
TTL_REPORT_ITEM = 1800
TTL_POST_LIST = 300
TTL_POST_ITEM = 600
TTL_CATEGORY_LIST = 1800
TTL_FORM_STATS = 120
TTL_DASHBOARD_STATS = 600
TTL_DASHBOARD_ACTIVITY = 300

_CACHE_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class _Miss:
    def __repr__(self) -> str:
        return "MISS"


MISS: Any = _Miss()


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value: Any) -> str:
    return json.dumps(value, default=_json_default, separators=(",", ":"))


_redis_pool: Redis | None = None
_redis_loop: asyncio.AbstractEventLoop | None = None
_redis_lock = asyncio.Lock()


async def get_redis() -> Redis:
    # Cache Redis connections to avoid reconnecting per request.
    global _redis_pool, _redis_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_loop != current_loop:
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = Redis.from_url(
                settings.resolved_redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            _redis_loop = current_loop
    return _redis_pool


class Cache:
    """JSON key/value cache over Redis.

    Every operation is best-effort: store failures are logged and reads
    degrade to a miss so that cache outages never fail a request.
    ``get_or_compute`` collapses concurrent misses for the same key into a
    single loader call per process.
    """

    def __init__(self, redis: Redis | None = None) -> None:
        self._redis = redis
        self._inflight: dict[str, asyncio.Task[Any]] = {}

    async def _client(self) -> Redis:
        if self._redis is not None:
            return self._redis
        return await get_redis()

    async def set(self, key: str, value: Any, ttl_s: int) -> bool:
        payload = dumps(value)
        try:
            client = await self._client()
            await client.set(key, payload, ex=max(1, int(ttl_s)))
        except _CACHE_ERRORS as exc:
            logger.warning("cache_set_failed key=%s error=%s", key, exc)
            return False
        return True

    async def get(self, key: str) -> Any:
        """Return the decoded value or ``MISS``."""
        try:
            client = await self._client()
            raw = await client.get(key)
        except _CACHE_ERRORS as exc:
            logger.warning("cache_get_failed key=%s error=%s", key, exc)
            return MISS
        if raw is None:
            return MISS
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("cache_decode_failed key=%s", key)
            return MISS

    async def exists(self, key: str) -> bool:
        try:
            client = await self._client()
            return bool(await client.exists(key))
        except _CACHE_ERRORS as exc:
            logger.warning("cache_exists_failed key=%s error=%s", key, exc)
            return False

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            client = await self._client()
            return int(await client.delete(*keys))
        except _CACHE_ERRORS as exc:
            logger.warning("cache_delete_failed keys=%s error=%s", ",".join(keys), exc)
            return 0

    async def delete_pattern(self, pattern: str) -> int:
        # Scan in bounded batches; keys inserted mid-scan may survive.
        deleted = 0
        try:
            client = await self._client()
            cursor = 0
            while True:
                cursor, keys = await client.scan(cursor=cursor, match=pattern, count=SCAN_BATCH_SIZE)
                if keys:
                    deleted += int(await client.delete(*keys))
                if int(cursor) == 0:
                    break
        except _CACHE_ERRORS as exc:
            logger.warning("cache_delete_pattern_failed pattern=%s error=%s", pattern, exc)
        return deleted

    async def incr(self, key: str) -> int | None:
        try:
            client = await self._client()
            return int(await client.incr(key))
        except _CACHE_ERRORS as exc:
            logger.warning("cache_incr_failed key=%s error=%s", key, exc)
            return None

    async def expire(self, key: str, ttl_s: int) -> bool:
        try:
            client = await self._client()
            return bool(await client.expire(key, max(1, int(ttl_s))))
        except _CACHE_ERRORS as exc:
            logger.warning("cache_expire_failed key=%s error=%s", key, exc)
            return False

    async def ttl(self, key: str) -> int | None:
        try:
            client = await self._client()
            value = int(await client.ttl(key))
        except _CACHE_ERRORS as exc:
            logger.warning("cache_ttl_failed key=%s error=%s", key, exc)
            return None
        return value if value >= 0 else None

    async def ping(self) -> bool:
        try:
            client = await self._client()
            return bool(await client.ping())
        except _CACHE_ERRORS:
            return False

    async def get_or_compute(
        self,
        key: str,
        ttl_s: int,
        loader: Callable[[], Awaitable[Any]],
    ) -> Any:
        cached = await self.get(key)
        if cached is not MISS:
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load_and_store(key, ttl_s, loader))
            # Mark the outcome as observed even when every caller has gone away.
            task.add_done_callback(lambda t: t.cancelled() or t.exception())
            self._inflight[key] = task
        # Shield so a cancelled caller, the first one included, never cancels the shared load.
        return await asyncio.shield(task)

    async def _load_and_store(self, key: str, ttl_s: int, loader: Callable[[], Awaitable[Any]]) -> Any:
        try:
            # Another process may have filled the key between our miss and this load.
            cached = await self.get(key)
            if cached is not MISS:
                return cached
            value = await loader()
            await self.set(key, value, ttl_s)
            return value
        finally:
            # Loader failures reach every waiter and are never cached; the next call retries.
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]


_cache: Cache | None = None


def get_cache() -> Cache:
    # Share one cache so the single-flight registry is process-wide.
    global _cache
    if _cache is None:
        _cache = Cache()
    return _cache


def reset_cache_state() -> None:
    # Drop cached Redis connections for deterministic test setup.
    global _cache, _redis_pool, _redis_loop
    _cache = None
    _redis_pool = None
    _redis_loop = None
