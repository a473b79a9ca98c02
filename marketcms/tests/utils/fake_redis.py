from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Any

from redis.exceptions import ConnectionError as RedisConnectionError


class FakeRedis:
    """In-memory stand-in for the subset of ``redis.asyncio.Redis`` the cache uses.

    Expiry runs on a manual clock; call ``advance`` to move time forward.
    Setting ``fail = True`` makes every command raise a connection error.
    """

    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.expires_at: dict[str, float] = {}
        self.now = 0.0
        self.fail = False
        self.commands: list[tuple[str, Any]] = []

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _check(self, name: str, arg: Any = None) -> None:
        if self.fail:
            raise RedisConnectionError("connection refused")
        self.commands.append((name, arg))

    def _alive(self, key: str) -> bool:
        deadline = self.expires_at.get(key)
        if deadline is not None and deadline <= self.now:
            self.store.pop(key, None)
            self.expires_at.pop(key, None)
        return key in self.store

    async def get(self, key: str) -> str | None:
        self._check("get", key)
        return self.store.get(key) if self._alive(key) else None

    async def set(self, key: str, value: Any, ex: int | None = None) -> bool:
        self._check("set", key)
        self.store[key] = str(value)
        if ex is not None:
            self.expires_at[key] = self.now + ex
        else:
            self.expires_at.pop(key, None)
        return True

    async def delete(self, *keys: str) -> int:
        self._check("delete", keys)
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self.store.pop(key, None)
            self.expires_at.pop(key, None)
        return removed

    async def exists(self, key: str) -> int:
        self._check("exists", key)
        return 1 if self._alive(key) else 0

    async def scan(self, cursor: int = 0, match: str | None = None, count: int | None = None):
        self._check("scan", match)
        keys = [key for key in list(self.store) if self._alive(key)]
        if match:
            keys = [key for key in keys if fnmatchcase(key, match)]
        return 0, keys

    async def incr(self, key: str) -> int:
        self._check("incr", key)
        current = int(self.store[key]) if self._alive(key) else 0
        current += 1
        self.store[key] = str(current)
        return current

    async def expire(self, key: str, seconds: int) -> bool:
        self._check("expire", key)
        if not self._alive(key):
            return False
        self.expires_at[key] = self.now + seconds
        return True

    async def ttl(self, key: str) -> int:
        self._check("ttl", key)
        if not self._alive(key):
            return -2
        deadline = self.expires_at.get(key)
        if deadline is None:
            return -1
        return int(deadline - self.now)

    async def ping(self) -> bool:
        self._check("ping")
        return True

    def keys_matching(self, pattern: str) -> list[str]:
        return sorted(key for key in list(self.store) if self._alive(key) and fnmatchcase(key, pattern))
