from __future__ import annotations

import logging

from marketcms.services.auth.tokens import TokenClaims
from marketcms.services.cache import MISS, Cache


logger = logging.getLogger(__name__)


def session_key(user_id: int, token_id: str) -> str:
    return f"session:{user_id}:{token_id}"


class SessionStore:
    """Refresh-token registrations kept in the cache.

    Presence of ``session:{user_id}:{token_id}`` is the only proof that a
    refresh token has not been revoked.
    """

    def __init__(self, cache: Cache, *, ttl_s: int) -> None:
        self._cache = cache
        self._ttl_s = ttl_s

    async def register(self, claims: TokenClaims, refresh_token: str) -> bool:
        stored = await self._cache.set(session_key(claims.user_id, claims.token_id), refresh_token, self._ttl_s)
        if not stored:
            logger.warning("session_register_failed user_id=%s", claims.user_id)
        return stored

    async def exists(self, user_id: int, token_id: str) -> bool:
        return await self._cache.exists(session_key(user_id, token_id))

    async def get_token(self, user_id: int, token_id: str) -> str | None:
        value = await self._cache.get(session_key(user_id, token_id))
        return None if value is MISS else str(value)

    async def revoke(self, user_id: int, token_id: str) -> None:
        await self._cache.delete(session_key(user_id, token_id))

    async def rotate(self, *, new_claims: TokenClaims, new_token: str, old_claims: TokenClaims) -> None:
        # New session first so a crash in between never leaves the user without one.
        await self.register(new_claims, new_token)
        await self.revoke(old_claims.user_id, old_claims.token_id)
