from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import time
from typing import Any, Callable
from uuid import uuid4

import jwt

from marketcms.core.config import get_settings
from marketcms.core.errors import InvalidTokenError, TokenExpiredError


TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"
_ALGORITHM = "HS256"


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    email: str
    role: str
    token_type: str
    token_id: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_claims: TokenClaims
    refresh_claims: TokenClaims
    expires_in: int


class TokenMinter:
    """Signs and verifies HS256 bearer tokens for access and refresh use."""

    def __init__(
        self,
        *,
        secret: str,
        issuer: str,
        access_ttl_s: int,
        refresh_ttl_s: int,
        time_provider: Callable[[], float] | None = None,
    ) -> None:
        # Allow injecting time for deterministic tests.
        self._secret = secret
        self._issuer = issuer
        self._access_ttl_s = access_ttl_s
        self._refresh_ttl_s = refresh_ttl_s
        self._time_provider = time_provider or time.time

    @property
    def access_ttl_s(self) -> int:
        return self._access_ttl_s

    @property
    def refresh_ttl_s(self) -> int:
        return self._refresh_ttl_s

    def mint(self, *, user_id: int, email: str, role: str, token_type: str) -> tuple[str, TokenClaims]:
        if token_type not in (TOKEN_TYPE_ACCESS, TOKEN_TYPE_REFRESH):
            raise ValueError(f"unknown token type: {token_type}")
        ttl_s = self._access_ttl_s if token_type == TOKEN_TYPE_ACCESS else self._refresh_ttl_s
        issued_at = datetime.fromtimestamp(int(self._time_provider()), tz=timezone.utc)
        expires_at = issued_at + timedelta(seconds=ttl_s)
        claims = TokenClaims(
            user_id=user_id,
            email=email,
            role=role,
            token_type=token_type,
            token_id=str(uuid4()),
            issued_at=issued_at,
            expires_at=expires_at,
        )
        payload: dict[str, Any] = {
            "id": user_id,
            "email": email,
            "role": role,
            "token_type": token_type,
            "sub": str(user_id),
            "iss": self._issuer,
            "iat": int(issued_at.timestamp()),
            "nbf": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": claims.token_id,
        }
        token = jwt.encode(payload, self._secret, algorithm=_ALGORITHM)
        return token, claims

    def mint_pair(self, *, user_id: int, email: str, role: str) -> TokenPair:
        access_token, access_claims = self.mint(
            user_id=user_id, email=email, role=role, token_type=TOKEN_TYPE_ACCESS
        )
        refresh_token, refresh_claims = self.mint(
            user_id=user_id, email=email, role=role, token_type=TOKEN_TYPE_REFRESH
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_claims=access_claims,
            refresh_claims=refresh_claims,
            expires_in=self._access_ttl_s,
        )

    def verify(self, token: str, *, expected_type: str) -> TokenClaims:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                issuer=self._issuer,
                # Time claims are checked below against the injected clock.
                options={
                    "require": ["exp", "iat", "nbf", "iss", "jti"],
                    "verify_exp": False,
                    "verify_nbf": False,
                    "verify_iat": False,
                },
            )
        except jwt.PyJWTError as exc:
            raise InvalidTokenError("Invalid token") from exc
        now = int(self._time_provider())
        try:
            expires_at_s = int(payload["exp"])
            not_before_s = int(payload["nbf"])
        except (TypeError, ValueError) as exc:
            raise InvalidTokenError("Invalid token") from exc
        if expires_at_s <= now:
            raise TokenExpiredError("Token has expired")
        if not_before_s > now:
            raise InvalidTokenError("Invalid token")
        if payload.get("token_type") != expected_type:
            raise InvalidTokenError("Invalid token type")
        try:
            return TokenClaims(
                user_id=int(payload["id"]),
                email=str(payload["email"]),
                role=str(payload["role"]),
                token_type=str(payload["token_type"]),
                token_id=str(payload["jti"]),
                issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidTokenError("Invalid token") from exc


_minter: TokenMinter | None = None


def get_token_minter() -> TokenMinter:
    global _minter
    if _minter is None:
        settings = get_settings()
        _minter = TokenMinter(
            secret=settings.jwt_secret,
            issuer=settings.jwt_issuer,
            access_ttl_s=settings.jwt_access_token_ttl_s,
            refresh_ttl_s=settings.jwt_refresh_token_ttl_s,
        )
    return _minter


def reset_token_minter_state() -> None:
    global _minter
    _minter = None
