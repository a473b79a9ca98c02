from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from marketcms.core.clock import utc_now
from marketcms.core.errors import StorageError, UnauthorizedError
from marketcms.domain.models import AUDIT_FAILURE, User
from marketcms.persistence.repos import users as users_repo
from marketcms.services.audit import (
    ACTION_LOGIN,
    ACTION_LOGIN_FAILED,
    ACTION_LOGOUT,
    ACTION_TOKEN_REFRESH,
    AuditActor,
    build_entry,
    get_audit_sink,
)
from marketcms.services.auth.passwords import verify_password_async
from marketcms.services.auth.sessions import SessionStore
from marketcms.services.auth.tokens import TOKEN_TYPE_REFRESH, TokenPair, get_token_minter
from marketcms.services.cache import get_cache
from marketcms.services.users import serialize_user


logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"
INVALID_REFRESH = "Invalid or expired refresh token"
TOKEN_TYPE_BEARER = "Bearer"


def get_session_store() -> SessionStore:
    return SessionStore(get_cache(), ttl_s=get_token_minter().refresh_ttl_s)


def _actor(user: User) -> AuditActor:
    return AuditActor(user_id=user.id, email=user.email, role=user.role)


def _token_payload(pair: TokenPair, user: User) -> dict[str, Any]:
    return {
        "access_token": pair.access_token,
        "refresh_token": pair.refresh_token,
        "token_type": TOKEN_TYPE_BEARER,
        "expires_in": pair.expires_in,
        "user": serialize_user(user),
    }


async def _issue(user: User) -> TokenPair:
    pair = get_token_minter().mint_pair(user_id=user.id, email=user.email, role=user.role)
    await get_session_store().register(pair.refresh_claims, pair.refresh_token)
    return pair


async def login(
    session: AsyncSession,
    *,
    email: str,
    password: str,
    request: Request | None = None,
) -> dict[str, Any]:
    user = await users_repo.get_user_by_email(session, email=email or "")
    # Unknown, inactive and wrong-password attempts are indistinguishable to the caller.
    if user is None or not user.is_active or not await verify_password_async(user.password_hash, password or ""):
        get_audit_sink().log_async(
            build_entry(
                action=ACTION_LOGIN_FAILED,
                actor=AuditActor(user_id=user.id if user else None, email=email, role=user.role if user else None),
                request=request,
                entity_type="user",
                entity_id=user.id if user else None,
                status=AUDIT_FAILURE,
                error_message=INVALID_CREDENTIALS,
            )
        )
        raise UnauthorizedError(INVALID_CREDENTIALS)

    pair = await _issue(user)
    user.last_login_at = utc_now()
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("login_touch_failed user_id=%s", user.id, exc_info=exc)
        raise StorageError("Failed to record login") from exc
    get_audit_sink().log_async(
        build_entry(action=ACTION_LOGIN, actor=_actor(user), request=request, entity_type="user", entity_id=user.id)
    )
    return _token_payload(pair, user)


async def refresh(
    session: AsyncSession,
    *,
    refresh_token: str,
    request: Request | None = None,
) -> dict[str, Any]:
    minter = get_token_minter()
    store = get_session_store()
    if not refresh_token:
        raise UnauthorizedError(INVALID_REFRESH)
    try:
        claims = minter.verify(refresh_token, expected_type=TOKEN_TYPE_REFRESH)
    except UnauthorizedError as exc:
        raise UnauthorizedError(INVALID_REFRESH) from exc
    if not await store.exists(claims.user_id, claims.token_id):
        raise UnauthorizedError(INVALID_REFRESH)

    user = await users_repo.get_user(session, user_id=claims.user_id)
    if user is None or not user.is_active:
        await store.revoke(claims.user_id, claims.token_id)
        raise UnauthorizedError(INVALID_REFRESH)

    # Fresh claims pick up any role change since the last login.
    pair = minter.mint_pair(user_id=user.id, email=user.email, role=user.role)
    await store.rotate(new_claims=pair.refresh_claims, new_token=pair.refresh_token, old_claims=claims)
    get_audit_sink().log_async(
        build_entry(
            action=ACTION_TOKEN_REFRESH,
            actor=_actor(user),
            request=request,
            entity_type="user",
            entity_id=user.id,
        )
    )
    return _token_payload(pair, user)


async def logout(
    *,
    actor: AuditActor,
    refresh_token: str | None,
    request: Request | None = None,
) -> None:
    if refresh_token:
        try:
            claims = get_token_minter().verify(refresh_token, expected_type=TOKEN_TYPE_REFRESH)
        except UnauthorizedError:
            logger.info("logout_refresh_token_ignored user_id=%s reason=invalid", actor.user_id)
        else:
            if claims.user_id == actor.user_id:
                await get_session_store().revoke(claims.user_id, claims.token_id)
            else:
                logger.info("logout_refresh_token_ignored user_id=%s reason=foreign", actor.user_id)
    get_audit_sink().log_async(
        build_entry(
            action=ACTION_LOGOUT,
            actor=actor,
            request=request,
            entity_type="user",
            entity_id=actor.user_id,
        )
    )
