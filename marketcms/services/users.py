from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from marketcms.core.clock import isoformat, utc_now
from marketcms.core.errors import BadRequestError, NotFoundError, StorageError
from marketcms.domain.models import User
from marketcms.persistence.repos import users as users_repo
from marketcms.services.audit import (
    ACTION_USER_CREATE,
    ACTION_USER_DELETE,
    ACTION_USER_ROLE_CHANGE,
    ACTION_USER_UPDATE,
    AuditActor,
    build_entry,
    diff_changes,
    get_audit_sink,
)
from marketcms.services.auth.passwords import hash_password_async
from marketcms.services.authz import ROLE_VIEWER, normalize_role


logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = ("name", "email", "role", "is_active")


def serialize_user(user: User) -> dict[str, Any]:
    # The password hash never leaves the service layer.
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "is_active": bool(user.is_active),
        "last_login_at": isoformat(user.last_login_at),
        "created_at": isoformat(user.created_at),
        "updated_at": isoformat(user.updated_at),
    }


def _validate_email(email: str | None) -> str:
    cleaned = (email or "").strip()
    local, _, domain = cleaned.partition("@")
    if not local or "." not in domain:
        raise BadRequestError("Invalid email format")
    return cleaned


def _validate_role(role: str | None) -> str:
    try:
        return normalize_role(role or ROLE_VIEWER)
    except ValueError as exc:
        raise BadRequestError(str(exc)) from exc


async def _commit(session: AsyncSession) -> None:
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise BadRequestError("User with this email already exists") from exc
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("user_write_failed", exc_info=exc)
        raise StorageError("Failed to save user") from exc


async def get_user(session: AsyncSession, *, user_id: int) -> User:
    user = await users_repo.get_user(session, user_id=user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def list_users(
    session: AsyncSession,
    *,
    page: int,
    limit: int,
    role: str | None = None,
) -> tuple[list[dict[str, Any]], int]:
    if role is not None:
        role = _validate_role(role)
    rows, total = await users_repo.list_users(session, role=role, page=page, limit=limit)
    return [serialize_user(row) for row in rows], total


async def create_user(
    session: AsyncSession,
    *,
    email: str,
    password: str,
    name: str,
    role: str | None,
    actor: AuditActor,
    request: Request | None = None,
) -> dict[str, Any]:
    email = _validate_email(email)
    if not (name or "").strip():
        raise BadRequestError("Name is required")
    resolved_role = _validate_role(role)
    if await users_repo.email_taken(session, email=email):
        raise BadRequestError("User with this email already exists")
    password_hash = await hash_password_async(password)

    now = utc_now()
    user = User(
        email=email,
        password_hash=password_hash,
        name=name.strip(),
        role=resolved_role,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    session.add(user)
    await _commit(session)
    get_audit_sink().log_async(
        build_entry(
            action=ACTION_USER_CREATE,
            actor=actor,
            request=request,
            entity_type="user",
            entity_id=user.id,
            changes={"email": {"old": None, "new": user.email}, "role": {"old": None, "new": user.role}},
        )
    )
    return serialize_user(user)


async def update_user(
    session: AsyncSession,
    *,
    user_id: int,
    patch: dict[str, Any],
    actor: AuditActor,
    request: Request | None = None,
) -> dict[str, Any]:
    user = await get_user(session, user_id=user_id)
    patch = dict(patch)
    if "email" in patch:
        patch["email"] = _validate_email(patch["email"])
        if await users_repo.email_taken(session, email=patch["email"], exclude_id=user.id):
            raise BadRequestError("User with this email already exists")
    if "role" in patch:
        patch["role"] = _validate_role(patch["role"])
    if "name" in patch and not (patch["name"] or "").strip():
        raise BadRequestError("Name is required")

    before = {name: getattr(user, name) for name in _UPDATABLE_FIELDS if name in patch}
    for name in _UPDATABLE_FIELDS:
        if name in patch:
            setattr(user, name, patch[name])
    changes = diff_changes(before, {name: getattr(user, name) for name in before})
    if patch.get("password"):
        user.password_hash = await hash_password_async(patch["password"])
        changes["password"] = {"old": None, "new": None}
    user.updated_at = utc_now()
    await _commit(session)

    sink = get_audit_sink()
    sink.log_async(
        build_entry(
            action=ACTION_USER_UPDATE,
            actor=actor,
            request=request,
            entity_type="user",
            entity_id=user.id,
            changes=changes,
        )
    )
    if "role" in changes:
        sink.log_async(
            build_entry(
                action=ACTION_USER_ROLE_CHANGE,
                actor=actor,
                request=request,
                entity_type="user",
                entity_id=user.id,
                changes={"role": changes["role"]},
            )
        )
    return serialize_user(user)


async def deactivate_user(
    session: AsyncSession,
    *,
    user_id: int,
    actor: AuditActor,
    request: Request | None = None,
) -> None:
    # Users are never removed; deactivation blocks login and bearer resolution.
    if actor.user_id == user_id:
        raise BadRequestError("Cannot delete your own account")
    user = await get_user(session, user_id=user_id)
    user.is_active = False
    user.updated_at = utc_now()
    await _commit(session)
    get_audit_sink().log_async(
        build_entry(
            action=ACTION_USER_DELETE,
            actor=actor,
            request=request,
            entity_type="user",
            entity_id=user.id,
            changes={"is_active": {"old": True, "new": False}},
        )
    )
