from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.core.errors import ForbiddenError, UnauthorizedError
from marketcms.domain.pagination import normalize_pagination
from marketcms.persistence.db import get_session
from marketcms.persistence.repos import users as users_repo
from marketcms.services.audit import AuditActor
from marketcms.services.auth.tokens import TOKEN_TYPE_ACCESS, get_token_minter
from marketcms.services.authz import has_permission, is_privileged


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


class Principal(BaseModel):
    # Authenticated identity passed explicitly to handlers.
    user_id: int
    email: str
    name: str
    role: str

    @property
    def privileged(self) -> bool:
        return is_privileged(self.role)

    def audit_actor(self) -> AuditActor:
        return AuditActor(user_id=self.user_id, email=self.email, role=self.role)


class Pagination(BaseModel):
    page: int
    limit: int


def get_pagination(page: int | None = None, limit: int | None = None) -> Pagination:
    # Out-of-range values are clamped, never rejected.
    resolved_page, resolved_limit = normalize_pagination(page, limit)
    return Pagination(page=resolved_page, limit=resolved_limit)


def _parse_bearer_token(header_value: str | None) -> str:
    if not header_value:
        raise UnauthorizedError("Missing or invalid authorization header")
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise UnauthorizedError("Missing or invalid authorization header")
    return parts[1]


async def _resolve_principal(request: Request, db: AsyncSession, token: str) -> Principal:
    claims = get_token_minter().verify(token, expected_type=TOKEN_TYPE_ACCESS)
    # Role and active flag come from the store so deactivation takes effect immediately.
    user = await users_repo.get_user(db, user_id=claims.user_id)
    if user is None or not user.is_active:
        raise UnauthorizedError("User not found or inactive")
    principal = Principal(user_id=user.id, email=user.email, name=user.name, role=user.role)
    request.state.principal = principal
    return principal


async def get_current_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal:
    token = _parse_bearer_token(request.headers.get("Authorization"))
    return await _resolve_principal(request, db, token)


async def get_optional_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal | None:
    # Public routes treat a missing or unusable token as an anonymous caller.
    header_value = request.headers.get("Authorization")
    if not header_value:
        return None
    try:
        token = _parse_bearer_token(header_value)
        return await _resolve_principal(request, db, token)
    except UnauthorizedError:
        return None


def is_privileged_caller(principal: Principal | None) -> bool:
    return principal is not None and principal.privileged


def require_roles(*roles: str):
    # Dependency factory to enforce RBAC at the route level.
    allowed = frozenset(roles)

    async def _dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise ForbiddenError("Insufficient permissions")
        return principal

    return _dependency


def require_permission(permission: str):
    async def _dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not has_permission(principal.role, permission):
            raise ForbiddenError("Insufficient permissions")
        return principal

    return _dependency
