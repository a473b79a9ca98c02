from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.apps.api.deps import (
    Pagination,
    Principal,
    get_current_principal,
    get_db,
    get_pagination,
    require_roles,
)
from marketcms.apps.api.response import paginated_response, success_response
from marketcms.services import users as users_service
from marketcms.services.authz import ROLE_ADMIN


router = APIRouter(prefix="/users", tags=["users"])

admin_access = require_roles(ROLE_ADMIN)


class CreateUserRequest(BaseModel):
    email: str
    password: str
    name: str
    role: str | None = None


class UpdateUserRequest(BaseModel):
    email: str | None = None
    password: str | None = None
    name: str | None = None
    role: str | None = None
    is_active: bool | None = None


@router.get("/me")
async def get_me(
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    user = await users_service.get_user(db, user_id=principal.user_id)
    return success_response(users_service.serialize_user(user))


@router.get("")
async def list_users(
    pagination: Pagination = Depends(get_pagination),
    principal: Principal = Depends(admin_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    items, total = await users_service.list_users(db, page=pagination.page, limit=pagination.limit)
    return paginated_response(items, page=pagination.page, limit=pagination.limit, total=total)


@router.get("/by-role/{role}")
async def list_users_by_role(
    role: str,
    pagination: Pagination = Depends(get_pagination),
    principal: Principal = Depends(admin_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    items, total = await users_service.list_users(
        db, role=role, page=pagination.page, limit=pagination.limit
    )
    return paginated_response(items, page=pagination.page, limit=pagination.limit, total=total)


@router.get("/{user_id}")
async def get_user(
    user_id: int,
    principal: Principal = Depends(admin_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    user = await users_service.get_user(db, user_id=user_id)
    return success_response(users_service.serialize_user(user))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user(
    body: CreateUserRequest,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    user = await users_service.create_user(
        db,
        email=body.email,
        password=body.password,
        name=body.name,
        role=body.role,
        actor=principal.audit_actor(),
        request=request,
    )
    return success_response(user, message="User created successfully")


@router.put("/{user_id}")
async def update_user(
    user_id: int,
    body: UpdateUserRequest,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    patch = {key: value for key, value in body.model_dump(exclude_unset=True).items() if value is not None}
    user = await users_service.update_user(
        db, user_id=user_id, patch=patch, actor=principal.audit_actor(), request=request
    )
    return success_response(user, message="User updated successfully")


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await users_service.deactivate_user(db, user_id=user_id, actor=principal.audit_actor(), request=request)
    return success_response(message="User deactivated successfully")
