from __future__ import annotations

from fastapi import APIRouter, Depends

from marketcms.apps.api.deps import Principal, get_current_principal
from marketcms.apps.api.response import success_response
from marketcms.core.errors import NotFoundError
from marketcms.services.authz import ROLES, get_role_info


router = APIRouter(prefix="/roles", tags=["roles"])


@router.get("")
async def list_roles(principal: Principal = Depends(get_current_principal)) -> dict:
    # Highest privilege first.
    roles = sorted(ROLES.values(), key=lambda info: info.level, reverse=True)
    return success_response([info.to_dict() for info in roles])


@router.get("/{role}")
async def get_role(role: str, principal: Principal = Depends(get_current_principal)) -> dict:
    info = get_role_info(role.strip().lower())
    if info is None:
        raise NotFoundError("Role not found")
    return success_response(info.to_dict())
