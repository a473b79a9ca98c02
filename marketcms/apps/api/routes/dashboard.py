from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.apps.api.deps import Principal, get_db, require_roles
from marketcms.apps.api.response import success_response
from marketcms.services import dashboard as dashboard_service
from marketcms.services.authz import ROLE_ADMIN, ROLE_EDITOR


router = APIRouter(prefix="/dashboard", tags=["dashboard"])

staff_access = require_roles(ROLE_ADMIN, ROLE_EDITOR)


@router.get("/stats")
async def get_stats(
    principal: Principal = Depends(staff_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return success_response(await dashboard_service.get_stats(db, role=principal.role))


@router.get("/activity")
async def get_activity(
    limit: int | None = None,
    principal: Principal = Depends(staff_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return success_response(await dashboard_service.get_activity(db, limit=limit))
