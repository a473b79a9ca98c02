from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.apps.api.deps import Principal, get_current_principal, get_db
from marketcms.apps.api.rate_limit import api_rate_limit, login_rate_limit
from marketcms.apps.api.response import success_response
from marketcms.services.auth import flows


# Rate limits are attached per route so login counts only against its own budget.
router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: str | None = None


@router.post("/login", dependencies=[Depends(login_rate_limit)])
async def login(
    body: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await flows.login(db, email=body.email, password=body.password, request=request)
    return success_response(result, message="Login successful")


@router.post("/refresh", dependencies=[Depends(api_rate_limit)])
async def refresh(
    body: RefreshRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await flows.refresh(db, refresh_token=body.refresh_token, request=request)
    return success_response(result, message="Token refreshed successfully")


@router.post("/logout", dependencies=[Depends(api_rate_limit)])
async def logout(
    request: Request,
    body: LogoutRequest | None = None,
    principal: Principal = Depends(get_current_principal),
) -> dict:
    await flows.logout(
        actor=principal.audit_actor(),
        refresh_token=body.refresh_token if body else None,
        request=request,
    )
    return success_response(message="Logout successful")
