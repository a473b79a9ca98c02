from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from marketcms.apps.api.response import SuccessEnvelope, success_response
from marketcms.persistence.db import SessionLocal
from marketcms.services.cache import get_cache


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    database: str
    cache: str


async def _database_ok() -> bool:
    try:
        async with SessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError):
        logger.warning("health_database_unreachable", exc_info=True)
        return False
    return True


@router.get("/health", response_model=SuccessEnvelope[HealthResponse], response_model_exclude_none=True)
async def health():
    # The cache is optional; only a dead database makes the service unhealthy.
    database_ok = await _database_ok()
    cache_ok = await get_cache().ping()
    payload = HealthResponse(
        status="ok" if database_ok else "unavailable",
        database="ok" if database_ok else "unreachable",
        cache="ok" if cache_ok else "degraded",
    )
    body = success_response(payload.model_dump())
    if not database_ok:
        body["success"] = False
        return JSONResponse(status_code=503, content=body)
    return body
