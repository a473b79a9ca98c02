from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.apps.api.deps import Pagination, Principal, get_db, get_pagination, require_permission
from marketcms.apps.api.response import paginated_response, success_response
from marketcms.core.clock import isoformat, parse_datetime
from marketcms.core.errors import NotFoundError
from marketcms.domain.models import AuditLog
from marketcms.persistence.repos import audit as audit_repo
from marketcms.services.authz import PERM_AUDIT_VIEW


router = APIRouter(prefix="/audit-logs", tags=["audit"])

audit_access = require_permission(PERM_AUDIT_VIEW)


def _to_response(log: AuditLog) -> dict[str, Any]:
    return {
        "id": log.id,
        "user_id": log.user_id,
        "user_email": log.user_email,
        "user_role": log.user_role,
        "action": log.action,
        "entity_type": log.entity_type,
        "entity_id": log.entity_id,
        "ip_address": log.ip_address,
        "user_agent": log.user_agent,
        "request_id": log.request_id,
        "changes": log.changes,
        "status": log.status,
        "error_message": log.error_message,
        "created_at": isoformat(log.created_at),
    }


@router.get("")
async def list_audit_logs(
    user_id: int | None = None,
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    status: str | None = None,
    ip_address: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    pagination: Pagination = Depends(get_pagination),
    principal: Principal = Depends(audit_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    logs, total = await audit_repo.list_audit_logs(
        db,
        user_id=user_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        status=status,
        ip_address=ip_address,
        start_date=parse_datetime(start_date) if start_date else None,
        end_date=parse_datetime(end_date) if end_date else None,
        page=pagination.page,
        limit=pagination.limit,
    )
    return paginated_response(
        [_to_response(log) for log in logs], page=pagination.page, limit=pagination.limit, total=total
    )


@router.get("/{log_id}")
async def get_audit_log(
    log_id: int,
    principal: Principal = Depends(audit_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    log = await audit_repo.get_audit_log(db, log_id=log_id)
    if log is None:
        raise NotFoundError("Audit log not found")
    return success_response(_to_response(log))
