from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.domain.models import AuditLog
from marketcms.persistence.repos.content import paginate


async def list_audit_logs(
    session: AsyncSession,
    *,
    user_id: int | None = None,
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    status: str | None = None,
    ip_address: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int,
    limit: int,
) -> tuple[list[AuditLog], int]:
    stmt = select(AuditLog)
    if user_id is not None:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if entity_type:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        stmt = stmt.where(AuditLog.entity_id == entity_id)
    if status:
        stmt = stmt.where(AuditLog.status == status)
    if ip_address:
        stmt = stmt.where(AuditLog.ip_address == ip_address)
    if start_date:
        stmt = stmt.where(AuditLog.created_at >= start_date)
    if end_date:
        stmt = stmt.where(AuditLog.created_at <= end_date)
    return await paginate(
        session,
        stmt,
        order_by=[AuditLog.created_at.desc(), AuditLog.id.desc()],
        page=page,
        limit=limit,
    )


async def get_audit_log(session: AsyncSession, *, log_id: int) -> AuditLog | None:
    result = await session.execute(select(AuditLog).where(AuditLog.id == log_id))
    return result.scalar_one_or_none()


async def recent_audit_logs(session: AsyncSession, *, limit: int) -> list[AuditLog]:
    result = await session.execute(
        select(AuditLog).order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit)
    )
    return list(result.scalars().all())
