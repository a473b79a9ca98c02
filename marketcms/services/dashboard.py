from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.core.clock import isoformat, utc_now
from marketcms.domain.models import (
    CONTENT_STATUSES,
    FORM_STATUS_PENDING,
    FORM_STATUS_PROCESSED,
    AuditLog,
    Blog,
    PressRelease,
    Report,
)
from marketcms.persistence.repos import audit as audit_repo
from marketcms.persistence.repos import content as content_repo
from marketcms.persistence.repos import users as users_repo
from marketcms.services import forms as forms_service
from marketcms.services.authz import ROLE_ADMIN
from marketcms.services.cache import TTL_DASHBOARD_ACTIVITY, TTL_DASHBOARD_STATS, get_cache


DEFAULT_ACTIVITY_LIMIT = 10
MAX_ACTIVITY_LIMIT = 50


async def _content_stats(session: AsyncSession, model: Any) -> dict[str, int]:
    counts = await content_repo.count_by_status(session, model)
    stats = {status: counts.get(status, 0) for status in CONTENT_STATUSES}
    stats["total"] = sum(counts.values())
    return stats


async def compute_stats(session: AsyncSession, *, role: str) -> dict[str, Any]:
    now = utc_now()
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    leads = await forms_service.compute_stats(session, now=now)
    stats: dict[str, Any] = {
        "reports": await _content_stats(session, Report),
        "blogs": await _content_stats(session, Blog),
        "press_releases": await _content_stats(session, PressRelease),
        "leads": {
            "total": leads["total"],
            "pending": leads["by_status"].get(FORM_STATUS_PENDING, 0),
            "processed": leads["by_status"].get(FORM_STATUS_PROCESSED, 0),
            "by_category": leads["by_category"],
            "recent": leads["recent"],
        },
        "content_creation": {
            "reports_this_month": await content_repo.count_created_since(session, Report, since=month_start),
            "blogs_this_month": await content_repo.count_created_since(session, Blog, since=month_start),
            "press_releases_this_month": await content_repo.count_created_since(
                session, PressRelease, since=month_start
            ),
        },
    }
    # User counts are visible to administrators only.
    if role == ROLE_ADMIN:
        stats["users"] = await users_repo.count_users(session)
    return stats


async def get_stats(session: AsyncSession, *, role: str) -> dict[str, Any]:
    async def _load() -> dict[str, Any]:
        return await compute_stats(session, role=role)

    return await get_cache().get_or_compute(f"dashboard:stats:{role}", TTL_DASHBOARD_STATS, _load)


def serialize_activity(log: AuditLog) -> dict[str, Any]:
    return {
        "id": log.id,
        "action": log.action,
        "entity_type": log.entity_type,
        "entity_id": log.entity_id,
        "user_id": log.user_id,
        "user_email": log.user_email,
        "status": log.status,
        "created_at": isoformat(log.created_at),
    }


def normalize_activity_limit(limit: int | None) -> int:
    if limit is None or limit < 1:
        return DEFAULT_ACTIVITY_LIMIT
    return min(limit, MAX_ACTIVITY_LIMIT)


async def get_activity(session: AsyncSession, *, limit: int | None) -> list[dict[str, Any]]:
    resolved = normalize_activity_limit(limit)

    async def _load() -> list[dict[str, Any]]:
        logs = await audit_repo.recent_audit_logs(session, limit=resolved)
        return [serialize_activity(log) for log in logs]

    return await get_cache().get_or_compute(f"dashboard:activity:{resolved}", TTL_DASHBOARD_ACTIVITY, _load)
