from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.domain.models import Category, Report, ReportImage, ReportVersion
from marketcms.persistence.db import dialect_name
from marketcms.persistence.repos.content import (
    json_array_contains,
    json_array_contains_any,
    live_only,
    paginate,
)


@dataclass
class ReportFilters:
    status: str | None = None
    category_slug: str | None = None
    category_id: int | None = None
    geography: list[str] = field(default_factory=list)
    search: str | None = None
    author_id: int | None = None
    created_by: int | None = None
    updated_by: int | None = None
    created_after: datetime | None = None
    created_before: datetime | None = None
    updated_after: datetime | None = None
    updated_before: datetime | None = None
    published_after: datetime | None = None
    published_before: datetime | None = None
    is_featured: bool | None = None
    include_deleted: bool = False


def _ordering() -> list:
    # Newest first by publish date, falling back to last edit.
    return [func.coalesce(Report.publish_date, Report.updated_at).desc(), Report.id.desc()]


async def list_reports(
    session: AsyncSession,
    *,
    filters: ReportFilters,
    page: int,
    limit: int,
) -> tuple[list[Report], int]:
    dialect = dialect_name(session)
    stmt = live_only(select(Report), Report, include_deleted=filters.include_deleted)
    if filters.status:
        stmt = stmt.where(Report.status == filters.status)
    if filters.category_slug:
        stmt = stmt.join(Category, Category.id == Report.category_id).where(
            Category.slug == filters.category_slug
        )
    if filters.category_id is not None:
        stmt = stmt.where(Report.category_id == filters.category_id)
    if filters.geography:
        stmt = stmt.where(json_array_contains_any(Report.geography, filters.geography, dialect=dialect))
    if filters.author_id is not None:
        stmt = stmt.where(json_array_contains(Report.author_ids, filters.author_id, dialect=dialect))
    if filters.search:
        pattern = f"%{filters.search}%"
        stmt = stmt.where(
            or_(
                Report.title.ilike(pattern),
                Report.summary.ilike(pattern),
                Report.description.ilike(pattern),
            )
        )
    if filters.created_by is not None:
        stmt = stmt.where(Report.created_by == filters.created_by)
    if filters.updated_by is not None:
        stmt = stmt.where(Report.updated_by == filters.updated_by)
    if filters.created_after:
        stmt = stmt.where(Report.created_at >= filters.created_after)
    if filters.created_before:
        stmt = stmt.where(Report.created_at <= filters.created_before)
    if filters.updated_after:
        stmt = stmt.where(Report.updated_at >= filters.updated_after)
    if filters.updated_before:
        stmt = stmt.where(Report.updated_at <= filters.updated_before)
    if filters.published_after:
        stmt = stmt.where(Report.publish_date >= filters.published_after)
    if filters.published_before:
        stmt = stmt.where(Report.publish_date <= filters.published_before)
    if filters.is_featured is not None:
        stmt = stmt.where(Report.is_featured.is_(filters.is_featured))
    return await paginate(session, stmt, order_by=_ordering(), page=page, limit=limit)


async def list_versions(session: AsyncSession, *, report_id: int) -> list[ReportVersion]:
    result = await session.execute(
        select(ReportVersion)
        .where(ReportVersion.report_id == report_id)
        .order_by(ReportVersion.version_number.desc())
    )
    return list(result.scalars().all())


async def max_version_number(session: AsyncSession, *, report_id: int) -> int:
    result = await session.execute(
        select(func.max(ReportVersion.version_number)).where(ReportVersion.report_id == report_id)
    )
    return int(result.scalar_one() or 0)


async def hard_delete_report(session: AsyncSession, *, report_id: int) -> None:
    # Remove children explicitly; SQLite does not enforce ON DELETE CASCADE by default.
    await session.execute(delete(ReportImage).where(ReportImage.report_id == report_id))
    await session.execute(delete(ReportVersion).where(ReportVersion.report_id == report_id))
    await session.execute(delete(Report).where(Report.id == report_id))
