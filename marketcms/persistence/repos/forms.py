from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import String, cast, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.domain.models import FormSubmission
from marketcms.persistence.repos.content import paginate


SORT_CREATED_AT = "createdAt"
SORT_COMPANY = "company"
SORT_NAME = "name"
SORT_FIELDS = (SORT_CREATED_AT, SORT_COMPANY, SORT_NAME)


@dataclass
class SubmissionFilters:
    category: str | None = None
    status: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    search: str | None = None
    sort_by: str = SORT_CREATED_AT
    sort_order: str = "desc"


def _sort_column(sort_by: str):
    # Company and name live inside the JSON payload.
    if sort_by == SORT_COMPANY:
        return FormSubmission.data["company"].as_string()
    if sort_by == SORT_NAME:
        return FormSubmission.data["fullName"].as_string()
    return FormSubmission.created_at


async def list_submissions(
    session: AsyncSession,
    *,
    filters: SubmissionFilters,
    page: int,
    limit: int,
) -> tuple[list[FormSubmission], int]:
    stmt = select(FormSubmission)
    if filters.category:
        stmt = stmt.where(FormSubmission.category == filters.category)
    if filters.status:
        stmt = stmt.where(FormSubmission.status == filters.status)
    if filters.start_date:
        stmt = stmt.where(FormSubmission.created_at >= filters.start_date)
    if filters.end_date:
        stmt = stmt.where(FormSubmission.created_at <= filters.end_date)
    if filters.search:
        stmt = stmt.where(cast(FormSubmission.data, String).ilike(f"%{filters.search}%"))
    column = _sort_column(filters.sort_by)
    ordering = column.asc() if filters.sort_order.lower() == "asc" else column.desc()
    return await paginate(session, stmt, order_by=[ordering, FormSubmission.id.desc()], page=page, limit=limit)


async def get_submission(session: AsyncSession, *, submission_id: int) -> FormSubmission | None:
    result = await session.execute(select(FormSubmission).where(FormSubmission.id == submission_id))
    return result.scalar_one_or_none()


async def delete_submissions(session: AsyncSession, *, submission_ids: list[int]) -> int:
    result = await session.execute(delete(FormSubmission).where(FormSubmission.id.in_(submission_ids)))
    return int(result.rowcount or 0)


async def count_since(session: AsyncSession, *, since: datetime) -> int:
    stmt = select(func.count()).select_from(FormSubmission).where(FormSubmission.created_at >= since)
    return int((await session.execute(stmt)).scalar_one())


async def count_grouped(session: AsyncSession, *, column) -> dict[str, int]:
    rows = (await session.execute(select(column, func.count()).group_by(column))).all()
    return {str(key): int(count) for key, count in rows}


async def count_all(session: AsyncSession) -> int:
    return int((await session.execute(select(func.count()).select_from(FormSubmission))).scalar_one())
