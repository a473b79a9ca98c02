from __future__ import annotations

from datetime import datetime
import json
from typing import Any, Sequence, TypeVar

from sqlalchemy import Select, cast, exists, func, literal, or_, select, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.domain.models import STATUS_PUBLISHED
from marketcms.domain.pagination import page_offset


ModelT = TypeVar("ModelT")


def json_array_contains(column: Any, value: Any, *, dialect: str) -> Any:
    # Postgres uses JSONB containment; SQLite expands the array with json_each.
    if dialect == "postgresql":
        return column.op("@>")(cast(json.dumps([value]), JSONB))
    elements = func.json_each(column).table_valued("value")
    return exists(select(literal(1)).select_from(elements).where(elements.c.value == value))


def json_array_contains_any(column: Any, values: Sequence[Any], *, dialect: str) -> Any:
    return or_(*[json_array_contains(column, value, dialect=dialect) for value in values])


def live_only(stmt: Select, model: Any, *, include_deleted: bool) -> Select:
    if include_deleted:
        return stmt
    return stmt.where(model.deleted_at.is_(None))


async def get_by_id(
    session: AsyncSession,
    model: type[ModelT],
    content_id: int,
    *,
    include_deleted: bool = False,
) -> ModelT | None:
    stmt = live_only(select(model).where(model.id == content_id), model, include_deleted=include_deleted)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_by_slug(
    session: AsyncSession,
    model: type[ModelT],
    slug: str,
    *,
    include_deleted: bool = False,
) -> ModelT | None:
    stmt = live_only(select(model).where(model.slug == slug), model, include_deleted=include_deleted)
    # Several soft-deleted rows may share a slug; prefer the newest.
    stmt = stmt.order_by(model.deleted_at.is_(None).desc(), model.id.desc()).limit(1)
    result = await session.execute(stmt)
    return result.scalars().first()


async def slug_taken(
    session: AsyncSession,
    model: Any,
    slug: str,
    *,
    exclude_id: int | None = None,
) -> bool:
    # Only live rows participate in slug uniqueness.
    stmt = select(func.count()).select_from(model).where(model.slug == slug, model.deleted_at.is_(None))
    if exclude_id is not None:
        stmt = stmt.where(model.id != exclude_id)
    result = await session.execute(stmt)
    return int(result.scalar_one()) > 0


async def paginate(
    session: AsyncSession,
    stmt: Select,
    *,
    order_by: Sequence[Any],
    page: int,
    limit: int,
) -> tuple[list[Any], int]:
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = int((await session.execute(count_stmt)).scalar_one())
    rows_stmt = stmt.order_by(*order_by).offset(page_offset(page, limit)).limit(limit)
    rows = (await session.execute(rows_stmt)).scalars().all()
    return list(rows), total


async def publish_scheduled(session: AsyncSession, model: Any, *, now: datetime) -> int:
    # Single conditional statement; rerunning it cannot double-publish.
    stmt = (
        update(model)
        .where(
            model.scheduled_publish_enabled.is_(True),
            model.status != STATUS_PUBLISHED,
            model.publish_date.is_not(None),
            model.publish_date <= now,
            model.deleted_at.is_(None),
        )
        .values(status=STATUS_PUBLISHED, scheduled_publish_enabled=False, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()
    return int(result.rowcount or 0)


async def count_by_status(session: AsyncSession, model: Any) -> dict[str, int]:
    stmt = (
        select(model.status, func.count())
        .where(model.deleted_at.is_(None))
        .group_by(model.status)
    )
    rows = (await session.execute(stmt)).all()
    return {str(status): int(count) for status, count in rows}


async def count_created_since(session: AsyncSession, model: Any, *, since: datetime) -> int:
    stmt = select(func.count()).select_from(model).where(
        model.created_at >= since, model.deleted_at.is_(None)
    )
    return int((await session.execute(stmt)).scalar_one())
