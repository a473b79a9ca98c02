from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.persistence.repos.content import live_only, paginate


@dataclass
class PostFilters:
    # Shared by blogs and press releases.
    status: str | None = None
    category_id: int | None = None
    tags: list[str] = field(default_factory=list)
    author_id: int | None = None
    location: str | None = None
    search: str | None = None
    created_by: int | None = None
    include_deleted: bool = False


async def list_posts(
    session: AsyncSession,
    model: Any,
    *,
    filters: PostFilters,
    page: int,
    limit: int,
) -> tuple[list[Any], int]:
    stmt = live_only(select(model), model, include_deleted=filters.include_deleted)
    if filters.status:
        stmt = stmt.where(model.status == filters.status)
    if filters.category_id is not None:
        stmt = stmt.where(model.category_id == filters.category_id)
    if filters.tags:
        stmt = stmt.where(or_(*[model.tags.ilike(f"%{tag}%") for tag in filters.tags]))
    if filters.author_id is not None:
        stmt = stmt.where(model.author_id == filters.author_id)
    if filters.location:
        stmt = stmt.where(model.location.ilike(f"%{filters.location}%"))
    if filters.created_by is not None:
        stmt = stmt.where(model.created_by == filters.created_by)
    if filters.search:
        pattern = f"%{filters.search}%"
        stmt = stmt.where(
            or_(model.title.ilike(pattern), model.excerpt.ilike(pattern), model.content.ilike(pattern))
        )
    return await paginate(
        session,
        stmt,
        order_by=[model.created_at.desc(), model.id.desc()],
        page=page,
        limit=limit,
    )
