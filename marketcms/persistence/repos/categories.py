from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.domain.models import Category
from marketcms.persistence.repos.content import paginate


async def list_categories(
    session: AsyncSession,
    *,
    active_only: bool = True,
    page: int,
    limit: int,
) -> tuple[list[Category], int]:
    stmt = select(Category)
    if active_only:
        stmt = stmt.where(Category.is_active.is_(True))
    return await paginate(session, stmt, order_by=[Category.name.asc(), Category.id.asc()], page=page, limit=limit)


async def get_category(session: AsyncSession, *, category_id: int) -> Category | None:
    result = await session.execute(select(Category).where(Category.id == category_id))
    return result.scalar_one_or_none()


async def get_category_by_slug(session: AsyncSession, *, slug: str) -> Category | None:
    result = await session.execute(select(Category).where(Category.slug == slug))
    return result.scalar_one_or_none()
