from __future__ import annotations

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.domain.models import Author
from marketcms.persistence.repos.content import paginate


async def list_authors(
    session: AsyncSession,
    *,
    search: str | None = None,
    page: int,
    limit: int,
) -> tuple[list[Author], int]:
    stmt = select(Author)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Author.name.ilike(pattern), Author.role.ilike(pattern)))
    return await paginate(session, stmt, order_by=[Author.name.asc(), Author.id.asc()], page=page, limit=limit)


async def get_author(session: AsyncSession, *, author_id: int) -> Author | None:
    result = await session.execute(select(Author).where(Author.id == author_id))
    return result.scalar_one_or_none()


async def get_authors(session: AsyncSession, *, author_ids: list[int]) -> list[Author]:
    if not author_ids:
        return []
    result = await session.execute(select(Author).where(Author.id.in_(author_ids)))
    return list(result.scalars().all())
