from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.domain.models import User
from marketcms.persistence.repos.content import paginate


async def get_user(session: AsyncSession, *, user_id: int) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, *, email: str) -> User | None:
    # Emails are stored as entered and matched case-insensitively.
    result = await session.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
    return result.scalars().first()


async def email_taken(session: AsyncSession, *, email: str, exclude_id: int | None = None) -> bool:
    stmt = select(func.count()).select_from(User).where(func.lower(User.email) == email.strip().lower())
    if exclude_id is not None:
        stmt = stmt.where(User.id != exclude_id)
    return int((await session.execute(stmt)).scalar_one()) > 0


async def list_users(
    session: AsyncSession,
    *,
    role: str | None = None,
    is_active: bool | None = None,
    page: int,
    limit: int,
) -> tuple[list[User], int]:
    stmt = select(User)
    if role:
        stmt = stmt.where(User.role == role)
    if is_active is not None:
        stmt = stmt.where(User.is_active.is_(is_active))
    return await paginate(session, stmt, order_by=[User.created_at.desc(), User.id.desc()], page=page, limit=limit)


async def count_users(session: AsyncSession) -> dict[str, object]:
    total = int((await session.execute(select(func.count()).select_from(User))).scalar_one())
    active = int(
        (await session.execute(select(func.count()).select_from(User).where(User.is_active.is_(True)))).scalar_one()
    )
    rows = (await session.execute(select(User.role, func.count()).group_by(User.role))).all()
    return {"total": total, "active": active, "by_role": {role: int(count) for role, count in rows}}
