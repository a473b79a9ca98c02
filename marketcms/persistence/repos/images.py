from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.domain.models import ReportImage


async def list_images(session: AsyncSession, *, report_id: int, active_only: bool = True) -> list[ReportImage]:
    stmt = select(ReportImage).where(ReportImage.report_id == report_id)
    if active_only:
        stmt = stmt.where(ReportImage.is_active.is_(True))
    result = await session.execute(stmt.order_by(ReportImage.created_at.desc(), ReportImage.id.desc()))
    return list(result.scalars().all())


async def get_image(session: AsyncSession, *, image_id: int) -> ReportImage | None:
    result = await session.execute(select(ReportImage).where(ReportImage.id == image_id))
    return result.scalar_one_or_none()
