from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.apps.api.deps import Pagination, get_db, get_pagination
from marketcms.apps.api.response import paginated_response, success_response
from marketcms.services import categories as categories_service
from marketcms.services import reports as reports_service


router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("")
async def list_categories(
    pagination: Pagination = Depends(get_pagination),
    db: AsyncSession = Depends(get_db),
) -> dict:
    items, total = await categories_service.list_categories(db, page=pagination.page, limit=pagination.limit)
    return paginated_response(items, page=pagination.page, limit=pagination.limit, total=total)


@router.get("/{slug}")
async def get_category(slug: str, db: AsyncSession = Depends(get_db)) -> dict:
    return success_response(await categories_service.get_category_by_slug(db, slug=slug))


@router.get("/{slug}/reports")
async def list_category_reports(
    slug: str,
    pagination: Pagination = Depends(get_pagination),
    db: AsyncSession = Depends(get_db),
) -> dict:
    items, total = await reports_service.list_reports_by_category(
        db, category_slug=slug, page=pagination.page, limit=pagination.limit
    )
    return paginated_response(items, page=pagination.page, limit=pagination.limit, total=total)
