from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.core.clock import isoformat
from marketcms.core.errors import NotFoundError
from marketcms.domain.models import Category
from marketcms.persistence.repos import categories as categories_repo
from marketcms.services.cache import TTL_CATEGORY_LIST, get_cache


def serialize_category(category: Category) -> dict[str, Any]:
    return {
        "id": category.id,
        "name": category.name,
        "slug": category.slug,
        "description": category.description,
        "image_url": category.image_url,
        "is_active": bool(category.is_active),
        "created_at": isoformat(category.created_at),
        "updated_at": isoformat(category.updated_at),
    }


async def list_categories(session: AsyncSession, *, page: int, limit: int) -> tuple[list[dict[str, Any]], int]:
    async def _load() -> dict[str, Any]:
        rows, total = await categories_repo.list_categories(session, page=page, limit=limit)
        return {"items": [serialize_category(row) for row in rows], "total": total}

    result = await get_cache().get_or_compute(f"categories:list:{page}:{limit}", TTL_CATEGORY_LIST, _load)
    return result["items"], int(result["total"])


async def get_category_by_slug(session: AsyncSession, *, slug: str) -> dict[str, Any]:
    category = await categories_repo.get_category_by_slug(session, slug=slug)
    if category is None or not category.is_active:
        raise NotFoundError("Category not found")
    return serialize_category(category)
