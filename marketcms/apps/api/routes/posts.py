from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.apps.api.deps import (
    Pagination,
    Principal,
    get_db,
    get_optional_principal,
    get_pagination,
    is_privileged_caller,
    require_roles,
)
from marketcms.apps.api.response import paginated_response, success_response
from marketcms.apps.api.workflow_routes import add_workflow_routes
from marketcms.persistence.repos.posts import PostFilters
from marketcms.services import posts as posts_service
from marketcms.services.authz import ROLE_ADMIN, ROLE_EDITOR
from marketcms.services.posts import BLOGS, PRESS_RELEASES, PostFamily


class PostPayload(BaseModel):
    title: str | None = None
    slug: str | None = None
    excerpt: str | None = None
    content: str | None = None
    category_id: int | None = None
    tags: list[str] | str | None = None
    author_id: int | None = None
    location: str | None = None
    metadata: dict[str, Any] | None = None
    status: str | None = None
    internal_notes: str | None = None


_NON_NULLABLE = frozenset({"slug", "status", "title", "excerpt", "content", "metadata"})


def build_post_router(family: PostFamily, *, prefix: str, tag: str) -> APIRouter:
    """Blogs and press releases expose the same surface under different prefixes."""
    router = APIRouter(prefix=prefix, tags=[tag])
    label = family.kind.label
    editor_access = require_roles(ROLE_ADMIN, ROLE_EDITOR)

    @router.get("")
    async def list_posts(
        status_filter: str | None = Query(default=None, alias="status"),
        category_id: int | None = None,
        tags: str | None = None,
        author_id: int | None = None,
        location: str | None = None,
        search: str | None = None,
        created_by: int | None = None,
        show_deleted: bool = False,
        pagination: Pagination = Depends(get_pagination),
        principal: Principal | None = Depends(get_optional_principal),
        db: AsyncSession = Depends(get_db),
    ) -> dict:
        filters = PostFilters(
            status=status_filter,
            category_id=category_id,
            tags=posts_service.parse_tags(tags),
            author_id=author_id,
            location=location or None,
            search=search.strip() if search and search.strip() else None,
            created_by=created_by,
            include_deleted=show_deleted,
        )
        items, total = await posts_service.list_posts(
            db,
            family,
            filters=filters,
            page=pagination.page,
            limit=pagination.limit,
            privileged=is_privileged_caller(principal),
        )
        return paginated_response(items, page=pagination.page, limit=pagination.limit, total=total)

    @router.get("/slug/{slug}")
    async def get_post_by_slug(
        slug: str,
        principal: Principal | None = Depends(get_optional_principal),
        db: AsyncSession = Depends(get_db),
    ) -> dict:
        post = await posts_service.get_post_by_slug(
            db, family, slug=slug, privileged=is_privileged_caller(principal)
        )
        return success_response(post)

    @router.get("/{post_id}")
    async def get_post(
        post_id: int,
        show_deleted: bool = False,
        principal: Principal | None = Depends(get_optional_principal),
        db: AsyncSession = Depends(get_db),
    ) -> dict:
        post = await posts_service.get_post(
            db,
            family,
            post_id=post_id,
            privileged=is_privileged_caller(principal),
            include_deleted=show_deleted,
        )
        return success_response(post)

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_post(
        body: PostPayload,
        request: Request,
        principal: Principal = Depends(editor_access),
        db: AsyncSession = Depends(get_db),
    ) -> dict:
        values = {key: value for key, value in body.model_dump(exclude_unset=True).items() if value is not None}
        post = await posts_service.create_post(
            db, family, values=values, actor=principal.audit_actor(), request=request
        )
        return success_response(post, message=f"{label} created successfully")

    @router.put("/{post_id}")
    async def update_post(
        post_id: int,
        body: PostPayload,
        request: Request,
        principal: Principal = Depends(editor_access),
        db: AsyncSession = Depends(get_db),
    ) -> dict:
        patch = {
            key: value
            for key, value in body.model_dump(exclude_unset=True).items()
            if value is not None or key not in _NON_NULLABLE
        }
        post = await posts_service.update_post(
            db, family, post_id=post_id, patch=patch, actor=principal.audit_actor(), request=request
        )
        return success_response(post, message=f"{label} updated successfully")

    @router.delete("/{post_id}")
    async def delete_post(
        post_id: int,
        request: Request,
        principal: Principal = Depends(require_roles(ROLE_ADMIN)),
        db: AsyncSession = Depends(get_db),
    ) -> dict:
        await family.engine().delete(db, post_id, actor=principal.audit_actor(), request=request)
        return success_response(message=f"{label} permanently deleted successfully")

    add_workflow_routes(
        router,
        label=label,
        engine_factory=family.engine,
        serialize=lambda row: posts_service.serialize_post(row, privileged=True),
    )
    return router


blogs_router = build_post_router(BLOGS, prefix="/blogs", tag="blogs")
press_releases_router = build_post_router(PRESS_RELEASES, prefix="/press-releases", tag="press-releases")
