from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from marketcms.core.clock import isoformat
from marketcms.core.errors import BadRequestError, NotFoundError
from marketcms.domain.models import CONTENT_STATUSES, STATUS_PUBLISHED
from marketcms.persistence.repos import authors as authors_repo
from marketcms.persistence.repos import categories as categories_repo
from marketcms.persistence.repos import content as content_repo
from marketcms.persistence.repos import posts as posts_repo
from marketcms.persistence.repos.posts import PostFilters
from marketcms.services.audit import AuditActor
from marketcms.services.cache import TTL_POST_ITEM, TTL_POST_LIST, get_cache
from marketcms.services.reports import strip_admin_fields
from marketcms.services.slugs import is_valid_slug
from marketcms.services.workflow import BLOG_KIND, PRESS_RELEASE_KIND, ContentKind, WorkflowEngine


TITLE_LENGTH = (10, 200)
EXCERPT_LENGTH = (50, 500)
MIN_CONTENT_LENGTH = 100


@dataclass(frozen=True)
class PostFamily:
    """Blogs and press releases share one shape and differ only in naming."""

    kind: ContentKind
    list_prefix: str

    def engine(self) -> WorkflowEngine:
        return WorkflowEngine(self.kind)

    def list_key(self, page: int, limit: int) -> str:
        return f"{self.list_prefix}:list:{page}:{limit}"


BLOGS = PostFamily(kind=BLOG_KIND, list_prefix="blogs")
PRESS_RELEASES = PostFamily(kind=PRESS_RELEASE_KIND, list_prefix="press_releases")


def parse_tags(tags: str | None) -> list[str]:
    return [tag.strip() for tag in (tags or "").split(",") if tag.strip()]


def serialize_post(post: Any, *, privileged: bool) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": post.id,
        "title": post.title,
        "slug": post.slug,
        "excerpt": post.excerpt,
        "content": post.content,
        "category_id": post.category_id,
        "tags": parse_tags(post.tags),
        "author_id": post.author_id,
        "location": post.location,
        "metadata": post.seo_metadata or {},
        "status": post.status,
        "publish_date": isoformat(post.publish_date),
        "scheduled_publish_enabled": bool(post.scheduled_publish_enabled),
        "reviewed_by": post.reviewed_by,
        "reviewed_at": isoformat(post.reviewed_at),
        "created_by": post.created_by,
        "updated_by": post.updated_by,
        "internal_notes": post.internal_notes,
        "deleted_at": isoformat(post.deleted_at),
        "created_at": isoformat(post.created_at),
        "updated_at": isoformat(post.updated_at),
    }
    return payload if privileged else strip_admin_fields(payload)


def _within(value: str | None, bounds: tuple[int, int]) -> bool:
    length = len((value or "").strip())
    return bounds[0] <= length <= bounds[1]


def validate_post_payload(values: dict[str, Any], *, partial: bool) -> None:
    if not partial or "title" in values:
        if not _within(values.get("title"), TITLE_LENGTH):
            raise BadRequestError("Title is required (10-200 characters)")
    if not partial or "excerpt" in values:
        if not _within(values.get("excerpt"), EXCERPT_LENGTH):
            raise BadRequestError("Excerpt is required (50-500 characters)")
    if not partial or "content" in values:
        if len((values.get("content") or "").strip()) < MIN_CONTENT_LENGTH:
            raise BadRequestError("Content is required (minimum 100 characters)")
    if not partial or "category_id" in values:
        if not values.get("category_id"):
            raise BadRequestError("Category ID is required")
    if not partial or "author_id" in values:
        if not values.get("author_id"):
            raise BadRequestError("Author ID is required")
    if values.get("status") is not None and values["status"] not in CONTENT_STATUSES:
        raise BadRequestError(f"Invalid status: {values['status']}")
    if values.get("slug") and not is_valid_slug(values["slug"]):
        raise BadRequestError("Invalid slug format")


def _normalize_values(values: dict[str, Any]) -> dict[str, Any]:
    normalized = dict(values)
    if isinstance(normalized.get("tags"), list):
        normalized["tags"] = ",".join(tag.strip() for tag in normalized["tags"] if tag.strip())
    if "metadata" in normalized:
        normalized["seo_metadata"] = normalized.pop("metadata") or {}
    return normalized


async def _ensure_references(session: AsyncSession, values: dict[str, Any]) -> None:
    if values.get("category_id") is not None:
        if await categories_repo.get_category(session, category_id=values["category_id"]) is None:
            raise BadRequestError("Invalid category ID")
    if values.get("author_id") is not None:
        if await authors_repo.get_author(session, author_id=values["author_id"]) is None:
            raise BadRequestError("Invalid author ID")


async def list_posts(
    session: AsyncSession,
    family: PostFamily,
    *,
    filters: PostFilters,
    page: int,
    limit: int,
    privileged: bool,
) -> tuple[list[dict[str, Any]], int]:
    if not privileged:
        filters = replace(filters, status=STATUS_PUBLISHED, include_deleted=False, created_by=None)

    async def _load() -> dict[str, Any]:
        rows, total = await posts_repo.list_posts(
            session, family.kind.model, filters=filters, page=page, limit=limit
        )
        return {"items": [serialize_post(row, privileged=privileged) for row in rows], "total": total}

    if not privileged and filters == PostFilters(status=STATUS_PUBLISHED):
        result = await get_cache().get_or_compute(family.list_key(page, limit), TTL_POST_LIST, _load)
    else:
        result = await _load()
    return result["items"], int(result["total"])


def _visible(post: Any, *, privileged: bool) -> bool:
    if post is None:
        return False
    return privileged or (post.status == STATUS_PUBLISHED and post.deleted_at is None)


async def get_post(
    session: AsyncSession,
    family: PostFamily,
    *,
    post_id: int,
    privileged: bool,
    include_deleted: bool = False,
) -> dict[str, Any]:
    async def _load() -> dict[str, Any]:
        post = await content_repo.get_by_id(
            session, family.kind.model, post_id, include_deleted=include_deleted and privileged
        )
        if not _visible(post, privileged=privileged):
            raise NotFoundError(f"{family.kind.label} not found")
        return serialize_post(post, privileged=privileged)

    if privileged:
        return await _load()
    return await get_cache().get_or_compute(family.kind.id_key(post_id), TTL_POST_ITEM, _load)


async def get_post_by_slug(
    session: AsyncSession,
    family: PostFamily,
    *,
    slug: str,
    privileged: bool,
) -> dict[str, Any]:
    async def _load() -> dict[str, Any]:
        post = await content_repo.get_by_slug(session, family.kind.model, slug)
        if not _visible(post, privileged=privileged):
            raise NotFoundError(f"{family.kind.label} not found")
        return serialize_post(post, privileged=privileged)

    if privileged:
        return await _load()
    return await get_cache().get_or_compute(family.kind.slug_key(slug), TTL_POST_ITEM, _load)


async def create_post(
    session: AsyncSession,
    family: PostFamily,
    *,
    values: dict[str, Any],
    actor: AuditActor,
    request: Request | None = None,
) -> dict[str, Any]:
    validate_post_payload(values, partial=False)
    values = _normalize_values(values)
    await _ensure_references(session, values)
    post = await family.engine().create(session, values, actor=actor, request=request)
    return serialize_post(post, privileged=True)


async def update_post(
    session: AsyncSession,
    family: PostFamily,
    *,
    post_id: int,
    patch: dict[str, Any],
    actor: AuditActor,
    request: Request | None = None,
) -> dict[str, Any]:
    validate_post_payload(patch, partial=True)
    patch = _normalize_values(patch)
    await _ensure_references(session, patch)
    post = await family.engine().update(session, post_id, patch, actor=actor, request=request)
    return serialize_post(post, privileged=True)
