from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from marketcms.core.clock import isoformat, utc_now
from marketcms.core.errors import BadRequestError, NotFoundError, StorageError
from marketcms.domain.models import Author
from marketcms.persistence.repos import authors as authors_repo
from marketcms.services.audit import (
    ACTION_AUTHOR_CREATE,
    ACTION_AUTHOR_DELETE,
    ACTION_AUTHOR_UPDATE,
    AuditActor,
    build_entry,
    diff_changes,
    get_audit_sink,
)
from marketcms.services.cdn import get_image_cdn
from marketcms.services.report_images import validate_upload


logger = logging.getLogger(__name__)

_FIELDS = ("name", "role", "bio", "image_url", "linkedin_url")


def serialize_author(author: Author) -> dict[str, Any]:
    return {
        "id": author.id,
        "name": author.name,
        "role": author.role,
        "bio": author.bio,
        "image_url": author.image_url,
        "linkedin_url": author.linkedin_url,
        "created_at": isoformat(author.created_at),
        "updated_at": isoformat(author.updated_at),
    }


def _audit(action: str, author_id: int, *, actor: AuditActor, request: Request | None, changes=None) -> None:
    get_audit_sink().log_async(
        build_entry(
            action=action,
            actor=actor,
            request=request,
            entity_type="author",
            entity_id=author_id,
            changes=changes,
        )
    )


async def _commit(session: AsyncSession) -> None:
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        # Authors referenced by blogs or press releases cannot be removed.
        raise BadRequestError("Author is still referenced by published content") from exc
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("author_write_failed", exc_info=exc)
        raise StorageError("Failed to save author") from exc


async def get_author(session: AsyncSession, *, author_id: int) -> Author:
    author = await authors_repo.get_author(session, author_id=author_id)
    if author is None:
        raise NotFoundError("Author not found")
    return author


async def list_authors(
    session: AsyncSession,
    *,
    search: str | None,
    page: int,
    limit: int,
) -> tuple[list[dict[str, Any]], int]:
    rows, total = await authors_repo.list_authors(session, search=search, page=page, limit=limit)
    return [serialize_author(row) for row in rows], total


async def create_author(
    session: AsyncSession,
    *,
    values: dict[str, Any],
    actor: AuditActor,
    request: Request | None = None,
) -> dict[str, Any]:
    if not (values.get("name") or "").strip():
        raise BadRequestError("Name is required")
    now = utc_now()
    author = Author(**{name: values.get(name) for name in _FIELDS}, created_at=now, updated_at=now)
    session.add(author)
    await _commit(session)
    _audit(ACTION_AUTHOR_CREATE, author.id, actor=actor, request=request)
    return serialize_author(author)


async def update_author(
    session: AsyncSession,
    *,
    author_id: int,
    patch: dict[str, Any],
    actor: AuditActor,
    request: Request | None = None,
) -> dict[str, Any]:
    author = await get_author(session, author_id=author_id)
    if "name" in patch and not (patch["name"] or "").strip():
        raise BadRequestError("Name is required")
    fields = [name for name in _FIELDS if name in patch]
    before = {name: getattr(author, name) for name in fields}
    for name in fields:
        setattr(author, name, patch[name])
    author.updated_at = utc_now()
    await _commit(session)
    changes = diff_changes(before, {name: getattr(author, name) for name in fields})
    _audit(ACTION_AUTHOR_UPDATE, author.id, actor=actor, request=request, changes=changes)
    return serialize_author(author)


async def delete_author(
    session: AsyncSession,
    *,
    author_id: int,
    actor: AuditActor,
    request: Request | None = None,
) -> None:
    author = await get_author(session, author_id=author_id)
    image_url = author.image_url
    await session.delete(author)
    await _commit(session)
    if image_url:
        await get_image_cdn().delete_by_url(image_url)
    _audit(ACTION_AUTHOR_DELETE, author_id, actor=actor, request=request)


async def upload_author_image(
    session: AsyncSession,
    *,
    author_id: int,
    content: bytes,
    filename: str,
    content_type: str,
    actor: AuditActor,
    request: Request | None = None,
) -> dict[str, Any]:
    validate_upload(content=content, content_type=content_type)
    author = await get_author(session, author_id=author_id)
    cdn = get_image_cdn()
    uploaded = await cdn.upload(
        content=content,
        filename=filename,
        content_type=content_type,
        metadata={"author_id": str(author.id), "type": "author_image", "uploaded_by": str(actor.user_id)},
    )
    previous_url = author.image_url
    author.image_url = uploaded.url
    author.updated_at = utc_now()
    try:
        await _commit(session)
    except StorageError:
        # Compensate so the CDN does not keep an orphaned asset.
        await cdn.delete_by_url(uploaded.url)
        raise
    if previous_url:
        await cdn.delete_by_url(previous_url)
    _audit(
        ACTION_AUTHOR_UPDATE,
        author.id,
        actor=actor,
        request=request,
        changes={"image_url": {"old": previous_url, "new": uploaded.url}},
    )
    return serialize_author(author)


async def delete_author_image(
    session: AsyncSession,
    *,
    author_id: int,
    actor: AuditActor,
    request: Request | None = None,
) -> dict[str, Any]:
    author = await get_author(session, author_id=author_id)
    previous_url = author.image_url
    if not previous_url:
        raise BadRequestError("Author has no image")
    author.image_url = None
    author.updated_at = utc_now()
    await _commit(session)
    await get_image_cdn().delete_by_url(previous_url)
    _audit(
        ACTION_AUTHOR_UPDATE,
        author.id,
        actor=actor,
        request=request,
        changes={"image_url": {"old": previous_url, "new": None}},
    )
    return serialize_author(author)
