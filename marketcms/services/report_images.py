from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from marketcms.core.clock import isoformat, utc_now
from marketcms.core.config import get_settings
from marketcms.core.errors import BadRequestError, NotFoundError, StorageError
from marketcms.domain.models import Report, ReportImage
from marketcms.persistence.repos import content as content_repo
from marketcms.persistence.repos import images as images_repo
from marketcms.services.audit import (
    ACTION_IMAGE_DELETE,
    ACTION_IMAGE_UPDATE,
    ACTION_IMAGE_UPLOAD,
    AuditActor,
    build_entry,
    diff_changes,
    get_audit_sink,
)
from marketcms.services.cdn import ImageCDN, get_image_cdn


logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})


def serialize_image(image: ReportImage) -> dict[str, Any]:
    return {
        "id": image.id,
        "report_id": image.report_id,
        "image_url": image.image_url,
        "title": image.title,
        "is_active": bool(image.is_active),
        "uploaded_by": image.uploaded_by,
        "created_at": isoformat(image.created_at),
        "updated_at": isoformat(image.updated_at),
    }


def validate_upload(*, content: bytes, content_type: str | None) -> None:
    if not content:
        raise BadRequestError("Image file is required")
    if (content_type or "").lower() not in ALLOWED_CONTENT_TYPES:
        raise BadRequestError("Invalid file type. Only JPEG, PNG, GIF, and WebP images are allowed")
    max_bytes = get_settings().image_max_bytes
    if len(content) > max_bytes:
        raise BadRequestError(f"File size exceeds {max_bytes // (1024 * 1024)}MB limit")


def _audit(action: str, image_id: int, *, actor: AuditActor, request: Request | None, changes=None) -> None:
    get_audit_sink().log_async(
        build_entry(
            action=action,
            actor=actor,
            request=request,
            entity_type="report_image",
            entity_id=image_id,
            changes=changes,
        )
    )


async def upload_image(
    session: AsyncSession,
    *,
    report_id: int,
    content: bytes,
    filename: str,
    content_type: str,
    title: str | None,
    actor: AuditActor,
    request: Request | None = None,
    cdn: ImageCDN | None = None,
) -> dict[str, Any]:
    """Upload to the CDN first, then record the row.

    When the row cannot be written the CDN asset is purged on a best-effort
    basis and the caller receives a ``StorageError``.
    """
    validate_upload(content=content, content_type=content_type)
    if await content_repo.get_by_id(session, Report, report_id) is None:
        raise NotFoundError("Report not found")

    cdn = cdn or get_image_cdn()
    uploaded = await cdn.upload(
        content=content,
        filename=filename,
        content_type=content_type,
        metadata={"report_id": str(report_id), "type": "report_image", "uploaded_by": str(actor.user_id)},
    )
    now = utc_now()
    image = ReportImage(
        report_id=report_id,
        image_url=uploaded.url,
        title=title,
        is_active=True,
        uploaded_by=actor.user_id,
        created_at=now,
        updated_at=now,
    )
    session.add(image)
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("report_image_insert_failed report_id=%s image_id=%s", report_id, uploaded.image_id)
        try:
            await cdn.delete(uploaded.image_id)
        except StorageError:
            logger.warning("report_image_compensation_failed image_id=%s", uploaded.image_id)
        raise StorageError("Failed to save image record") from exc
    _audit(ACTION_IMAGE_UPLOAD, image.id, actor=actor, request=request)
    return serialize_image(image)


async def list_report_images(
    session: AsyncSession,
    *,
    report_id: int,
    active_only: bool = True,
) -> list[dict[str, Any]]:
    if await content_repo.get_by_id(session, Report, report_id) is None:
        raise NotFoundError("Report not found")
    rows = await images_repo.list_images(session, report_id=report_id, active_only=active_only)
    return [serialize_image(row) for row in rows]


async def get_image(session: AsyncSession, *, image_id: int) -> ReportImage:
    image = await images_repo.get_image(session, image_id=image_id)
    if image is None:
        raise NotFoundError("Image not found")
    return image


async def update_image(
    session: AsyncSession,
    *,
    image_id: int,
    patch: dict[str, Any],
    actor: AuditActor,
    request: Request | None = None,
) -> dict[str, Any]:
    image = await get_image(session, image_id=image_id)
    fields = [name for name in ("title", "is_active") if name in patch]
    before = {name: getattr(image, name) for name in fields}
    for name in fields:
        setattr(image, name, patch[name])
    image.updated_at = utc_now()
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise StorageError("Failed to update image") from exc
    changes = diff_changes(before, {name: getattr(image, name) for name in fields})
    _audit(ACTION_IMAGE_UPDATE, image.id, actor=actor, request=request, changes=changes)
    return serialize_image(image)


async def soft_delete_image(
    session: AsyncSession,
    *,
    image_id: int,
    actor: AuditActor,
    request: Request | None = None,
) -> None:
    # The CDN asset is kept so the image can be restored later.
    image = await get_image(session, image_id=image_id)
    image.is_active = False
    image.updated_at = utc_now()
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        raise StorageError("Failed to delete image") from exc
    _audit(
        ACTION_IMAGE_DELETE,
        image.id,
        actor=actor,
        request=request,
        changes={"is_active": {"old": True, "new": False}},
    )
