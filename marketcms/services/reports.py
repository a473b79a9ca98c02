from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from marketcms.core.clock import isoformat
from marketcms.core.errors import BadRequestError, NotFoundError
from marketcms.domain.models import CONTENT_STATUSES, STATUS_PUBLISHED, Report, ReportVersion
from marketcms.persistence.repos import categories as categories_repo
from marketcms.persistence.repos import content as content_repo
from marketcms.persistence.repos import images as images_repo
from marketcms.persistence.repos import reports as reports_repo
from marketcms.persistence.repos.reports import ReportFilters
from marketcms.services.audit import AuditActor
from marketcms.services.cache import TTL_REPORT_ITEM, TTL_REPORT_LIST, get_cache
from marketcms.services.cdn import get_image_cdn
from marketcms.services.slugs import is_valid_slug
from marketcms.services.workflow import REPORT_KIND, WorkflowEngine


logger = logging.getLogger(__name__)

ADMIN_FIELDS = ("created_by", "updated_by", "internal_notes")
MIN_TITLE_LENGTH = 10
MIN_SUMMARY_LENGTH = 50


def get_report_engine() -> WorkflowEngine:
    return WorkflowEngine(REPORT_KIND)


def strip_admin_fields(payload: dict[str, Any]) -> dict[str, Any]:
    stripped = dict(payload)
    for name in ADMIN_FIELDS:
        stripped[name] = None
    return stripped


def _money(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def serialize_version(version: ReportVersion) -> dict[str, Any]:
    return {
        "id": version.id,
        "report_id": version.report_id,
        "version_number": version.version_number,
        "published_by": version.published_by,
        "published_at": isoformat(version.published_at),
        "sections": version.sections or {},
        "meta_title": version.meta_title,
        "meta_description": version.meta_description,
        "meta_keywords": version.meta_keywords,
    }


def serialize_report(
    report: Report,
    *,
    privileged: bool,
    versions: list[ReportVersion] | None = None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": report.id,
        "title": report.title,
        "slug": report.slug,
        "category_id": report.category_id,
        "description": report.description,
        "summary": report.summary,
        "thumbnail_url": report.thumbnail_url,
        "price": _money(report.price),
        "discounted_price": _money(report.discounted_price),
        "currency": report.currency,
        "page_count": report.page_count,
        "formats": report.formats or [],
        "geography": report.geography or [],
        "is_featured": bool(report.is_featured),
        "author_ids": report.author_ids or [],
        "market_metrics": report.market_metrics,
        "key_players": report.key_players or [],
        "sections": report.sections or {},
        "faqs": report.faqs or [],
        "meta_title": report.meta_title,
        "meta_description": report.meta_description,
        "meta_keywords": report.meta_keywords,
        "status": report.status,
        "publish_date": isoformat(report.publish_date),
        "scheduled_publish_enabled": bool(report.scheduled_publish_enabled),
        "created_by": report.created_by,
        "updated_by": report.updated_by,
        "internal_notes": report.internal_notes,
        "deleted_at": isoformat(report.deleted_at),
        "created_at": isoformat(report.created_at),
        "updated_at": isoformat(report.updated_at),
    }
    if versions is not None:
        payload["versions"] = [serialize_version(version) for version in versions]
    return payload if privileged else strip_admin_fields(payload)


def validate_report_payload(values: dict[str, Any], *, partial: bool) -> None:
    # Create requires every field below; update checks only what is present.
    if not partial or "title" in values:
        title = (values.get("title") or "").strip()
        if len(title) < MIN_TITLE_LENGTH:
            raise BadRequestError("Title is required (minimum 10 characters)")
    if not partial or "category_id" in values:
        if not values.get("category_id"):
            raise BadRequestError("Category ID is required")
    if not partial or "summary" in values:
        summary = (values.get("summary") or "").strip()
        if len(summary) < MIN_SUMMARY_LENGTH:
            raise BadRequestError("Summary is required (minimum 50 characters)")
    if not partial or "geography" in values:
        if not values.get("geography"):
            raise BadRequestError("At least one geography is required")
    if values.get("status") is not None and values["status"] not in CONTENT_STATUSES:
        raise BadRequestError(f"Invalid status: {values['status']}")
    if values.get("slug") and not is_valid_slug(values["slug"]):
        raise BadRequestError("Invalid slug format")
    for name in ("price", "discounted_price"):
        if values.get(name) is not None and values[name] < 0:
            raise BadRequestError(f"{name} must not be negative")


async def _ensure_category(session: AsyncSession, category_id: int | None) -> None:
    if category_id is None:
        return
    if await categories_repo.get_category(session, category_id=category_id) is None:
        raise BadRequestError("Invalid category ID")


def _public_filters(filters: ReportFilters) -> ReportFilters:
    # Anonymous and viewer callers only ever see live published rows.
    return replace(filters, status=STATUS_PUBLISHED, include_deleted=False, created_by=None, updated_by=None)


def _is_plain_listing(filters: ReportFilters) -> bool:
    return filters == ReportFilters(status=STATUS_PUBLISHED)


async def list_reports(
    session: AsyncSession,
    *,
    filters: ReportFilters,
    page: int,
    limit: int,
    privileged: bool,
) -> tuple[list[dict[str, Any]], int]:
    if not privileged:
        filters = _public_filters(filters)

    async def _load() -> dict[str, Any]:
        rows, total = await reports_repo.list_reports(session, filters=filters, page=page, limit=limit)
        return {"items": [serialize_report(row, privileged=privileged) for row in rows], "total": total}

    if not privileged and _is_plain_listing(filters):
        result = await get_cache().get_or_compute(f"reports:list:{page}:{limit}", TTL_REPORT_LIST, _load)
    else:
        result = await _load()
    return result["items"], int(result["total"])


async def search_reports(
    session: AsyncSession,
    *,
    query: str | None,
    page: int,
    limit: int,
    privileged: bool,
) -> tuple[list[dict[str, Any]], int]:
    if not query or not query.strip():
        raise BadRequestError("Search query is required")
    return await list_reports(
        session,
        filters=ReportFilters(search=query.strip()),
        page=page,
        limit=limit,
        privileged=privileged,
    )


async def list_reports_by_category(
    session: AsyncSession,
    *,
    category_slug: str,
    page: int,
    limit: int,
) -> tuple[list[dict[str, Any]], int]:
    category = await categories_repo.get_category_by_slug(session, slug=category_slug)
    if category is None:
        raise NotFoundError("Category not found")

    async def _load() -> dict[str, Any]:
        rows, total = await reports_repo.list_reports(
            session,
            filters=ReportFilters(status=STATUS_PUBLISHED, category_id=category.id),
            page=page,
            limit=limit,
        )
        return {"items": [serialize_report(row, privileged=False) for row in rows], "total": total}

    key = f"reports:category:{category_slug}:{page}:{limit}"
    result = await get_cache().get_or_compute(key, TTL_REPORT_LIST, _load)
    return result["items"], int(result["total"])


async def list_reports_by_author(
    session: AsyncSession,
    *,
    author_id: int,
    page: int,
    limit: int,
) -> tuple[list[dict[str, Any]], int]:
    async def _load() -> dict[str, Any]:
        rows, total = await reports_repo.list_reports(
            session,
            filters=ReportFilters(status=STATUS_PUBLISHED, author_id=author_id),
            page=page,
            limit=limit,
        )
        return {"items": [serialize_report(row, privileged=False) for row in rows], "total": total}

    key = f"reports:author:{author_id}:{page}:{limit}"
    result = await get_cache().get_or_compute(key, TTL_REPORT_LIST, _load)
    return result["items"], int(result["total"])


def _visible(report: Report | None, *, privileged: bool) -> bool:
    if report is None:
        return False
    return privileged or (report.status == STATUS_PUBLISHED and report.deleted_at is None)


async def get_report_by_slug(
    session: AsyncSession,
    *,
    slug: str,
    privileged: bool,
    include_deleted: bool = False,
) -> dict[str, Any]:
    async def _load() -> dict[str, Any]:
        report = await content_repo.get_by_slug(
            session, Report, slug, include_deleted=include_deleted and privileged
        )
        if not _visible(report, privileged=privileged):
            raise NotFoundError("Report not found")
        versions = await reports_repo.list_versions(session, report_id=report.id)
        return serialize_report(report, privileged=privileged, versions=versions)

    if privileged:
        return await _load()
    return await get_cache().get_or_compute(REPORT_KIND.slug_key(slug), TTL_REPORT_ITEM, _load)


async def get_report_by_id(
    session: AsyncSession,
    *,
    report_id: int,
    privileged: bool,
    include_deleted: bool = False,
) -> dict[str, Any]:
    async def _load() -> dict[str, Any]:
        report = await content_repo.get_by_id(
            session, Report, report_id, include_deleted=include_deleted and privileged
        )
        if not _visible(report, privileged=privileged):
            raise NotFoundError("Report not found")
        versions = await reports_repo.list_versions(session, report_id=report.id)
        return serialize_report(report, privileged=privileged, versions=versions)

    if privileged:
        return await _load()
    return await get_cache().get_or_compute(REPORT_KIND.id_key(report_id), TTL_REPORT_ITEM, _load)


async def list_report_versions(session: AsyncSession, *, report_id: int) -> list[dict[str, Any]]:
    await get_report_engine().load(session, report_id, include_deleted=True)
    versions = await reports_repo.list_versions(session, report_id=report_id)
    return [serialize_version(version) for version in versions]


async def create_report(
    session: AsyncSession,
    *,
    values: dict[str, Any],
    actor: AuditActor,
    request: Request | None = None,
) -> dict[str, Any]:
    validate_report_payload(values, partial=False)
    await _ensure_category(session, values.get("category_id"))
    report = await get_report_engine().create(session, values, actor=actor, request=request)
    return serialize_report(report, privileged=True)


async def update_report(
    session: AsyncSession,
    *,
    report_id: int,
    patch: dict[str, Any],
    actor: AuditActor,
    request: Request | None = None,
) -> dict[str, Any]:
    validate_report_payload(patch, partial=True)
    await _ensure_category(session, patch.get("category_id"))
    report = await get_report_engine().update(session, report_id, patch, actor=actor, request=request)
    return serialize_report(report, privileged=True)


async def delete_report(
    session: AsyncSession,
    *,
    report_id: int,
    actor: AuditActor,
    request: Request | None = None,
) -> None:
    async def _purge_images(report: Report) -> None:
        # CDN failures are logged and must not block the delete.
        cdn = get_image_cdn()
        for image in await images_repo.list_images(session, report_id=report.id, active_only=False):
            if not await cdn.delete_by_url(image.image_url):
                logger.warning("report_image_purge_failed report_id=%s image_id=%s", report.id, image.id)

    await get_report_engine().delete(
        session,
        report_id,
        actor=actor,
        request=request,
        before_delete=_purge_images,
    )
