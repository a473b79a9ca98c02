from __future__ import annotations

from datetime import datetime
from decimal import Decimal
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
from marketcms.core.clock import parse_datetime
from marketcms.persistence.repos.reports import ReportFilters
from marketcms.services import reports as reports_service
from marketcms.services.authz import ROLE_ADMIN, ROLE_EDITOR


router = APIRouter(prefix="/reports", tags=["reports"])
search_router = APIRouter(tags=["reports"])

editor_access = require_roles(ROLE_ADMIN, ROLE_EDITOR)


class ReportPayload(BaseModel):
    # Create requires title/category/summary/geography; validated in the service layer.
    title: str | None = None
    slug: str | None = None
    category_id: int | None = None
    description: str | None = None
    summary: str | None = None
    thumbnail_url: str | None = None
    price: Decimal | None = None
    discounted_price: Decimal | None = None
    currency: str | None = None
    page_count: int | None = None
    formats: list[str] | None = None
    geography: list[str] | None = None
    is_featured: bool | None = None
    author_ids: list[int] | None = None
    market_metrics: dict[str, Any] | None = None
    key_players: list[dict[str, Any]] | None = None
    sections: dict[str, Any] | None = None
    faqs: list[dict[str, Any]] | None = None
    meta_title: str | None = None
    meta_description: str | None = None
    meta_keywords: str | None = None
    status: str | None = None
    internal_notes: str | None = None


def _optional_date(value: str | None) -> datetime | None:
    return parse_datetime(value) if value else None


def _split_list(value: str | None) -> list[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


_NON_NULLABLE = frozenset(
    {"slug", "status", "currency", "formats", "is_featured", "author_ids", "key_players", "sections", "faqs"}
)


def _create_values(body: ReportPayload) -> dict[str, Any]:
    # Unset optional fields fall back to column defaults.
    return {key: value for key, value in body.model_dump(exclude_unset=True).items() if value is not None}


def _patch_values(body: ReportPayload) -> dict[str, Any]:
    # Explicit nulls clear nullable columns only.
    values = body.model_dump(exclude_unset=True)
    return {key: value for key, value in values.items() if value is not None or key not in _NON_NULLABLE}


@router.get("")
async def list_reports(
    status_filter: str | None = Query(default=None, alias="status"),
    category: str | None = None,
    category_id: int | None = None,
    geography: str | None = None,
    search: str | None = None,
    author_id: int | None = None,
    is_featured: bool | None = None,
    created_by: int | None = None,
    updated_by: int | None = None,
    created_after: str | None = None,
    created_before: str | None = None,
    updated_after: str | None = None,
    updated_before: str | None = None,
    published_after: str | None = None,
    published_before: str | None = None,
    show_deleted: bool = False,
    pagination: Pagination = Depends(get_pagination),
    principal: Principal | None = Depends(get_optional_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    filters = ReportFilters(
        status=status_filter,
        category_slug=category,
        category_id=category_id,
        geography=_split_list(geography),
        search=search.strip() if search and search.strip() else None,
        author_id=author_id,
        created_by=created_by,
        updated_by=updated_by,
        created_after=_optional_date(created_after),
        created_before=_optional_date(created_before),
        updated_after=_optional_date(updated_after),
        updated_before=_optional_date(updated_before),
        published_after=_optional_date(published_after),
        published_before=_optional_date(published_before),
        is_featured=is_featured,
        include_deleted=show_deleted,
    )
    items, total = await reports_service.list_reports(
        db,
        filters=filters,
        page=pagination.page,
        limit=pagination.limit,
        privileged=is_privileged_caller(principal),
    )
    return paginated_response(items, page=pagination.page, limit=pagination.limit, total=total)


@search_router.get("/search")
async def search_reports(
    q: str | None = None,
    pagination: Pagination = Depends(get_pagination),
    principal: Principal | None = Depends(get_optional_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    items, total = await reports_service.search_reports(
        db,
        query=q,
        page=pagination.page,
        limit=pagination.limit,
        privileged=is_privileged_caller(principal),
    )
    return paginated_response(items, page=pagination.page, limit=pagination.limit, total=total)


@router.get("/id/{report_id}")
async def get_report_for_editing(
    report_id: int,
    show_deleted: bool = False,
    principal: Principal = Depends(editor_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    report = await reports_service.get_report_by_id(
        db, report_id=report_id, privileged=True, include_deleted=show_deleted
    )
    return success_response(report)


@router.get("/{report_id}/versions")
async def list_report_versions(
    report_id: int,
    principal: Principal = Depends(editor_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return success_response(await reports_service.list_report_versions(db, report_id=report_id))


@router.get("/{slug}")
async def get_report(
    slug: str,
    show_deleted: bool = False,
    principal: Principal | None = Depends(get_optional_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    report = await reports_service.get_report_by_slug(
        db,
        slug=slug,
        privileged=is_privileged_caller(principal),
        include_deleted=show_deleted,
    )
    return success_response(report)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_report(
    body: ReportPayload,
    request: Request,
    principal: Principal = Depends(editor_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    report = await reports_service.create_report(
        db, values=_create_values(body), actor=principal.audit_actor(), request=request
    )
    return success_response(report, message="Report created successfully")


@router.put("/{report_id}")
async def update_report(
    report_id: int,
    body: ReportPayload,
    request: Request,
    principal: Principal = Depends(editor_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    report = await reports_service.update_report(
        db,
        report_id=report_id,
        patch=_patch_values(body),
        actor=principal.audit_actor(),
        request=request,
    )
    return success_response(report, message="Report updated successfully")


@router.delete("/{report_id}")
async def delete_report(
    report_id: int,
    request: Request,
    principal: Principal = Depends(require_roles(ROLE_ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await reports_service.delete_report(db, report_id=report_id, actor=principal.audit_actor(), request=request)
    return success_response(message="Report permanently deleted successfully")


add_workflow_routes(
    router,
    label="Report",
    engine_factory=reports_service.get_report_engine,
    serialize=lambda row: reports_service.serialize_report(row, privileged=True),
)
