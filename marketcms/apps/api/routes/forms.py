from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.apps.api.csrf import require_csrf
from marketcms.apps.api.deps import Pagination, Principal, get_db, get_pagination, require_roles
from marketcms.apps.api.response import paginated_response, success_response
from marketcms.core.clock import parse_datetime
from marketcms.persistence.repos.forms import SORT_CREATED_AT, SubmissionFilters
from marketcms.services import forms as forms_service
from marketcms.services.authz import ROLE_ADMIN, ROLE_EDITOR


router = APIRouter(prefix="/forms/submissions", tags=["forms"])

staff_access = require_roles(ROLE_ADMIN, ROLE_EDITOR)
admin_access = require_roles(ROLE_ADMIN)


class SubmissionRequest(BaseModel):
    category: str | None = None
    data: dict[str, Any] | None = None


class StatusUpdateRequest(BaseModel):
    status: str
    notes: str | None = None


class BulkDeleteRequest(BaseModel):
    ids: list[int] = Field(default_factory=list)


@router.post("", status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_csrf)])
async def submit_form(
    body: SubmissionRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    result = await forms_service.submit_form(db, category=body.category, data=body.data, request=request)
    return success_response(result, message=forms_service.SUBMITTED_MESSAGE)


@router.get("")
async def list_submissions(
    category: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    start_date: str | None = None,
    end_date: str | None = None,
    search: str | None = None,
    sort_by: str = Query(default=SORT_CREATED_AT, alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
    pagination: Pagination = Depends(get_pagination),
    principal: Principal = Depends(staff_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    filters = SubmissionFilters(
        category=category,
        status=status_filter,
        start_date=parse_datetime(start_date) if start_date else None,
        end_date=parse_datetime(end_date) if end_date else None,
        search=search.strip() if search and search.strip() else None,
        sort_by=sort_by,
        sort_order="asc" if sort_order.lower() == "asc" else "desc",
    )
    items, total = await forms_service.list_submissions(
        db, filters=filters, page=pagination.page, limit=pagination.limit
    )
    return paginated_response(items, page=pagination.page, limit=pagination.limit, total=total)


@router.get("/stats")
async def get_stats(
    principal: Principal = Depends(staff_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return success_response(await forms_service.get_stats(db))


@router.post("/bulk-delete")
async def bulk_delete(
    body: BulkDeleteRequest,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    deleted = await forms_service.delete_submissions(
        db, submission_ids=body.ids, actor=principal.audit_actor(), request=request
    )
    return success_response({"deleted": deleted}, message=f"{deleted} submission(s) deleted successfully")


@router.get("/{submission_id}")
async def get_submission(
    submission_id: int,
    principal: Principal = Depends(staff_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    submission = await forms_service.get_submission(db, submission_id=submission_id)
    return success_response(forms_service.serialize_submission(submission))


@router.patch("/{submission_id}/status")
async def update_status(
    submission_id: int,
    body: StatusUpdateRequest,
    request: Request,
    principal: Principal = Depends(staff_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    submission = await forms_service.update_status(
        db,
        submission_id=submission_id,
        status=body.status,
        notes=body.notes,
        actor=principal.audit_actor(),
        request=request,
    )
    return success_response(submission, message="Submission status updated successfully")


@router.delete("/{submission_id}")
async def delete_submission(
    submission_id: int,
    request: Request,
    principal: Principal = Depends(admin_access),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await forms_service.delete_submission(
        db, submission_id=submission_id, actor=principal.audit_actor(), request=request
    )
    return success_response(message="Submission deleted successfully")
