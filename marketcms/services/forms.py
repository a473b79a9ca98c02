from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from marketcms.core.clock import isoformat, utc_now
from marketcms.core.errors import BadRequestError, NotFoundError, StorageError
from marketcms.domain.models import (
    FORM_CATEGORIES,
    FORM_CATEGORY_CONTACT,
    FORM_CATEGORY_REQUEST_SAMPLE,
    FORM_STATUS_PENDING,
    FORM_STATUS_PROCESSED,
    FORM_STATUSES,
    FormSubmission,
)
from marketcms.persistence.repos import forms as forms_repo
from marketcms.persistence.repos.forms import SORT_FIELDS, SubmissionFilters
from marketcms.services.audit import (
    ACTION_FORM_DELETE,
    ACTION_FORM_STATUS,
    ACTION_FORM_SUBMIT,
    AuditActor,
    build_entry,
    get_audit_sink,
    get_request_context,
)
from marketcms.services.cache import TTL_FORM_STATS, get_cache


logger = logging.getLogger(__name__)

FORM_STATS_KEY = "forms:stats"
SUBMITTED_MESSAGE = "Form submitted successfully"

_COMMON_REQUIRED = ("fullName", "email", "company")
REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    FORM_CATEGORY_CONTACT: _COMMON_REQUIRED + ("subject", "message"),
    FORM_CATEGORY_REQUEST_SAMPLE: _COMMON_REQUIRED + ("jobTitle", "reportTitle"),
}


def serialize_submission(submission: FormSubmission) -> dict[str, Any]:
    return {
        "id": submission.id,
        "category": submission.category,
        "status": submission.status,
        "data": submission.data or {},
        "metadata": submission.submission_metadata or {},
        "processed_at": isoformat(submission.processed_at),
        "processed_by": submission.processed_by,
        "notes": submission.notes,
        "created_at": isoformat(submission.created_at),
        "updated_at": isoformat(submission.updated_at),
    }


def validate_submission(category: str | None, data: dict[str, Any] | None) -> None:
    if category not in FORM_CATEGORIES:
        raise BadRequestError("Invalid form category (must be 'contact' or 'request-sample')")
    if not isinstance(data, dict):
        raise BadRequestError("Form data is required")
    for name in REQUIRED_FIELDS[category]:
        value = data.get(name)
        if not isinstance(value, str) or not value.strip():
            raise BadRequestError(f"{name} is required")
    local, _, domain = data["email"].strip().partition("@")
    if not local or "." not in domain:
        raise BadRequestError("Invalid email format")


def _request_metadata(request: Request | None) -> dict[str, Any]:
    ctx = get_request_context(request)
    return {
        "submitted_at": isoformat(utc_now()),
        "ip_address": ctx["ip_address"],
        "user_agent": ctx["user_agent"],
        "referrer": request.headers.get("referer") if request is not None else None,
    }


async def _invalidate_stats() -> None:
    cache = get_cache()
    await cache.delete(FORM_STATS_KEY)
    await cache.delete_pattern("dashboard:stats:*")


async def _commit(session: AsyncSession, message: str) -> None:
    try:
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("form_submission_write_failed", exc_info=exc)
        raise StorageError(message) from exc


async def submit_form(
    session: AsyncSession,
    *,
    category: str | None,
    data: dict[str, Any] | None,
    request: Request | None = None,
) -> dict[str, Any]:
    validate_submission(category, data)
    now = utc_now()
    submission = FormSubmission(
        category=category,
        status=FORM_STATUS_PENDING,
        data=data,
        submission_metadata=_request_metadata(request),
        created_at=now,
        updated_at=now,
    )
    session.add(submission)
    await _commit(session, "Failed to submit form")
    await _invalidate_stats()
    get_audit_sink().log_async(
        build_entry(
            action=ACTION_FORM_SUBMIT,
            actor=AuditActor(email=data.get("email")),
            request=request,
            entity_type="form_submission",
            entity_id=submission.id,
        )
    )
    return {
        "submission_id": submission.id,
        "category": submission.category,
        "message": SUBMITTED_MESSAGE,
        "created_at": isoformat(submission.created_at),
    }


async def list_submissions(
    session: AsyncSession,
    *,
    filters: SubmissionFilters,
    page: int,
    limit: int,
) -> tuple[list[dict[str, Any]], int]:
    if filters.category and filters.category not in FORM_CATEGORIES:
        raise BadRequestError("Invalid form category (must be 'contact' or 'request-sample')")
    if filters.status and filters.status not in FORM_STATUSES:
        raise BadRequestError(f"Invalid status: {filters.status}")
    if filters.sort_by not in SORT_FIELDS:
        raise BadRequestError("sortBy must be one of createdAt, company, name")
    rows, total = await forms_repo.list_submissions(session, filters=filters, page=page, limit=limit)
    return [serialize_submission(row) for row in rows], total


async def get_submission(session: AsyncSession, *, submission_id: int) -> FormSubmission:
    submission = await forms_repo.get_submission(session, submission_id=submission_id)
    if submission is None:
        raise NotFoundError("Form submission not found")
    return submission


async def update_status(
    session: AsyncSession,
    *,
    submission_id: int,
    status: str,
    notes: str | None,
    actor: AuditActor,
    request: Request | None = None,
) -> dict[str, Any]:
    if status not in FORM_STATUSES:
        raise BadRequestError(f"Invalid status: {status}")
    submission = await get_submission(session, submission_id=submission_id)
    previous = submission.status
    submission.status = status
    if notes is not None:
        submission.notes = notes
    if status == FORM_STATUS_PROCESSED:
        submission.processed_at = utc_now()
        submission.processed_by = actor.user_id
    submission.updated_at = utc_now()
    await _commit(session, "Failed to update form submission")
    await _invalidate_stats()
    get_audit_sink().log_async(
        build_entry(
            action=ACTION_FORM_STATUS,
            actor=actor,
            request=request,
            entity_type="form_submission",
            entity_id=submission.id,
            changes={"status": {"old": previous, "new": status}} if previous != status else None,
        )
    )
    return serialize_submission(submission)


async def delete_submissions(
    session: AsyncSession,
    *,
    submission_ids: list[int],
    actor: AuditActor,
    request: Request | None = None,
) -> int:
    if not submission_ids:
        raise BadRequestError("At least one submission id is required")
    deleted = await forms_repo.delete_submissions(session, submission_ids=submission_ids)
    await _commit(session, "Failed to delete form submissions")
    await _invalidate_stats()
    sink = get_audit_sink()
    for submission_id in submission_ids:
        sink.log_async(
            build_entry(
                action=ACTION_FORM_DELETE,
                actor=actor,
                request=request,
                entity_type="form_submission",
                entity_id=submission_id,
            )
        )
    return deleted


async def delete_submission(
    session: AsyncSession,
    *,
    submission_id: int,
    actor: AuditActor,
    request: Request | None = None,
) -> None:
    await get_submission(session, submission_id=submission_id)
    await delete_submissions(session, submission_ids=[submission_id], actor=actor, request=request)


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


async def compute_stats(session: AsyncSession, *, now: datetime | None = None) -> dict[str, Any]:
    now = now or utc_now()
    today = _start_of_day(now)
    week_start = today - timedelta(days=today.weekday())
    month_start = today.replace(day=1)
    return {
        "total": await forms_repo.count_all(session),
        "by_category": await forms_repo.count_grouped(session, column=FormSubmission.category),
        "by_status": await forms_repo.count_grouped(session, column=FormSubmission.status),
        "recent": {
            "today": await forms_repo.count_since(session, since=today),
            "this_week": await forms_repo.count_since(session, since=week_start),
            "this_month": await forms_repo.count_since(session, since=month_start),
        },
    }


async def get_stats(session: AsyncSession) -> dict[str, Any]:
    async def _load() -> dict[str, Any]:
        return await compute_stats(session)

    return await get_cache().get_or_compute(FORM_STATS_KEY, TTL_FORM_STATS, _load)
