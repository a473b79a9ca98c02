from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
import logging
from typing import Any, Awaitable, Callable, Iterable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from marketcms.core.clock import ensure_utc, utc_now
from marketcms.core.errors import (
    BadRequestError,
    DuplicateSlugError,
    InvalidTransitionError,
    NotFoundError,
    StorageError,
)
from marketcms.domain.models import (
    STATUS_DRAFT,
    STATUS_PUBLISHED,
    STATUS_REVIEW,
    Blog,
    PressRelease,
    Report,
    ReportVersion,
)
from marketcms.persistence.repos import content as content_repo
from marketcms.persistence.repos import reports as reports_repo
from marketcms.services.audit import AuditActor, AuditSink, build_entry, diff_changes, get_audit_sink
from marketcms.services.cache import Cache, get_cache
from marketcms.services.slugs import slugify


logger = logging.getLogger(__name__)

# Workflow labels used in client-facing transition errors.
STATUS_LABELS: dict[str, str] = {
    STATUS_DRAFT: "draft",
    STATUS_REVIEW: "pending_review",
    STATUS_PUBLISHED: "published",
}
SCHEDULABLE_STATUSES = (STATUS_DRAFT, STATUS_REVIEW)
_VERSION_RETRIES = 3


@dataclass(frozen=True)
class Transition:
    action: str
    from_statuses: tuple[str, ...]
    to_status: str


TRANSITIONS: dict[str, Transition] = {
    "submit_review": Transition("submit_review", (STATUS_DRAFT,), STATUS_REVIEW),
    "approve": Transition("approve", (STATUS_REVIEW,), STATUS_PUBLISHED),
    "publish": Transition("publish", (STATUS_REVIEW,), STATUS_PUBLISHED),
    "reject": Transition("reject", (STATUS_REVIEW,), STATUS_DRAFT),
    "unpublish": Transition("unpublish", (STATUS_PUBLISHED,), STATUS_DRAFT),
}


@dataclass(frozen=True)
class ContentKind:
    """Describes one publishable entity family to the workflow engine."""

    name: str
    label: str
    model: type
    cache_patterns: tuple[str, ...]
    id_key_prefix: str
    slug_key_prefix: str
    cache_keys: tuple[str, ...] = ()
    capture_versions: bool = False
    slug_follows_title: bool = False

    def id_key(self, content_id: int) -> str:
        return f"{self.id_key_prefix}{content_id}"

    def slug_key(self, slug: str) -> str:
        return f"{self.slug_key_prefix}{slug}"


REPORT_KIND = ContentKind(
    name="report",
    label="Report",
    model=Report,
    cache_patterns=("reports:list:*", "reports:category:*", "reports:author:*", "dashboard:stats:*"),
    cache_keys=("reports:total",),
    id_key_prefix="report:id:",
    slug_key_prefix="report:slug:",
    capture_versions=True,
)
BLOG_KIND = ContentKind(
    name="blog",
    label="Blog",
    model=Blog,
    cache_patterns=("blogs:*", "dashboard:stats:*"),
    id_key_prefix="blog:id:",
    slug_key_prefix="blog:slug:",
    slug_follows_title=True,
)
PRESS_RELEASE_KIND = ContentKind(
    name="press_release",
    label="Press release",
    model=PressRelease,
    cache_patterns=("press_releases:*", "dashboard:stats:*"),
    id_key_prefix="press_release:id:",
    slug_key_prefix="press_release:slug:",
    slug_follows_title=True,
)
CONTENT_KINDS: tuple[ContentKind, ...] = (REPORT_KIND, BLOG_KIND, PRESS_RELEASE_KIND)


def transition_error(
    kind: ContentKind,
    *,
    action: str,
    current: str,
    target: str,
    allowed: Iterable[str],
) -> InvalidTransitionError:
    allowed_labels = ", ".join(STATUS_LABELS.get(status, status) for status in allowed)
    message = (
        f"Cannot {action.replace('_', ' ')} {kind.label.lower()}: invalid transition from "
        f"'{current}' to '{target}' (allowed from: {allowed_labels})"
    )
    return InvalidTransitionError(message, current=current, target=target)


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


class WorkflowEngine:
    """Owns every mutation of publishable content.

    Each mutation loads the live row, applies the change with tracking
    fields and persists it. A report published straight from draft gets a
    version snapshot. Afterwards the family's cache entries are purged and
    an audit record is enqueued.
    """

    def __init__(
        self,
        kind: ContentKind,
        *,
        cache: Cache | None = None,
        audit_sink: AuditSink | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.kind = kind
        self._cache = cache
        self._audit_sink = audit_sink
        self._now = time_provider or utc_now

    @property
    def cache(self) -> Cache:
        return self._cache or get_cache()

    @property
    def audit_sink(self) -> AuditSink:
        return self._audit_sink or get_audit_sink()

    async def load(self, session: AsyncSession, content_id: int, *, include_deleted: bool = False) -> Any:
        row = await content_repo.get_by_id(session, self.kind.model, content_id, include_deleted=include_deleted)
        if row is None:
            raise NotFoundError(f"{self.kind.label} not found")
        return row

    async def create(
        self,
        session: AsyncSession,
        values: dict[str, Any],
        *,
        actor: AuditActor,
        request: Request | None = None,
    ) -> Any:
        now = self._now()
        values = dict(values)
        slug = values.get("slug") or slugify(values.get("title") or "")
        if not slug:
            raise BadRequestError("Unable to derive a slug from the title")
        values["slug"] = slug
        status = values.get("status") or STATUS_DRAFT
        values["status"] = status
        if status == STATUS_PUBLISHED and values.get("publish_date") is None:
            values["publish_date"] = now
        await self._ensure_slug_free(session, slug)

        row = self.kind.model(
            **values,
            created_by=actor.user_id,
            updated_by=actor.user_id,
            created_at=now,
            updated_at=now,
        )
        session.add(row)
        await self._commit(session, slug=slug)
        await self._invalidate(row.id, {slug})
        self._audit("create", row.id, actor=actor, request=request)
        return row

    async def update(
        self,
        session: AsyncSession,
        content_id: int,
        patch: dict[str, Any],
        *,
        actor: AuditActor,
        request: Request | None = None,
    ) -> Any:
        # Direct edits may set any status; the named actions enforce the state machine.
        row = await self.load(session, content_id)
        patch = dict(patch)
        if self.kind.slug_follows_title and "title" in patch and "slug" not in patch:
            patch["slug"] = slugify(patch["title"])
        if "slug" in patch and patch["slug"] != row.slug:
            await self._ensure_slug_free(session, patch["slug"], exclude_id=row.id)

        before = self._snapshot(row, set(patch) | {"status", "publish_date"})
        old_slug = row.slug
        previous_status = row.status
        for key, value in patch.items():
            setattr(row, key, value)
        action = "publish" if row.status == STATUS_PUBLISHED and previous_status != STATUS_PUBLISHED else "update"
        return await self._finish(
            session,
            row,
            actor=actor,
            request=request,
            action=action,
            before=before,
            old_slug=old_slug,
            previous_status=previous_status,
        )

    async def apply_transition(
        self,
        session: AsyncSession,
        content_id: int,
        action: str,
        *,
        actor: AuditActor,
        request: Request | None = None,
    ) -> Any:
        transition = TRANSITIONS.get(action)
        if transition is None:
            raise BadRequestError(f"Unknown workflow action: {action}")
        row = await self.load(session, content_id)
        if row.status not in transition.from_statuses:
            raise transition_error(
                self.kind,
                action=action,
                current=row.status,
                target=transition.to_status,
                allowed=transition.from_statuses,
            )
        before = self._snapshot(row, {"status", "publish_date", "scheduled_publish_enabled"})
        previous_status = row.status
        row.status = transition.to_status
        if action in ("approve", "publish", "reject") and hasattr(row, "reviewed_by"):
            row.reviewed_by = actor.user_id
            row.reviewed_at = self._now()
        return await self._finish(
            session,
            row,
            actor=actor,
            request=request,
            action=transition.action,
            before=before,
            old_slug=row.slug,
            previous_status=previous_status,
        )

    async def soft_delete(
        self,
        session: AsyncSession,
        content_id: int,
        *,
        actor: AuditActor,
        request: Request | None = None,
    ) -> Any:
        row = await self.load(session, content_id)
        before = self._snapshot(row, {"deleted_at"})
        row.deleted_at = self._now()
        return await self._finish(
            session,
            row,
            actor=actor,
            request=request,
            action="soft_delete",
            before=before,
            old_slug=row.slug,
            previous_status=row.status,
        )

    async def restore(
        self,
        session: AsyncSession,
        content_id: int,
        *,
        actor: AuditActor,
        request: Request | None = None,
    ) -> Any:
        # Status is untouched by soft delete, so restore returns the row to its previous status.
        row = await self.load(session, content_id, include_deleted=True)
        if row.deleted_at is None:
            raise BadRequestError(f"{self.kind.label} is not deleted")
        await self._ensure_slug_free(session, row.slug, exclude_id=row.id)
        before = self._snapshot(row, {"deleted_at"})
        row.deleted_at = None
        return await self._finish(
            session,
            row,
            actor=actor,
            request=request,
            action="restore",
            before=before,
            old_slug=row.slug,
            previous_status=row.status,
        )

    async def schedule(
        self,
        session: AsyncSession,
        content_id: int,
        publish_at: datetime,
        *,
        actor: AuditActor,
        request: Request | None = None,
    ) -> Any:
        row = await self.load(session, content_id)
        if row.status not in SCHEDULABLE_STATUSES:
            raise transition_error(
                self.kind,
                action="schedule",
                current=row.status,
                target=STATUS_PUBLISHED,
                allowed=SCHEDULABLE_STATUSES,
            )
        # A date already due is promoted on the next scheduler tick.
        publish_at = ensure_utc(publish_at)
        before = self._snapshot(row, {"publish_date", "scheduled_publish_enabled"})
        row.publish_date = publish_at
        row.scheduled_publish_enabled = True
        return await self._finish(
            session,
            row,
            actor=actor,
            request=request,
            action="schedule",
            before=before,
            old_slug=row.slug,
            previous_status=row.status,
        )

    async def cancel_schedule(
        self,
        session: AsyncSession,
        content_id: int,
        *,
        actor: AuditActor,
        request: Request | None = None,
    ) -> Any:
        row = await self.load(session, content_id)
        before = self._snapshot(row, {"scheduled_publish_enabled"})
        row.scheduled_publish_enabled = False
        return await self._finish(
            session,
            row,
            actor=actor,
            request=request,
            action="cancel_schedule",
            before=before,
            old_slug=row.slug,
            previous_status=row.status,
        )

    async def delete(
        self,
        session: AsyncSession,
        content_id: int,
        *,
        actor: AuditActor,
        request: Request | None = None,
        before_delete: Callable[[Any], Awaitable[None]] | None = None,
    ) -> None:
        row = await self.load(session, content_id, include_deleted=True)
        row_id, slug = row.id, row.slug
        if before_delete is not None:
            await before_delete(row)
        try:
            if self.kind.capture_versions:
                await reports_repo.hard_delete_report(session, report_id=row_id)
            else:
                await session.delete(row)
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error("content_delete_failed kind=%s id=%s", self.kind.name, row_id)
            raise StorageError(f"Failed to delete {self.kind.label.lower()}") from exc
        await self._invalidate(row_id, {slug})
        self._audit("delete", row_id, actor=actor, request=request)

    async def publish_due(self, session: AsyncSession, *, now: datetime | None = None) -> int:
        # Scheduler path: one bulk statement, no version capture and no audit records.
        published = await content_repo.publish_scheduled(session, self.kind.model, now=now or self._now())
        if published:
            cache = self.cache
            for pattern in self.kind.cache_patterns:
                await cache.delete_pattern(pattern)
            await cache.delete_pattern(f"{self.kind.id_key_prefix}*")
            await cache.delete_pattern(f"{self.kind.slug_key_prefix}*")
            if self.kind.cache_keys:
                await cache.delete(*self.kind.cache_keys)
        return published

    async def _finish(
        self,
        session: AsyncSession,
        row: Any,
        *,
        actor: AuditActor,
        request: Request | None,
        action: str,
        before: dict[str, Any],
        old_slug: str,
        previous_status: str,
    ) -> Any:
        now = self._now()
        row.updated_by = actor.user_id
        row.updated_at = now
        publishing = row.status == STATUS_PUBLISHED and previous_status != STATUS_PUBLISHED
        if row.status == STATUS_PUBLISHED and row.publish_date is None:
            row.publish_date = now
        if publishing:
            row.scheduled_publish_enabled = False
        after = self._snapshot(row, before.keys())
        row_id, new_slug = row.id, row.slug
        await self._commit(session, slug=new_slug)
        # Only a draft->published change is versioned; approvals from review are not.
        if publishing and previous_status == STATUS_DRAFT and self.kind.capture_versions:
            await self._capture_version(session, row, actor=actor, now=now)
        await self._invalidate(row_id, {old_slug, new_slug})
        self._audit(action, row_id, actor=actor, request=request, changes=diff_changes(before, after))
        return row

    async def _ensure_slug_free(self, session: AsyncSession, slug: str, *, exclude_id: int | None = None) -> None:
        if await content_repo.slug_taken(session, self.kind.model, slug, exclude_id=exclude_id):
            raise DuplicateSlugError(f"{self.kind.label} with slug '{slug}' already exists")

    async def _commit(self, session: AsyncSession, *, slug: str) -> None:
        try:
            await session.commit()
        except IntegrityError as exc:
            await session.rollback()
            if "slug" in str(exc.orig).lower():
                raise DuplicateSlugError(f"{self.kind.label} with slug '{slug}' already exists") from exc
            logger.error("content_write_rejected kind=%s error=%s", self.kind.name, exc.orig)
            raise StorageError(f"Failed to save {self.kind.label.lower()}") from exc
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error("content_write_failed kind=%s", self.kind.name, exc_info=exc)
            raise StorageError(f"Failed to save {self.kind.label.lower()}") from exc

    async def _capture_version(self, session: AsyncSession, row: Any, *, actor: AuditActor, now: datetime) -> None:
        # Best-effort: a failed snapshot is logged and the publish still stands.
        report_id = row.id
        sections = copy.deepcopy(row.sections or {})
        meta = (row.meta_title, row.meta_description, row.meta_keywords)
        rolled_back = False
        try:
            for attempt in range(1, _VERSION_RETRIES + 1):
                number = await reports_repo.max_version_number(session, report_id=report_id) + 1
                session.add(
                    ReportVersion(
                        report_id=report_id,
                        version_number=number,
                        published_by=actor.user_id,
                        published_at=now,
                        sections=copy.deepcopy(sections),
                        meta_title=meta[0],
                        meta_description=meta[1],
                        meta_keywords=meta[2],
                        created_at=now,
                    )
                )
                try:
                    await session.commit()
                    return
                except IntegrityError:
                    # A concurrent publish took this number; recompute and retry.
                    await session.rollback()
                    rolled_back = True
                    logger.info("report_version_conflict report_id=%s attempt=%s", report_id, attempt)
            logger.warning("report_version_write_abandoned report_id=%s", report_id)
        except SQLAlchemyError as exc:
            await session.rollback()
            rolled_back = True
            logger.warning("report_version_write_failed report_id=%s", report_id, exc_info=exc)
        finally:
            if rolled_back:
                await session.refresh(row)

    async def _invalidate(self, content_id: int, slugs: set[str]) -> None:
        cache = self.cache
        for pattern in self.kind.cache_patterns:
            await cache.delete_pattern(pattern)
        keys = [*self.kind.cache_keys, self.kind.id_key(content_id)]
        keys.extend(self.kind.slug_key(slug) for slug in slugs if slug)
        await cache.delete(*keys)

    def _audit(
        self,
        verb: str,
        content_id: int,
        *,
        actor: AuditActor,
        request: Request | None,
        changes: dict[str, Any] | None = None,
    ) -> None:
        entry = build_entry(
            action=f"{self.kind.name}.{verb}",
            actor=actor,
            request=request,
            entity_type=self.kind.name,
            entity_id=content_id,
            changes=changes,
        )
        self.audit_sink.log_async(entry)

    @staticmethod
    def _snapshot(row: Any, fields: Iterable[str]) -> dict[str, Any]:
        return {name: copy.deepcopy(_jsonable(getattr(row, name, None))) for name in fields}
