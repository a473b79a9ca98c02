from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import Any, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from marketcms.core.clock import utc_now
from marketcms.core.config import get_settings
from marketcms.core.errors import StorageError
from marketcms.domain.models import AUDIT_SUCCESS, AuditLog
from marketcms.persistence.db import SessionLocal


logger = logging.getLogger(__name__)

# Dotted domain.verb action names.
ACTION_LOGIN = "auth.login"
ACTION_LOGIN_FAILED = "auth.login_failed"
ACTION_TOKEN_REFRESH = "auth.token_refresh"
ACTION_LOGOUT = "auth.logout"
ACTION_USER_CREATE = "user.create"
ACTION_USER_UPDATE = "user.update"
ACTION_USER_DELETE = "user.delete"
ACTION_USER_ROLE_CHANGE = "user.role_change"
ACTION_AUTHOR_CREATE = "author.create"
ACTION_AUTHOR_UPDATE = "author.update"
ACTION_AUTHOR_DELETE = "author.delete"
ACTION_FORM_SUBMIT = "form.submit"
ACTION_FORM_STATUS = "form.status_change"
ACTION_FORM_DELETE = "form.delete"
ACTION_IMAGE_UPLOAD = "report_image.upload"
ACTION_IMAGE_UPDATE = "report_image.update"
ACTION_IMAGE_DELETE = "report_image.delete"

_SENSITIVE_KEY_PATTERNS = ["password", "token", "secret", "authorization"]
_REDACTED_VALUE = "[REDACTED]"
_STOP = object()


@dataclass
class AuditActor:
    user_id: int | None = None
    email: str | None = None
    role: str | None = None


@dataclass
class AuditEntry:
    action: str
    entity_type: str | None = None
    entity_id: int | None = None
    user_id: int | None = None
    user_email: str | None = None
    user_role: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None
    changes: dict[str, Any] | None = None
    status: str = AUDIT_SUCCESS
    error_message: str | None = None
    created_at: Any = field(default_factory=utc_now)

    def to_model(self) -> AuditLog:
        return AuditLog(
            user_id=self.user_id,
            user_email=self.user_email,
            user_role=self.user_role,
            action=self.action,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            request_id=self.request_id,
            changes=sanitize_changes(self.changes) if self.changes else None,
            status=self.status,
            error_message=self.error_message,
            created_at=self.created_at,
        )


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_changes(value: Any) -> Any:
    # Recursively scrub credentials while preserving the {field: {old, new}} shape.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_changes(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_changes(item) for item in value]
    return value


def diff_changes(before: dict[str, Any], after: dict[str, Any]) -> dict[str, dict[str, Any]]:
    # Only fields whose values actually changed are recorded.
    changes: dict[str, dict[str, Any]] = {}
    for key, new_value in after.items():
        old_value = before.get(key)
        if old_value != new_value:
            changes[key] = {"old": old_value, "new": new_value}
    return changes


def get_request_context(request: Request | None) -> dict[str, str | None]:
    # Extract request identifiers and client hints without persisting credentials.
    if request is None:
        return {"request_id": None, "ip_address": None, "user_agent": None}
    request_id = getattr(request.state, "request_id", None) or request.headers.get("X-Request-Id")
    ip_address = request.client.host if request.client else None
    user_agent = request.headers.get("user-agent")
    return {"request_id": request_id, "ip_address": ip_address, "user_agent": user_agent}


def build_entry(
    *,
    action: str,
    actor: AuditActor | None = None,
    request: Request | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    changes: dict[str, Any] | None = None,
    status: str = AUDIT_SUCCESS,
    error_message: str | None = None,
) -> AuditEntry:
    ctx = get_request_context(request)
    actor = actor or AuditActor()
    return AuditEntry(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=actor.user_id,
        user_email=actor.email,
        user_role=actor.role,
        ip_address=ctx["ip_address"],
        user_agent=ctx["user_agent"],
        request_id=ctx["request_id"],
        changes=changes or None,
        status=status,
        error_message=error_message,
    )


class AuditSink:
    """Bounded FIFO of audit entries drained by exactly one worker task.

    ``log_async`` never blocks: on overflow the entry is dropped with a
    warning. ``log`` persists inline for callers that must not return before
    the record exists. ``stop`` closes the queue and flushes what remains up
    to a short deadline.
    """

    def __init__(
        self,
        *,
        capacity: int = 100,
        flush_timeout_s: float = 5.0,
        session_factory: Callable[[], AsyncSession] = SessionLocal,
    ) -> None:
        self._capacity = capacity
        self._flush_timeout_s = flush_timeout_s
        self._session_factory = session_factory
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=capacity)
        self._worker: asyncio.Task[None] | None = None
        self._closed = False
        self.dropped = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def log_async(self, entry: AuditEntry) -> bool:
        if self._closed:
            logger.warning("audit_record_dropped reason=closed action=%s", entry.action)
            self.dropped += 1
            return False
        try:
            self._queue.put_nowait(entry)
        except asyncio.QueueFull:
            logger.warning(
                "audit_record_dropped reason=queue_full action=%s request_id=%s",
                entry.action,
                entry.request_id,
            )
            self.dropped += 1
            return False
        return True

    async def log(self, entry: AuditEntry) -> AuditLog:
        record = entry.to_model()
        async with self._session_factory() as session:
            try:
                session.add(record)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error("audit_record_write_failed action=%s request_id=%s", entry.action, entry.request_id)
                raise StorageError("Failed to write audit log") from exc
        return record

    async def _persist(self, entry: AuditEntry) -> None:
        # Drainer failures are logged and never surfaced to requests.
        async with self._session_factory() as session:
            try:
                session.add(entry.to_model())
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.warning(
                    "audit_record_write_failed action=%s request_id=%s",
                    entry.action,
                    entry.request_id,
                    exc_info=exc,
                )

    async def _drain(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is _STOP:
                    return
                await self._persist(item)
            except Exception:  # noqa: BLE001 - keep the drainer alive while surfacing failures in logs.
                logger.exception("audit_drainer_failed")
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self.running:
            return
        # Rebind the queue to the running loop after a previous stop.
        if self._closed:
            self._queue = asyncio.Queue(maxsize=self._capacity)
            self._closed = False
        self._worker = asyncio.create_task(self._drain(), name="audit-sink-drainer")

    async def flush(self) -> None:
        if self.running:
            await self._queue.join()

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._closed = True
        worker = self._worker
        try:
            # The sentinel needs a slot; wait for one up to the flush deadline.
            await asyncio.wait_for(self._queue.put(_STOP), timeout=self._flush_timeout_s)
            await asyncio.wait_for(asyncio.shield(worker), timeout=self._flush_timeout_s)
        except asyncio.TimeoutError:
            logger.warning("audit_flush_timeout pending=%s", self._queue.qsize())
            worker.cancel()
        self._worker = None


_sink: AuditSink | None = None


def get_audit_sink() -> AuditSink:
    global _sink
    if _sink is None:
        settings = get_settings()
        _sink = AuditSink(
            capacity=settings.audit_queue_capacity,
            flush_timeout_s=settings.audit_flush_timeout_s,
        )
    return _sink


def reset_audit_sink_state() -> None:
    global _sink
    _sink = None
