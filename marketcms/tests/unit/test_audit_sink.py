from __future__ import annotations

import pytest
from sqlalchemy import select

from marketcms.domain.models import AuditLog
from marketcms.persistence.db import SessionLocal
from marketcms.services.audit import (
    ACTION_LOGIN,
    AuditActor,
    AuditEntry,
    AuditSink,
    build_entry,
    diff_changes,
    sanitize_changes,
)


def test_sanitize_changes_redacts_nested_credentials() -> None:
    changes = {
        "password": {"old": "a", "new": "b"},
        "profile": {"refreshToken": "abc", "name": "Dana"},
        "items": [{"api_secret": "x"}, {"title": "ok"}],
        "Authorization": "Bearer abc",
    }
    assert sanitize_changes(changes) == {
        "password": "[REDACTED]",
        "profile": {"refreshToken": "[REDACTED]", "name": "Dana"},
        "items": [{"api_secret": "[REDACTED]"}, {"title": "ok"}],
        "Authorization": "[REDACTED]",
    }


def test_diff_changes_keeps_only_changed_fields() -> None:
    before = {"title": "Old", "status": "draft", "tags": ["a"]}
    after = {"title": "New", "status": "draft", "tags": ["a", "b"]}
    assert diff_changes(before, after) == {
        "title": {"old": "Old", "new": "New"},
        "tags": {"old": ["a"], "new": ["a", "b"]},
    }


def test_build_entry_copies_actor_without_request() -> None:
    entry = build_entry(
        action=ACTION_LOGIN,
        actor=AuditActor(user_id=4, email="a@example.com", role="editor"),
        entity_type="user",
        entity_id=4,
        changes={},
    )
    assert entry.user_id == 4
    assert entry.user_role == "editor"
    assert entry.ip_address is None
    # Empty change sets are stored as null.
    assert entry.changes is None


def test_overflow_drops_and_counts() -> None:
    sink = AuditSink(capacity=2)
    assert sink.log_async(AuditEntry(action="report.create"))
    assert sink.log_async(AuditEntry(action="report.update"))
    assert not sink.log_async(AuditEntry(action="report.delete"))
    assert sink.dropped == 1
    assert sink.pending == 2


@pytest.mark.asyncio
async def test_stop_flushes_pending_and_rejects_later_entries(database) -> None:
    sink = AuditSink(capacity=10, flush_timeout_s=2.0)
    sink.start()
    sink.log_async(AuditEntry(action="user.create", changes={"password": {"old": None, "new": "x"}}))
    sink.log_async(AuditEntry(action="user.update", entity_type="user", entity_id=9))
    await sink.stop()

    assert not sink.log_async(AuditEntry(action="user.delete"))
    async with SessionLocal() as session:
        logs = (await session.execute(select(AuditLog).order_by(AuditLog.id))).scalars().all()
    assert [log.action for log in logs] == ["user.create", "user.update"]
    assert logs[0].changes == {"password": "[REDACTED]"}
    assert logs[1].entity_id == 9


@pytest.mark.asyncio
async def test_inline_log_persists_before_returning(database) -> None:
    sink = AuditSink()
    record = await sink.log(AuditEntry(action="form.delete", entity_type="form_submission", entity_id=3))
    assert record.id is not None
    async with SessionLocal() as session:
        stored = await session.get(AuditLog, record.id)
    assert stored is not None
    assert stored.status == "success"


@pytest.mark.asyncio
async def test_sink_restarts_after_stop(database) -> None:
    sink = AuditSink(capacity=5)
    sink.start()
    await sink.stop()
    sink.start()
    assert sink.log_async(AuditEntry(action="auth.logout"))
    await sink.flush()
    await sink.stop()
    async with SessionLocal() as session:
        actions = (await session.execute(select(AuditLog.action))).scalars().all()
    assert actions == ["auth.logout"]
