from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from marketcms.core.errors import BadRequestError, DuplicateSlugError, InvalidTransitionError, NotFoundError
from marketcms.domain.models import AuditLog, Report
from marketcms.persistence.db import SessionLocal
from marketcms.persistence.repos import reports as reports_repo
from marketcms.services.audit import AuditActor
from marketcms.services.cache import Cache
from marketcms.services.workflow import BLOG_KIND, REPORT_KIND, WorkflowEngine
from marketcms.tests.utils.content import create_author, create_category
from marketcms.tests.utils.fake_redis import FakeRedis


EDITOR = AuditActor(user_id=11, email="editor@example.com", role="editor")
ADMIN = AuditActor(user_id=1, email="admin@example.com", role="admin")


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


def _report_values(category_id: int, **overrides) -> dict:
    values = {
        "title": "Cardiology Devices Market",
        "summary": "Cardiology device revenues by region, segment and leading manufacturer.",
        "category_id": category_id,
        "sections": {"overview": "v1"},
    }
    values.update(overrides)
    return values


def _report_engine(fake: FakeRedis, clock: _Clock | None = None) -> WorkflowEngine:
    return WorkflowEngine(REPORT_KIND, cache=Cache(redis=fake), time_provider=clock)


@pytest.mark.asyncio
async def test_create_derives_slug_and_tracks_actor(database, fake_redis) -> None:
    category = await create_category()
    engine = _report_engine(fake_redis)
    async with SessionLocal() as session:
        report = await engine.create(session, _report_values(category.id), actor=EDITOR)

    assert report.slug == "cardiology-devices-market"
    assert report.status == "draft"
    assert report.created_by == EDITOR.user_id
    assert report.updated_by == EDITOR.user_id
    assert report.publish_date is None


@pytest.mark.asyncio
async def test_duplicate_slug_is_rejected_among_live_rows(database, fake_redis) -> None:
    category = await create_category()
    engine = _report_engine(fake_redis)
    async with SessionLocal() as session:
        first = await engine.create(session, _report_values(category.id), actor=EDITOR)
        with pytest.raises(DuplicateSlugError):
            await engine.create(session, _report_values(category.id), actor=EDITOR)

        # A soft-deleted row frees its slug; restoring it while taken collides.
        await engine.soft_delete(session, first.id, actor=ADMIN)
        second = await engine.create(session, _report_values(category.id), actor=EDITOR)
        with pytest.raises(DuplicateSlugError):
            await engine.restore(session, first.id, actor=ADMIN)
        assert second.slug == first.slug


@pytest.mark.asyncio
async def test_only_draft_to_published_captures_versions(database, fake_redis) -> None:
    category = await create_category()
    engine = _report_engine(fake_redis)
    async with SessionLocal() as session:
        report = await engine.create(session, _report_values(category.id), actor=EDITOR)
        await engine.update(session, report.id, {"status": "published"}, actor=EDITOR)

        await engine.apply_transition(session, report.id, "unpublish", actor=ADMIN)
        await engine.update(session, report.id, {"sections": {"overview": "v2"}}, actor=EDITOR)
        report = await engine.update(session, report.id, {"status": "published"}, actor=ADMIN)
        assert report.publish_date is not None

        versions = await reports_repo.list_versions(session, report_id=report.id)

    assert [version.version_number for version in versions] == [2, 1]
    assert versions[0].sections == {"overview": "v2"}
    assert versions[1].sections == {"overview": "v1"}
    assert versions[0].published_by == ADMIN.user_id
    assert versions[1].published_by == EDITOR.user_id


@pytest.mark.asyncio
async def test_approval_from_review_and_published_create_skip_versions(database, fake_redis) -> None:
    category = await create_category()
    engine = _report_engine(fake_redis)
    async with SessionLocal() as session:
        report = await engine.create(session, _report_values(category.id), actor=EDITOR)
        report = await engine.apply_transition(session, report.id, "submit_review", actor=EDITOR)
        assert report.status == "review"
        report = await engine.apply_transition(session, report.id, "approve", actor=ADMIN)
        assert report.status == "published"
        assert report.publish_date is not None
        assert await reports_repo.list_versions(session, report_id=report.id) == []

        live = await engine.create(
            session, _report_values(category.id, title="Born Published Report", status="published"), actor=EDITOR
        )
        assert live.publish_date is not None
        assert await reports_repo.list_versions(session, report_id=live.id) == []


@pytest.mark.asyncio
async def test_invalid_transition_names_allowed_sources(database, fake_redis) -> None:
    category = await create_category()
    engine = _report_engine(fake_redis)
    async with SessionLocal() as session:
        report = await engine.create(session, _report_values(category.id), actor=EDITOR)
        with pytest.raises(InvalidTransitionError) as exc_info:
            await engine.apply_transition(session, report.id, "approve", actor=ADMIN)

    error = exc_info.value
    assert error.current == "draft"
    assert error.target == "published"
    assert error.message == (
        "Cannot approve report: invalid transition from 'draft' to 'published' (allowed from: pending_review)"
    )


@pytest.mark.asyncio
async def test_unknown_action_and_missing_rows(database, fake_redis) -> None:
    engine = _report_engine(fake_redis)
    async with SessionLocal() as session:
        with pytest.raises(BadRequestError):
            await engine.apply_transition(session, 1, "archive", actor=ADMIN)
        with pytest.raises(NotFoundError, match="Report not found"):
            await engine.apply_transition(session, 999, "approve", actor=ADMIN)


@pytest.mark.asyncio
async def test_post_review_actions_record_reviewer(database, fake_redis) -> None:
    category = await create_category()
    author = await create_author()
    engine = WorkflowEngine(BLOG_KIND, cache=Cache(redis=fake_redis))
    values = {
        "title": "Payer Trends",
        "excerpt": "Payers tighten coverage rules for specialty drugs across major markets.",
        "content": "Long-form analysis of payer behaviour.",
        "category_id": category.id,
        "author_id": author.id,
    }
    async with SessionLocal() as session:
        blog = await engine.create(session, values, actor=EDITOR)
        await engine.apply_transition(session, blog.id, "submit_review", actor=EDITOR)
        blog = await engine.apply_transition(session, blog.id, "reject", actor=ADMIN)
        assert blog.status == "draft"
        assert blog.reviewed_by == ADMIN.user_id
        assert blog.reviewed_at is not None

        # Blog slugs follow title edits.
        blog = await engine.update(session, blog.id, {"title": "Payer Trends 2026"}, actor=EDITOR)
        assert blog.slug == "payer-trends-2026"


@pytest.mark.asyncio
async def test_schedule_requires_schedulable_status(database, fake_redis) -> None:
    category = await create_category()
    clock = _Clock()
    engine = _report_engine(fake_redis, clock)
    async with SessionLocal() as session:
        report = await engine.create(session, _report_values(category.id), actor=EDITOR)
        report = await engine.schedule(session, report.id, clock.now + timedelta(hours=1), actor=EDITOR)
        assert report.scheduled_publish_enabled is True

        report = await engine.cancel_schedule(session, report.id, actor=EDITOR)
        report = await engine.cancel_schedule(session, report.id, actor=EDITOR)
        assert report.scheduled_publish_enabled is False

        published = await engine.create(
            session, _report_values(category.id, title="Live Report", status="published"), actor=EDITOR
        )
        with pytest.raises(InvalidTransitionError):
            await engine.schedule(session, published.id, clock.now + timedelta(hours=1), actor=EDITOR)


@pytest.mark.asyncio
async def test_publish_due_promotes_only_due_rows_once(database, fake_redis) -> None:
    category = await create_category()
    clock = _Clock()
    engine = _report_engine(fake_redis, clock)
    async with SessionLocal() as session:
        due = await engine.create(session, _report_values(category.id, title="Due Report"), actor=EDITOR)
        later = await engine.create(session, _report_values(category.id, title="Later Report"), actor=EDITOR)
        await engine.schedule(session, due.id, clock.now + timedelta(minutes=5), actor=EDITOR)
        await engine.schedule(session, later.id, clock.now + timedelta(days=1), actor=EDITOR)
        due_id, later_id = due.id, later.id

    await Cache(redis=fake_redis).set(REPORT_KIND.id_key(due_id), {"id": due_id}, 60)
    await Cache(redis=fake_redis).set("reports:list:1:20", [], 60)

    async with SessionLocal() as session:
        assert await engine.publish_due(session, now=clock.now + timedelta(minutes=10)) == 1
    async with SessionLocal() as session:
        assert await engine.publish_due(session, now=clock.now + timedelta(minutes=10)) == 0

    async with SessionLocal() as session:
        rows = {row.id: row for row in (await session.execute(select(Report))).scalars()}
        assert rows[due_id].status == "published"
        assert rows[due_id].scheduled_publish_enabled is False
        assert rows[later_id].status == "draft"
        # Scheduled promotions do not capture versions.
        assert await reports_repo.list_versions(session, report_id=due_id) == []

    assert fake_redis.keys_matching("report:id:*") == []
    assert fake_redis.keys_matching("reports:list:*") == []


@pytest.mark.asyncio
async def test_soft_delete_hides_row_and_restore_returns_it(database, fake_redis) -> None:
    category = await create_category()
    engine = _report_engine(fake_redis)
    async with SessionLocal() as session:
        report = await engine.create(session, _report_values(category.id), actor=EDITOR)
        await engine.soft_delete(session, report.id, actor=ADMIN)
        with pytest.raises(NotFoundError):
            await engine.load(session, report.id)

        restored = await engine.restore(session, report.id, actor=ADMIN)
        assert restored.deleted_at is None
        assert restored.status == "draft"
        with pytest.raises(BadRequestError):
            await engine.restore(session, report.id, actor=ADMIN)


@pytest.mark.asyncio
async def test_mutations_purge_cache_and_enqueue_audit(database, fake_redis, audit_sink) -> None:
    category = await create_category()
    engine = _report_engine(fake_redis)
    cache = Cache(redis=fake_redis)
    async with SessionLocal() as session:
        report = await engine.create(session, _report_values(category.id), actor=EDITOR)
        await cache.set(REPORT_KIND.id_key(report.id), {"id": report.id}, 60)
        await cache.set(REPORT_KIND.slug_key(report.slug), {"id": report.id}, 60)
        await cache.set("reports:category:oncology:1:20", [], 60)
        await cache.set("blogs:list:1:20", [], 60)

        await engine.update(session, report.id, {"slug": "renamed-report"}, actor=EDITOR)

    assert fake_redis.keys_matching("report:*") == []
    assert fake_redis.keys_matching("reports:*") == []
    # Other families keep their entries.
    assert fake_redis.keys_matching("blogs:*") == ["blogs:list:1:20"]

    await audit_sink.flush()
    async with SessionLocal() as session:
        logs = (await session.execute(select(AuditLog).order_by(AuditLog.id))).scalars().all()
    assert [log.action for log in logs] == ["report.create", "report.update"]
    assert logs[1].changes["slug"] == {"old": "cardiology-devices-market", "new": "renamed-report"}
    assert logs[1].user_id == EDITOR.user_id


@pytest.mark.asyncio
async def test_schedule_accepts_a_date_already_due(database, fake_redis) -> None:
    category = await create_category()
    clock = _Clock()
    engine = _report_engine(fake_redis, clock)
    async with SessionLocal() as session:
        report = await engine.create(session, _report_values(category.id), actor=EDITOR)
        report = await engine.schedule(session, report.id, clock.now - timedelta(minutes=5), actor=EDITOR)
        assert report.scheduled_publish_enabled is True
        report_id = report.id

    async with SessionLocal() as session:
        assert await engine.publish_due(session) == 1
    async with SessionLocal() as session:
        row = (await session.execute(select(Report).where(Report.id == report_id))).scalar_one()
        assert row.status == "published"
