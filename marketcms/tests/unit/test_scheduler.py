from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from marketcms.domain.models import Blog, Report
from marketcms.persistence.db import SessionLocal
from marketcms.services.audit import AuditActor
from marketcms.services.cache import Cache
from marketcms.services.workflow import BLOG_KIND, REPORT_KIND, WorkflowEngine
from marketcms.tests.utils.content import create_author, create_category
from marketcms.workers.scheduler import PublishScheduler


START = datetime(2026, 5, 4, 8, 0, tzinfo=timezone.utc)
ACTOR = AuditActor(user_id=2, email="editor@example.com", role="editor")


async def _seed_scheduled(fake_redis) -> tuple[int, int]:
    category = await create_category()
    author = await create_author()
    cache = Cache(redis=fake_redis)
    reports = WorkflowEngine(REPORT_KIND, cache=cache, time_provider=lambda: START)
    blogs = WorkflowEngine(BLOG_KIND, cache=cache, time_provider=lambda: START)
    async with SessionLocal() as session:
        report = await reports.create(
            session,
            {"title": "Vaccines Outlook", "summary": "Vaccine demand by region and payer.", "category_id": category.id},
            actor=ACTOR,
        )
        blog = await blogs.create(
            session,
            {
                "title": "Vaccine Supply Notes",
                "excerpt": "Supply chains for vaccines remain tight heading into the new season.",
                "content": "Details on fill-finish capacity.",
                "category_id": category.id,
                "author_id": author.id,
            },
            actor=ACTOR,
        )
        await reports.schedule(session, report.id, START + timedelta(minutes=1), actor=ACTOR)
        await blogs.schedule(session, blog.id, START + timedelta(hours=2), actor=ACTOR)
        return report.id, blog.id


@pytest.mark.asyncio
async def test_tick_promotes_due_rows_per_kind(database, fake_redis) -> None:
    report_id, blog_id = await _seed_scheduled(fake_redis)
    clock = {"now": START + timedelta(minutes=5)}
    scheduler = PublishScheduler(time_provider=lambda: clock["now"])

    assert await scheduler.tick() == {"report": 1, "blog": 0, "press_release": 0}
    assert await scheduler.tick() == {"report": 0, "blog": 0, "press_release": 0}

    clock["now"] = START + timedelta(hours=3)
    assert await scheduler.tick() == {"report": 0, "blog": 1, "press_release": 0}

    async with SessionLocal() as session:
        report = await session.get(Report, report_id)
        blog = await session.get(Blog, blog_id)
    assert report.status == "published"
    assert blog.status == "published"
    assert not blog.scheduled_publish_enabled


@pytest.mark.asyncio
async def test_cancelled_schedule_is_not_promoted(database, fake_redis) -> None:
    report_id, _ = await _seed_scheduled(fake_redis)
    engine = WorkflowEngine(REPORT_KIND, cache=Cache(redis=fake_redis), time_provider=lambda: START)
    async with SessionLocal() as session:
        await engine.cancel_schedule(session, report_id, actor=ACTOR)

    scheduler = PublishScheduler(engines=[engine], time_provider=lambda: START + timedelta(days=1))
    assert await scheduler.tick() == {"report": 0}
    async with SessionLocal() as session:
        statuses = (await session.execute(select(Report.status))).scalars().all()
    assert statuses == ["draft"]


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent(database) -> None:
    scheduler = PublishScheduler(interval_s=3600, time_provider=lambda: START)
    scheduler.start()
    scheduler.start()
    await asyncio.sleep(0)
    assert scheduler.running
    await scheduler.stop()
    await scheduler.stop()
    assert not scheduler.running
