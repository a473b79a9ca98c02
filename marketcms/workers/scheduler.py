from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from arq import cron
from arq.connections import RedisSettings
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from marketcms.core.clock import utc_now
from marketcms.core.config import get_settings
from marketcms.persistence.db import SessionLocal
from marketcms.services.workflow import CONTENT_KINDS, WorkflowEngine


logger = logging.getLogger(__name__)


class PublishScheduler:
    """Promotes scheduled content whose publish date has arrived.

    Each tick issues one conditional bulk update per content kind, so a
    rerun (or a second replica) cannot publish a row twice. Scheduled
    promotions do not capture report versions.
    """

    def __init__(
        self,
        *,
        interval_s: float = 60.0,
        session_factory: Callable[[], AsyncSession] = SessionLocal,
        engines: list[WorkflowEngine] | None = None,
        time_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self._interval_s = interval_s
        self._session_factory = session_factory
        self._engines = engines or [WorkflowEngine(kind) for kind in CONTENT_KINDS]
        self._time_provider = time_provider or utc_now
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> dict[str, int]:
        now = self._time_provider()
        promoted: dict[str, int] = {}
        for engine in self._engines:
            kind = engine.kind.name
            async with self._session_factory() as session:
                try:
                    count = await engine.publish_due(session, now=now)
                except SQLAlchemyError:
                    # One failing kind must not block the others.
                    logger.exception("scheduled_publish_failed kind=%s", kind)
                    continue
            if count:
                logger.info("scheduled_publish_promoted kind=%s count=%s", kind, count)
            promoted[kind] = count
        return promoted

    async def run(self) -> None:
        logger.info("scheduler_started interval_s=%s", self._interval_s)
        try:
            while True:
                try:
                    await self.tick()
                except Exception:  # noqa: BLE001 - keep the ticker alive while surfacing failures in logs.
                    logger.exception("scheduler_tick_failed")
                await asyncio.sleep(self._interval_s)
        finally:
            logger.info("scheduler_stopped")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self.run(), name="publish-scheduler")

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        self._task = None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


async def publish_scheduled_content(ctx) -> dict[str, int]:
    # arq cron entry point; runs the same tick outside the API process.
    scheduler = ctx.get("scheduler") or PublishScheduler()
    return await scheduler.tick()


async def _startup(ctx) -> None:
    ctx["scheduler"] = PublishScheduler(interval_s=get_settings().scheduler_interval_s)


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.resolved_redis_url)
    functions = [publish_scheduled_content]
    cron_jobs = [cron(publish_scheduled_content, second={0}, run_at_startup=True)]
    on_startup = _startup
