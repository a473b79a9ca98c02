from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from marketcms.core.config import get_settings


settings = get_settings()
_database_url = settings.sqlalchemy_database_url
_engine_kwargs: dict[str, Any] = {"pool_pre_ping": True}
# Bound the asyncpg pool: 10 idle, 100 open, hourly recycle.
if not _database_url.startswith("sqlite"):
    _engine_kwargs["pool_size"] = max(1, int(settings.db_pool_size))
    _engine_kwargs["max_overflow"] = max(0, int(settings.db_max_overflow))
    _engine_kwargs["pool_timeout"] = 30
    _engine_kwargs["pool_recycle"] = int(settings.db_pool_recycle_s)
    if settings.db_sslmode and settings.db_sslmode != "disable" and not settings.database_url:
        _engine_kwargs["connect_args"] = {"ssl": settings.db_sslmode}
engine = create_async_engine(_database_url, **_engine_kwargs)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    async with SessionLocal() as session:
        yield session


def dialect_name(session: AsyncSession) -> str:
    # Some JSON predicates differ between Postgres and SQLite.
    return session.get_bind().dialect.name
