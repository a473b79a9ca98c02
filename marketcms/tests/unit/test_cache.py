from __future__ import annotations

import asyncio

import pytest

from marketcms.services.cache import MISS, Cache
from marketcms.tests.utils.fake_redis import FakeRedis


@pytest.mark.asyncio
async def test_set_get_round_trips_json_values() -> None:
    cache = Cache(redis=FakeRedis())
    assert await cache.set("report:id:1", {"id": 1, "tags": ["a", "b"]}, 60)
    assert await cache.get("report:id:1") == {"id": 1, "tags": ["a", "b"]}
    assert await cache.get("report:id:2") is MISS


@pytest.mark.asyncio
async def test_entries_expire_after_ttl() -> None:
    fake = FakeRedis()
    cache = Cache(redis=fake)
    await cache.set("k", 1, 10)
    fake.advance(9)
    assert await cache.get("k") == 1
    fake.advance(2)
    assert await cache.get("k") is MISS


@pytest.mark.asyncio
async def test_store_outage_degrades_to_miss_and_false() -> None:
    fake = FakeRedis()
    cache = Cache(redis=fake)
    fake.fail = True
    assert await cache.get("k") is MISS
    assert await cache.set("k", 1, 10) is False
    assert await cache.exists("k") is False
    assert await cache.delete_pattern("reports:*") == 0
    assert await cache.incr("counter") is None
    assert await cache.ping() is False


@pytest.mark.asyncio
async def test_delete_pattern_only_removes_matching_keys() -> None:
    fake = FakeRedis()
    cache = Cache(redis=fake)
    await cache.set("reports:list:1:20", [], 60)
    await cache.set("reports:list:2:20", [], 60)
    await cache.set("reports:category:oncology:1:20", [], 60)
    await cache.set("session:1:abc", "t", 60)

    assert await cache.delete_pattern("reports:list:*") == 2
    assert fake.keys_matching("*") == ["reports:category:oncology:1:20", "session:1:abc"]


@pytest.mark.asyncio
async def test_get_or_compute_collapses_concurrent_misses() -> None:
    cache = Cache(redis=FakeRedis())
    calls = 0
    release = asyncio.Event()

    async def loader() -> dict:
        nonlocal calls
        calls += 1
        await release.wait()
        return {"total": 7}

    tasks = [asyncio.create_task(cache.get_or_compute("reports:total", 60, loader)) for _ in range(5)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*tasks)

    assert calls == 1
    assert results == [{"total": 7}] * 5
    assert await cache.get("reports:total") == {"total": 7}


@pytest.mark.asyncio
async def test_get_or_compute_serves_hits_without_loader() -> None:
    cache = Cache(redis=FakeRedis())
    await cache.set("categories:list:1:20", {"items": [], "total": 0}, 60)

    async def loader() -> dict:
        raise AssertionError("loader should not run on a hit")

    assert await cache.get_or_compute("categories:list:1:20", 60, loader) == {"items": [], "total": 0}


@pytest.mark.asyncio
async def test_loader_failure_reaches_waiters_and_is_not_cached() -> None:
    cache = Cache(redis=FakeRedis())
    release = asyncio.Event()

    async def failing_loader() -> dict:
        await release.wait()
        raise RuntimeError("database down")

    first = asyncio.create_task(cache.get_or_compute("k", 60, failing_loader))
    second = asyncio.create_task(cache.get_or_compute("k", 60, failing_loader))
    await asyncio.sleep(0)
    release.set()
    outcomes = await asyncio.gather(first, second, return_exceptions=True)

    assert all(isinstance(outcome, RuntimeError) for outcome in outcomes)
    assert await cache.get("k") is MISS

    async def loader() -> int:
        return 3

    # The failed key is retried on the next call.
    assert await cache.get_or_compute("k", 60, loader) == 3


@pytest.mark.asyncio
async def test_get_or_compute_still_answers_when_store_is_down() -> None:
    fake = FakeRedis()
    fake.fail = True
    cache = Cache(redis=fake)

    async def loader() -> list[int]:
        return [1, 2]

    assert await cache.get_or_compute("k", 60, loader) == [1, 2]


@pytest.mark.asyncio
async def test_cancelled_first_caller_does_not_fail_waiters() -> None:
    cache = Cache(redis=FakeRedis())
    started = asyncio.Event()
    release = asyncio.Event()

    async def loader() -> int:
        started.set()
        await release.wait()
        return 42

    first = asyncio.create_task(cache.get_or_compute("reports:total", 60, loader))
    await started.wait()
    second = asyncio.create_task(cache.get_or_compute("reports:total", 60, loader))
    await asyncio.sleep(0)

    # The client behind the first request disconnects mid-load.
    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first

    release.set()
    assert await second == 42
    assert await cache.get("reports:total") == 42
