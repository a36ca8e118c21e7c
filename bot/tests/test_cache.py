from __future__ import annotations

import asyncio

import pytest

from core.config import RedisConfig
from services.cache import MemoryCache, build_cache


class _Ticker:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_values_expire_after_ttl() -> None:
    ticker = _Ticker()
    cache = MemoryCache(clock=ticker)
    await cache.set("priority_ping:t-1", "urgent", ttl=86_400)
    await cache.set("forever", "x")

    ticker.now += 86_399
    assert await cache.get("priority_ping:t-1") == "urgent"
    ticker.now += 1
    assert await cache.get("priority_ping:t-1") is None
    assert await cache.get("forever") == "x"


@pytest.mark.asyncio
async def test_set_overwrites_value_and_ttl() -> None:
    ticker = _Ticker()
    cache = MemoryCache(clock=ticker)
    await cache.set("k", "low", ttl=10)
    ticker.now += 5
    await cache.set("k", "high", ttl=10)
    ticker.now += 9
    assert await cache.get("k") == "high"


@pytest.mark.asyncio
async def test_set_if_absent_is_exclusive_until_expiry() -> None:
    ticker = _Ticker()
    cache = MemoryCache(clock=ticker)

    results = await asyncio.gather(*(cache.set_if_absent("lock", "1", ttl=600) for _ in range(5)))
    assert results.count(True) == 1

    ticker.now += 600
    assert await cache.set_if_absent("lock", "2", ttl=600) is True
    assert await cache.get("lock") == "2"


@pytest.mark.asyncio
async def test_delete_reports_whether_key_existed() -> None:
    cache = MemoryCache()
    await cache.set("k", 1)
    assert await cache.delete("k") is True
    assert await cache.delete("k") is False


@pytest.mark.asyncio
async def test_build_cache_without_redis_uses_memory() -> None:
    cache = await build_cache(RedisConfig(enabled=False))
    assert isinstance(cache, MemoryCache)
    await cache.close()
