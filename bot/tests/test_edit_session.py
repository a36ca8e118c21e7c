from __future__ import annotations

import pytest

from core.errors import EditSessionActiveError, ValidationError
from services.cache import MemoryCache
from services.edit_session import EditSessionLock
from utils.constants import edit_session_key


class _Ticker:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_second_acquire_is_rejected_while_session_is_open() -> None:
    lock = EditSessionLock(MemoryCache(), ttl_seconds=600)
    await lock.acquire(7)

    with pytest.raises(EditSessionActiveError):
        await lock.acquire(7)
    # Sessions are per operator.
    await lock.acquire(8)


@pytest.mark.asyncio
async def test_release_allows_a_new_session() -> None:
    cache = MemoryCache()
    lock = EditSessionLock(cache, ttl_seconds=600)
    await lock.acquire(7)
    assert await cache.get(edit_session_key(7)) == "7"

    await lock.release(7)
    assert await lock.is_active(7) is False
    await lock.acquire(7)


@pytest.mark.asyncio
async def test_session_expires_on_its_own() -> None:
    ticker = _Ticker()
    lock = EditSessionLock(MemoryCache(clock=ticker), ttl_seconds=600)
    await lock.acquire(7)
    await lock.require_active(7)

    ticker.now = 600.0
    with pytest.raises(ValidationError):
        await lock.require_active(7)
    await lock.acquire(7)


@pytest.mark.asyncio
async def test_release_without_session_is_harmless() -> None:
    lock = EditSessionLock(MemoryCache())
    await lock.release(99)
    assert await lock.is_active(99) is False
