from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Protocol

import redis.asyncio as redis

from core.config import RedisConfig


class CacheBackend(Protocol):
    async def get(self, key: str) -> Any: ...
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None: ...
    async def set_if_absent(self, key: str, value: Any, ttl: int | None = None) -> bool: ...
    async def delete(self, key: str) -> bool: ...
    async def incr(self, key: str, ttl: int | None = None) -> int: ...
    async def close(self) -> None: ...


@dataclass(slots=True)
class _MemoryValue:
    value: Any
    expires_at: float | None


class MemoryCache(CacheBackend):
    """Process-local TTL cache; every primitive runs under one lock so each call is atomic."""

    def __init__(self, clock: Any = time.monotonic) -> None:
        self._store: dict[str, _MemoryValue] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _is_expired(self, entry: _MemoryValue) -> bool:
        if entry.expires_at is None:
            return False
        return self._clock() >= entry.expires_at

    def _live(self, key: str) -> _MemoryValue | None:
        entry = self._store.get(key)
        if entry and self._is_expired(entry):
            self._store.pop(key, None)
            return None
        return entry

    def _expiry(self, ttl: int | None) -> float | None:
        return self._clock() + ttl if ttl else None

    async def get(self, key: str) -> Any:
        async with self._lock:
            entry = self._live(key)
            return entry.value if entry else None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        async with self._lock:
            self._store[key] = _MemoryValue(value=str(value), expires_at=self._expiry(ttl))

    async def set_if_absent(self, key: str, value: Any, ttl: int | None = None) -> bool:
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._store[key] = _MemoryValue(value=str(value), expires_at=self._expiry(ttl))
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._store.pop(key, None) is not None

    async def incr(self, key: str, ttl: int | None = None) -> int:
        async with self._lock:
            entry = self._live(key)
            if not entry:
                self._store[key] = _MemoryValue(value=1, expires_at=self._expiry(ttl))
                return 1
            new_val = int(entry.value) + 1
            self._store[key] = _MemoryValue(value=new_val, expires_at=entry.expires_at)
            return new_val

    async def close(self) -> None:
        self._store.clear()


class RedisCache(CacheBackend):
    def __init__(self, url: str) -> None:
        self._client = redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> Any:
        return await self._client.get(key)

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        if ttl:
            await self._client.set(key, value, ex=ttl)
        else:
            await self._client.set(key, value)

    async def set_if_absent(self, key: str, value: Any, ttl: int | None = None) -> bool:
        result = await self._client.set(key, value, ex=ttl or None, nx=True)
        return bool(result)

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(key))

    async def incr(self, key: str, ttl: int | None = None) -> int:
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            if ttl:
                pipe.expire(key, ttl)
            result = await pipe.execute()
        return int(result[0])

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()


async def build_cache(config: RedisConfig) -> CacheBackend:
    if config.enabled:
        cache = RedisCache(config.url)
        await cache.ping()
        return cache
    return MemoryCache()
