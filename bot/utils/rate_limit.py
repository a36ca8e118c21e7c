from __future__ import annotations

from dataclasses import dataclass

from services.cache import CacheBackend


@dataclass(slots=True)
class RateLimitResult:
    allowed: bool
    current: int
    limit: int


class DistributedRateLimiter:
    """Fixed-window counter on top of the lease cache."""

    def __init__(self, cache: CacheBackend) -> None:
        self.cache = cache

    async def hit(self, key: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        if window_seconds <= 0:
            return RateLimitResult(allowed=True, current=0, limit=limit)
        current = await self.cache.incr(key, ttl=window_seconds)
        return RateLimitResult(
            allowed=current <= limit,
            current=current,
            limit=limit,
        )
