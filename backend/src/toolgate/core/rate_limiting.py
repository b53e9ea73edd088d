"""Rate limiting for Toolgate.

Fixed-window request counting keyed by caller identity. The in-memory limiter
keeps one bucket per key behind striped locks, so unrelated keys never contend
on a single lock. When a Redis URL is configured, counters live in Redis and
are shared by every process.
"""

from __future__ import annotations

import math
import threading
import time
import zlib
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from .config import Settings
from .exceptions import RateLimitExceededError
from .logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit check."""

    allowed: bool
    retry_after_seconds: int = 0
    remaining: int = 0
    limit: int = 0
    reset_seconds: int = 0

    def to_headers(self) -> dict[str, str]:
        """Generate standard rate limit response headers."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(max(0, self.remaining)),
            "X-RateLimit-Reset": str(self.reset_seconds),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


@dataclass
class RateLimitBucket:
    """Request count for one key within its current window."""

    key: str
    window_start: float
    count: int = 0


class RateLimiter(Protocol):
    """Protocol for rate limiters."""

    async def check(self, key: str) -> RateLimitResult:
        """Count one request for ``key`` and report whether it is admitted."""
        ...


class InMemoryFixedWindowLimiter:
    """Process-local fixed-window limiter.

    Buckets are spread over ``shards`` stripes, each with its own lock. A
    bucket whose window has elapsed is reset on its next access; stale buckets
    are pruned from a stripe once it grows past ``prune_threshold`` entries.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        shards: int = 64,
        prune_threshold: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = max(1, int(limit))
        self.window_seconds = float(window_seconds)
        self.prune_threshold = prune_threshold
        self._clock = clock
        self._locks = [threading.Lock() for _ in range(max(1, shards))]
        self._buckets: list[dict[str, RateLimitBucket]] = [{} for _ in range(max(1, shards))]

    def _shard(self, key: str) -> int:
        return zlib.crc32(key.encode("utf-8")) % len(self._locks)

    def _prune(self, buckets: dict[str, RateLimitBucket], now: float) -> None:
        expired = [k for k, b in buckets.items() if now - b.window_start >= self.window_seconds]
        for k in expired:
            del buckets[k]

    def hit(self, key: str) -> RateLimitResult:
        """Count a request for ``key``. Rejected requests are not counted."""
        shard = self._shard(key)
        now = self._clock()
        with self._locks[shard]:
            buckets = self._buckets[shard]
            bucket = buckets.get(key)
            if bucket is None or now - bucket.window_start >= self.window_seconds:
                if bucket is None and len(buckets) >= self.prune_threshold:
                    self._prune(buckets, now)
                bucket = RateLimitBucket(key=key, window_start=now)
                buckets[key] = bucket

            reset = max(1, math.ceil(bucket.window_start + self.window_seconds - now))
            if bucket.count >= self.limit:
                return RateLimitResult(
                    allowed=False,
                    retry_after_seconds=reset,
                    remaining=0,
                    limit=self.limit,
                    reset_seconds=reset,
                )
            bucket.count += 1
            return RateLimitResult(
                allowed=True,
                remaining=self.limit - bucket.count,
                limit=self.limit,
                reset_seconds=reset,
            )

    def admit(self, key: str) -> bool:
        """Return True if the request for ``key`` fits in the current window."""
        return self.hit(key).allowed

    async def check(self, key: str) -> RateLimitResult:
        return self.hit(key)

    def bucket_count(self) -> int:
        return sum(len(b) for b in self._buckets)


class RedisFixedWindowLimiter:
    """Fixed-window limiter backed by Redis ``INCR`` + ``EXPIRE``.

    Windows are aligned to wall-clock multiples of the window length so that
    every process agrees on the current window key.
    """

    def __init__(
        self,
        client: Any,
        limit: int,
        window_seconds: int,
        namespace: str = "toolgate:rl",
        clock: Callable[[], float] = time.time,
    ):
        self._redis = client
        self.limit = max(1, int(limit))
        self.window_seconds = max(1, int(window_seconds))
        self.namespace = namespace
        self._clock = clock

    async def check(self, key: str) -> RateLimitResult:
        now = self._clock()
        window = int(now) // self.window_seconds
        window_key = f"{self.namespace}:{key}:{window}"
        reset = max(1, (window + 1) * self.window_seconds - int(now))

        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(window_key)
                pipe.expire(window_key, self.window_seconds)
                current, _ = await pipe.execute()
        except Exception as e:
            logger.warning("Redis rate limiter failure; allowing request: %s", e)
            return RateLimitResult(allowed=True, remaining=self.limit, limit=self.limit)

        current = int(current)
        if current <= self.limit:
            return RateLimitResult(
                allowed=True,
                remaining=self.limit - current,
                limit=self.limit,
                reset_seconds=reset,
            )
        return RateLimitResult(
            allowed=False,
            retry_after_seconds=reset,
            remaining=0,
            limit=self.limit,
            reset_seconds=reset,
        )

    async def close(self) -> None:
        await self._redis.aclose()


class RateLimitService:
    """Admission gate used by every transport before dispatching a request."""

    def __init__(self, settings: Settings, limiter: RateLimiter | None = None):
        self._enabled = settings.rate_limit_enabled
        self._limiter = limiter or self._build_limiter(settings)

    @staticmethod
    def _build_limiter(settings: Settings) -> RateLimiter:
        if settings.redis_enabled:
            import redis.asyncio as redis

            client = redis.from_url(settings.redis_url, decode_responses=True)
            logger.info("Rate limiter using Redis backend")
            return RedisFixedWindowLimiter(client, settings.rate_limit_requests, settings.rate_limit_window_seconds)
        return InMemoryFixedWindowLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds)

    @property
    def enabled(self) -> bool:
        """Check if rate limiting is enabled."""
        return self._enabled

    async def check(self, key: str) -> RateLimitResult:
        if not self._enabled:
            return RateLimitResult(allowed=True)
        return await self._limiter.check(key)

    async def enforce(self, key: str) -> RateLimitResult:
        """Count a request for ``key`` or raise ``RateLimitExceededError``."""
        result = await self.check(key)
        if not result.allowed:
            logger.info("Rate limit exceeded", extra={"rate_limit_key": key, "retry_after": result.retry_after_seconds})
            raise RateLimitExceededError(result.retry_after_seconds, headers=result.to_headers())
        return result

    async def close(self) -> None:
        close = getattr(self._limiter, "close", None)
        if close is not None:
            await close()
