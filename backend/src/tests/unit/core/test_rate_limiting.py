"""
Unit tests for rate limiting.

Tests cover:
- RateLimitResult headers
- InMemoryFixedWindowLimiter admission, window rollover and pruning
- RedisFixedWindowLimiter against a fake pipeline, including fail-open
- RateLimitService enable/disable and enforcement
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from toolgate.core.exceptions import RateLimitExceededError
from toolgate.core.rate_limiting import (
    InMemoryFixedWindowLimiter,
    RateLimitResult,
    RateLimitService,
    RedisFixedWindowLimiter,
)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePipeline:
    """Minimal stand-in for a redis.asyncio pipeline over a shared dict."""

    def __init__(self, store: dict, fail: bool = False):
        self._store = store
        self._fail = fail
        self._ops: list[tuple[str, str]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def incr(self, key):
        self._ops.append(("incr", key))
        return self

    def expire(self, key, seconds):
        self._ops.append(("expire", key))
        return self

    async def execute(self):
        if self._fail:
            raise ConnectionError("redis down")
        results = []
        for op, key in self._ops:
            if op == "incr":
                self._store[key] = self._store.get(key, 0) + 1
                results.append(self._store[key])
            else:
                results.append(True)
        return results


def _make_redis(store: dict | None = None, fail: bool = False) -> MagicMock:
    store = {} if store is None else store
    client = MagicMock()
    client.pipeline.side_effect = lambda transaction=True: FakePipeline(store, fail=fail)
    client.aclose = AsyncMock()
    return client


# ---------------------------------------------------------------------------
# RateLimitResult
# ---------------------------------------------------------------------------


class TestRateLimitResult:
    def test_to_headers_allowed(self):
        headers = RateLimitResult(allowed=True, remaining=5, limit=10, reset_seconds=30).to_headers()
        assert headers == {"X-RateLimit-Limit": "10", "X-RateLimit-Remaining": "5", "X-RateLimit-Reset": "30"}

    def test_to_headers_denied_includes_retry_after(self):
        headers = RateLimitResult(allowed=False, retry_after_seconds=7, limit=10, reset_seconds=7).to_headers()
        assert headers["Retry-After"] == "7"
        assert headers["X-RateLimit-Remaining"] == "0"


# ---------------------------------------------------------------------------
# In-memory limiter
# ---------------------------------------------------------------------------


class TestInMemoryFixedWindowLimiter:
    def test_admits_exactly_limit_requests_per_window(self):
        limiter = InMemoryFixedWindowLimiter(limit=3, window_seconds=60, clock=FakeClock())
        results = [limiter.hit("api:k|user:1") for _ in range(4)]
        assert [r.allowed for r in results] == [True, True, True, False]
        assert results[2].remaining == 0
        assert results[3].retry_after_seconds == 60

    def test_rejected_requests_are_not_counted(self):
        clock = FakeClock()
        limiter = InMemoryFixedWindowLimiter(limit=1, window_seconds=10, clock=clock)
        assert limiter.admit("k")
        for _ in range(5):
            assert not limiter.admit("k")
        clock.advance(10)
        assert limiter.admit("k")

    def test_window_rollover_resets_count(self):
        clock = FakeClock()
        limiter = InMemoryFixedWindowLimiter(limit=2, window_seconds=60, clock=clock)
        assert limiter.admit("k") and limiter.admit("k")
        assert not limiter.admit("k")
        clock.advance(59.5)
        assert not limiter.admit("k")
        clock.advance(0.5)
        assert limiter.admit("k")

    def test_keys_are_independent(self):
        limiter = InMemoryFixedWindowLimiter(limit=1, window_seconds=60, clock=FakeClock())
        assert limiter.admit("api:a|user:1")
        assert limiter.admit("api:a|user:2")
        assert limiter.admit("api:b|user:1")
        assert not limiter.admit("api:a|user:1")

    def test_stale_buckets_are_pruned(self):
        clock = FakeClock()
        limiter = InMemoryFixedWindowLimiter(limit=5, window_seconds=1, shards=1, prune_threshold=10, clock=clock)
        for i in range(10):
            limiter.hit(f"k{i}")
        assert limiter.bucket_count() == 10
        clock.advance(2)
        limiter.hit("fresh")
        assert limiter.bucket_count() == 1

    @pytest.mark.asyncio
    async def test_concurrent_checks_never_exceed_limit(self):
        limiter = InMemoryFixedWindowLimiter(limit=25, window_seconds=60, clock=FakeClock())
        results = await asyncio.gather(*(limiter.check("shared") for _ in range(100)))
        assert sum(r.allowed for r in results) == 25


# ---------------------------------------------------------------------------
# Redis limiter
# ---------------------------------------------------------------------------


class TestRedisFixedWindowLimiter:
    @pytest.mark.asyncio
    async def test_counts_within_aligned_window(self):
        clock = FakeClock(now=120.0)
        limiter = RedisFixedWindowLimiter(_make_redis(), limit=2, window_seconds=60, clock=clock)
        assert (await limiter.check("k")).allowed
        assert (await limiter.check("k")).allowed
        denied = await limiter.check("k")
        assert not denied.allowed
        assert denied.retry_after_seconds == 60

        clock.advance(60)
        assert (await limiter.check("k")).allowed

    @pytest.mark.asyncio
    async def test_processes_share_counters(self):
        store: dict = {}
        clock = FakeClock(now=0.0)
        first = RedisFixedWindowLimiter(_make_redis(store), limit=1, window_seconds=60, clock=clock)
        second = RedisFixedWindowLimiter(_make_redis(store), limit=1, window_seconds=60, clock=clock)
        assert (await first.check("k")).allowed
        assert not (await second.check("k")).allowed

    @pytest.mark.asyncio
    async def test_fails_open_when_redis_errors(self):
        limiter = RedisFixedWindowLimiter(_make_redis(fail=True), limit=1, window_seconds=60)
        assert (await limiter.check("k")).allowed
        assert (await limiter.check("k")).allowed

    @pytest.mark.asyncio
    async def test_close_closes_client(self):
        client = _make_redis()
        await RedisFixedWindowLimiter(client, limit=1, window_seconds=60).close()
        client.aclose.assert_awaited_once()


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TestRateLimitService:
    @pytest.mark.asyncio
    async def test_disabled_service_admits_everything(self, make_settings):
        service = RateLimitService(make_settings(rate_limit_enabled=False, rate_limit_requests=1))
        for _ in range(5):
            assert (await service.enforce("k")).allowed

    @pytest.mark.asyncio
    async def test_enforce_raises_with_headers(self, make_settings):
        service = RateLimitService(make_settings(rate_limit_enabled=True, rate_limit_requests=2))
        await service.enforce("stdio|user:1")
        await service.enforce("stdio|user:1")
        with pytest.raises(RateLimitExceededError) as exc_info:
            await service.enforce("stdio|user:1")
        assert exc_info.value.rpc_code == -32029
        assert "Retry-After" in exc_info.value.headers
        assert exc_info.value.headers["X-RateLimit-Limit"] == "2"

    def test_uses_redis_when_url_configured(self, make_settings):
        service = RateLimitService(make_settings(rate_limit_enabled=True, redis_url="redis://localhost:6379/0"))
        assert isinstance(service._limiter, RedisFixedWindowLimiter)

    def test_uses_memory_without_redis(self, make_settings):
        service = RateLimitService(make_settings(rate_limit_enabled=True))
        assert isinstance(service._limiter, InMemoryFixedWindowLimiter)
