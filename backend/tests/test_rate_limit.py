"""Tests for per-IP rate limiting and the request body guard."""

from __future__ import annotations

import pytest

from bookworm.core import rate_limit
from bookworm.core.rate_limit import InMemoryRateLimiter, RateLimit, get_rate_limiter

API = "/api/v1"


class TestInMemoryRateLimiter:
    @pytest.mark.asyncio
    async def test_blocks_after_limit(self) -> None:
        limiter = InMemoryRateLimiter()
        limit = RateLimit(max_requests=2, window_seconds=60)

        first = await limiter.hit("ip:1", limit)
        second = await limiter.hit("ip:1", limit)
        third = await limiter.hit("ip:1", limit)

        assert (first.allowed, first.remaining) == (True, 1)
        assert (second.allowed, second.remaining) == (True, 0)
        assert third.allowed is False
        assert 1 <= third.retry_after <= 60

    @pytest.mark.asyncio
    async def test_keys_are_independent(self) -> None:
        limiter = InMemoryRateLimiter()
        limit = RateLimit(max_requests=1, window_seconds=60)

        assert (await limiter.hit("a", limit)).allowed is True
        assert (await limiter.hit("b", limit)).allowed is True
        assert (await limiter.hit("a", limit)).allowed is False

    @pytest.mark.asyncio
    async def test_reset_clears_window(self) -> None:
        limiter = InMemoryRateLimiter()
        limit = RateLimit(max_requests=1, window_seconds=60)

        await limiter.hit("a", limit)
        limiter.reset("a")

        assert (await limiter.hit("a", limit)).allowed is True

    def test_in_memory_store_without_redis(self) -> None:
        assert isinstance(get_rate_limiter(), InMemoryRateLimiter)


class TestRateLimitMiddleware:
    @pytest.mark.asyncio
    async def test_match_bucket_returns_429(self, client, monkeypatch) -> None:
        monkeypatch.setitem(rate_limit.LIMITS, "match", RateLimit(max_requests=2, window_seconds=60))

        statuses = [(await client.get(f"{API}/matches")).status_code for _ in range(3)]

        assert statuses == [401, 401, 429]

    @pytest.mark.asyncio
    async def test_retry_after_header(self, client, monkeypatch) -> None:
        monkeypatch.setitem(rate_limit.LIMITS, "match", RateLimit(max_requests=1, window_seconds=60))

        await client.get(f"{API}/matches")
        blocked = await client.get(f"{API}/matches")

        assert blocked.status_code == 429
        assert int(blocked.headers["retry-after"]) >= 1

    @pytest.mark.asyncio
    async def test_buckets_are_separate(self, client, monkeypatch) -> None:
        """Exhausting the match bucket leaves webhooks and other routes alone."""
        monkeypatch.setitem(rate_limit.LIMITS, "match", RateLimit(max_requests=1, window_seconds=60))

        await client.get(f"{API}/matches")
        assert (await client.get(f"{API}/matches")).status_code == 429
        webhook = await client.post(f"{API}/webhooks/daily", content=b"{}")
        assert webhook.status_code == 401
        cron = await client.get(f"{API}/cron/expire-matches")
        assert cron.status_code == 401

    @pytest.mark.asyncio
    async def test_health_is_not_limited(self, client, monkeypatch) -> None:
        monkeypatch.setitem(rate_limit.LIMITS, "api", RateLimit(max_requests=1, window_seconds=60))

        statuses = [(await client.get("/health")).status_code for _ in range(3)]

        assert statuses == [200, 200, 200]

    @pytest.mark.asyncio
    async def test_oversized_body(self, client) -> None:
        resp = await client.post(f"{API}/webhooks/daily", content=b"x" * (1_048_576 + 1))
        assert resp.status_code == 413
