import math
import time
from collections import deque
from dataclasses import dataclass
from functools import lru_cache
from threading import Lock
from typing import Deque, Protocol

import redis.asyncio as redis
from fastapi import Request

from bookworm.core.config import get_settings

settings = get_settings()


@dataclass(frozen=True)
class RateLimit:
    max_requests: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: int = 0


LIMITS = {
    "api": RateLimit(settings.rate_limit_api_per_ip, settings.rate_limit_window_seconds),
    "match": RateLimit(settings.rate_limit_match_per_ip, settings.rate_limit_window_seconds),
    "webhook": RateLimit(settings.rate_limit_webhook_per_ip, settings.rate_limit_window_seconds),
}


class RateLimiter(Protocol):
    async def hit(self, key: str, limit: RateLimit) -> RateLimitResult: ...


class InMemoryRateLimiter:
    """Sliding-window limiter for a single process."""

    def __init__(self) -> None:
        self._hits: dict[str, Deque[float]] = {}
        self._lock = Lock()

    def _prune(self, hits: Deque[float], now: float, window_seconds: int) -> None:
        while hits and now - hits[0] > window_seconds:
            hits.popleft()

    async def hit(self, key: str, limit: RateLimit) -> RateLimitResult:
        if not key or limit.max_requests <= 0:
            return RateLimitResult(allowed=True, remaining=0)
        now = time.monotonic()
        with self._lock:
            hits = self._hits.setdefault(key, deque())
            self._prune(hits, now, limit.window_seconds)
            if len(hits) >= limit.max_requests:
                retry_after = math.ceil(limit.window_seconds - (now - hits[0]))
                return RateLimitResult(allowed=False, remaining=0, retry_after=max(retry_after, 1))
            hits.append(now)
            return RateLimitResult(allowed=True, remaining=limit.max_requests - len(hits))

    def reset(self, key: str) -> None:
        if not key:
            return
        with self._lock:
            self._hits.pop(key, None)


class RedisRateLimiter:
    """Fixed-window limiter shared by every instance through Redis."""

    def __init__(self, client: redis.Redis, prefix: str = "ratelimit") -> None:
        self._client = client
        self._prefix = prefix

    async def hit(self, key: str, limit: RateLimit) -> RateLimitResult:
        if not key or limit.max_requests <= 0:
            return RateLimitResult(allowed=True, remaining=0)
        window = int(time.time() // limit.window_seconds)
        redis_key = f"{self._prefix}:{key}:{window}"
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.incr(redis_key)
            pipe.expire(redis_key, limit.window_seconds)
            count, _ = await pipe.execute()
        if count > limit.max_requests:
            retry_after = limit.window_seconds - int(time.time()) % limit.window_seconds
            return RateLimitResult(allowed=False, remaining=0, retry_after=max(retry_after, 1))
        return RateLimitResult(allowed=True, remaining=limit.max_requests - count)


@lru_cache
def get_rate_limiter() -> RateLimiter:
    if settings.redis_url:
        return RedisRateLimiter(redis.from_url(settings.redis_url))
    return InMemoryRateLimiter()


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
        if ip:
            return ip
    if request.client:
        return request.client.host or "unknown"
    return "unknown"
