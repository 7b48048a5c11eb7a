"""Sliding-window rate limiting per caller.

Each ``(caller_class, identifier)`` pair gets its own window; the quota is
chosen by caller class. Admission and increment are one atomic step per
identifier, so concurrent requests from the same caller cannot both take
the last slot.
"""

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from uuid import uuid4

import redis.asyncio as redis
from redis.exceptions import RedisError

from meetpoint.config import RateLimitQuota

logger = logging.getLogger(__name__)


@dataclass
class RateWindow:
    """Requests counted for one identifier inside the current window."""
    identifier: str
    window_start: float
    count: int


@dataclass
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: float = 0.0
    window: RateWindow | None = None


class RateLimiterService(ABC):
    """Admits or rejects one request for a caller."""

    def __init__(self, quotas: dict[str, RateLimitQuota]) -> None:
        if "anonymous" not in quotas:
            raise ValueError("quotas must define the 'anonymous' caller class")
        self._quotas = quotas

    def quota_for(self, caller_class: str) -> RateLimitQuota:
        # Unknown classes get the strictest quota
        return self._quotas.get(caller_class, self._quotas["anonymous"])

    @abstractmethod
    async def admit(self, caller_class: str, identifier: str) -> RateDecision:
        """Count one request and decide whether it may proceed."""

    async def close(self) -> None:
        """Release any connection held by the limiter."""


class MemoryRateLimiter(RateLimiterService):
    """Sliding log of request timestamps, one deque per identifier.

    Identifiers whose newest request has left their window are swept at
    most once per longest window, so idle callers do not accumulate.
    """

    def __init__(
        self,
        quotas: dict[str, RateLimitQuota],
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(quotas)
        self._clock = clock
        self._logs: dict[tuple[str, str], deque[float]] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._sweep_interval = max(q.window_seconds for q in quotas.values())
        self._last_sweep: float | None = None

    def __len__(self) -> int:
        return len(self._logs)

    def _lock_for(self, key: tuple[str, str]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _sweep(self, now: float) -> None:
        if self._last_sweep is None:
            self._last_sweep = now
            return
        if now - self._last_sweep < self._sweep_interval:
            return
        self._last_sweep = now

        stale = []
        for key, log in self._logs.items():
            lock = self._locks.get(key)
            if lock is not None and lock.locked():
                continue
            if not log or log[-1] <= now - self.quota_for(key[0]).window_seconds:
                stale.append(key)
        for key in stale:
            del self._logs[key]
            self._locks.pop(key, None)
        if stale:
            logger.info(f"[RATE] Dropped {len(stale)} idle identifiers")

    async def admit(self, caller_class: str, identifier: str) -> RateDecision:
        quota = self.quota_for(caller_class)
        key = (caller_class, identifier)
        self._sweep(self._clock())

        async with self._lock_for(key):
            now = self._clock()
            window_start = now - quota.window_seconds
            log = self._logs.setdefault(key, deque())
            while log and log[0] <= window_start:
                log.popleft()

            allowed = len(log) < quota.requests
            if allowed:
                log.append(now)

            reset_at = (log[0] if log else now) + quota.window_seconds
            window = RateWindow(identifier=identifier, window_start=window_start, count=len(log))

        if not allowed:
            logger.warning(f"[RATE] {caller_class}:{identifier} over quota ({quota.requests}/{quota.window_seconds:.0f}s)")

        return RateDecision(
            allowed=allowed,
            limit=quota.requests,
            remaining=max(0, quota.requests - len(log)),
            reset_at=reset_at,
            retry_after=0.0 if allowed else max(0.0, reset_at - now),
            window=window,
        )


class RedisRateLimiter(RateLimiterService):
    """Sliding log kept in a Redis sorted set, scored by timestamp.

    Prune, add, count and expire run in one MULTI/EXEC pipeline; a rejected
    request removes its own entry afterwards. If Redis is unreachable the
    request is admitted and a warning is logged.
    """

    def __init__(
        self,
        quotas: dict[str, RateLimitQuota],
        redis_url: str = "redis://localhost:6379",
        client: redis.Redis | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(quotas)
        self._redis_url = redis_url
        self._client: redis.Redis | None = client
        self._clock = clock

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self._redis_url, decode_responses=True)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def admit(self, caller_class: str, identifier: str) -> RateDecision:
        quota = self.quota_for(caller_class)
        key = f"rate:{caller_class}:{identifier}"
        now = self._clock()
        window_start = now - quota.window_seconds
        member = f"{now}:{uuid4().hex}"
        client = self._get_client()

        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(key, 0, window_start)
                pipe.zadd(key, {member: now})
                pipe.zcard(key)
                pipe.zrange(key, 0, 0, withscores=True)
                pipe.expire(key, math.ceil(quota.window_seconds))
                _, _, count, oldest, _ = await pipe.execute()

            allowed = count <= quota.requests
            if not allowed:
                await client.zrem(key, member)
                count -= 1
        except RedisError as e:
            logger.warning(f"[RATE] Redis unavailable, admitting {caller_class}:{identifier}: {type(e).__name__}")
            return RateDecision(
                allowed=True,
                limit=quota.requests,
                remaining=quota.requests,
                reset_at=now + quota.window_seconds,
            )

        oldest_ts = oldest[0][1] if oldest else now
        reset_at = oldest_ts + quota.window_seconds
        if not allowed:
            logger.warning(f"[RATE] {caller_class}:{identifier} over quota ({quota.requests}/{quota.window_seconds:.0f}s)")

        return RateDecision(
            allowed=allowed,
            limit=quota.requests,
            remaining=max(0, quota.requests - count),
            reset_at=reset_at,
            retry_after=0.0 if allowed else max(0.0, reset_at - now),
            window=RateWindow(identifier=identifier, window_start=window_start, count=count),
        )
