"""Unit tests for the sliding-window rate limiter."""

import asyncio

import pytest

from meetpoint.config import RateLimitQuota
from meetpoint.services.rate_limit import MemoryRateLimiter

QUOTAS = {
    "anonymous": RateLimitQuota(requests=3, window_seconds=60),
    "authenticated": RateLimitQuota(requests=5, window_seconds=60),
    "privileged": RateLimitQuota(requests=10, window_seconds=60),
}


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestMemoryRateLimiter:
    """Tests for MemoryRateLimiter."""

    def setup_method(self) -> None:
        self.clock = FakeClock()
        self.limiter = MemoryRateLimiter(QUOTAS, clock=self.clock)

    @pytest.mark.asyncio
    async def test_quota_then_reject(self) -> None:
        decisions = [await self.limiter.admit("anonymous", "1.2.3.4") for _ in range(4)]

        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert [d.remaining for d in decisions] == [2, 1, 0, 0]
        assert decisions[-1].limit == 3
        assert decisions[-1].retry_after == pytest.approx(60)

    @pytest.mark.asyncio
    async def test_resets_after_window(self) -> None:
        for _ in range(3):
            await self.limiter.admit("anonymous", "1.2.3.4")
        assert not (await self.limiter.admit("anonymous", "1.2.3.4")).allowed

        self.clock.now += 60
        decision = await self.limiter.admit("anonymous", "1.2.3.4")
        assert decision.allowed
        assert decision.remaining == 2

    @pytest.mark.asyncio
    async def test_window_slides(self) -> None:
        await self.limiter.admit("anonymous", "ip")
        self.clock.now += 30
        await self.limiter.admit("anonymous", "ip")
        await self.limiter.admit("anonymous", "ip")
        self.clock.now += 31

        # Only the first request has left the window
        assert (await self.limiter.admit("anonymous", "ip")).allowed
        assert not (await self.limiter.admit("anonymous", "ip")).allowed

    @pytest.mark.asyncio
    async def test_identifiers_are_independent(self) -> None:
        for _ in range(3):
            await self.limiter.admit("anonymous", "a")
        assert (await self.limiter.admit("anonymous", "b")).allowed

    @pytest.mark.asyncio
    async def test_quota_by_class(self) -> None:
        results = [await self.limiter.admit("privileged", "user-1") for _ in range(11)]
        assert sum(d.allowed for d in results) == 10

    @pytest.mark.asyncio
    async def test_unknown_class_uses_anonymous_quota(self) -> None:
        decision = await self.limiter.admit("mystery", "x")
        assert decision.limit == 3

    @pytest.mark.asyncio
    async def test_concurrent_requests_do_not_undercount(self) -> None:
        decisions = await asyncio.gather(
            *(self.limiter.admit("authenticated", "user-2") for _ in range(20))
        )
        assert sum(d.allowed for d in decisions) == 5

    @pytest.mark.asyncio
    async def test_window_snapshot(self) -> None:
        await self.limiter.admit("anonymous", "ip")
        decision = await self.limiter.admit("anonymous", "ip")
        assert decision.window is not None
        assert decision.window.identifier == "ip"
        assert decision.window.count == 2
        assert decision.window.window_start == pytest.approx(self.clock.now - 60)

    @pytest.mark.asyncio
    async def test_idle_identifiers_are_dropped(self) -> None:
        for i in range(1000):
            await self.limiter.admit("anonymous", f"10.0.{i // 256}.{i % 256}")
        assert len(self.limiter) == 1000

        self.clock.now += 3600
        await self.limiter.admit("anonymous", "192.168.0.1")

        assert len(self.limiter) == 1
        assert len(self.limiter._locks) == 1

    @pytest.mark.asyncio
    async def test_active_identifiers_survive_sweep(self) -> None:
        await self.limiter.admit("anonymous", "idle")
        self.clock.now += 30
        await self.limiter.admit("anonymous", "busy")
        await self.limiter.admit("anonymous", "busy")
        self.clock.now += 31

        decision = await self.limiter.admit("anonymous", "busy")
        assert decision.remaining == 0
        assert len(self.limiter) == 1

    def test_requires_anonymous_quota(self) -> None:
        with pytest.raises(ValueError):
            MemoryRateLimiter({"privileged": RateLimitQuota(requests=1, window_seconds=1)})
