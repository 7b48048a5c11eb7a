"""Per-caller rate limiting."""

from .service import MemoryRateLimiter, RateDecision, RateLimiterService, RateWindow, RedisRateLimiter

__all__ = ["MemoryRateLimiter", "RateDecision", "RateLimiterService", "RateWindow", "RedisRateLimiter"]
