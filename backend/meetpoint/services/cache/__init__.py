"""Cache services."""

from .service import CacheEntry, CacheService, MemoryCacheService, RedisCacheService

__all__ = ["CacheEntry", "CacheService", "MemoryCacheService", "RedisCacheService"]
