"""Cache service implementation.

This module provides an abstract cache service interface with an in-memory
LRU implementation and a Redis implementation for caching provider
responses (geocoding hits, routes, POI searches, matrices).

A read at or after ``created_at + ttl`` is a miss. Writes are
last-writer-wins; nothing else is synchronized.
"""

import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    value: Any
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now >= self.created_at + self.ttl


class CacheService(ABC):
    """Abstract base class for cache services.

    Defines the interface for caching operations and a static method for
    building consistent request cache keys.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Retrieve cached value by key.

        Args:
            key: The cache key to look up.

        Returns:
            The cached value if found and not expired, None otherwise.
        """

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        """Store value in cache.

        Args:
            key: The cache key to store under.
            value: The value to cache (must be JSON serializable).
            ttl_seconds: Time-to-live in seconds. Uses the service default if None.
        """

    async def close(self) -> None:
        """Release any connection held by the cache."""

    @staticmethod
    def build_request_key(
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        body: Any = None,
    ) -> str:
        """Generate a cache key for an outbound provider request.

        Params and body are serialized with sorted keys so that equivalent
        requests share a key regardless of dict ordering.

        Example:
            >>> CacheService.build_request_key("GET", "https://x/search", {"q": "a"})[:4]
            'req:'
        """
        payload = json.dumps(
            {"method": method.upper(), "url": url, "params": params or {}, "body": body},
            sort_keys=True,
            default=str,
        )
        return f"req:{hashlib.sha256(payload.encode()).hexdigest()}"


class MemoryCacheService(CacheService):
    """Process-level LRU cache with TTL expiration.

    Survives across requests in the same uvicorn worker. The clock is
    injectable so expiry can be tested without sleeping.
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: int = 86400,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._clock = clock

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry.value

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        if key in self._entries:
            self._entries.move_to_end(key)
        self._entries[key] = CacheEntry(key=key, value=value, created_at=self._clock(), ttl=ttl)
        if len(self._entries) > self._max_size:
            self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def default_ttl(self) -> int:
        return self._default_ttl


class RedisCacheService(CacheService):
    """Redis-based implementation of the cache service.

    Expiry is server-side (``SET ... EX``). When Redis is unreachable, reads
    are misses and writes are dropped, so the pipeline keeps working
    uncached.

    Attributes:
        _client: The Redis async client instance.
        _default_ttl: Default TTL in seconds for cached values.
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        default_ttl: int = 86400,
        client: redis.Redis | None = None,
    ) -> None:
        self._redis_url = redis_url
        self._default_ttl = default_ttl
        self._client: redis.Redis | None = client

    def _get_client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get(self, key: str) -> Any | None:
        try:
            value = await self._get_client().get(key)
        except RedisError as e:
            logger.warning(f"[CACHE] Redis read failed for {key[:16]}: {type(e).__name__}")
            return None
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.warning(f"[CACHE] Dropping undecodable entry {key[:16]}")
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        try:
            await self._get_client().set(key, json.dumps(value), ex=ttl)
        except RedisError as e:
            logger.warning(f"[CACHE] Redis write failed for {key[:16]}: {type(e).__name__}")

    @property
    def default_ttl(self) -> int:
        """Get the default TTL in seconds."""
        return self._default_ttl
