"""Outbound HTTP for every geodata provider.

Architecture:
- Shared httpx client with connection pooling, created lazily
- Rate limit check per caller before anything else (never retried)
- Response cache in front of the network
- Retry with exponential backoff on transient failures (tenacity)
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from meetpoint.exceptions import ProviderError, RateLimitExceeded
from meetpoint.models import Caller
from meetpoint.services.cache import CacheService
from meetpoint.services.rate_limit import RateLimiterService

logger = logging.getLogger(__name__)


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.transient


def _has_content(payload: Any) -> bool:
    """Empty bodies, such as a geocoder's "no match", are never cached."""
    return bool(payload)


class RetryingFetcher:
    """JSON fetcher shared by all provider clients.

    Transient failures (network errors, timeouts, 5xx, upstream 429) are
    retried up to ``max_attempts`` times with ``base * 2^(n-1)`` second
    backoff capped at ``max_backoff``. Any other 4xx or an undecodable body
    raises a non-transient ``ProviderError`` at once.
    """

    def __init__(
        self,
        cache: CacheService | None = None,
        rate_limiter: RateLimiterService | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        max_attempts: int = 3,
        retry_base: float = 0.5,
        max_backoff: float = 8.0,
        default_ttl: int = 86400,
        user_agent: str = "Meetpoint/1.0",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._client = client
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._retry_base = retry_base
        self._max_backoff = max_backoff
        self._default_ttl = default_ttl
        self._user_agent = user_agent
        self._sleep = sleep

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers={"User-Agent": self._user_agent, "Accept": "application/json"},
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _admit(self, caller: Caller | None) -> None:
        if caller is None or self._rate_limiter is None:
            return
        caller_class = caller.caller_class.value
        decision = await self._rate_limiter.admit(caller_class, caller.identifier)
        if not decision.allowed:
            raise RateLimitExceeded(caller_class, decision.limit, decision.retry_after)

    async def _send(
        self,
        provider: str,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        json: Any,
        data: Any,
        headers: dict[str, str] | None,
    ) -> Any:
        client = self._get_client()
        try:
            response = await client.request(
                method, url, params=params, json=json, data=data, headers=headers,
                timeout=self._timeout,
            )
        except httpx.TimeoutException as e:
            raise ProviderError(provider, f"timeout: {type(e).__name__}", transient=True) from e
        except httpx.TransportError as e:
            raise ProviderError(provider, f"network error: {type(e).__name__}", transient=True) from e

        status = response.status_code
        if status == 429 or status >= 500:
            raise ProviderError(provider, f"HTTP {status}", status_code=status, transient=True)
        if status >= 400:
            raise ProviderError(provider, f"HTTP {status}", status_code=status)

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(provider, "response is not valid JSON", status_code=status) from e

    def _log_retry(self, state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0
        logger.info(f"[FETCH] Retry {state.attempt_number}/{self._max_attempts - 1} in {delay:.1f}s: {exc}")

    async def fetch_json(
        self,
        method: str,
        url: str,
        *,
        provider: str = "http",
        params: dict[str, Any] | None = None,
        json: Any = None,
        data: Any = None,
        headers: dict[str, str] | None = None,
        cache_key: str | None = None,
        ttl_seconds: int | None = None,
        use_cache: bool = True,
        cache_if: Callable[[Any], bool] | None = None,
        caller: Caller | None = None,
    ) -> Any:
        """Fetch and decode a JSON document.

        Args:
            method: HTTP method.
            url: Absolute URL.
            provider: Short provider name used in errors and logs.
            params: Query string parameters.
            json: JSON request body.
            data: Form request body.
            headers: Extra request headers.
            cache_key: Explicit cache key; derived from the request when None.
            ttl_seconds: Cache TTL; the fetcher default when None.
            use_cache: Skip the cache entirely when False.
            cache_if: Decides whether a decoded body is stored; by default
                anything but an empty body is.
            caller: Caller charged against the rate limiter, if any.

        Returns:
            The decoded JSON body.

        Raises:
            RateLimitExceeded: The caller is over quota. No request was sent.
            ProviderError: The provider failed after any retries.
        """
        await self._admit(caller)

        cache = self._cache if use_cache else None
        key = None
        if cache is not None:
            key = cache_key or CacheService.build_request_key(
                method, url, params, json if json is not None else data
            )
            cached = await cache.get(key)
            if cached is not None:
                logger.debug(f"[FETCH] Cache hit for {provider}")
                return cached

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=self._retry_base, max=self._max_backoff),
            retry=retry_if_exception(_is_transient),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                result = await self._send(provider, method, url, params, json, data, headers)

        keep = cache_if or _has_content
        if cache is not None and key is not None and keep(result):
            ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
            await cache.set(key, result, ttl_seconds=ttl)

        return result
