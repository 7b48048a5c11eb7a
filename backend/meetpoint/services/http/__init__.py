"""Outbound HTTP."""

from .fetcher import RetryingFetcher

__all__ = ["RetryingFetcher"]
