"""Meetpoint Services.

Service layer components:
- Cache: in-memory LRU or Redis response cache
- Rate limit: sliding-window quotas per caller (memory or Redis)
- HTTP: shared fetcher with caching and retry for every provider
- Geocoding: LocationIQ → Nominatim → Photon
- Routing: OpenRouteService → OSRM, straight-line fallback
- Places: OpenStreetMap Overpass venue search
- Matrix: HERE (live traffic) or OSRM table, haversine fallback
- Meetpoint: the pipeline tying it together
"""

from .cache import CacheService, MemoryCacheService, RedisCacheService
from .rate_limit import MemoryRateLimiter, RateDecision, RateLimiterService, RedisRateLimiter
from .http import RetryingFetcher
from .providers import ProviderResult, run_provider_chain
from .geocoding import GeocodingResolver
from .routing import RouteProvider, RouteSet, select_alternate, synthetic_alternate
from .places import POIAggregator, PlaceSearchResult
from .matrix import TravelMatrix, TravelTimeMatrixResolver
from .meetpoint import (
    MeetpointRequest,
    MeetpointResult,
    MeetpointService,
    OriginInput,
    create_meetpoint_service,
)

__all__ = [
    # Cache
    "CacheService",
    "MemoryCacheService",
    "RedisCacheService",
    # Rate limiting
    "MemoryRateLimiter",
    "RateDecision",
    "RateLimiterService",
    "RedisRateLimiter",
    # HTTP
    "RetryingFetcher",
    "ProviderResult",
    "run_provider_chain",
    # Pipeline stages
    "GeocodingResolver",
    "RouteProvider",
    "RouteSet",
    "select_alternate",
    "synthetic_alternate",
    "POIAggregator",
    "PlaceSearchResult",
    "TravelMatrix",
    "TravelTimeMatrixResolver",
    # Orchestrator
    "MeetpointRequest",
    "MeetpointResult",
    "MeetpointService",
    "OriginInput",
    "create_meetpoint_service",
]
