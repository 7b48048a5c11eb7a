"""Meeting-point pipeline.

Per request:
1. Geocode every origin (in parallel)
2. Two origins: route between them, midpoint of the main route plus the
   midpoint of an alternate. More than two: centroid (privileged only)
3. Search venues around each anchor
4. Travel-time matrix from every origin to every venue
5. Rank venues by how evenly the trip is shared

Provider failures after geocoding degrade the result instead of failing it;
each degraded field adds a warning to the response.
"""

import asyncio
import logging
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from meetpoint.config import Settings
from meetpoint.exceptions import InvalidInput, TierRequired
from meetpoint.models import (
    Caller,
    Coordinates,
    EnrichedPOI,
    MatrixSource,
    Origin,
    RouteGeometry,
    Tier,
    Warning,
    WarningCode,
)
from meetpoint.services.cache import CacheService, MemoryCacheService, RedisCacheService
from meetpoint.services.geocoding import GeocodingResolver, build_geocoding_providers
from meetpoint.services.http import RetryingFetcher
from meetpoint.services.matrix import TravelTimeMatrixResolver, create_matrix_resolver
from meetpoint.services.places import POIAggregator
from meetpoint.services.rate_limit import MemoryRateLimiter, RateLimiterService, RedisRateLimiter
from meetpoint.services.routing import (
    RouteProvider,
    build_route_providers,
    route_divergence,
    select_alternate,
    synthetic_alternate,
)
from meetpoint.utils.geo import centroid, locate_midpoint

logger = logging.getLogger(__name__)


class OriginInput(BaseModel):
    """An address to geocode, or coordinates to use as given."""

    address: Optional[str] = None
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)

    @model_validator(mode="after")
    def _address_or_coordinates(self) -> "OriginInput":
        has_coords = self.lat is not None and self.lng is not None
        if not self.address and not has_coords:
            raise ValueError("each origin needs an address or both lat and lng")
        return self


class MeetpointRequest(BaseModel):
    origins: list[OriginInput]
    radius_meters: Optional[int] = Field(None, ge=1, le=50000, description="Search radius; the configured default when omitted")
    categories: Optional[list[str]] = None
    want_alternate: bool = True


class MeetpointResult(BaseModel):
    origins: list[Origin]
    midpoint: Coordinates
    alternate_midpoint: Optional[Coordinates] = None
    main_route: Optional[RouteGeometry] = None
    alternate_route: Optional[RouteGeometry] = None
    alternate_divergence_meters: Optional[float] = None
    pois: list[EnrichedPOI] = Field(default_factory=list)
    matrix_source: Optional[MatrixSource] = None
    warnings: list[Warning] = Field(default_factory=list)


def _fairness_key(item: EnrichedPOI) -> tuple[bool, float]:
    spread = item.duration_spread_seconds
    return (spread is None, spread if spread is not None else 0.0)


class MeetpointService:
    """Composes geocoding, routing, venue search and travel times."""

    def __init__(
        self,
        geocoder: GeocodingResolver,
        routes: RouteProvider,
        places: POIAggregator,
        matrix: TravelTimeMatrixResolver,
        max_origins: int = 10,
        default_radius: int = 1500,
        resources: tuple = (),
    ) -> None:
        self.geocoder = geocoder
        self.routes = routes
        self.places = places
        self.matrix = matrix
        self._max_origins = max_origins
        self._default_radius = default_radius
        self._resources = resources

    async def close(self) -> None:
        for resource in self._resources:
            await resource.close()

    def _check_origin_count(self, count: int, caller: Caller) -> None:
        if count < 2:
            raise InvalidInput("At least two origins are required")
        if count > self._max_origins:
            raise InvalidInput(f"At most {self._max_origins} origins are supported, got {count}")
        if count > 2 and caller.tier != Tier.PRIVILEGED:
            raise TierRequired(f"Meeting {count} parties requires the privileged tier")

    async def _resolve_origin(self, index: int, origin: OriginInput, caller: Caller) -> Origin:
        if origin.lat is not None and origin.lng is not None:
            label = origin.address or f"{origin.lat},{origin.lng}"
            return Origin(lat=origin.lat, lng=origin.lng, raw_address=label, display_address=label)
        return await self.geocoder.resolve(origin.address or "", caller=caller, origin_index=index)

    async def geocode_origins(self, inputs: list[OriginInput], caller: Caller) -> list[Origin]:
        """Geocode concurrently; the first failure in origin order is raised."""
        results = await asyncio.gather(
            *(self._resolve_origin(i, o, caller) for i, o in enumerate(inputs)),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)

    async def find(self, request: MeetpointRequest, caller: Optional[Caller] = None) -> MeetpointResult:
        """Run the full pipeline for one request.

        Raises:
            InvalidInput: Wrong number of origins or a malformed address.
            TierRequired: More than two origins from a non-privileged caller.
            GeocodingFailure: An address could not be geocoded.
            RateLimitExceeded: The caller ran out of quota mid-pipeline.
        """
        caller = caller or Caller()
        self._check_origin_count(len(request.origins), caller)

        origins = await self.geocode_origins(request.origins, caller)
        warnings: list[Warning] = []

        main_route: Optional[RouteGeometry] = None
        alternate_route: Optional[RouteGeometry] = None
        alternate_midpoint: Optional[Coordinates] = None
        divergence: Optional[float] = None

        if len(origins) == 2:
            a, b = origins[0].coordinates, origins[1].coordinates
            route_set = await self.routes.get_routes(a, b, request.want_alternate, caller)
            main_route = route_set.primary
            if route_set.degraded:
                warnings.append(Warning(
                    code=WarningCode.ROUTE_ESTIMATED,
                    message="Routing is unavailable; the route is a straight-line estimate.",
                ))

            midpoint = locate_midpoint(main_route)
            anchors = [midpoint]

            if request.want_alternate:
                alternate_route = select_alternate(main_route, route_set.alternates)
                if alternate_route is None:
                    logger.info("[MEETPOINT] No reasonable alternate, synthesizing a detour")
                    alternate_route = synthetic_alternate(a, b)
                if alternate_route.is_estimated and not route_set.degraded:
                    warnings.append(Warning(
                        code=WarningCode.ALTERNATE_SYNTHETIC,
                        message="No suitable alternate route was found; the alternate is an estimate.",
                    ))
                alternate_midpoint = locate_midpoint(alternate_route)
                divergence = route_divergence(main_route, alternate_route)
                anchors.append(alternate_midpoint)
        else:
            midpoint = centroid([o.coordinates for o in origins])
            anchors = [midpoint]

        radius = request.radius_meters or self._default_radius
        search = await self.places.aggregate(anchors, radius, request.categories, caller)
        if search.partial:
            warnings.append(Warning(
                code=WarningCode.POI_SEARCH_PARTIAL,
                message=f"Venue search failed near {search.failed_anchors} of {len(anchors)} points.",
            ))

        enriched: list[EnrichedPOI] = []
        matrix_source: Optional[MatrixSource] = None
        if search.pois:
            matrix = await self.matrix.resolve(
                [o.coordinates for o in origins],
                [p.coordinates for p in search.pois],
                tier=caller.tier,
                caller=caller,
            )
            matrix_source = matrix.source
            if matrix.degraded:
                warnings.append(Warning(
                    code=WarningCode.TRAVEL_TIMES_ESTIMATED,
                    message="Travel times are estimated from straight-line distance.",
                ))
            enriched = [
                EnrichedPOI(poi=poi, travel_cells=matrix.column(j))
                for j, poi in enumerate(search.pois)
            ]
            enriched.sort(key=_fairness_key)

        logger.info(
            f"[MEETPOINT] {len(origins)} origins → ({midpoint.lat:.5f}, {midpoint.lng:.5f}), "
            f"{len(enriched)} venues, {len(warnings)} warnings"
        )
        return MeetpointResult(
            origins=origins,
            midpoint=midpoint,
            alternate_midpoint=alternate_midpoint,
            main_route=main_route,
            alternate_route=alternate_route,
            alternate_divergence_meters=divergence,
            pois=enriched,
            matrix_source=matrix_source,
            warnings=warnings,
        )


def create_cache_service(settings: Settings) -> CacheService:
    if settings.redis_url:
        return RedisCacheService(settings.redis_url, default_ttl=settings.cache_ttl_seconds)
    return MemoryCacheService(default_ttl=settings.cache_ttl_seconds)


def create_rate_limiter(settings: Settings) -> RateLimiterService:
    if settings.redis_url:
        return RedisRateLimiter(settings.rate_limits, redis_url=settings.redis_url)
    return MemoryRateLimiter(settings.rate_limits)


def create_meetpoint_service(settings: Optional[Settings] = None) -> MeetpointService:
    """Wire the pipeline from settings. Redis backs cache and limiter when configured."""
    settings = settings or Settings.from_env()
    cache = create_cache_service(settings)
    limiter = create_rate_limiter(settings)
    fetcher = RetryingFetcher(
        cache=cache,
        rate_limiter=limiter,
        timeout=settings.http_timeout_seconds,
        max_attempts=settings.http_max_attempts,
        retry_base=settings.http_retry_base_seconds,
        max_backoff=settings.http_retry_max_seconds,
        default_ttl=settings.cache_ttl_seconds,
        user_agent=settings.user_agent,
    )

    logger.info(
        f"[MEETPOINT] cache={type(cache).__name__} limiter={type(limiter).__name__} "
        f"live_matrix={'on' if settings.here_api_key else 'off'}"
    )
    return MeetpointService(
        geocoder=GeocodingResolver(build_geocoding_providers(settings, fetcher)),
        routes=RouteProvider(build_route_providers(settings, fetcher)),
        places=POIAggregator(fetcher, limit_per_anchor=settings.poi_limit_per_anchor),
        matrix=create_matrix_resolver(settings, fetcher),
        max_origins=settings.max_origins,
        default_radius=settings.default_poi_radius,
        resources=(fetcher, cache, limiter),
    )
