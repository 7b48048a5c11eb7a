"""Driving routes between two origins.

Chain: OpenRouteService (only with an API key) → OSRM. When both fail or
return no routes, a straight-line route is synthesized so the pipeline can
continue; ``RouteSet.degraded`` tells the caller it happened.
"""

import logging
import math
from dataclasses import dataclass, field

from pydantic import ValidationError

from meetpoint.config import Settings
from meetpoint.exceptions import ProviderError
from meetpoint.models import Caller, Coordinates, RouteGeometry
from meetpoint.models.providers import ORSDirectionsResponse, OSRMRouteResponse
from meetpoint.services.http import RetryingFetcher
from meetpoint.services.providers import ProviderResult, run_provider_chain
from meetpoint.utils.geo import ASSUMED_SPEED_MPS, METERS_PER_DEGREE, distance_between

logger = logging.getLogger(__name__)

MAX_ALTERNATES = 3

DETOUR_OFFSET_FRACTION = 0.15
DETOUR_PENALTY = 1.2


@dataclass
class RouteSet:
    primary: RouteGeometry
    alternates: list[RouteGeometry] = field(default_factory=list)
    degraded: bool = False


def straight_line_route(a: Coordinates, b: Coordinates) -> RouteGeometry:
    """Direct line a → b at the assumed average speed."""
    distance = distance_between(a, b)
    return RouteGeometry(
        coordinates=[(a.lng, a.lat), (b.lng, b.lat)],
        distance_meters=distance,
        duration_seconds=distance / ASSUMED_SPEED_MPS,
        source="estimated",
    )


def synthetic_alternate(a: Coordinates, b: Coordinates) -> RouteGeometry:
    """Detour through a point offset perpendicular to the a → b line.

    The offset is 15% of the direct distance (at 111 km per degree) from
    the line's midpoint; distance and duration are the direct ones × 1.2.
    """
    direct = distance_between(a, b)
    mid_lat = (a.lat + b.lat) / 2
    mid_lng = (a.lng + b.lng) / 2

    angle = math.atan2(b.lat - a.lat, b.lng - a.lng) + math.pi / 2
    offset = direct * DETOUR_OFFSET_FRACTION / METERS_PER_DEGREE

    detour = (mid_lng + math.cos(angle) * offset, mid_lat + math.sin(angle) * offset)
    return RouteGeometry(
        coordinates=[(a.lng, a.lat), detour, (b.lng, b.lat)],
        distance_meters=direct * DETOUR_PENALTY,
        duration_seconds=direct / ASSUMED_SPEED_MPS * DETOUR_PENALTY,
        source="estimated",
    )


def _build_routes(provider: str, raw: list[tuple[list, float, float]]) -> list[RouteGeometry]:
    try:
        return [
            RouteGeometry(coordinates=coords, distance_meters=dist, duration_seconds=dur, source=provider)
            for coords, dist, dur in raw
        ]
    except ValidationError as e:
        raise ProviderError(provider, f"invalid route geometry: {e.error_count()} errors") from e


class OpenRouteServiceProvider:
    name = "openrouteservice"
    url = "https://api.openrouteservice.org/v2/directions/driving-car/geojson"

    def __init__(self, fetcher: RetryingFetcher, api_key: str) -> None:
        self._fetcher = fetcher
        self._api_key = api_key

    async def attempt(
        self, a: Coordinates, b: Coordinates, want_alternates: bool, caller: Caller | None = None
    ) -> ProviderResult[list[RouteGeometry]]:
        body: dict = {"coordinates": [[a.lng, a.lat], [b.lng, b.lat]]}
        if want_alternates:
            body["alternative_routes"] = {
                "target_count": MAX_ALTERNATES,
                "weight_factor": 1.4,
                "share_factor": 0.6,
            }

        payload = await self._fetcher.fetch_json(
            "POST", self.url, provider=self.name, json=body,
            headers={"Authorization": self._api_key}, caller=caller,
        )
        try:
            response = ORSDirectionsResponse.model_validate(payload)
        except ValidationError as e:
            raise ProviderError(self.name, f"unexpected payload: {e.error_count()} errors") from e

        routes = _build_routes(self.name, [
            (f.geometry.coordinates, f.properties.summary.distance, f.properties.summary.duration)
            for f in response.features
        ])
        if not routes:
            return ProviderResult(provider=self.name, error="no routes")
        return ProviderResult(provider=self.name, value=routes)


class OSRMProvider:
    name = "osrm"
    base_url = "https://router.project-osrm.org"

    def __init__(self, fetcher: RetryingFetcher, base_url: str | None = None) -> None:
        self._fetcher = fetcher
        if base_url:
            self.base_url = base_url

    async def attempt(
        self, a: Coordinates, b: Coordinates, want_alternates: bool, caller: Caller | None = None
    ) -> ProviderResult[list[RouteGeometry]]:
        url = f"{self.base_url}/route/v1/driving/{a.lng},{a.lat};{b.lng},{b.lat}"
        params = {
            "overview": "full",
            "geometries": "geojson",
            "alternatives": str(MAX_ALTERNATES) if want_alternates else "false",
        }

        payload = await self._fetcher.fetch_json("GET", url, provider=self.name, params=params, caller=caller)
        try:
            response = OSRMRouteResponse.model_validate(payload)
        except ValidationError as e:
            raise ProviderError(self.name, f"unexpected payload: {e.error_count()} errors") from e

        if response.code != "Ok":
            return ProviderResult(provider=self.name, error=f"{response.code}: {response.message or ''}".strip())

        routes = _build_routes(self.name, [
            (r.geometry.coordinates, r.distance, r.duration) for r in response.routes
        ])
        if not routes:
            return ProviderResult(provider=self.name, error="no routes")
        return ProviderResult(provider=self.name, value=routes)


class RouteProvider:
    """Primary route plus provider alternates between two points."""

    def __init__(self, providers: list) -> None:
        self._providers = providers

    @property
    def provider_names(self) -> list[str]:
        return [p.name for p in self._providers]

    async def get_routes(
        self,
        a: Coordinates,
        b: Coordinates,
        want_alternates: bool = True,
        caller: Caller | None = None,
    ) -> RouteSet:
        """Never raises ``ProviderError``; falls back to estimated routes."""
        outcome = await run_provider_chain(
            self._providers,
            lambda provider: provider.attempt(a, b, want_alternates, caller),
            tag="ROUTE",
        )

        if outcome.value:
            primary, *alternates = outcome.value
            logger.info(
                f"[ROUTE] {outcome.provider}: {primary.distance_meters:.0f}m, "
                f"{len(alternates)} alternates"
            )
            return RouteSet(primary=primary, alternates=alternates if want_alternates else [])

        logger.warning(f"[ROUTE] All providers failed, using straight line: {outcome.errors}")
        return RouteSet(
            primary=straight_line_route(a, b),
            alternates=[synthetic_alternate(a, b)] if want_alternates else [],
            degraded=True,
        )


def build_route_providers(settings: Settings, fetcher: RetryingFetcher) -> list:
    providers: list = []
    if settings.ors_api_key:
        providers.append(OpenRouteServiceProvider(fetcher, settings.ors_api_key))
    providers.append(OSRMProvider(fetcher))
    return providers
