"""Unit tests for the route provider chain."""

import json

import httpx
import pytest

from meetpoint.config import Settings
from meetpoint.models import Coordinates
from meetpoint.services.http import RetryingFetcher
from meetpoint.services.routing import (
    OpenRouteServiceProvider,
    OSRMProvider,
    RouteProvider,
    build_route_providers,
)
from meetpoint.utils.geo import distance_between

A = Coordinates(lat=40.7128, lng=-74.0060)
B = Coordinates(lat=40.7589, lng=-73.9851)


def _osrm_route(distance: float, duration: float, via: tuple[float, float]) -> dict:
    return {
        "distance": distance,
        "duration": duration,
        "geometry": {"type": "LineString", "coordinates": [[A.lng, A.lat], list(via), [B.lng, B.lat]]},
    }


OSRM_OK = {
    "code": "Ok",
    "routes": [
        _osrm_route(7000, 900, (-73.99, 40.74)),
        _osrm_route(8000, 1000, (-74.00, 40.74)),
    ],
}

ORS_OK = {
    "type": "FeatureCollection",
    "features": [{
        "type": "Feature",
        "geometry": {"type": "LineString", "coordinates": [[A.lng, A.lat], [-73.995, 40.735], [B.lng, B.lat]]},
        "properties": {"summary": {"distance": 7100.0, "duration": 950.0}},
    }],
}


async def _no_sleep(delay: float) -> None:
    return None


class Upstream:
    def __init__(self, routes: dict[str, httpx.Response]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get(request.url.host, httpx.Response(500))
        return httpx.Response(response.status_code, content=response.content, headers=response.headers)

    def fetcher(self) -> RetryingFetcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(self))
        return RetryingFetcher(client=client, max_attempts=1, sleep=_no_sleep)


class TestRouteProvider:
    """Tests for RouteProvider.get_routes."""

    @pytest.mark.asyncio
    async def test_osrm_routes(self) -> None:
        upstream = Upstream({"router.project-osrm.org": httpx.Response(200, json=OSRM_OK)})
        provider = RouteProvider([OSRMProvider(upstream.fetcher())])

        routes = await provider.get_routes(A, B)

        assert not routes.degraded
        assert routes.primary.source == "osrm"
        assert routes.primary.distance_meters == 7000
        assert len(routes.alternates) == 1
        params = upstream.requests[0].url.params
        assert params["alternatives"] == "3"
        assert params["geometries"] == "geojson"
        assert params["overview"] == "full"
        assert upstream.requests[0].url.path.endswith(f"{A.lng},{A.lat};{B.lng},{B.lat}")

    @pytest.mark.asyncio
    async def test_ors_request_shape(self) -> None:
        upstream = Upstream({"api.openrouteservice.org": httpx.Response(200, json=ORS_OK)})
        fetcher = upstream.fetcher()
        provider = RouteProvider([OpenRouteServiceProvider(fetcher, "ors-key"), OSRMProvider(fetcher)])

        routes = await provider.get_routes(A, B)

        request = upstream.requests[0]
        body = json.loads(request.content)
        assert request.headers["Authorization"] == "ors-key"
        assert body["coordinates"] == [[A.lng, A.lat], [B.lng, B.lat]]
        assert body["alternative_routes"]["target_count"] == 3
        assert routes.primary.source == "openrouteservice"
        assert routes.primary.distance_meters == 7100.0
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_falls_back_to_osrm(self) -> None:
        upstream = Upstream({
            "api.openrouteservice.org": httpx.Response(403),
            "router.project-osrm.org": httpx.Response(200, json=OSRM_OK),
        })
        fetcher = upstream.fetcher()
        provider = RouteProvider([OpenRouteServiceProvider(fetcher, "bad"), OSRMProvider(fetcher)])

        routes = await provider.get_routes(A, B)
        assert routes.primary.source == "osrm"
        assert not routes.degraded

    @pytest.mark.asyncio
    async def test_no_route_code_falls_through(self) -> None:
        upstream = Upstream({
            "router.project-osrm.org": httpx.Response(200, json={"code": "NoRoute", "routes": []}),
        })
        routes = await RouteProvider([OSRMProvider(upstream.fetcher())]).get_routes(A, B)
        assert routes.degraded

    @pytest.mark.asyncio
    async def test_degraded_when_all_fail(self) -> None:
        upstream = Upstream({})
        routes = await RouteProvider([OSRMProvider(upstream.fetcher())]).get_routes(A, B)

        direct = distance_between(A, B)
        assert routes.degraded
        assert routes.primary.is_estimated
        assert routes.primary.distance_meters == pytest.approx(direct)
        assert routes.primary.duration_seconds == pytest.approx(direct / 13.89)
        assert len(routes.alternates) == 1
        assert routes.alternates[0].distance_meters == pytest.approx(direct * 1.2)

    @pytest.mark.asyncio
    async def test_degraded_without_alternates(self) -> None:
        upstream = Upstream({})
        routes = await RouteProvider([OSRMProvider(upstream.fetcher())]).get_routes(A, B, want_alternates=False)
        assert routes.degraded
        assert routes.alternates == []

    @pytest.mark.asyncio
    async def test_no_alternates_requested(self) -> None:
        upstream = Upstream({"router.project-osrm.org": httpx.Response(200, json=OSRM_OK)})
        routes = await RouteProvider([OSRMProvider(upstream.fetcher())]).get_routes(A, B, want_alternates=False)
        assert upstream.requests[0].url.params["alternatives"] == "false"
        assert routes.alternates == []

    @pytest.mark.asyncio
    async def test_invalid_geometry_is_provider_failure(self) -> None:
        bad = {"code": "Ok", "routes": [{"distance": 1, "duration": 1, "geometry": {"coordinates": [[0, 0]]}}]}
        upstream = Upstream({"router.project-osrm.org": httpx.Response(200, json=bad)})
        routes = await RouteProvider([OSRMProvider(upstream.fetcher())]).get_routes(A, B)
        assert routes.degraded


class TestBuildRouteProviders:
    """Tests for provider chain construction from settings."""

    def test_osrm_only_without_key(self) -> None:
        provider = RouteProvider(build_route_providers(Settings(), RetryingFetcher()))
        assert provider.provider_names == ["osrm"]

    def test_ors_first_with_key(self) -> None:
        settings = Settings(ors_api_key="k")
        provider = RouteProvider(build_route_providers(settings, RetryingFetcher()))
        assert provider.provider_names == ["openrouteservice", "osrm"]
