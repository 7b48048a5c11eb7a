"""Unit tests for Overpass venue search and aggregation."""

import asyncio
from urllib.parse import parse_qs

import httpx
import pytest

from meetpoint.exceptions import ProviderError, RateLimitExceeded
from meetpoint.models import POI, Coordinates
from meetpoint.models.providers import OverpassElement
from meetpoint.services.cache import MemoryCacheService
from meetpoint.services.http import RetryingFetcher
from meetpoint.services.places import (
    POIAggregator,
    build_overpass_query,
    dedupe_pois,
    element_to_poi,
)

ANCHOR_1 = Coordinates(lat=40.7350, lng=-73.9950)
ANCHOR_2 = Coordinates(lat=40.7400, lng=-74.0000)


def _node(osm_id: int, lat: float, lon: float, **tags: str) -> dict:
    return {"type": "node", "id": osm_id, "lat": lat, "lon": lon, "tags": tags}


async def _no_sleep(delay: float) -> None:
    return None


def _query_of(request: httpx.Request) -> str:
    return parse_qs(request.content.decode())["data"][0]


class TestBuildOverpassQuery:
    """Tests for the Overpass QL builder."""

    def test_default_categories(self) -> None:
        query = build_overpass_query(ANCHOR_1, 1500)
        assert "[out:json]" in query
        assert f"(around:1500,{ANCHOR_1.lat},{ANCHOR_1.lng})" in query
        assert 'node["amenity"~"restaurant|cafe|bar' in query
        assert 'way["leisure"~' in query
        assert 'relation["tourism"~' in query
        assert 'node["shop"~' in query
        assert "out body center;" in query

    def test_selected_categories(self) -> None:
        query = build_overpass_query(ANCHOR_1, 800, ["cafe", "park"])
        assert 'node["amenity"~"cafe"]' in query
        assert 'node["leisure"~"park"]' in query
        assert "tourism" not in query
        assert "shop" not in query

    def test_unknown_category_searched_as_amenity(self) -> None:
        query = build_overpass_query(ANCHOR_1, 800, ["ice_cream"])
        assert 'node["amenity"~"ice_cream"]' in query


class TestElementToPOI:
    """Tests for converting Overpass elements."""

    def test_node_with_tags(self) -> None:
        element = OverpassElement.model_validate(_node(
            42, 40.1, -73.1,
            name="Joe's", amenity="cafe",
            **{"addr:street": "Main St", "addr:housenumber": "5", "addr:city": "NYC"},
        ))
        poi = element_to_poi(element)

        assert poi is not None
        assert poi.external_id == "osm_node_42"
        assert poi.name == "Joe's"
        assert poi.category == "cafe"
        assert poi.address.road == "Main St"
        assert poi.address.house_number == "5"
        assert poi.address.city == "NYC"

    def test_way_uses_center(self) -> None:
        element = OverpassElement.model_validate({
            "type": "way", "id": 7, "center": {"lat": 40.2, "lon": -73.2}, "tags": {"leisure": "park"},
        })
        poi = element_to_poi(element)
        assert poi is not None
        assert (poi.lat, poi.lng) == (40.2, -73.2)
        assert poi.category == "park"
        assert poi.name == "Unnamed Location"

    def test_no_position(self) -> None:
        element = OverpassElement.model_validate({"type": "relation", "id": 9, "tags": {}})
        assert element_to_poi(element) is None

    def test_category_defaults_to_place(self) -> None:
        element = OverpassElement.model_validate(_node(1, 1.0, 1.0, name="Thing"))
        poi = element_to_poi(element)
        assert poi is not None
        assert poi.category == "place"


class TestDedupePOIs:
    """Tests for POI deduplication."""

    def test_first_occurrence_wins(self) -> None:
        first = POI(external_id="osm_node_1", name="First", lat=1.0, lng=1.0)
        second = POI(external_id="osm_node_1", name="Second", lat=2.0, lng=2.0)
        assert dedupe_pois([first, second]) == [first]

    def test_coordinate_key_without_id(self) -> None:
        a = POI(name="A", lat=40.123451, lng=-73.123451)
        b = POI(name="B", lat=40.123449, lng=-73.123449)
        c = POI(name="C", lat=40.12350, lng=-73.12350)
        assert [p.name for p in dedupe_pois([a, b, c])] == ["A", "C"]

    def test_no_duplicate_keys_in_output(self) -> None:
        pois = [POI(external_id=f"osm_node_{i % 3}", name=str(i), lat=0, lng=0) for i in range(10)]
        keys = [p.dedup_key for p in dedupe_pois(pois)]
        assert len(keys) == len(set(keys)) == 3


class TestPOIAggregator:
    """Tests for POIAggregator.aggregate."""

    def setup_method(self) -> None:
        self.requests: list[httpx.Request] = []

    def _aggregator(self, handler, cache=None, limit: int = 8) -> POIAggregator:
        def recording(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
        fetcher = RetryingFetcher(cache=cache, client=client, max_attempts=1, sleep=_no_sleep)
        return POIAggregator(fetcher, limit_per_anchor=limit)

    @pytest.mark.asyncio
    async def test_named_first_then_nearest(self) -> None:
        elements = [
            _node(1, ANCHOR_1.lat + 0.001, ANCHOR_1.lng, amenity="cafe"),
            _node(2, ANCHOR_1.lat + 0.005, ANCHOR_1.lng, name="Far Cafe", amenity="cafe"),
            _node(3, ANCHOR_1.lat + 0.002, ANCHOR_1.lng, name="Near Cafe", amenity="cafe"),
        ]
        aggregator = self._aggregator(lambda r: httpx.Response(200, json={"elements": elements}))

        result = await aggregator.aggregate([ANCHOR_1], 1000)

        assert [p.external_id for p in result.pois] == ["osm_node_3", "osm_node_2", "osm_node_1"]
        assert not result.partial

    @pytest.mark.asyncio
    async def test_capped_per_anchor(self) -> None:
        elements = [_node(i, ANCHOR_1.lat + i * 1e-4, ANCHOR_1.lng, name=f"P{i}") for i in range(20)]
        aggregator = self._aggregator(lambda r: httpx.Response(200, json={"elements": elements}), limit=8)

        result = await aggregator.aggregate([ANCHOR_1], 1000)
        assert len(result.pois) == 8

    @pytest.mark.asyncio
    async def test_merges_anchors_and_dedupes(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            query = _query_of(request)
            if str(ANCHOR_1.lat) in query:
                return httpx.Response(200, json={"elements": [
                    _node(1, ANCHOR_1.lat, ANCHOR_1.lng, name="Shared"),
                    _node(2, ANCHOR_1.lat, ANCHOR_1.lng + 0.001, name="Only A"),
                ]})
            return httpx.Response(200, json={"elements": [
                _node(1, ANCHOR_1.lat, ANCHOR_1.lng, name="Shared"),
                _node(3, ANCHOR_2.lat, ANCHOR_2.lng, name="Only B"),
            ]})

        result = await self._aggregator(handler).aggregate([ANCHOR_1, ANCHOR_2], 1000)

        assert [p.external_id for p in result.pois] == ["osm_node_1", "osm_node_2", "osm_node_3"]
        assert len(self.requests) == 2

    @pytest.mark.asyncio
    async def test_failed_anchor_is_skipped(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if str(ANCHOR_1.lat) in _query_of(request):
                return httpx.Response(504)
            return httpx.Response(200, json={"elements": [_node(3, ANCHOR_2.lat, ANCHOR_2.lng, name="B")]})

        result = await self._aggregator(handler).aggregate([ANCHOR_1, ANCHOR_2], 1000)

        assert [p.external_id for p in result.pois] == ["osm_node_3"]
        assert result.partial
        assert result.failed_anchors == 1

    @pytest.mark.asyncio
    async def test_all_anchors_failing_is_empty(self) -> None:
        result = await self._aggregator(lambda r: httpx.Response(500)).aggregate([ANCHOR_1, ANCHOR_2], 1000)
        assert result.pois == []
        assert result.partial
        assert result.failed_anchors == 2

    @pytest.mark.asyncio
    async def test_no_anchors(self) -> None:
        result = await self._aggregator(lambda r: httpx.Response(500)).aggregate([], 1000)
        assert result.pois == []
        assert not result.partial
        assert self.requests == []

    @pytest.mark.asyncio
    async def test_results_cached_per_anchor(self) -> None:
        aggregator = self._aggregator(
            lambda r: httpx.Response(200, json={"elements": [_node(1, 1.0, 1.0, name="X")]}),
            cache=MemoryCacheService(),
        )
        await aggregator.aggregate([ANCHOR_1], 1000)
        await aggregator.aggregate([ANCHOR_1], 1000)
        await aggregator.aggregate([ANCHOR_1], 2000)
        assert len(self.requests) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        {"elements": []},
        {"elements": [_node(1, 1.0, 1.0, name="X")], "remark": "runtime error: Query timed out"},
    ])
    async def test_empty_or_timed_out_results_not_cached(self, payload: dict) -> None:
        cache = MemoryCacheService()
        aggregator = self._aggregator(lambda r: httpx.Response(200, json=payload), cache=cache)

        await aggregator.aggregate([ANCHOR_1], 1000)
        await aggregator.aggregate([ANCHOR_1], 1000)

        assert len(self.requests) == 2
        assert len(cache) == 0

    def test_cache_key(self) -> None:
        key = POIAggregator.cache_key(ANCHOR_1, 1500, ["park", "cafe"])
        assert key == "poi:40.73500:-73.99500:1500:cafe,park"

    @pytest.mark.asyncio
    async def test_rate_limit_propagates(self) -> None:
        class LimitedAggregator(POIAggregator):
            async def search_anchor(self, anchor, radius_meters, categories=None, caller=None):
                raise RateLimitExceeded("anonymous", 1, 10.0)

        aggregator = LimitedAggregator(RetryingFetcher())
        with pytest.raises(RateLimitExceeded):
            await aggregator.aggregate([ANCHOR_1], 1000)

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self) -> None:
        class CancelledAggregator(POIAggregator):
            async def search_anchor(self, anchor, radius_meters, categories=None, caller=None):
                if anchor == ANCHOR_1:
                    raise asyncio.CancelledError()
                raise ProviderError("overpass", "boom")

        aggregator = CancelledAggregator(RetryingFetcher())
        with pytest.raises(asyncio.CancelledError):
            await aggregator.aggregate([ANCHOR_1, ANCHOR_2], 1000)
