"""OpenStreetMap Overpass search for venues around meeting anchors.

Architecture:
1. One Overpass ``around:`` query per anchor, all anchors in parallel
2. Per anchor: named places first, then nearest, capped per anchor
3. Concatenate in anchor order and drop duplicates (first one wins)

A failed anchor is logged and skipped; the result says whether that
happened so the caller can flag the list as partial.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import ValidationError

from meetpoint.exceptions import ProviderError, RateLimitExceeded
from meetpoint.models import POI, AddressParts, Caller, Coordinates
from meetpoint.models.providers import OverpassElement, OverpassResponse
from meetpoint.services.http import RetryingFetcher
from meetpoint.utils.geo import haversine_meters

logger = logging.getLogger(__name__)

OVERPASS_URL = "https://overpass-api.de/api/interpreter"

UNNAMED = "Unnamed Location"

# OSM tag key → values searched by default
CATEGORY_TAGS: dict[str, list[str]] = {
    "amenity": ["restaurant", "cafe", "bar", "library", "cinema", "theatre", "hospital", "marketplace"],
    "leisure": ["park", "garden", "playground", "sports_centre"],
    "tourism": ["museum", "hotel", "gallery", "attraction", "viewpoint"],
    "shop": ["supermarket", "mall", "department_store", "bakery", "convenience"],
}


@dataclass
class PlaceSearchResult:
    pois: list[POI] = field(default_factory=list)
    partial: bool = False
    failed_anchors: int = 0


def _select_tags(categories: Optional[list[str]]) -> dict[str, list[str]]:
    if not categories:
        return CATEGORY_TAGS
    wanted = {c.strip().lower() for c in categories if c.strip()}
    selected = {
        key: [v for v in values if v in wanted]
        for key, values in CATEGORY_TAGS.items()
    }
    selected = {key: values for key, values in selected.items() if values}
    known = {v for values in selected.values() for v in values}
    # Unknown categories are treated as amenity values
    extra = sorted(wanted - known)
    if extra:
        selected.setdefault("amenity", []).extend(extra)
    return selected


def build_overpass_query(
    anchor: Coordinates,
    radius_meters: int,
    categories: Optional[list[str]] = None,
    timeout: int = 25,
) -> str:
    """Build an Overpass QL query for tagged venues within a radius."""
    around = f"(around:{radius_meters},{anchor.lat},{anchor.lng})"
    tag_queries = []
    for key, values in _select_tags(categories).items():
        pattern = "|".join(values)
        for element in ("node", "way", "relation"):
            tag_queries.append(f'{element}["{key}"~"{pattern}"]{around};')

    return f"""
[out:json][timeout:{timeout}];
(
  {chr(10).join(tag_queries)}
);
out body center;
"""


def element_to_poi(element: OverpassElement) -> Optional[POI]:
    """Convert an Overpass element, or None when it has no usable position."""
    position = element.position()
    if position is None:
        return None
    lat, lng = position
    tags = element.tags

    try:
        return POI(
            external_id=f"osm_{element.type}_{element.id}",
            name=tags.get("name") or tags.get("addr:housename") or UNNAMED,
            category=(
                tags.get("amenity") or tags.get("leisure")
                or tags.get("tourism") or tags.get("shop") or "place"
            ),
            lat=lat,
            lng=lng,
            address=AddressParts(
                road=tags.get("addr:street", ""),
                house_number=tags.get("addr:housenumber", ""),
                city=tags.get("addr:city", ""),
                state=tags.get("addr:state", ""),
                country=tags.get("addr:country", ""),
            ),
        )
    except ValidationError:
        logger.debug(f"[POI] Skipping element {element.type}/{element.id} with invalid position")
        return None


def is_complete_result(payload: Any) -> bool:
    """A non-empty answer with no "remark"; Overpass reports timeouts as a remark on a 200."""
    return isinstance(payload, dict) and "remark" not in payload and bool(payload.get("elements"))


def dedupe_pois(pois: list[POI]) -> list[POI]:
    """Drop POIs whose dedup key was already seen, keeping the first."""
    seen: set[str] = set()
    unique: list[POI] = []
    for poi in pois:
        key = poi.dedup_key
        if key in seen:
            continue
        seen.add(key)
        unique.append(poi)
    return unique


class POIAggregator:
    """Collects venues around one or more anchors."""

    def __init__(self, fetcher: RetryingFetcher, limit_per_anchor: int = 8, url: str = OVERPASS_URL) -> None:
        self._fetcher = fetcher
        self._limit = limit_per_anchor
        self._url = url

    @staticmethod
    def cache_key(anchor: Coordinates, radius_meters: int, categories: Optional[list[str]]) -> str:
        cats = ",".join(sorted(categories)) if categories else "default"
        return f"poi:{anchor.lat:.5f}:{anchor.lng:.5f}:{radius_meters}:{cats}"

    async def search_anchor(
        self,
        anchor: Coordinates,
        radius_meters: int,
        categories: Optional[list[str]] = None,
        caller: Caller | None = None,
    ) -> list[POI]:
        """Venues near one anchor, named first then nearest, capped."""
        query = build_overpass_query(anchor, radius_meters, categories)
        payload = await self._fetcher.fetch_json(
            "POST", self._url, provider="overpass",
            data={"data": query},
            cache_key=self.cache_key(anchor, radius_meters, categories),
            cache_if=is_complete_result,
            caller=caller,
        )
        try:
            response = OverpassResponse.model_validate(payload)
        except ValidationError as e:
            raise ProviderError("overpass", f"unexpected payload: {e.error_count()} errors") from e

        pois = dedupe_pois([p for p in map(element_to_poi, response.elements) if p is not None])
        pois.sort(key=lambda p: (
            p.name == UNNAMED,
            haversine_meters(anchor.lat, anchor.lng, p.lat, p.lng),
        ))
        logger.info(f"[POI] {len(pois)} places near ({anchor.lat:.4f}, {anchor.lng:.4f}), keeping {min(len(pois), self._limit)}")
        return pois[: self._limit]

    async def aggregate(
        self,
        anchors: list[Coordinates],
        radius_meters: int = 1500,
        categories: Optional[list[str]] = None,
        caller: Caller | None = None,
    ) -> PlaceSearchResult:
        """Search every anchor concurrently and merge the results.

        Raises:
            RateLimitExceeded: The caller is over quota.
        """
        if not anchors:
            return PlaceSearchResult()

        results = await asyncio.gather(
            *(self.search_anchor(a, radius_meters, categories, caller) for a in anchors),
            return_exceptions=True,
        )

        merged: list[POI] = []
        failed = 0
        for anchor, result in zip(anchors, results):
            if isinstance(result, RateLimitExceeded):
                raise result
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failed += 1
                logger.warning(f"[POI] Search failed near ({anchor.lat:.4f}, {anchor.lng:.4f}): {type(result).__name__}: {result}")
                continue
            merged.extend(result)

        pois = dedupe_pois(merged)
        if failed == len(anchors):
            logger.warning("[POI] Every anchor search failed, returning no places")
        return PlaceSearchResult(pois=pois, partial=failed > 0, failed_anchors=failed)
