"""Point-of-interest search."""

from .service import (
    CATEGORY_TAGS,
    POIAggregator,
    PlaceSearchResult,
    build_overpass_query,
    dedupe_pois,
    element_to_poi,
    is_complete_result,
)

__all__ = [
    "CATEGORY_TAGS",
    "POIAggregator",
    "PlaceSearchResult",
    "build_overpass_query",
    "dedupe_pois",
    "element_to_poi",
    "is_complete_result",
]
