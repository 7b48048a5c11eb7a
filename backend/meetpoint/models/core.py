"""Core data models for Meetpoint.

Pydantic models for coordinates, geocoded origins, route geometries, points
of interest and the travel-time cells attached to them.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field


# Rounding applied to coordinates when a POI has no provider id
DEDUP_PRECISION = 5


class Tier(str, Enum):
    """Caller service level. Selects the matrix strategy and origin limits."""

    STANDARD = "standard"
    PRIVILEGED = "privileged"


class CallerClass(str, Enum):
    """Rate-limit bucket a caller falls into."""

    ANONYMOUS = "anonymous"
    AUTHENTICATED = "authenticated"
    PRIVILEGED = "privileged"


class MatrixSource(str, Enum):
    """Which strategy produced a travel-time matrix."""

    LIVE_TRAFFIC = "live_traffic"
    STATIC = "static"
    ESTIMATED = "estimated"


class Caller(BaseModel):
    """Identity of the party making a request, supplied by the gateway."""

    caller_id: Optional[str] = None
    tier: Tier = Tier.STANDARD
    network_address: str = "127.0.0.1"

    @property
    def caller_class(self) -> CallerClass:
        if self.tier == Tier.PRIVILEGED:
            return CallerClass.PRIVILEGED
        if self.caller_id:
            return CallerClass.AUTHENTICATED
        return CallerClass.ANONYMOUS

    @property
    def identifier(self) -> str:
        return self.caller_id or self.network_address


class Coordinates(BaseModel):
    """Geographic coordinates with validation.

    Latitude must be between -90 and 90 degrees.
    Longitude must be between -180 and 180 degrees.
    """

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90, description="Latitude in degrees")
    lng: float = Field(..., ge=-180, le=180, description="Longitude in degrees")


class Origin(BaseModel):
    """One geocoded party location. Its list index is its matrix source index."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    raw_address: str = Field(..., description="Address as typed by the caller")
    display_address: str = Field(..., description="Canonical name from the geocoder")

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(lat=self.lat, lng=self.lng)


class RouteGeometry(BaseModel):
    """A driving route between two origins.

    ``coordinates`` holds ``(lng, lat)`` pairs, GeoJSON order, as returned by
    the routing providers.
    """

    model_config = ConfigDict(frozen=True)

    coordinates: list[tuple[float, float]] = Field(..., min_length=2)
    distance_meters: float = Field(..., ge=0)
    duration_seconds: float = Field(..., ge=0)
    source: str = Field(default="estimated", description="Provider name or 'estimated'")

    @property
    def is_estimated(self) -> bool:
        return self.source == "estimated"


class AddressParts(BaseModel):
    road: str = ""
    house_number: str = ""
    city: str = ""
    state: str = ""
    country: str = ""


class POI(BaseModel):
    """A venue near one of the anchors."""

    external_id: Optional[str] = Field(None, description="Provider id, e.g. osm_node_123")
    name: str = Field(..., min_length=1)
    category: str = Field(default="place")
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: AddressParts = Field(default_factory=AddressParts)

    @property
    def dedup_key(self) -> str:
        if self.external_id:
            return self.external_id
        return f"{round(self.lat, DEDUP_PRECISION)}-{round(self.lng, DEDUP_PRECISION)}"

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(lat=self.lat, lng=self.lng)


class TravelCell(BaseModel):
    """Travel time/distance from one origin to one destination.

    ``None`` values mean this cell failed on its own; other cells are unaffected.
    """

    source_index: int = Field(..., ge=0)
    duration_seconds: Optional[float] = None
    distance_meters: Optional[float] = None


class EnrichedPOI(BaseModel):
    """A POI with one travel cell per origin, in origin order."""

    poi: POI
    travel_cells: list[TravelCell]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_duration_seconds(self) -> Optional[float]:
        durations = [c.duration_seconds for c in self.travel_cells]
        if not durations or any(d is None for d in durations):
            return None
        return sum(durations)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration_spread_seconds(self) -> Optional[float]:
        """Gap between the longest and shortest trip; lower is fairer."""
        durations = [c.duration_seconds for c in self.travel_cells]
        if not durations or any(d is None for d in durations):
            return None
        return max(durations) - min(durations)
