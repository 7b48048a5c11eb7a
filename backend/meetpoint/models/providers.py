"""Schemas for upstream provider payloads.

Every JSON body a provider returns is validated against one of these models
before it is used. A payload that does not fit is a provider failure, not
something to propagate into the pipeline.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, RootModel


class _Lenient(BaseModel):
    """Providers add fields freely; only the ones we read are declared."""

    model_config = ConfigDict(extra="ignore")


# ── Geocoding ───────────────────────────────────────────────────────────


class NominatimPlace(_Lenient):
    """One search hit from Nominatim or LocationIQ (same response shape)."""

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)
    display_name: str = ""


class NominatimSearchResponse(RootModel[list[NominatimPlace]]):
    pass


class PhotonGeometry(_Lenient):
    coordinates: tuple[float, float]


class PhotonProperties(_Lenient):
    name: Optional[str] = None
    street: Optional[str] = None
    housenumber: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None

    def label(self) -> str:
        street = " ".join(p for p in (self.housenumber, self.street) if p)
        parts = [self.name, street, self.city, self.state, self.country]
        return ", ".join(p for p in parts if p)


class PhotonFeature(_Lenient):
    geometry: PhotonGeometry
    properties: PhotonProperties = Field(default_factory=PhotonProperties)


class PhotonResponse(_Lenient):
    features: list[PhotonFeature] = Field(default_factory=list)


# ── Routing ─────────────────────────────────────────────────────────────


class LineString(_Lenient):
    coordinates: list[tuple[float, float]]


class OSRMRoute(_Lenient):
    distance: float = Field(..., ge=0)
    duration: float = Field(..., ge=0)
    geometry: LineString


class OSRMRouteResponse(_Lenient):
    code: str
    message: Optional[str] = None
    routes: list[OSRMRoute] = Field(default_factory=list)


class ORSSummary(_Lenient):
    distance: float = 0.0
    duration: float = 0.0


class ORSProperties(_Lenient):
    summary: ORSSummary = Field(default_factory=ORSSummary)


class ORSFeature(_Lenient):
    geometry: LineString
    properties: ORSProperties = Field(default_factory=ORSProperties)


class ORSDirectionsResponse(_Lenient):
    features: list[ORSFeature] = Field(default_factory=list)


# ── POI search ──────────────────────────────────────────────────────────


class OverpassCenter(_Lenient):
    lat: float
    lon: float


class OverpassElement(_Lenient):
    type: str
    id: int
    lat: Optional[float] = None
    lon: Optional[float] = None
    center: Optional[OverpassCenter] = None
    tags: dict[str, str] = Field(default_factory=dict)

    def position(self) -> tuple[float, float] | None:
        """(lat, lon) for nodes, or the computed center for ways/relations."""
        if self.lat is not None and self.lon is not None:
            return self.lat, self.lon
        if self.center is not None:
            return self.center.lat, self.center.lon
        return None


class OverpassResponse(_Lenient):
    elements: list[OverpassElement] = Field(default_factory=list)


# ── Travel-time matrices ────────────────────────────────────────────────


class OSRMTableResponse(_Lenient):
    code: str
    message: Optional[str] = None
    durations: Optional[list[list[Optional[float]]]] = None
    distances: Optional[list[list[Optional[float]]]] = None


class HereMatrix(_Lenient):
    num_origins: int = Field(..., alias="numOrigins", ge=0)
    num_destinations: int = Field(..., alias="numDestinations", ge=0)
    travel_times: Optional[list[Optional[float]]] = Field(None, alias="travelTimes")
    distances: Optional[list[Optional[float]]] = None
    error_codes: Optional[list[int]] = Field(None, alias="errorCodes")


class HereMatrixResponse(_Lenient):
    matrix: HereMatrix
