"""Address geocoding."""

from .service import (
    GeocodingResolver,
    LocationIQProvider,
    NominatimProvider,
    PhotonProvider,
    build_geocoding_providers,
    normalize_address,
)

__all__ = [
    "GeocodingResolver",
    "LocationIQProvider",
    "NominatimProvider",
    "PhotonProvider",
    "build_geocoding_providers",
    "normalize_address",
]
