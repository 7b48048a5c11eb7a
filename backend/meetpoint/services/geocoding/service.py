"""Address geocoding with provider fallback.

Chain: LocationIQ (only with an API key) → Nominatim → Photon. The first
provider with a match wins; an error or an empty result moves on to the
next one. Transport retries happen inside the fetcher, not here.
"""

import logging
from typing import Any, Optional

from pydantic import ValidationError

from meetpoint.config import Settings
from meetpoint.exceptions import GeocodingFailure, InvalidInput, ProviderError
from meetpoint.models import Caller, Origin
from meetpoint.models.providers import NominatimSearchResponse, PhotonResponse
from meetpoint.services.http import RetryingFetcher
from meetpoint.services.providers import ProviderResult, run_provider_chain

logger = logging.getLogger(__name__)

MIN_ADDRESS_LENGTH = 3
MAX_ADDRESS_LENGTH = 255


def normalize_address(address: str) -> str:
    """Strip and length-check an address. Raises InvalidInput."""
    cleaned = (address or "").strip()
    if not MIN_ADDRESS_LENGTH <= len(cleaned) <= MAX_ADDRESS_LENGTH:
        raise InvalidInput(
            f"Address must be {MIN_ADDRESS_LENGTH}-{MAX_ADDRESS_LENGTH} characters, got {len(cleaned)}"
        )
    return cleaned


class _NominatimStyleProvider:
    """Nominatim-compatible ``search?format=json`` endpoint."""

    name = "nominatim"
    url = "https://nominatim.openstreetmap.org/search"

    def __init__(self, fetcher: RetryingFetcher) -> None:
        self._fetcher = fetcher

    def _params(self, address: str) -> dict[str, str | int]:
        return {"q": address, "format": "json", "limit": 1}

    async def attempt(self, address: str, caller: Caller | None = None) -> ProviderResult[Origin]:
        payload = await self._fetcher.fetch_json(
            "GET", self.url, provider=self.name, params=self._params(address), caller=caller,
        )
        try:
            places = NominatimSearchResponse.model_validate(payload).root
        except ValidationError as e:
            raise ProviderError(self.name, f"unexpected payload: {e.error_count()} errors") from e

        if not places:
            return ProviderResult(provider=self.name, error="no match")

        place = places[0]
        return ProviderResult(
            provider=self.name,
            value=Origin(
                lat=place.lat,
                lng=place.lon,
                raw_address=address,
                display_address=place.display_name or address,
            ),
        )


class NominatimProvider(_NominatimStyleProvider):
    pass


class LocationIQProvider(_NominatimStyleProvider):
    """LocationIQ speaks the Nominatim protocol behind an API key."""

    name = "locationiq"
    url = "https://us1.locationiq.com/v1/search.php"

    def __init__(self, fetcher: RetryingFetcher, api_key: str) -> None:
        super().__init__(fetcher)
        self._api_key = api_key

    def _params(self, address: str) -> dict[str, str | int]:
        return {"key": self._api_key, **super()._params(address)}


def _has_features(payload: Any) -> bool:
    return isinstance(payload, dict) and bool(payload.get("features"))


class PhotonProvider:
    """Komoot Photon, returns GeoJSON features."""

    name = "photon"
    url = "https://photon.komoot.io/api/"

    def __init__(self, fetcher: RetryingFetcher) -> None:
        self._fetcher = fetcher

    async def attempt(self, address: str, caller: Caller | None = None) -> ProviderResult[Origin]:
        payload = await self._fetcher.fetch_json(
            "GET", self.url, provider=self.name, params={"q": address, "limit": 1},
            cache_if=_has_features, caller=caller,
        )
        try:
            response = PhotonResponse.model_validate(payload)
        except ValidationError as e:
            raise ProviderError(self.name, f"unexpected payload: {e.error_count()} errors") from e

        if not response.features:
            return ProviderResult(provider=self.name, error="no match")

        feature = response.features[0]
        lng, lat = feature.geometry.coordinates
        try:
            origin = Origin(
                lat=lat,
                lng=lng,
                raw_address=address,
                display_address=feature.properties.label() or address,
            )
        except ValidationError as e:
            raise ProviderError(self.name, "coordinates out of range") from e
        return ProviderResult(provider=self.name, value=origin)


class GeocodingResolver:
    """Turns a free-form address into an ``Origin``."""

    def __init__(self, providers: list) -> None:
        if not providers:
            raise ValueError("at least one geocoding provider is required")
        self._providers = providers

    @property
    def provider_names(self) -> list[str]:
        return [p.name for p in self._providers]

    async def resolve(
        self,
        address: str,
        caller: Caller | None = None,
        origin_index: Optional[int] = None,
    ) -> Origin:
        """Geocode one address.

        Raises:
            InvalidInput: The address is empty or too long. No provider is called.
            GeocodingFailure: Every provider failed or found nothing.
            RateLimitExceeded: The caller is over quota.
        """
        cleaned = normalize_address(address)

        outcome = await run_provider_chain(
            self._providers,
            lambda provider: provider.attempt(cleaned, caller),
            tag="GEOCODE",
        )
        if outcome.value is None:
            logger.warning(f"[GEOCODE] All providers failed for {cleaned!r}: {outcome.errors}")
            raise GeocodingFailure(cleaned, origin_index=origin_index)

        logger.info(f"[GEOCODE] {cleaned!r} → ({outcome.value.lat:.5f}, {outcome.value.lng:.5f}) via {outcome.provider}")
        return outcome.value


def build_geocoding_providers(settings: Settings, fetcher: RetryingFetcher) -> list:
    providers: list = []
    if settings.locationiq_api_key:
        providers.append(LocationIQProvider(fetcher, settings.locationiq_api_key))
    providers.append(NominatimProvider(fetcher))
    providers.append(PhotonProvider(fetcher))
    return providers
