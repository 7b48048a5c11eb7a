"""Origin × destination travel-time matrices.

Strategies:
- HERE Matrix Routing v8 with live traffic (privileged tier, needs a key)
- OSRM table service (everyone else)
- Haversine estimate at an assumed speed (fallback, never fails)

A matrix always comes entirely from one strategy or from the fallback.
Individual cells may still be null when the provider could not route
that pair.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import NDArray
from pydantic import ValidationError

from meetpoint.config import Settings
from meetpoint.exceptions import ProviderError
from meetpoint.models import Caller, Coordinates, MatrixSource, Tier, TravelCell
from meetpoint.models.providers import HereMatrixResponse, OSRMTableResponse
from meetpoint.services.http import RetryingFetcher
from meetpoint.utils.geo import ASSUMED_SPEED_MPS, haversine_matrix

logger = logging.getLogger(__name__)


@dataclass
class TravelMatrix:
    """``cells[i][j]`` is origin i → destination j."""
    cells: list[list[TravelCell]]
    source: MatrixSource
    degraded: bool = False

    def column(self, destination_index: int) -> list[TravelCell]:
        """Cells for one destination, one per origin in origin order."""
        return [row[destination_index] for row in self.cells]


def _to_array(values: list[Optional[float]]) -> NDArray[np.float64]:
    return np.array([np.nan if v is None else v for v in values], dtype=np.float64)


def _cells_from_arrays(durations: NDArray[np.float64], distances: NDArray[np.float64]) -> list[list[TravelCell]]:
    """Build TravelCells from (origins, destinations) arrays; NaN becomes None."""
    rows: list[list[TravelCell]] = []
    for i in range(durations.shape[0]):
        row = []
        for j in range(durations.shape[1]):
            duration = durations[i, j]
            distance = distances[i, j]
            row.append(TravelCell(
                source_index=i,
                duration_seconds=None if np.isnan(duration) else float(duration),
                distance_meters=None if np.isnan(distance) else float(distance),
            ))
        rows.append(row)
    return rows


class MatrixStrategy(ABC):
    name: str
    source: MatrixSource

    @abstractmethod
    async def compute(
        self,
        origins: list[Coordinates],
        destinations: list[Coordinates],
        caller: Caller | None = None,
    ) -> list[list[TravelCell]]:
        """Return cells[i][j]; raise ProviderError on total failure."""


class HereMatrixStrategy(MatrixStrategy):
    """HERE Matrix Routing v8, synchronous mode, departure now."""

    name = "here"
    source = MatrixSource.LIVE_TRAFFIC
    url = "https://matrix.router.hereapi.com/v8/matrix"

    def __init__(self, fetcher: RetryingFetcher, api_key: str) -> None:
        self._fetcher = fetcher
        self._api_key = api_key

    async def compute(
        self,
        origins: list[Coordinates],
        destinations: list[Coordinates],
        caller: Caller | None = None,
    ) -> list[list[TravelCell]]:
        body = {
            "origins": [{"lat": o.lat, "lng": o.lng} for o in origins],
            "destinations": [{"lat": d.lat, "lng": d.lng} for d in destinations],
            "regionDefinition": {"type": "world"},
            "routingMode": "fast",
            "transportMode": "car",
            "matrixAttributes": ["travelTimes", "distances"],
        }
        # Live traffic changes by the minute
        payload = await self._fetcher.fetch_json(
            "POST", self.url, provider=self.name,
            params={"async": "false", "apiKey": self._api_key},
            json=body, use_cache=False, caller=caller,
        )
        try:
            matrix = HereMatrixResponse.model_validate(payload).matrix
        except ValidationError as e:
            raise ProviderError(self.name, f"unexpected payload: {e.error_count()} errors") from e

        n, m = len(origins), len(destinations)
        if (matrix.num_origins, matrix.num_destinations) != (n, m):
            raise ProviderError(
                self.name,
                f"matrix is {matrix.num_origins}x{matrix.num_destinations}, expected {n}x{m}",
            )
        if matrix.travel_times is None or matrix.distances is None:
            raise ProviderError(self.name, "travelTimes or distances missing")
        if len(matrix.travel_times) != n * m or len(matrix.distances) != n * m:
            raise ProviderError(self.name, "flat matrix length does not match dimensions")

        durations = _to_array(matrix.travel_times).reshape(n, m)
        distances = _to_array(matrix.distances).reshape(n, m)

        if matrix.error_codes is not None:
            if len(matrix.error_codes) != n * m:
                raise ProviderError(self.name, "errorCodes length does not match dimensions")
            failed = np.array(matrix.error_codes).reshape(n, m) != 0
            if failed.any():
                logger.warning(f"[MATRIX] HERE could not route {int(failed.sum())} of {n * m} cells")
            durations[failed] = np.nan
            distances[failed] = np.nan

        return _cells_from_arrays(durations, distances)


class OSRMTableStrategy(MatrixStrategy):
    """OSRM table service over origins + destinations."""

    name = "osrm"
    source = MatrixSource.STATIC
    base_url = "https://router.project-osrm.org"

    def __init__(self, fetcher: RetryingFetcher) -> None:
        self._fetcher = fetcher

    async def compute(
        self,
        origins: list[Coordinates],
        destinations: list[Coordinates],
        caller: Caller | None = None,
    ) -> list[list[TravelCell]]:
        n, m = len(origins), len(destinations)
        coords = ";".join(f"{p.lng},{p.lat}" for p in [*origins, *destinations])
        params = {
            "sources": ";".join(str(i) for i in range(n)),
            "destinations": ";".join(str(n + j) for j in range(m)),
            "annotations": "duration,distance",
        }

        payload = await self._fetcher.fetch_json(
            "GET", f"{self.base_url}/table/v1/driving/{coords}",
            provider=self.name, params=params, caller=caller,
        )
        try:
            table = OSRMTableResponse.model_validate(payload)
        except ValidationError as e:
            raise ProviderError(self.name, f"unexpected payload: {e.error_count()} errors") from e

        if table.code != "Ok":
            raise ProviderError(self.name, f"{table.code}: {table.message or ''}".strip())
        if table.durations is None:
            raise ProviderError(self.name, "durations missing")

        if len(table.durations) != n or any(len(row) != m for row in table.durations):
            raise ProviderError(self.name, f"table shape does not match {n}x{m}")

        durations = np.array([_to_array(row) for row in table.durations]).reshape(n, m)
        if table.distances is not None and len(table.distances) == n and all(len(r) == m for r in table.distances):
            distances = np.array([_to_array(row) for row in table.distances]).reshape(n, m)
        else:
            distances = np.full((n, m), np.nan)

        return _cells_from_arrays(durations, distances)


class EstimatedMatrixStrategy(MatrixStrategy):
    """Great-circle distance at the assumed average speed."""

    name = "haversine"
    source = MatrixSource.ESTIMATED

    async def compute(
        self,
        origins: list[Coordinates],
        destinations: list[Coordinates],
        caller: Caller | None = None,
    ) -> list[list[TravelCell]]:
        return self.estimate(origins, destinations)

    @staticmethod
    def estimate(origins: list[Coordinates], destinations: list[Coordinates]) -> list[list[TravelCell]]:
        distances = haversine_matrix(origins, destinations)
        return _cells_from_arrays(distances / ASSUMED_SPEED_MPS, distances)


class TravelTimeMatrixResolver:
    """Chooses a matrix strategy by tier and falls back to an estimate."""

    def __init__(
        self,
        static: MatrixStrategy,
        live: MatrixStrategy | None = None,
    ) -> None:
        self._static = static
        self._live = live
        self._estimated = EstimatedMatrixStrategy()

    def select_strategy(self, tier: Tier) -> MatrixStrategy:
        if tier == Tier.PRIVILEGED and self._live is not None:
            return self._live
        return self._static

    async def resolve(
        self,
        origins: list[Coordinates],
        destinations: list[Coordinates],
        tier: Tier = Tier.STANDARD,
        caller: Caller | None = None,
    ) -> TravelMatrix:
        """Never raises ``ProviderError``; falls back to the estimate."""
        strategy = self.select_strategy(tier)
        if not destinations:
            return TravelMatrix(cells=[[] for _ in origins], source=strategy.source)

        try:
            cells = await strategy.compute(origins, destinations, caller)
        except ProviderError as e:
            logger.warning(f"[MATRIX] {strategy.name} failed, estimating from distance: {e}")
            return TravelMatrix(
                cells=self._estimated.estimate(origins, destinations),
                source=MatrixSource.ESTIMATED,
                degraded=True,
            )

        logger.info(f"[MATRIX] {strategy.name}: {len(origins)}x{len(destinations)}")
        return TravelMatrix(cells=cells, source=strategy.source)


def create_matrix_resolver(settings: Settings, fetcher: RetryingFetcher) -> TravelTimeMatrixResolver:
    live = HereMatrixStrategy(fetcher, settings.here_api_key) if settings.here_api_key else None
    return TravelTimeMatrixResolver(static=OSRMTableStrategy(fetcher), live=live)
