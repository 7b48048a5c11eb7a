"""Meetpoint data models."""

from .core import (
    DEDUP_PRECISION,
    AddressParts,
    Caller,
    CallerClass,
    Coordinates,
    EnrichedPOI,
    MatrixSource,
    Origin,
    POI,
    RouteGeometry,
    Tier,
    TravelCell,
)
from .errors import AppError, ErrorCode, RecoveryOption, Warning, WarningCode

__all__ = [
    "DEDUP_PRECISION",
    "AddressParts",
    "Caller",
    "CallerClass",
    "Coordinates",
    "EnrichedPOI",
    "MatrixSource",
    "Origin",
    "POI",
    "RouteGeometry",
    "Tier",
    "TravelCell",
    "AppError",
    "ErrorCode",
    "RecoveryOption",
    "Warning",
    "WarningCode",
]
