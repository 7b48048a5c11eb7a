"""Error and warning envelopes returned to API clients."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    GEOCODING_FAILED = "GEOCODING_FAILED"
    TIER_REQUIRED = "TIER_REQUIRED"
    RATE_LIMITED = "RATE_LIMITED"
    API_ERROR = "API_ERROR"


class WarningCode(str, Enum):
    """Flags for fields that were produced by a fallback."""

    ROUTE_ESTIMATED = "ROUTE_ESTIMATED"
    ALTERNATE_SYNTHETIC = "ALTERNATE_SYNTHETIC"
    POI_SEARCH_PARTIAL = "POI_SEARCH_PARTIAL"
    TRAVEL_TIMES_ESTIMATED = "TRAVEL_TIMES_ESTIMATED"


class RecoveryOption(BaseModel):
    label: str
    action: str
    params: Optional[dict[str, Any]] = None


class AppError(BaseModel):
    code: ErrorCode
    message: str = Field(..., description="Technical message for logs and debugging")
    user_message: str = Field(..., description="Message safe to show to end users")
    recovery_options: list[RecoveryOption] = Field(default_factory=list)


class Warning(BaseModel):
    code: WarningCode
    message: str
