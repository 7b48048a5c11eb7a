"""Meeting-point pipeline."""

from .service import (
    MeetpointRequest,
    MeetpointResult,
    MeetpointService,
    OriginInput,
    create_meetpoint_service,
)

__all__ = [
    "MeetpointRequest",
    "MeetpointResult",
    "MeetpointService",
    "OriginInput",
    "create_meetpoint_service",
]
