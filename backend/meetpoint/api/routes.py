"""API routes for Meetpoint.

The gateway in front of this service authenticates callers and forwards
their identity in ``X-Caller-Id`` and their service tier in
``X-Caller-Tier``. Anonymous callers are identified by network address.

Pipeline errors are raised, not returned: the exception handlers in
``meetpoint.main`` turn them into the ``{"success": false, "error": ...}``
envelope with the right status code.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field

from meetpoint.models import AppError, Caller, Origin, Tier
from meetpoint.services.meetpoint import MeetpointRequest, MeetpointResult, MeetpointService

logger = logging.getLogger(__name__)

router = APIRouter()


def get_meetpoint_service(request: Request) -> MeetpointService:
    return request.app.state.meetpoint


def get_caller(
    request: Request,
    x_caller_id: Optional[str] = Header(default=None),
    x_caller_tier: Optional[str] = Header(default=None),
) -> Caller:
    """Build the caller from gateway headers. Unknown tiers count as standard."""
    try:
        tier = Tier((x_caller_tier or Tier.STANDARD.value).strip().lower())
    except ValueError:
        logger.info(f"Ignoring unknown caller tier {x_caller_tier!r}")
        tier = Tier.STANDARD

    host = request.client.host if request.client else "unknown"
    return Caller(caller_id=x_caller_id or None, tier=tier, network_address=host)


class MeetpointResponse(BaseModel):
    """Response model for a meeting-point search."""
    success: bool
    result: Optional[MeetpointResult] = None
    error: Optional[AppError] = None


class GeocodeRequest(BaseModel):
    """Request model for geocoding one address."""
    address: str = Field(..., description="Free-form address, 3-255 characters")


class GeocodeResponse(BaseModel):
    """Response model for geocoding."""
    success: bool
    origin: Optional[Origin] = None
    error: Optional[AppError] = None


@router.post("/meetpoint", response_model=MeetpointResponse)
async def find_meetpoint(
    request: MeetpointRequest,
    caller: Caller = Depends(get_caller),
    service: MeetpointService = Depends(get_meetpoint_service),
) -> MeetpointResponse:
    """Find a fair meeting point and nearby venues for two or more origins.

    Two origins are routed and met at the route midpoint (plus an alternate
    route's midpoint); more origins meet at their centroid, which needs the
    privileged tier.
    """
    logger.info(f"[API] meetpoint: {len(request.origins)} origins, caller={caller.caller_class.value}")
    result = await service.find(request, caller)
    return MeetpointResponse(success=True, result=result)


@router.post("/geocode", response_model=GeocodeResponse)
async def geocode_address(
    request: GeocodeRequest,
    caller: Caller = Depends(get_caller),
    service: MeetpointService = Depends(get_meetpoint_service),
) -> GeocodeResponse:
    """Geocode a single address through the provider chain."""
    origin = await service.geocoder.resolve(request.address, caller=caller)
    return GeocodeResponse(success=True, origin=origin)
