"""Driving routes and alternate selection."""

from .selection import route_divergence, select_alternate
from .service import (
    OpenRouteServiceProvider,
    OSRMProvider,
    RouteProvider,
    RouteSet,
    build_route_providers,
    straight_line_route,
    synthetic_alternate,
)

__all__ = [
    "OpenRouteServiceProvider",
    "OSRMProvider",
    "RouteProvider",
    "RouteSet",
    "build_route_providers",
    "route_divergence",
    "select_alternate",
    "straight_line_route",
    "synthetic_alternate",
]
