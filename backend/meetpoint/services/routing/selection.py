"""Choosing and scoring alternate routes."""

import logging
from collections.abc import Sequence

from meetpoint.models import RouteGeometry
from meetpoint.utils.geo import distance_between, locate_midpoint, sample_route

logger = logging.getLogger(__name__)

MAX_DISTANCE_RATIO = 1.4
MAX_DURATION_RATIO = 1.5


def is_reasonable(main: RouteGeometry, candidate: RouteGeometry) -> bool:
    return (
        candidate.distance_meters <= main.distance_meters * MAX_DISTANCE_RATIO
        and candidate.duration_seconds <= main.duration_seconds * MAX_DURATION_RATIO
    )


def select_alternate(main: RouteGeometry, candidates: Sequence[RouteGeometry]) -> RouteGeometry | None:
    """Pick the reasonable candidate whose midpoint lies farthest from the main one.

    Candidates more than 40% longer or 50% slower than ``main`` are dropped.
    Ties go to the earlier candidate. Returns None when nothing is left.
    """
    reasonable = [c for c in candidates if is_reasonable(main, c)]
    if not reasonable:
        return None
    if len(reasonable) == 1:
        return reasonable[0]

    main_mid = locate_midpoint(main)
    best = reasonable[0]
    best_distance = distance_between(main_mid, locate_midpoint(best))

    for candidate in reasonable[1:]:
        separation = distance_between(main_mid, locate_midpoint(candidate))
        if separation > best_distance:
            best, best_distance = candidate, separation

    logger.info(f"[ROUTE] Alternate midpoint {best_distance:.0f}m from main among {len(reasonable)} candidates")
    return best


def route_divergence(main: RouteGeometry, other: RouteGeometry, samples: int = 10) -> float:
    """Mean separation in meters between two routes at equal distance fractions."""
    pairs = zip(sample_route(main, samples), sample_route(other, samples))
    return sum(distance_between(p, q) for p, q in pairs) / samples
