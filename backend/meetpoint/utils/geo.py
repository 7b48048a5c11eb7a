"""Geodesic helpers: haversine distances, points along polylines, centroids.

Route coordinates are ``(lng, lat)`` pairs (GeoJSON order); everything else
takes latitude first.
"""

import logging
import math
from collections.abc import Sequence

import numpy as np
from numpy.typing import NDArray

from meetpoint.models import Coordinates, RouteGeometry

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371e3

# ~50 km/h, used wherever a duration has to be estimated from a distance
ASSUMED_SPEED_MPS = 13.89

METERS_PER_DEGREE = 111000.0


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in kilometers."""
    return haversine_meters(lat1, lng1, lat2, lng2) / 1000


def distance_between(a: Coordinates, b: Coordinates) -> float:
    return haversine_meters(a.lat, a.lng, b.lat, b.lng)


def haversine_matrix(
    origins: Sequence[Coordinates], destinations: Sequence[Coordinates]
) -> NDArray[np.float64]:
    """Pairwise great-circle distances in meters, shape (origins, destinations)."""
    if not origins or not destinations:
        return np.zeros((len(origins), len(destinations)), dtype=np.float64)

    o = np.radians(np.array([[p.lat, p.lng] for p in origins], dtype=np.float64))
    d = np.radians(np.array([[p.lat, p.lng] for p in destinations], dtype=np.float64))

    lat1 = o[:, 0][:, np.newaxis]
    lat2 = d[:, 0][np.newaxis, :]
    d_lat = lat2 - lat1
    d_lng = d[:, 1][np.newaxis, :] - o[:, 1][:, np.newaxis]

    a = np.sin(d_lat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(d_lng / 2) ** 2
    return EARTH_RADIUS_M * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def polyline_length(coordinates: Sequence[tuple[float, float]]) -> float:
    """Sum of haversine segment lengths, skipping non-finite segments."""
    total = 0.0
    for (lng1, lat1), (lng2, lat2) in zip(coordinates, coordinates[1:]):
        segment = haversine_meters(lat1, lng1, lat2, lng2)
        if math.isfinite(segment):
            total += segment
    return total


def _last_finite(coordinates: Sequence[tuple[float, float]]) -> Coordinates:
    for lng, lat in reversed(coordinates):
        if math.isfinite(lat) and math.isfinite(lng):
            return Coordinates(lat=lat, lng=lng)
    return Coordinates(lat=0.0, lng=0.0)


def point_at_distance(coordinates: Sequence[tuple[float, float]], target_m: float) -> Coordinates:
    """Walk the polyline and return the point ``target_m`` meters from its start.

    Interpolates linearly within the segment where the cumulative length
    first reaches the target. Degrades instead of failing: a zero-length
    segment gives its start, a non-finite ratio gives the segment start and
    a target beyond the end gives the last coordinate.
    """
    cumulative = 0.0

    for i, ((lng1, lat1), (lng2, lat2)) in enumerate(zip(coordinates, coordinates[1:])):
        segment = haversine_meters(lat1, lng1, lat2, lng2)
        if not math.isfinite(segment):
            logger.warning(f"[GEO] Skipping non-finite segment {i}")
            continue

        if cumulative + segment >= target_m:
            ratio = 0.0 if segment == 0 else (target_m - cumulative) / segment

            if not math.isfinite(ratio) or not 0.0 <= ratio <= 1.0:
                logger.warning(f"[GEO] Invalid ratio {ratio} in segment {i}, using segment start")
                return Coordinates(lat=lat1, lng=lng1)

            return Coordinates(
                lat=lat1 + ratio * (lat2 - lat1),
                lng=lng1 + ratio * (lng2 - lng1),
            )

        cumulative += segment

    logger.warning("[GEO] Target distance not reached along route, using last coordinate")
    return _last_finite(coordinates)


def locate_midpoint(route: RouteGeometry) -> Coordinates:
    """Point at 50% of the route's reported distance."""
    return point_at_distance(route.coordinates, route.distance_meters / 2)


def sample_route(route: RouteGeometry, samples: int = 10) -> list[Coordinates]:
    """Points at evenly spaced fractions of the polyline's own length, ends included."""
    if samples < 2:
        raise ValueError("samples must be at least 2")

    total = polyline_length(route.coordinates)
    return [
        point_at_distance(route.coordinates, total * i / (samples - 1))
        for i in range(samples)
    ]


def centroid(points: Sequence[Coordinates]) -> Coordinates | None:
    """Arithmetic mean of latitudes and longitudes, or None for no points.

    Geometric only: the result need not lie on any travelable path.
    ``math.fsum`` keeps the result independent of input order.
    """
    if not points:
        return None
    n = len(points)
    return Coordinates(
        lat=math.fsum(p.lat for p in points) / n,
        lng=math.fsum(p.lng for p in points) / n,
    )
