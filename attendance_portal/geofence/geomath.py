"""Great-circle distance between GPS coordinates (haversine, spherical earth)."""

from __future__ import annotations

import math
from dataclasses import dataclass

from attendance_portal.common.constants import EARTH_RADIUS_METERS


@dataclass(frozen=True)
class Coordinate:
    """A WGS-84 point in decimal degrees. Range checks live in request schemas."""

    latitude: float
    longitude: float


def distance_meters(a: Coordinate, b: Coordinate) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Returns:
        Distance in meters (0.0 for coincident points).
    """
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    delta_phi = math.radians(b.latitude - a.latitude)
    delta_lambda = math.radians(b.longitude - a.longitude)

    h = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    # Rounding can push h a hair past 1.0 for antipodal points
    h = min(1.0, h)
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def within_radius(a: Coordinate, b: Coordinate, radius_m: float) -> bool:
    """True when *a* lies on or inside the circle of *radius_m* around *b*."""
    return distance_meters(a, b) <= radius_m
