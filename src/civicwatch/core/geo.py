from __future__ import annotations
from dataclasses import dataclass
from math import atan2, cos, radians, sin, sqrt
from typing import Protocol

"""
Geospatial helpers.

Every "inside radius" decision in the engine (nearby map filter, watch-zone
matching) goes through `DistanceCalculator`, so both use the same Earth radius
and the same formula.
"""

EARTH_RADIUS_KM = 6371.0


class LatLng(Protocol):
    """Anything carrying `lat`/`lng` in decimal degrees."""

    lat: float
    lng: float


def haversine_km(a: LatLng, b: LatLng, earth_radius_km: float = EARTH_RADIUS_KM) -> float:
    """Compute great-circle distance in kilometers between two points.

    Ranges are not validated; callers pass well-formed coordinates.
    """
    lat1 = radians(a.lat)
    lat2 = radians(b.lat)
    dlat = radians(b.lat - a.lat)
    dlng = radians(b.lng - a.lng)

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlng / 2) ** 2
    # Rounding can push h a hair above 1 for antipodal points.
    h = min(1.0, h)
    return 2 * earth_radius_km * atan2(sqrt(h), sqrt(1 - h))


@dataclass(frozen=True)
class DistanceCalculator:
    """Haversine distance bound to one Earth-radius constant."""

    earth_radius_km: float = EARTH_RADIUS_KM

    def distance_km(self, a: LatLng, b: LatLng) -> float:
        return haversine_km(a, b, self.earth_radius_km)


def format_distance(distance_km: float) -> str:
    """Human-readable distance: meters below 1 km, otherwise one decimal km."""
    if distance_km < 1:
        return f"{round(distance_km * 1000)}m"
    return f"{distance_km:.1f}km"
