"""Great-circle distance between location fixes."""

from __future__ import annotations

import math

from taxi_meter.models import Coordinate

# mean Earth radius; the meter does not model the ellipsoid
EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in kilometers between two points given in degrees."""

    lat1_rad, lat2_rad = math.radians(lat1), math.radians(lat2)
    half_dlat = math.radians(lat2 - lat1) / 2.0
    half_dlon = math.radians(lon2 - lon1) / 2.0

    h = math.sin(half_dlat) ** 2 + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(half_dlon) ** 2
    # rounding can push h a hair past 1 for antipodal points
    return 2.0 * EARTH_RADIUS_KM * math.asin(math.sqrt(min(1.0, h)))


def distance_km_between(a: Coordinate, b: Coordinate) -> float:
    """Distance from ``a`` to ``b`` in kilometers."""

    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)
