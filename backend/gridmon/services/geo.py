"""
geo.py

Great-circle distances for line routing. Inputs are assumed to be validated
upstream (latitude in [-90, 90], longitude in [-180, 180]).
"""
from __future__ import annotations

import math
from typing import Iterable, Tuple

EARTH_RADIUS_KM = 6371.0


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Haversine distance between two WGS84 coordinates, in kilometres.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def path_length_km(coords: Iterable[Tuple[float, float]]) -> float:
    total = 0.0
    prev = None
    for lat, lon in coords:
        if prev is not None:
            total += distance_km(prev[0], prev[1], lat, lon)
        prev = (lat, lon)
    return total
