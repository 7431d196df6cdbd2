"""Shared geodesic distance utilities.

Route geometry stores points as ``(lon, lat)`` pairs (GeoJSON order), so the
path helpers unpack them in that order before calling the haversine.
"""
from __future__ import annotations

import math
from typing import Sequence

_EARTH_RADIUS_KM: float = 6371.0  # Earth mean radius in kilometres


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres between two WGS-84 coordinates."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    return _EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def point_distance_km(a: Sequence[float], b: Sequence[float]) -> float:
    """Distance between two ``(lon, lat)`` points."""
    return haversine_km(a[1], a[0], b[1], b[0])


def path_distance_km(points: Sequence[Sequence[float]], from_index: int = 0) -> float:
    """Sum of consecutive segment lengths from ``from_index`` to the last point.

    Returns 0.0 when ``from_index`` is at or past the final point.
    """
    start = max(from_index, 0)
    total = 0.0
    for i in range(start, len(points) - 1):
        total += point_distance_km(points[i], points[i + 1])
    return total
