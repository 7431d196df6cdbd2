"""ETA estimator: arrival time from the share of the route still ahead.

Remaining time is the route's travel time scaled by the fraction of points
left, ``(N - next_index) / N``. Source of the travel time, in order:

1. provider duration (traffic-aware) when known and positive;
2. provider distance at the fallback speed;
3. haversine length of the remaining polyline at the fallback speed.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Sequence

from milesconnect.config import settings
from milesconnect.utils.geo import path_distance_km


def remaining_fraction(point_count: int, next_index: int) -> float:
    if point_count <= 0:
        return 0.0
    fraction = (point_count - next_index) / point_count
    return min(max(fraction, 0.0), 1.0)


def remaining_seconds(
    points: Sequence[Sequence[float]],
    next_index: int,
    total_duration_seconds: Optional[float] = None,
    total_distance_meters: Optional[float] = None,
    fallback_speed_kmh: float | None = None,
) -> float:
    speed = fallback_speed_kmh or settings.SIMULATION_FALLBACK_SPEED_KMH
    fraction = remaining_fraction(len(points), next_index)

    if total_duration_seconds and total_duration_seconds > 0:
        return total_duration_seconds * fraction
    if total_distance_meters and total_distance_meters > 0:
        # Scaled by remaining point share, not measured along the remaining
        # polyline; the two agree only for evenly spaced geometry.
        return (total_distance_meters / 1000.0) / speed * 3600.0 * fraction
    remaining_km = path_distance_km(points, next_index)
    return remaining_km / speed * 3600.0


def estimate_eta(
    points: Sequence[Sequence[float]],
    next_index: int,
    now: datetime,
    total_duration_seconds: Optional[float] = None,
    total_distance_meters: Optional[float] = None,
    fallback_speed_kmh: float | None = None,
) -> datetime:
    """Absolute arrival timestamp; never earlier than ``now``."""
    seconds = remaining_seconds(
        points, next_index, total_duration_seconds, total_distance_meters, fallback_speed_kmh
    )
    return now + timedelta(seconds=max(seconds, 0.0))
