"""Position advancer: how far along its route polyline a vehicle moves per tick.

Pacing is tied to the route's travel time rather than to polyline density:
a route the routing provider says takes ``D`` seconds is walked in roughly
``D / tick`` ticks, however many points its geometry has.

  points_per_tick = ceil(N / (D / tick)),  at least 1

When the provider gave no usable duration, ``D`` is estimated from the route
distance at the fallback average speed (30 km/h, 10 km when distance is also
unknown). A uniform multiplier in [0.8, 1.2] is applied per tick so motion
does not look mechanical; the random source is injectable so trajectories can
be pinned in tests.
"""
from __future__ import annotations

import math
import random
from typing import Optional, Protocol, Sequence

from milesconnect.config import settings


class RandomSource(Protocol):
    def uniform(self, a: float, b: float) -> float: ...


def fallback_duration_seconds(
    total_distance_meters: Optional[float],
    fallback_speed_kmh: float | None = None,
    default_distance_meters: float | None = None,
) -> float:
    """Travel time for a route with no provider duration, at the fallback speed."""
    speed = fallback_speed_kmh or settings.SIMULATION_FALLBACK_SPEED_KMH
    distance_m = total_distance_meters or default_distance_meters or settings.SIMULATION_DEFAULT_DISTANCE_METERS
    return (distance_m / 1000.0) / speed * 3600.0


def points_per_tick(
    point_count: int,
    elapsed_seconds: float,
    total_duration_seconds: Optional[float] = None,
    total_distance_meters: Optional[float] = None,
    fallback_speed_kmh: float | None = None,
    default_distance_meters: float | None = None,
) -> int:
    """Base number of polyline points to advance per tick, before jitter."""
    if total_duration_seconds and total_duration_seconds > 0:
        duration = total_duration_seconds
    else:
        duration = fallback_duration_seconds(
            total_distance_meters, fallback_speed_kmh, default_distance_meters
        )
    total_ticks = duration / elapsed_seconds
    return max(1, math.ceil(point_count / total_ticks))


def jittered(base_points: int, rng: RandomSource, jitter_range: tuple[float, float]) -> int:
    """Apply the pacing multiplier; never fewer than one point."""
    low, high = jitter_range
    return max(1, round(base_points * rng.uniform(low, high)))


def advance_index(
    points: Sequence[Sequence[float]],
    current_index: int,
    elapsed_seconds: float | None = None,
    total_duration_seconds: Optional[float] = None,
    total_distance_meters: Optional[float] = None,
    *,
    rng: RandomSource | None = None,
    jitter_range: tuple[float, float] | None = None,
    fallback_speed_kmh: float | None = None,
    default_distance_meters: float | None = None,
) -> int:
    """Index the vehicle moves to on this tick.

    The result is never behind ``current_index`` and never past the last
    point, so every route arrives in a finite number of ticks. A negative
    stored index is treated as the start of the route.
    """
    last = len(points) - 1
    current = min(max(current_index, 0), last)
    if current >= last:
        return last

    base = points_per_tick(
        len(points),
        elapsed_seconds or settings.SIMULATION_TICK_SECONDS,
        total_duration_seconds,
        total_distance_meters,
        fallback_speed_kmh,
        default_distance_meters,
    )
    if jitter_range is None:
        jitter_range = (settings.SIMULATION_JITTER_MIN, settings.SIMULATION_JITTER_MAX)
    step = jittered(base, rng or random, jitter_range)
    return min(current + step, last)
