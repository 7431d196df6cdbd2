"""Route geometry value type, as produced by the routing provider at dispatch.

Stored on ``vehicles.current_route`` as JSON. Older rows use the provider's own
keys (``duration``/``distance``); both spellings are accepted on read and the
explicit-unit names are written back.
"""
from __future__ import annotations

import json
import math
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator


class MalformedRouteError(ValueError):
    """Stored route data cannot be used for simulation."""


class RouteGeometry(BaseModel):
    model_config = ConfigDict(frozen=True)

    # [lon, lat] pairs, at least a start and an end
    coordinates: list[tuple[float, float]] = Field(..., min_length=2)
    duration_seconds: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("duration_seconds", "duration")
    )
    distance_meters: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("distance_meters", "distance")
    )

    @field_validator("coordinates")
    @classmethod
    def _check_coordinates(cls, v: list[tuple[float, float]]) -> list[tuple[float, float]]:
        for lon, lat in v:
            if not (math.isfinite(lon) and math.isfinite(lat)):
                raise ValueError("coordinates must be finite numbers")
            if not (-180.0 <= lon <= 180.0 and -90.0 <= lat <= 90.0):
                raise ValueError(f"coordinate out of range: [{lon}, {lat}]")
        return v

    @property
    def point_count(self) -> int:
        return len(self.coordinates)

    @property
    def last_point(self) -> tuple[float, float]:
        return self.coordinates[-1]


def parse_route(raw: Any) -> RouteGeometry:
    """Parse a stored route (dict, JSON string or RouteGeometry).

    Raises:
        MalformedRouteError: unparseable JSON, missing/short coordinate list,
            or non-numeric / out-of-range points.
    """
    if isinstance(raw, RouteGeometry):
        return raw
    if raw is None:
        raise MalformedRouteError("route is empty")
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise MalformedRouteError(f"route is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise MalformedRouteError(f"route must be an object, got {type(raw).__name__}")
    try:
        return RouteGeometry.model_validate(raw)
    except ValidationError as e:
        raise MalformedRouteError(str(e)) from e
