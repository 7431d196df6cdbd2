"""Pydantic schemas for simulator and fleet-consistency endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from milesconnect.models.base import TrackingModeEnum


class TickResponse(BaseModel):
    updated: int
    arrived: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    busy: bool = False
    duration_ms: float = 0.0


class ActiveVehicle(BaseModel):
    id: str
    license_plate: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    route_index: int = 0
    route_points: int = 0
    progress_pct: Optional[float] = None
    eta: Optional[datetime] = None
    tracking_mode: TrackingModeEnum = TrackingModeEnum.SIMULATED


class SimulationStatusResponse(BaseModel):
    active_vehicles: int
    vehicles: list[ActiveVehicle]


class FleetEntityRef(BaseModel):
    id: str
    label: Optional[str] = None


class SyncStatusResponse(BaseModel):
    active_shipments: int
    in_use_vehicles: int
    working_drivers: int
    inconsistent_vehicles: list[FleetEntityRef]
    inconsistent_drivers: list[FleetEntityRef]
    needs_sync: bool


class SyncResultResponse(BaseModel):
    active_shipments: int
    vehicles_fixed: int
    drivers_fixed: int
    vehicles_fixed_details: list[FleetEntityRef]
    drivers_fixed_details: list[FleetEntityRef]
    failed: list[str] = Field(default_factory=list)


class TrackingModeUpdateRequest(BaseModel):
    tracking_mode: TrackingModeEnum
