"""Vehicle entity: fleet unit with its simulated trip state."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Float, DateTime, JSON, Enum as SAEnum, func
from sqlalchemy.orm import Mapped, mapped_column
from milesconnect.models.base import Base, VehicleStatusEnum, TrackingModeEnum


class Vehicle(Base):
    __tablename__ = "vehicles"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    license_plate: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    status: Mapped[VehicleStatusEnum] = mapped_column(
        SAEnum(VehicleStatusEnum), nullable=False, default=VehicleStatusEnum.IDLE, index=True
    )
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    last_location_update: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # Serialized RouteGeometry: {"coordinates": [[lon, lat], ...], "duration_seconds", "distance_meters"}
    current_route: Mapped[Optional[dict]] = mapped_column(JSON(none_as_null=True), nullable=True)
    route_index: Mapped[int] = mapped_column(Integer, default=0)
    eta: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    # NULL is read as simulated (rows created before live tracking existed)
    tracking_mode: Mapped[Optional[TrackingModeEnum]] = mapped_column(
        SAEnum(TrackingModeEnum), nullable=True, default=TrackingModeEnum.SIMULATED
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())
