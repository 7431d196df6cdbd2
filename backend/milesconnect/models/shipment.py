"""Shipment entity: one dispatched delivery, optionally bound to a driver and vehicle."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Float, DateTime, ForeignKey, Enum as SAEnum, func
from sqlalchemy.orm import Mapped, mapped_column
from milesconnect.models.base import Base, ShipmentStatusEnum


class Shipment(Base):
    __tablename__ = "shipments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    shipment_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False)
    start_location: Mapped[str] = mapped_column(String(500), nullable=False)
    destination: Mapped[str] = mapped_column(String(500), nullable=False)
    start_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    start_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    dest_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    dest_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    status: Mapped[ShipmentStatusEnum] = mapped_column(
        SAEnum(ShipmentStatusEnum), nullable=False, default=ShipmentStatusEnum.PENDING, index=True
    )
    revenue: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    driver_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("drivers.id", ondelete="SET NULL"), nullable=True, index=True
    )
    vehicle_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("vehicles.id", ondelete="SET NULL"), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())
    # Set exactly once, when the trip completes as delivered
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
