"""DriverAlert entity: delay and emergency reports raised from the driver app."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Float, Text, DateTime, ForeignKey, Enum as SAEnum, func
from sqlalchemy.orm import Mapped, mapped_column
from milesconnect.models.base import Base, AlertTypeEnum, AlertStatusEnum


class DriverAlert(Base):
    __tablename__ = "driver_alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    driver_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("drivers.id", ondelete="SET NULL"), nullable=True, index=True
    )
    shipment_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("shipments.id", ondelete="SET NULL"), nullable=True
    )
    alert_type: Mapped[AlertTypeEnum] = mapped_column(SAEnum(AlertTypeEnum), nullable=False)
    issue: Mapped[str] = mapped_column(String(255), nullable=False)
    custom_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[AlertStatusEnum] = mapped_column(
        SAEnum(AlertStatusEnum), nullable=False, default=AlertStatusEnum.ACTIVE, index=True
    )
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=func.now())
