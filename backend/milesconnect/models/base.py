"""Shared declarative base and enums for all models."""
from __future__ import annotations

import enum
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class VehicleStatusEnum(str, enum.Enum):
    IDLE = "idle"
    IN_USE = "in_use"


class DriverStatusEnum(str, enum.Enum):
    IDLE = "idle"
    WORKING = "working"


class ShipmentStatusEnum(str, enum.Enum):
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    # Driver reached the destination; OTP/payment handover pending
    ARRIVED = "arrived"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class TrackingModeEnum(str, enum.Enum):
    # Position advanced by the route simulator
    SIMULATED = "simulated"
    # Position pushed by the driver's device; the simulator must not touch it
    LIVE = "live"


class AlertTypeEnum(str, enum.Enum):
    DELAY = "delay"
    EMERGENCY = "emergency"


class AlertStatusEnum(str, enum.Enum):
    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
