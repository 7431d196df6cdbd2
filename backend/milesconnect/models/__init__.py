"""Import all models to register them with SQLAlchemy metadata."""
from milesconnect.models.base import Base
from milesconnect.models.driver import Driver
from milesconnect.models.vehicle import Vehicle
from milesconnect.models.shipment import Shipment
from milesconnect.models.driver_alert import DriverAlert

__all__ = [
    "Base",
    "Driver",
    "Vehicle",
    "Shipment",
    "DriverAlert",
]
