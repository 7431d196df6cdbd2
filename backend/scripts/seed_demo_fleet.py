"""Seed a small demo fleet for running the route simulator locally.

Inserts the sample drivers and vehicles of a fresh MilesConnect install and,
with ``dispatch=True``, one in-transit shipment whose vehicle carries a
synthetic straight-line route so ``milesconnect run`` has something to move.

Usage:
    from milesconnect.database import SessionLocal
    from scripts.seed_demo_fleet import seed_demo_fleet
    db = SessionLocal()
    seed_demo_fleet(db, dispatch=True)
    db.commit()
"""
from __future__ import annotations

import logging
import math

from sqlalchemy.orm import Session

from milesconnect.models.base import (
    DriverStatusEnum,
    ShipmentStatusEnum,
    TrackingModeEnum,
    VehicleStatusEnum,
)
from milesconnect.models.driver import Driver
from milesconnect.models.shipment import Shipment
from milesconnect.models.vehicle import Vehicle
from milesconnect.schemas.route import RouteGeometry
from milesconnect.utils.geo import path_distance_km

logger = logging.getLogger(__name__)

# (name, email, phone)
DEMO_DRIVERS: list[tuple[str, str, str]] = [
    ("John Smith", "john.smith@email.com", "+1-555-0101"),
    ("Sarah Johnson", "sarah.j@email.com", "+1-555-0102"),
    ("Mike Wilson", "mike.w@email.com", "+1-555-0103"),
]

# (type, license_plate)
DEMO_VEHICLES: list[tuple[str, str]] = [
    ("Truck", "MC-1001"),
    ("Van", "MC-2001"),
    ("Truck", "MC-1002"),
    ("Trailer", "MC-3001"),
]

# Bengaluru: Majestic → Whitefield
DEMO_TRIP = {
    "start_location": "Majestic, Bengaluru",
    "destination": "Whitefield, Bengaluru",
    "start": (77.5713, 12.9767),   # lon, lat
    "end": (77.7500, 12.9698),
}


def straight_route(start: tuple[float, float], end: tuple[float, float],
                   points: int = 120, speed_kmh: float = 30.0) -> RouteGeometry:
    """Evenly spaced polyline from ``start`` to ``end`` with a duration at ``speed_kmh``."""
    coords = [
        (
            start[0] + (end[0] - start[0]) * i / (points - 1),
            start[1] + (end[1] - start[1]) * i / (points - 1),
        )
        for i in range(points)
    ]
    distance_km = path_distance_km(coords)
    return RouteGeometry(
        coordinates=coords,
        duration_seconds=math.ceil(distance_km / speed_kmh * 3600),
        distance_meters=round(distance_km * 1000),
    )


def seed_demo_fleet(db: Session, dispatch: bool = False) -> dict:
    """Insert demo rows that are not present yet. Uses flush; caller commits."""
    drivers = []
    for name, email, phone in DEMO_DRIVERS:
        driver = db.query(Driver).filter(Driver.email == email).first()
        if driver is None:
            driver = Driver(name=name, email=email, phone=phone, status=DriverStatusEnum.IDLE)
            db.add(driver)
        drivers.append(driver)

    vehicles = []
    for vtype, plate in DEMO_VEHICLES:
        vehicle = db.query(Vehicle).filter(Vehicle.license_plate == plate).first()
        if vehicle is None:
            vehicle = Vehicle(type=vtype, license_plate=plate, status=VehicleStatusEnum.IDLE)
            db.add(vehicle)
        vehicles.append(vehicle)
    db.flush()

    shipments = 0
    if dispatch and db.query(Shipment).filter(Shipment.shipment_number == "MC-DEMO-0001").first() is None:
        driver, vehicle = drivers[0], vehicles[0]
        route = straight_route(DEMO_TRIP["start"], DEMO_TRIP["end"])
        db.add(Shipment(
            shipment_number="MC-DEMO-0001",
            start_location=DEMO_TRIP["start_location"],
            destination=DEMO_TRIP["destination"],
            start_lng=DEMO_TRIP["start"][0],
            start_lat=DEMO_TRIP["start"][1],
            dest_lng=DEMO_TRIP["end"][0],
            dest_lat=DEMO_TRIP["end"][1],
            status=ShipmentStatusEnum.IN_TRANSIT,
            driver_id=driver.id,
            vehicle_id=vehicle.id,
        ))
        driver.status = DriverStatusEnum.WORKING
        vehicle.status = VehicleStatusEnum.IN_USE
        vehicle.tracking_mode = TrackingModeEnum.SIMULATED
        vehicle.current_route = route.model_dump(mode="json")
        vehicle.route_index = 0
        vehicle.longitude, vehicle.latitude = route.coordinates[0]
        db.flush()
        shipments = 1

    logger.info("Demo fleet: %d drivers, %d vehicles, %d new shipments", len(drivers), len(vehicles), shipments)
    return {"drivers": len(drivers), "vehicles": len(vehicles), "shipments": shipments}


if __name__ == "__main__":
    from milesconnect.database import SessionLocal, init_db

    logging.basicConfig(level=logging.INFO)
    init_db()
    session = SessionLocal()
    try:
        print(seed_demo_fleet(session, dispatch=True))
        session.commit()
    finally:
        session.close()
