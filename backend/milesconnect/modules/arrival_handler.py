"""Arrival detection and the end-of-trip state transition.

Arrival is a closed boundary: reaching the last polyline point counts.

On arrival the owning shipment, its driver, its active alerts and the vehicle
are written as four independent store calls, in that order. The store has no
cross-table transaction, so a crash between writes can leave drift behind:

  - shipment updated, vehicle not released: the next tick finds no in-transit
    shipment for the vehicle, arrives again and releases it;
  - driver left ``working``: repaired by the status reconciler.

The vehicle release is always attempted, even when earlier writes failed, and
writing it twice is harmless. It only applies while the vehicle is still under
simulated tracking: a vehicle handed to live GPS mid-tick keeps its position.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from milesconnect.models.base import (
    DriverStatusEnum,
    ShipmentStatusEnum,
    VehicleStatusEnum,
)
from milesconnect.modules.fleet_store import FleetStore, StoreError

logger = logging.getLogger(__name__)

_TERMINAL_STATUSES = (ShipmentStatusEnum.DELIVERED, ShipmentStatusEnum.ARRIVED)


def is_arrived(next_index: int, point_count: int) -> bool:
    return next_index >= point_count - 1


def released_vehicle_fields(final_point: Optional[Sequence[float]] = None,
                            now: Optional[datetime] = None) -> dict:
    """Column values for a vehicle with no trip: idle, route and ETA cleared."""
    fields: dict = {
        "status": VehicleStatusEnum.IDLE,
        "current_route": None,
        "route_index": 0,
        "eta": None,
    }
    if final_point is not None:
        fields["longitude"] = final_point[0]
        fields["latitude"] = final_point[1]
    if now is not None:
        fields["last_location_update"] = now
    return fields


@dataclass
class CompletionResult:
    vehicle_id: str
    shipment_id: Optional[str] = None
    shipment_updated: bool = False
    driver_released: bool = False
    alerts_resolved: int = 0
    vehicle_released: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def commit_progress(
    store: FleetStore,
    vehicle_id: str,
    points: Sequence[Sequence[float]],
    next_index: int,
    eta: datetime,
    now: datetime,
) -> bool:
    """Persist an in-progress step. The shipment is not touched.

    Returns False when the vehicle is no longer in use under simulated
    tracking (handed to live GPS, idled or deleted since it was loaded).
    """
    lon, lat = points[next_index][0], points[next_index][1]
    return store.update_vehicle(
        vehicle_id,
        {
            "latitude": lat,
            "longitude": lon,
            "route_index": next_index,
            "eta": eta,
            "last_location_update": now,
        },
        require_in_use=True,
        require_simulated=True,
    )


def complete_trip(
    store: FleetStore,
    vehicle_id: str,
    final_point: Sequence[float],
    now: datetime,
    shipment_id: Optional[str] = None,
    driver_id: Optional[str] = None,
    terminal_status: ShipmentStatusEnum = ShipmentStatusEnum.DELIVERED,
    resolve_alerts: bool = True,
) -> CompletionResult:
    """Close out a trip whose vehicle reached the end of its route.

    With no owning shipment (drift), only the vehicle is released so it is
    never left ``in_use`` without a destination.
    """
    terminal_status = ShipmentStatusEnum(terminal_status)
    if terminal_status not in _TERMINAL_STATUSES:
        raise ValueError(f"Unsupported terminal shipment status: {terminal_status.value}")

    result = CompletionResult(vehicle_id=vehicle_id, shipment_id=shipment_id)

    if shipment_id is not None:
        shipment_fields: dict = {"status": terminal_status}
        if terminal_status == ShipmentStatusEnum.DELIVERED:
            shipment_fields["delivered_at"] = now
        try:
            result.shipment_updated = store.update_shipment(shipment_id, shipment_fields)
        except StoreError as e:
            logger.warning("Vehicle %s: shipment %s not closed: %s", vehicle_id, shipment_id, e)
            result.errors.append(f"shipment: {e}")

        if driver_id is not None:
            try:
                result.driver_released = store.update_driver(
                    driver_id, {"status": DriverStatusEnum.IDLE}
                )
            except StoreError as e:
                logger.warning("Vehicle %s: driver %s not released: %s", vehicle_id, driver_id, e)
                result.errors.append(f"driver: {e}")

        if resolve_alerts:
            try:
                result.alerts_resolved = store.resolve_shipment_alerts(shipment_id)
            except StoreError as e:
                logger.warning("Vehicle %s: alerts for %s not resolved: %s", vehicle_id, shipment_id, e)
                result.errors.append(f"alerts: {e}")
    else:
        logger.warning("Vehicle %s arrived with no in-transit shipment: releasing vehicle only", vehicle_id)

    try:
        result.vehicle_released = store.update_vehicle(
            vehicle_id, released_vehicle_fields(final_point, now), require_simulated=True
        )
    except StoreError as e:
        logger.warning("Vehicle %s not released: %s", vehicle_id, e)
        result.errors.append(f"vehicle: {e}")

    return result
