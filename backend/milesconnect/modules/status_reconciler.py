"""Status reconciler: repair busy flags that no longer match an active shipment.

A vehicle is legitimately ``in_use`` (and a driver legitimately ``working``)
only while some ``in_transit`` shipment references it. Anything else is drift
left behind by partial trip completions, manual edits, or cancelled/deleted
shipments that did not release their resources.

``inspect()`` classifies without writing; ``reconcile()`` resets the orphans:
vehicles to idle with route, index and ETA cleared, drivers to idle. Running
``reconcile()`` twice with no state change in between fixes nothing the second
time.
"""
from __future__ import annotations

import logging
from functools import partial

from milesconnect.config import settings
from milesconnect.models.base import (
    DriverStatusEnum,
    ShipmentStatusEnum,
    VehicleStatusEnum,
)
from milesconnect.modules.arrival_handler import released_vehicle_fields
from milesconnect.modules.fleet_store import FleetStore
from milesconnect.utils.fanout import run_concurrently

logger = logging.getLogger(__name__)


def _classify(store: FleetStore) -> dict:
    vehicles = store.list_vehicles(status=VehicleStatusEnum.IN_USE)
    drivers = store.list_drivers(status=DriverStatusEnum.WORKING)
    shipments = store.list_shipments(status=ShipmentStatusEnum.IN_TRANSIT)

    busy_vehicle_ids = {s.vehicle_id for s in shipments if s.vehicle_id}
    busy_driver_ids = {s.driver_id for s in shipments if s.driver_id}

    return {
        "active_shipments": len(shipments),
        "in_use_vehicles": len(vehicles),
        "working_drivers": len(drivers),
        "orphan_vehicles": [v for v in vehicles if v.id not in busy_vehicle_ids],
        "orphan_drivers": [d for d in drivers if d.id not in busy_driver_ids],
    }


def _vehicle_ref(v) -> dict:
    return {"id": v.id, "label": v.license_plate}


def _driver_ref(d) -> dict:
    return {"id": d.id, "label": d.name}


def inspect(store: FleetStore) -> dict:
    """Dry run: report inconsistent vehicles and drivers without changing them.

    Raises:
        StoreError: any of the three loads failed.
    """
    c = _classify(store)
    return {
        "active_shipments": c["active_shipments"],
        "in_use_vehicles": c["in_use_vehicles"],
        "working_drivers": c["working_drivers"],
        "inconsistent_vehicles": [_vehicle_ref(v) for v in c["orphan_vehicles"]],
        "inconsistent_drivers": [_driver_ref(d) for d in c["orphan_drivers"]],
        "needs_sync": bool(c["orphan_vehicles"] or c["orphan_drivers"]),
    }


def reconcile(store: FleetStore, max_workers: int | None = None) -> dict:
    """Reset orphaned busy vehicles and drivers to idle.

    Writes are independent; one that fails is listed under ``failed`` and left
    for the next run. Only successful resets are counted as fixed.

    Raises:
        StoreError: any of the three loads failed (nothing is written).
    """
    c = _classify(store)

    jobs = {}
    for v in c["orphan_vehicles"]:
        jobs[("vehicle", v.id)] = partial(store.update_vehicle, v.id, released_vehicle_fields())
    for d in c["orphan_drivers"]:
        jobs[("driver", d.id)] = partial(store.update_driver, d.id, {"status": DriverStatusEnum.IDLE})

    _, errors = run_concurrently(jobs, max_workers=max_workers or settings.SIMULATION_MAX_WORKERS)

    fixed_vehicles = [v for v in c["orphan_vehicles"] if ("vehicle", v.id) not in errors]
    fixed_drivers = [d for d in c["orphan_drivers"] if ("driver", d.id) not in errors]

    if jobs:
        logger.info(
            "Status sync: %d vehicles and %d drivers reset (%d failed)",
            len(fixed_vehicles), len(fixed_drivers), len(errors),
        )

    return {
        "active_shipments": c["active_shipments"],
        "vehicles_fixed": len(fixed_vehicles),
        "drivers_fixed": len(fixed_drivers),
        "vehicles_fixed_details": [_vehicle_ref(v) for v in fixed_vehicles],
        "drivers_fixed_details": [_driver_ref(d) for d in fixed_drivers],
        "failed": [entity_id for (_, entity_id) in errors],
    }
