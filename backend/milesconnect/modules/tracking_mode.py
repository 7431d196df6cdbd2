"""Tracking-mode handover between the route simulator and the driver's GPS feed."""
from __future__ import annotations

import logging

from milesconnect.models.base import TrackingModeEnum
from milesconnect.modules.fleet_store import FleetStore

logger = logging.getLogger(__name__)


class VehicleNotFoundError(LookupError):
    pass


def set_tracking_mode(store: FleetStore, vehicle_id: str, mode: TrackingModeEnum | str) -> TrackingModeEnum:
    """Switch a vehicle between simulated and live tracking.

    Once live, the scheduler stops touching the vehicle; switching back to
    simulated resumes from the stored route index.
    """
    mode = TrackingModeEnum(mode)
    if not store.update_vehicle(vehicle_id, {"tracking_mode": mode}):
        raise VehicleNotFoundError(f"Vehicle {vehicle_id} not found")
    logger.info("Vehicle %s tracking mode set to %s", vehicle_id, mode.value)
    return mode
