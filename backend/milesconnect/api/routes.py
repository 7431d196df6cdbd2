from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from milesconnect.database import get_db
from milesconnect.modules.fleet_store import FleetStore, StoreError, get_store
from milesconnect.modules.simulation_scheduler import (
    SimulationScheduler,
    TickFailedError,
    active_vehicle_summary,
    get_scheduler,
)
from milesconnect.schemas.simulation import (
    SimulationStatusResponse,
    SyncResultResponse,
    SyncStatusResponse,
    TickResponse,
    TrackingModeUpdateRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------

@router.post("/simulation/tick", response_model=TickResponse, tags=["simulation"])
def simulation_tick(scheduler: SimulationScheduler = Depends(get_scheduler)):
    """Advance every simulated in-transit vehicle by one tick."""
    try:
        result = scheduler.run_tick()
    except TickFailedError as e:
        raise HTTPException(status_code=503, detail=f"Simulation tick failed: {e}")
    return result.to_dict()


@router.get("/simulation/status", response_model=SimulationStatusResponse, tags=["simulation"])
def simulation_status(store: FleetStore = Depends(get_store)):
    """In-use vehicles with position, route progress and ETA."""
    try:
        return active_vehicle_summary(store)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))


# ---------------------------------------------------------------------------
# Fleet consistency
# ---------------------------------------------------------------------------

@router.get("/fleet/sync-status", response_model=SyncStatusResponse, tags=["fleet"])
def fleet_sync_status(store: FleetStore = Depends(get_store)):
    """Report vehicles/drivers marked busy with no in-transit shipment (no changes)."""
    from milesconnect.modules.status_reconciler import inspect

    try:
        return inspect(store)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/fleet/sync-status", response_model=SyncResultResponse, tags=["fleet"])
def fleet_sync(store: FleetStore = Depends(get_store)):
    """Reset orphaned busy vehicles and drivers to idle."""
    from milesconnect.modules.status_reconciler import reconcile

    try:
        return reconcile(store)
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))


# ---------------------------------------------------------------------------
# Vehicles
# ---------------------------------------------------------------------------

@router.put("/vehicles/{vehicle_id}/tracking-mode", tags=["vehicles"])
def update_tracking_mode(
    vehicle_id: str,
    body: TrackingModeUpdateRequest,
    store: FleetStore = Depends(get_store),
):
    """Hand a vehicle over to the driver's GPS feed (live) or back to the simulator."""
    from milesconnect.modules.tracking_mode import VehicleNotFoundError, set_tracking_mode

    try:
        mode = set_tracking_mode(store, vehicle_id, body.tracking_mode)
    except VehicleNotFoundError:
        raise HTTPException(status_code=404, detail="Vehicle not found")
    except StoreError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"id": vehicle_id, "tracking_mode": mode.value}


# ---------------------------------------------------------------------------
# System
# ---------------------------------------------------------------------------

@router.get("/health", tags=["system"])
def health_check(db: Session = Depends(get_db)):
    """Health check with DB latency measurement."""
    from sqlalchemy import text
    from milesconnect.main import APP_VERSION

    t0 = time.time()
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception as e:
        db_status = f"error: {e}"
    latency_ms = round((time.time() - t0) * 1000, 1)

    return {
        "status": "ok",
        "version": APP_VERSION,
        "database": {"status": db_status, "latency_ms": latency_ms},
    }
