"""Simulation scheduler: one tick advances every simulated in-transit vehicle.

A tick:
  1. loads vehicles that are ``in_use`` and in simulated tracking mode
     (live vehicles belong to the driver's GPS feed and are never read or
     written here);
  2. loads the in-transit shipments of those vehicles;
  3. plans each vehicle: skip (no/malformed route), progress, or completion;
  4. issues all vehicle writes concurrently and waits for them.

A load failure aborts the tick before anything is written (``TickFailedError``).
A write failure only affects its own vehicle, which keeps its old index and is
retried on the next tick. Vehicle writes are conditional on the vehicle still
being in use under simulated tracking; one that no longer matches is reported
as skipped. Ticks are serialized in-process: a call that
overlaps a running tick returns immediately with ``busy=True``.

All state is re-read from the store each tick; nothing is cached between ticks.
"""
from __future__ import annotations

import functools
import logging
import random
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from milesconnect.config import settings
from milesconnect.models.base import (
    ShipmentStatusEnum,
    TrackingModeEnum,
    VehicleStatusEnum,
)
from milesconnect.models.shipment import Shipment
from milesconnect.models.vehicle import Vehicle
from milesconnect.modules.arrival_handler import commit_progress, complete_trip, is_arrived
from milesconnect.modules.eta_estimator import estimate_eta
from milesconnect.modules.fleet_store import FleetStore, StoreError
from milesconnect.modules.position_advancer import RandomSource, advance_index
from milesconnect.schemas.route import MalformedRouteError, parse_route
from milesconnect.utils.fanout import run_concurrently

logger = logging.getLogger(__name__)


class TickFailedError(Exception):
    """The tick could not load its working set; nothing was written."""


class TripCompletionError(Exception):
    """One or more end-of-trip writes failed."""


@dataclass
class TickResult:
    updated: int = 0
    arrived: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    busy: bool = False
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class _Plan:
    arrival: bool
    write: Callable[[], bool]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SimulationScheduler:
    def __init__(
        self,
        store: FleetStore,
        *,
        tick_seconds: float | None = None,
        fallback_speed_kmh: float | None = None,
        default_distance_meters: float | None = None,
        jitter_range: tuple[float, float] | None = None,
        max_workers: int | None = None,
        terminal_status: ShipmentStatusEnum | str | None = None,
        resolve_alerts: bool | None = None,
        rng: RandomSource | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.tick_seconds = tick_seconds or settings.SIMULATION_TICK_SECONDS
        self.fallback_speed_kmh = fallback_speed_kmh or settings.SIMULATION_FALLBACK_SPEED_KMH
        self.default_distance_meters = (
            default_distance_meters or settings.SIMULATION_DEFAULT_DISTANCE_METERS
        )
        self.jitter_range = jitter_range or (
            settings.SIMULATION_JITTER_MIN, settings.SIMULATION_JITTER_MAX
        )
        self.max_workers = max_workers or settings.SIMULATION_MAX_WORKERS
        self.terminal_status = ShipmentStatusEnum(
            terminal_status or settings.ARRIVAL_SHIPMENT_STATUS
        )
        self.resolve_alerts = (
            settings.RESOLVE_ALERTS_ON_ARRIVAL if resolve_alerts is None else resolve_alerts
        )
        self._rng = rng or random.Random(settings.SIMULATION_RANDOM_SEED)
        self._clock = clock or _utcnow
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def run_tick(self) -> TickResult:
        """Advance every eligible vehicle once.

        Raises:
            TickFailedError: vehicles or shipments could not be loaded.
        """
        if not self._lock.acquire(blocking=False):
            logger.info("Previous simulation tick still running: skipping this one")
            return TickResult(busy=True)
        try:
            return self._run_tick()
        finally:
            self._lock.release()

    def _run_tick(self) -> TickResult:
        t0 = time.monotonic()
        result = TickResult()

        try:
            vehicles = self.store.list_vehicles(
                status=VehicleStatusEnum.IN_USE,
                tracking_mode=TrackingModeEnum.SIMULATED,
            )
        except StoreError as e:
            logger.error("Simulation tick aborted: could not load vehicles: %s", e)
            raise TickFailedError(str(e)) from e

        if not vehicles:
            result.duration_ms = round((time.monotonic() - t0) * 1000, 1)
            return result

        try:
            shipments = self.store.list_shipments(
                status=ShipmentStatusEnum.IN_TRANSIT,
                vehicle_ids=[v.id for v in vehicles],
            )
        except StoreError as e:
            logger.error("Simulation tick aborted: could not load shipments: %s", e)
            raise TickFailedError(str(e)) from e

        shipment_by_vehicle = _index_shipments(shipments)
        now = self._clock()

        plans: dict[str, _Plan] = {}
        for vehicle in vehicles:
            plan = self._plan(vehicle, shipment_by_vehicle.get(vehicle.id), now)
            if plan is None:
                result.skipped.append(vehicle.id)
            else:
                plans[vehicle.id] = plan

        outcomes, errors = run_concurrently(
            {vid: plan.write for vid, plan in plans.items()},
            max_workers=self.max_workers,
        )

        for vehicle_id, plan in plans.items():
            if vehicle_id in errors:
                result.failed.append(vehicle_id)
                continue
            if not outcomes.get(vehicle_id):
                # went live, idle or away between the load and the write
                result.skipped.append(vehicle_id)
                continue
            result.updated += 1
            if plan.arrival:
                result.arrived.append(vehicle_id)

        result.duration_ms = round((time.monotonic() - t0) * 1000, 1)
        logger.info(
            "Simulation tick: %d updated, %d arrived, %d skipped, %d failed (%.1f ms)",
            result.updated, len(result.arrived), len(result.skipped),
            len(result.failed), result.duration_ms,
        )
        return result

    def _plan(self, vehicle: Vehicle, shipment: Optional[Shipment], now: datetime) -> Optional[_Plan]:
        """Decide this tick's write for one vehicle. None means nothing to simulate."""
        if not vehicle.current_route:
            return None
        try:
            route = parse_route(vehicle.current_route)
        except MalformedRouteError as e:
            logger.warning("Vehicle %s has an unusable route, skipping: %s", vehicle.id, e)
            return None

        points = route.coordinates
        next_index = advance_index(
            points,
            vehicle.route_index or 0,
            self.tick_seconds,
            route.duration_seconds,
            route.distance_meters,
            rng=self._rng,
            jitter_range=self.jitter_range,
            fallback_speed_kmh=self.fallback_speed_kmh,
            default_distance_meters=self.default_distance_meters,
        )

        if is_arrived(next_index, len(points)):
            def _complete() -> bool:
                completion = complete_trip(
                    self.store,
                    vehicle.id,
                    route.last_point,
                    now,
                    shipment_id=shipment.id if shipment else None,
                    driver_id=shipment.driver_id if shipment else None,
                    terminal_status=self.terminal_status,
                    resolve_alerts=self.resolve_alerts,
                )
                if not completion.ok:
                    raise TripCompletionError("; ".join(completion.errors))
                return completion.vehicle_released
            return _Plan(arrival=True, write=_complete)

        eta = estimate_eta(
            points, next_index, now,
            route.duration_seconds, route.distance_meters, self.fallback_speed_kmh,
        )
        return _Plan(
            arrival=False,
            write=functools.partial(commit_progress, self.store, vehicle.id, points, next_index, eta, now),
        )


def _index_shipments(shipments: list[Shipment]) -> dict[str, Shipment]:
    """vehicle_id → its in-transit shipment (first one wins on duplicates)."""
    by_vehicle: dict[str, Shipment] = {}
    for s in shipments:
        if not s.vehicle_id:
            continue
        if s.vehicle_id in by_vehicle:
            logger.warning(
                "Vehicle %s has more than one in-transit shipment (%s, %s): using %s",
                s.vehicle_id, by_vehicle[s.vehicle_id].id, s.id, by_vehicle[s.vehicle_id].id,
            )
            continue
        by_vehicle[s.vehicle_id] = s
    return by_vehicle


def active_vehicle_summary(store: FleetStore) -> dict:
    """In-use vehicles with their position, route progress and ETA (read only)."""
    vehicles = store.list_vehicles(status=VehicleStatusEnum.IN_USE)
    rows = []
    for v in vehicles:
        route_points = 0
        if v.current_route:
            try:
                route_points = parse_route(v.current_route).point_count
            except MalformedRouteError:
                route_points = 0
        progress = None
        if route_points > 1:
            progress = round(min(v.route_index or 0, route_points - 1) / (route_points - 1) * 100, 1)
        rows.append({
            "id": v.id,
            "license_plate": v.license_plate,
            "latitude": v.latitude,
            "longitude": v.longitude,
            "route_index": v.route_index or 0,
            "route_points": route_points,
            "progress_pct": progress,
            "eta": v.eta,
            "tracking_mode": v.tracking_mode or TrackingModeEnum.SIMULATED,
        })
    return {"active_vehicles": len(rows), "vehicles": rows}


@functools.lru_cache(maxsize=1)
def get_scheduler() -> SimulationScheduler:
    """Process-wide scheduler, so overlapping tick requests share one lock."""
    return SimulationScheduler(FleetStore())
