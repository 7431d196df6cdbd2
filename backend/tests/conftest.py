"""Shared test fixtures: in-memory fake store, SQLite-backed store, API client."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import threading
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from milesconnect.database import get_db, init_db
from milesconnect.main import app
from milesconnect.models.base import (
    AlertStatusEnum,
    DriverStatusEnum,
    ShipmentStatusEnum,
    TrackingModeEnum,
    VehicleStatusEnum,
)
from milesconnect.modules.fleet_store import FleetStore, StoreError, get_store
from milesconnect.modules.simulation_scheduler import get_scheduler


class FixedRandom:
    """Random source that always returns the same pacing multiplier."""

    def __init__(self, value: float = 1.0):
        self.value = value
        self.calls: list[tuple[float, float]] = []

    def uniform(self, a: float, b: float) -> float:
        self.calls.append((a, b))
        return self.value


class FakeStore:
    """Dict-backed stand-in for FleetStore with failure injection.

    ``reads`` records every list call with its filters; ``writes`` records
    every successful write as ``(table, id, fields)``.
    """

    def __init__(self):
        self.vehicles: dict[str, SimpleNamespace] = {}
        self.shipments: dict[str, SimpleNamespace] = {}
        self.drivers: dict[str, SimpleNamespace] = {}
        self.alerts: dict[str, SimpleNamespace] = {}
        self.reads: list[tuple[str, dict]] = []
        self.writes: list[tuple[str, str, dict]] = []
        self.fail_reads: set[str] = set()
        self.fail_writes: set[tuple[str, str]] = set()
        self._lock = threading.Lock()

    # ── Builders ──────────────────────────────────────────────────────────────

    def add_vehicle(self, id, **kw):
        row = SimpleNamespace(
            id=id,
            type=kw.pop("type", "Truck"),
            license_plate=kw.pop("license_plate", f"MC-{id}"),
            status=kw.pop("status", VehicleStatusEnum.IN_USE),
            tracking_mode=kw.pop("tracking_mode", TrackingModeEnum.SIMULATED),
            current_route=kw.pop("current_route", None),
            route_index=kw.pop("route_index", 0),
            latitude=kw.pop("latitude", None),
            longitude=kw.pop("longitude", None),
            eta=kw.pop("eta", None),
            last_location_update=kw.pop("last_location_update", None),
        )
        assert not kw, f"unexpected vehicle fields: {kw}"
        self.vehicles[id] = row
        return row

    def add_driver(self, id, status=DriverStatusEnum.WORKING, name=None):
        row = SimpleNamespace(id=id, name=name or f"Driver {id}", status=status)
        self.drivers[id] = row
        return row

    def add_shipment(self, id, vehicle_id=None, driver_id=None, status=ShipmentStatusEnum.IN_TRANSIT):
        row = SimpleNamespace(
            id=id, shipment_number=f"SHP-{id}", status=status,
            vehicle_id=vehicle_id, driver_id=driver_id, delivered_at=None,
        )
        self.shipments[id] = row
        return row

    def add_alert(self, id, shipment_id, status=AlertStatusEnum.ACTIVE):
        row = SimpleNamespace(id=id, shipment_id=shipment_id, status=status)
        self.alerts[id] = row
        return row

    # ── Store interface ───────────────────────────────────────────────────────

    def _read(self, name, **filters):
        self.reads.append((name, filters))
        if name in self.fail_reads:
            raise StoreError(f"{name} failed: connection refused")

    def list_vehicles(self, status=None, tracking_mode=None):
        self._read("list_vehicles", status=status, tracking_mode=tracking_mode)
        rows = list(self.vehicles.values())
        if status is not None:
            rows = [v for v in rows if v.status == status]
        if tracking_mode is not None:
            rows = [v for v in rows if (v.tracking_mode or TrackingModeEnum.SIMULATED) == tracking_mode]
        return rows

    def get_vehicle(self, vehicle_id):
        self._read("get_vehicle", vehicle_id=vehicle_id)
        return self.vehicles.get(vehicle_id)

    def list_shipments(self, status=None, vehicle_ids=None):
        self._read("list_shipments", status=status, vehicle_ids=vehicle_ids)
        rows = list(self.shipments.values())
        if status is not None:
            rows = [s for s in rows if s.status == status]
        if vehicle_ids is not None:
            ids = set(vehicle_ids)
            rows = [s for s in rows if s.vehicle_id in ids]
        return rows

    def list_drivers(self, status=None):
        self._read("list_drivers", status=status)
        rows = list(self.drivers.values())
        if status is not None:
            rows = [d for d in rows if d.status == status]
        return rows

    def _update(self, table, rows, row_id, fields, matches=None):
        if (table, row_id) in self.fail_writes:
            raise StoreError(f"update {table} {row_id} failed: timeout")
        with self._lock:
            row = rows.get(row_id)
            if row is None or (matches is not None and not matches(row)):
                return False
            for k, v in fields.items():
                setattr(row, k, v)
            self.writes.append((table, row_id, dict(fields)))
        return True

    def update_vehicle(self, vehicle_id, fields, *, require_in_use=False, require_simulated=False):
        def matches(row):
            if require_in_use and row.status != VehicleStatusEnum.IN_USE:
                return False
            if require_simulated and (row.tracking_mode or TrackingModeEnum.SIMULATED) != TrackingModeEnum.SIMULATED:
                return False
            return True

        return self._update("vehicles", self.vehicles, vehicle_id, fields, matches)

    def update_shipment(self, shipment_id, fields):
        return self._update("shipments", self.shipments, shipment_id, fields)

    def update_driver(self, driver_id, fields):
        return self._update("drivers", self.drivers, driver_id, fields)

    def resolve_shipment_alerts(self, shipment_id):
        if ("driver_alerts", shipment_id) in self.fail_writes:
            raise StoreError("resolve alerts failed")
        count = 0
        with self._lock:
            for alert in self.alerts.values():
                if alert.shipment_id == shipment_id and alert.status == AlertStatusEnum.ACTIVE:
                    alert.status = AlertStatusEnum.RESOLVED
                    count += 1
            self.writes.append(("driver_alerts", shipment_id, {"resolved": count}))
        return count

    def writes_for(self, table, row_id=None):
        return [w for w in self.writes if w[0] == table and (row_id is None or w[1] == row_id)]


def make_route(points=100, duration=300.0, distance=None, start=(77.50, 12.90), step=0.001):
    """Route geometry dict heading east from ``start``, ``points`` long."""
    coords = [[round(start[0] + i * step, 6), start[1]] for i in range(points)]
    return {"coordinates": coords, "duration_seconds": duration, "distance_meters": distance}


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def session_factory(tmp_path):
    """File-backed SQLite database with all tables (threads get their own connections)."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'fleet.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    init_db(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()


@pytest.fixture
def sql_store(session_factory):
    return FleetStore(session_factory)


@pytest.fixture
def mock_db():
    """MagicMock database session for the health endpoint."""
    return MagicMock()


@pytest.fixture
def mock_scheduler():
    return MagicMock()


@pytest.fixture
def api_client(fake_store, mock_scheduler, mock_db):
    """TestClient with store, scheduler and DB dependencies overridden."""
    def override_get_db():
        yield mock_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_store] = lambda: fake_store
    app.dependency_overrides[get_scheduler] = lambda: mock_scheduler
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
