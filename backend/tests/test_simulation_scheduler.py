"""Tests for the simulation tick: vehicle selection, pacing, arrival, failure isolation."""
from __future__ import annotations

import json
import random
import threading
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeStore, FixedRandom, make_route
from milesconnect.models.base import (
    DriverStatusEnum,
    ShipmentStatusEnum,
    TrackingModeEnum,
    VehicleStatusEnum,
)
from milesconnect.modules.simulation_scheduler import (
    SimulationScheduler,
    TickFailedError,
    TickResult,
    active_vehicle_summary,
)

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _scheduler(store, rng=None, **kw):
    kw.setdefault("tick_seconds", 3.0)
    kw.setdefault("terminal_status", ShipmentStatusEnum.DELIVERED)
    kw.setdefault("resolve_alerts", True)
    kw.setdefault("max_workers", 4)
    return SimulationScheduler(store, rng=rng or FixedRandom(1.0), clock=lambda: NOW, **kw)


def _dispatch(store, vid="v1", route=None, index=0, **vehicle_kw):
    """Vehicle in use on a route, with a working driver and an in-transit shipment."""
    store.add_vehicle(vid, current_route=route or make_route(), route_index=index, **vehicle_kw)
    store.add_driver(f"d-{vid}")
    store.add_shipment(f"s-{vid}", vehicle_id=vid, driver_id=f"d-{vid}")


# ── Selection ─────────────────────────────────────────────────────────────────

def test_empty_fleet(fake_store):
    result = _scheduler(fake_store).run_tick()
    assert result.updated == 0
    assert result.arrived == [] and result.skipped == [] and result.failed == []
    assert fake_store.writes == []
    # shipments are not queried when nothing is in use
    assert [name for name, _ in fake_store.reads] == ["list_vehicles"]


def test_loads_only_in_use_simulated_vehicles(fake_store):
    _scheduler(fake_store).run_tick()
    _, filters = fake_store.reads[0]
    assert filters == {"status": VehicleStatusEnum.IN_USE, "tracking_mode": TrackingModeEnum.SIMULATED}


def test_live_vehicle_never_touched(fake_store):
    _dispatch(fake_store, "live", tracking_mode=TrackingModeEnum.LIVE, latitude=12.34, longitude=77.77)
    _dispatch(fake_store, "sim")

    result = _scheduler(fake_store).run_tick()

    assert result.updated == 1
    assert fake_store.writes_for("vehicles", "live") == []
    live = fake_store.vehicles["live"]
    assert (live.latitude, live.longitude, live.route_index) == (12.34, 77.77, 0)
    assert "live" not in result.skipped


def test_null_tracking_mode_is_simulated(fake_store):
    _dispatch(fake_store, "v1", tracking_mode=None)
    result = _scheduler(fake_store).run_tick()
    assert result.updated == 1
    assert fake_store.vehicles["v1"].route_index == 1


def test_idle_vehicle_ignored(fake_store):
    fake_store.add_vehicle("idle", status=VehicleStatusEnum.IDLE, current_route=make_route())
    result = _scheduler(fake_store).run_tick()
    assert result.updated == 0
    assert fake_store.writes == []


# ── Skips ─────────────────────────────────────────────────────────────────────

def test_vehicle_without_route_skipped(fake_store):
    fake_store.add_vehicle("v1", current_route=None)
    result = _scheduler(fake_store).run_tick()
    assert result.skipped == ["v1"]
    assert result.updated == 0
    assert fake_store.writes == []


@pytest.mark.parametrize("route", [
    {"coordinates": [[77.5, 12.9]]},
    {"coordinates": "not-a-list"},
    {"duration_seconds": 300},
    "{broken json",
])
def test_malformed_route_skipped(fake_store, route):
    _dispatch(fake_store, "bad", route=route)
    _dispatch(fake_store, "good")

    result = _scheduler(fake_store).run_tick()

    assert result.skipped == ["bad"]
    assert result.updated == 1
    assert fake_store.writes_for("vehicles", "bad") == []


# ── Progress ──────────────────────────────────────────────────────────────────

def test_progress_writes_position_and_eta(fake_store):
    route = make_route(points=100, duration=300.0)
    _dispatch(fake_store, "v1", route=route)

    result = _scheduler(fake_store).run_tick()

    assert result.updated == 1 and result.arrived == []
    v = fake_store.vehicles["v1"]
    assert v.route_index == 1
    assert [v.longitude, v.latitude] == route["coordinates"][1]
    assert v.eta == NOW + timedelta(seconds=297)
    assert v.last_location_update == NOW
    assert v.status == VehicleStatusEnum.IN_USE
    # shipment is untouched mid-route
    assert fake_store.writes_for("shipments") == []
    assert fake_store.shipments["s-v1"].status == ShipmentStatusEnum.IN_TRANSIT


def test_progress_resumes_from_stored_index(fake_store):
    _dispatch(fake_store, "v1", route=make_route(points=1000, duration=300.0), index=400)
    _scheduler(fake_store).run_tick()
    assert fake_store.vehicles["v1"].route_index == 410


def test_distance_fallback_eta(fake_store):
    """No duration, 9 km: full-route ETA is 1080 s at 30 km/h."""
    route = make_route(points=1000, duration=None, distance=9000)
    _dispatch(fake_store, "v1", route=route)

    _scheduler(fake_store).run_tick()

    v = fake_store.vehicles["v1"]
    assert v.route_index == 3
    assert v.eta == NOW + timedelta(seconds=1080 * 997 / 1000)


def test_route_stored_as_json_string(fake_store):
    _dispatch(fake_store, "v1", route=json.dumps(make_route()))
    result = _scheduler(fake_store).run_tick()
    assert result.updated == 1
    assert fake_store.vehicles["v1"].route_index == 1


def test_provider_key_aliases(fake_store):
    route = make_route(points=1000, duration=None)
    del route["duration_seconds"]
    route["duration"] = 300.0
    _dispatch(fake_store, "v1", route=route)
    _scheduler(fake_store).run_tick()
    assert fake_store.vehicles["v1"].route_index == 10


# ── Arrival ───────────────────────────────────────────────────────────────────

def test_two_point_route_arrives_on_first_tick(fake_store):
    route = make_route(points=2, duration=30.0)
    _dispatch(fake_store, "v1", route=route)
    fake_store.add_alert("a1", "s-v1")

    result = _scheduler(fake_store).run_tick()

    assert result.arrived == ["v1"]
    assert result.updated == 1
    shipment = fake_store.shipments["s-v1"]
    assert shipment.status == ShipmentStatusEnum.DELIVERED
    assert shipment.delivered_at == NOW
    assert fake_store.drivers["d-v1"].status == DriverStatusEnum.IDLE
    v = fake_store.vehicles["v1"]
    assert v.status == VehicleStatusEnum.IDLE
    assert v.current_route is None and v.route_index == 0 and v.eta is None
    assert [v.longitude, v.latitude] == route["coordinates"][-1]


def test_arrived_terminal_status(fake_store):
    _dispatch(fake_store, "v1", route=make_route(points=2, duration=30.0))
    _scheduler(fake_store, terminal_status="arrived").run_tick()
    assert fake_store.shipments["s-v1"].status == ShipmentStatusEnum.ARRIVED
    assert fake_store.shipments["s-v1"].delivered_at is None
    assert fake_store.vehicles["v1"].status == VehicleStatusEnum.IDLE


def test_arrival_without_shipment_releases_vehicle(fake_store):
    fake_store.add_vehicle("v1", current_route=make_route(points=2, duration=30.0))

    result = _scheduler(fake_store).run_tick()

    assert result.arrived == ["v1"]
    assert fake_store.vehicles["v1"].status == VehicleStatusEnum.IDLE
    assert fake_store.writes_for("shipments") == []


def test_vehicle_already_at_end_arrives(fake_store):
    _dispatch(fake_store, "v1", route=make_route(points=50), index=49)
    result = _scheduler(fake_store).run_tick()
    assert result.arrived == ["v1"]


def test_hundred_point_route_finishes_in_paced_ticks(fake_store):
    _dispatch(fake_store, "v1", route=make_route(points=100, duration=300.0))
    scheduler = _scheduler(fake_store, rng=random.Random(42))

    ticks = 0
    while fake_store.vehicles["v1"].status == VehicleStatusEnum.IN_USE:
        result = scheduler.run_tick()
        ticks += 1
        assert ticks <= 200
    assert 83 <= ticks <= 125
    assert result.arrived == ["v1"]
    assert fake_store.shipments["s-v1"].status == ShipmentStatusEnum.DELIVERED


def test_index_never_decreases_across_ticks(fake_store):
    _dispatch(fake_store, "v1", route=make_route(points=500, duration=120.0))
    scheduler = _scheduler(fake_store, rng=random.Random(3))
    seen = []
    while fake_store.vehicles["v1"].status == VehicleStatusEnum.IN_USE:
        scheduler.run_tick()
        seen.append(fake_store.vehicles["v1"].route_index)
    progress = seen[:-1]  # final release resets the index
    assert progress == sorted(progress)
    assert all(0 < i <= 499 for i in progress)


def test_first_in_transit_shipment_wins(fake_store):
    fake_store.add_vehicle("v1", current_route=make_route(points=2, duration=30.0))
    fake_store.add_driver("d1")
    fake_store.add_shipment("s1", vehicle_id="v1", driver_id="d1")
    fake_store.add_shipment("s2", vehicle_id="v1", driver_id="d1")

    _scheduler(fake_store).run_tick()

    assert fake_store.shipments["s1"].status == ShipmentStatusEnum.DELIVERED
    assert fake_store.shipments["s2"].status == ShipmentStatusEnum.IN_TRANSIT


# ── Failures ──────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("read", ["list_vehicles", "list_shipments"])
def test_load_failure_aborts_tick(fake_store, read):
    _dispatch(fake_store, "v1")
    fake_store.fail_reads.add(read)

    with pytest.raises(TickFailedError):
        _scheduler(fake_store).run_tick()
    assert fake_store.writes == []


def test_write_failure_isolated_to_its_vehicle(fake_store):
    for vid in ("v1", "v2", "v3"):
        _dispatch(fake_store, vid)
    fake_store.fail_writes.add(("vehicles", "v2"))

    result = _scheduler(fake_store).run_tick()

    assert result.updated == 2
    assert result.failed == ["v2"]
    assert fake_store.vehicles["v1"].route_index == 1
    assert fake_store.vehicles["v2"].route_index == 0
    assert fake_store.vehicles["v3"].route_index == 1


def test_failed_vehicle_retried_next_tick(fake_store):
    _dispatch(fake_store, "v1")
    fake_store.fail_writes.add(("vehicles", "v1"))
    scheduler = _scheduler(fake_store)

    assert scheduler.run_tick().failed == ["v1"]
    fake_store.fail_writes.clear()
    result = scheduler.run_tick()
    assert result.updated == 1
    assert fake_store.vehicles["v1"].route_index == 1


def test_partial_completion_counts_as_failed(fake_store):
    _dispatch(fake_store, "v1", route=make_route(points=2, duration=30.0))
    fake_store.fail_writes.add(("drivers", "d-v1"))

    result = _scheduler(fake_store).run_tick()

    assert result.failed == ["v1"]
    assert result.arrived == []
    # vehicle is still released so it is not stuck in_use
    assert fake_store.vehicles["v1"].status == VehicleStatusEnum.IDLE


def test_vehicle_deleted_mid_tick_is_skipped(fake_store):
    _dispatch(fake_store, "v1")
    scheduler = _scheduler(fake_store)
    real_update = fake_store.update_vehicle

    def vanish(vehicle_id, fields, **kw):
        fake_store.vehicles.pop(vehicle_id, None)
        return real_update(vehicle_id, fields, **kw)

    fake_store.update_vehicle = vanish
    result = scheduler.run_tick()
    assert result.skipped == ["v1"]
    assert result.failed == [] and result.updated == 0


def _change_after_load(store, vehicle_id, **fields):
    """Apply ``fields`` to a vehicle once the tick has loaded its working set."""
    real_list_shipments = store.list_shipments

    def list_then_change(**kw):
        rows = real_list_shipments(**kw)
        for k, v in fields.items():
            setattr(store.vehicles[vehicle_id], k, v)
        return rows

    store.list_shipments = list_then_change


def test_live_handover_mid_tick_keeps_gps_position(fake_store):
    _dispatch(fake_store, "v1")
    _change_after_load(fake_store, "v1", tracking_mode=TrackingModeEnum.LIVE, latitude=1.0, longitude=2.0)

    result = _scheduler(fake_store).run_tick()

    assert result.skipped == ["v1"]
    assert result.updated == 0 and result.failed == []
    v = fake_store.vehicles["v1"]
    assert (v.latitude, v.longitude, v.route_index, v.eta) == (1.0, 2.0, 0, None)
    assert fake_store.writes_for("vehicles") == []


def test_live_handover_mid_tick_on_arrival_keeps_gps_position(fake_store):
    _dispatch(fake_store, "v1", route=make_route(points=2, duration=30.0))
    _change_after_load(fake_store, "v1", tracking_mode=TrackingModeEnum.LIVE, latitude=1.0, longitude=2.0)

    result = _scheduler(fake_store).run_tick()

    assert result.skipped == ["v1"]
    assert result.arrived == []
    v = fake_store.vehicles["v1"]
    assert (v.latitude, v.longitude) == (1.0, 2.0)
    assert v.current_route is not None
    assert fake_store.writes_for("vehicles") == []


def test_vehicle_idled_mid_tick_gets_no_progress(fake_store):
    _dispatch(fake_store, "v1")
    _change_after_load(fake_store, "v1", status=VehicleStatusEnum.IDLE, current_route=None)

    result = _scheduler(fake_store).run_tick()

    assert result.skipped == ["v1"]
    v = fake_store.vehicles["v1"]
    assert v.eta is None and v.route_index == 0


# ── Serialization ─────────────────────────────────────────────────────────────

def test_overlapping_tick_returns_busy():
    entered = threading.Event()
    release = threading.Event()

    class SlowStore(FakeStore):
        def list_vehicles(self, **kw):
            entered.set()
            release.wait(5)
            return super().list_vehicles(**kw)

    store = SlowStore()
    scheduler = _scheduler(store)
    results = []
    worker = threading.Thread(target=lambda: results.append(scheduler.run_tick()))
    worker.start()
    assert entered.wait(5)

    assert scheduler.running
    overlap = scheduler.run_tick()
    release.set()
    worker.join(5)

    assert overlap.busy is True
    assert overlap.updated == 0
    assert results and results[0].busy is False
    assert not scheduler.running


def test_tick_result_to_dict():
    result = TickResult(updated=2, arrived=["v1"], failed=["v2"])
    assert result.to_dict() == {
        "updated": 2, "arrived": ["v1"], "skipped": [], "failed": ["v2"],
        "busy": False, "duration_ms": 0.0,
    }


# ── Summary ───────────────────────────────────────────────────────────────────

def test_active_vehicle_summary(fake_store):
    fake_store.add_vehicle("v1", current_route=make_route(points=101), route_index=25,
                           latitude=12.9, longitude=77.525, eta=NOW)
    fake_store.add_vehicle("v2", current_route={"coordinates": "junk"}, tracking_mode=None)
    fake_store.add_vehicle("v3", status=VehicleStatusEnum.IDLE)

    summary = active_vehicle_summary(fake_store)

    assert summary["active_vehicles"] == 2
    rows = {r["id"]: r for r in summary["vehicles"]}
    assert rows["v1"]["route_points"] == 101
    assert rows["v1"]["progress_pct"] == 25.0
    assert rows["v1"]["eta"] == NOW
    assert rows["v2"]["route_points"] == 0
    assert rows["v2"]["progress_pct"] is None
    assert rows["v2"]["tracking_mode"] == TrackingModeEnum.SIMULATED
    assert fake_store.writes == []
