"""Row-level read/write access to vehicles, drivers, shipments and alerts.

Every call opens its own session and commits on its own: writes to different
tables are independent and never share a transaction. Callers that need
"all or nothing" across entities must compensate themselves (see the status
reconciler). Rows returned by the list methods are detached from their session
with all column attributes loaded.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from milesconnect.models.base import (
    AlertStatusEnum,
    DriverStatusEnum,
    ShipmentStatusEnum,
    TrackingModeEnum,
    VehicleStatusEnum,
)
from milesconnect.models.driver import Driver
from milesconnect.models.driver_alert import DriverAlert
from milesconnect.models.shipment import Shipment
from milesconnect.models.vehicle import Vehicle

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """A store read or write failed (connection, query or constraint error)."""


def _is_simulated():
    return or_(
        Vehicle.tracking_mode == TrackingModeEnum.SIMULATED,
        Vehicle.tracking_mode.is_(None),
    )


class FleetStore:
    def __init__(self, session_factory: sessionmaker | None = None):
        if session_factory is None:
            from milesconnect.database import SessionLocal
            session_factory = SessionLocal
        self._session_factory = session_factory

    @contextmanager
    def _session(self, action: str) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(f"{action} failed: {e}") from e
        finally:
            db.close()

    # ── Reads ─────────────────────────────────────────────────────────────────

    def list_vehicles(
        self,
        status: Optional[VehicleStatusEnum] = None,
        tracking_mode: Optional[TrackingModeEnum] = None,
    ) -> list[Vehicle]:
        """Vehicles matching the filters. A NULL tracking mode counts as simulated."""
        with self._session("list_vehicles") as db:
            q = db.query(Vehicle)
            if status is not None:
                q = q.filter(Vehicle.status == status)
            if tracking_mode == TrackingModeEnum.SIMULATED:
                q = q.filter(_is_simulated())
            elif tracking_mode is not None:
                q = q.filter(Vehicle.tracking_mode == tracking_mode)
            return q.all()

    def get_vehicle(self, vehicle_id: str) -> Optional[Vehicle]:
        with self._session("get_vehicle") as db:
            return db.query(Vehicle).filter(Vehicle.id == vehicle_id).first()

    def list_shipments(
        self,
        status: Optional[ShipmentStatusEnum] = None,
        vehicle_ids: Optional[Iterable[str]] = None,
    ) -> list[Shipment]:
        if vehicle_ids is not None:
            vehicle_ids = list(vehicle_ids)
            if not vehicle_ids:
                return []
        with self._session("list_shipments") as db:
            q = db.query(Shipment)
            if status is not None:
                q = q.filter(Shipment.status == status)
            if vehicle_ids is not None:
                q = q.filter(Shipment.vehicle_id.in_(vehicle_ids))
            return q.all()

    def list_drivers(self, status: Optional[DriverStatusEnum] = None) -> list[Driver]:
        with self._session("list_drivers") as db:
            q = db.query(Driver)
            if status is not None:
                q = q.filter(Driver.status == status)
            return q.all()

    # ── Writes ────────────────────────────────────────────────────────────────

    def _update(self, model, row_id: str, fields: dict[str, Any], *criteria) -> bool:
        with self._session(f"update {model.__tablename__} {row_id}") as db:
            matched = (
                db.query(model)
                .filter(model.id == row_id, *criteria)
                .update(fields, synchronize_session=False)
            )
            db.commit()
        if not matched:
            logger.debug("No %s row with id %s", model.__tablename__, row_id)
        return bool(matched)

    def update_vehicle(
        self,
        vehicle_id: str,
        fields: dict[str, Any],
        *,
        require_in_use: bool = False,
        require_simulated: bool = False,
    ) -> bool:
        """Partial update of one vehicle. Returns False when no row matched.

        The ``require_*`` flags are checked in the UPDATE itself, so a vehicle
        handed to live tracking or idled after it was read is left untouched.
        """
        criteria = []
        if require_in_use:
            criteria.append(Vehicle.status == VehicleStatusEnum.IN_USE)
        if require_simulated:
            criteria.append(_is_simulated())
        return self._update(Vehicle, vehicle_id, fields, *criteria)

    def update_shipment(self, shipment_id: str, fields: dict[str, Any]) -> bool:
        return self._update(Shipment, shipment_id, fields)

    def update_driver(self, driver_id: str, fields: dict[str, Any]) -> bool:
        return self._update(Driver, driver_id, fields)

    def resolve_shipment_alerts(self, shipment_id: str) -> int:
        """Mark every active alert raised for ``shipment_id`` as resolved."""
        with self._session(f"resolve alerts for shipment {shipment_id}") as db:
            count = (
                db.query(DriverAlert)
                .filter(
                    DriverAlert.shipment_id == shipment_id,
                    DriverAlert.status == AlertStatusEnum.ACTIVE,
                )
                .update({"status": AlertStatusEnum.RESOLVED}, synchronize_session=False)
            )
            db.commit()
        return count


def get_store() -> FleetStore:
    """FastAPI dependency: store bound to the application's session factory."""
    return FleetStore()
