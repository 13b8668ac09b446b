from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from flask import Flask, jsonify, request

from .config import EngineSettings
from .engine import ReservationEngine, parse_selections
from .errors import (
    ConflictDetected,
    InvalidTransitionError,
    NotFoundError,
    OutsideOperatingHoursError,
    ReservationError,
    ReservationStorageError,
    ValidationError,
)
from .notifications import NotificationSink
from .reaper import ExpiryReaper
from .yaml_store import ReservationYamlRepository

ERROR_STATUS_CODES: dict[type[ReservationError], int] = {
    ValidationError: 400,
    OutsideOperatingHoursError: 400,
    NotFoundError: 404,
    ConflictDetected: 409,
    InvalidTransitionError: 409,
}


def create_app(
    data_dir: str | Path | None = None,
    now_provider: Callable[[], datetime] | None = None,
    settings: EngineSettings | None = None,
    notifier: NotificationSink | None = None,
) -> Flask:
    app = Flask(__name__)
    settings = settings or EngineSettings()
    repository = ReservationYamlRepository(data_dir or settings.data_dir)
    engine = ReservationEngine(repository, settings=settings, notifier=notifier, clock=now_provider)
    reaper = ExpiryReaper(engine)
    app.extensions["zone_reservations"] = engine
    app.extensions["zone_reservations.reaper"] = reaper

    @app.errorhandler(ReservationError)
    def handle_reservation_error(error: ReservationError) -> Any:
        status = _status_for(error)
        body: dict[str, Any] = {"ok": False, "error": type(error).__name__, "message": str(error)}
        if isinstance(error, ValidationError) and error.field:
            body["field"] = error.field
        if isinstance(error, OutsideOperatingHoursError):
            body["operating_hours"] = error.operating_hours
            body["requested"] = error.requested
        if isinstance(error, ConflictDetected):
            body["conflicting"] = error.conflicting_interval
        if isinstance(error, InvalidTransitionError):
            body["from_status"] = error.from_status.value
            body["event"] = error.event.value
        return jsonify(body), status

    @app.errorhandler(ReservationStorageError)
    def handle_storage_error(error: ReservationStorageError) -> Any:
        app.logger.error("Reservation store unavailable: %s", error)
        return jsonify({"ok": False, "error": type(error).__name__, "message": str(error)}), 503

    @app.post("/api/reservations")
    def create_reservation() -> Any:
        payload = request.get_json(silent=True) or {}
        record = engine.create_reservation(
            zone_id=str(payload.get("zone_id", "")).strip(),
            requester_id=payload.get("requester_id"),
            on_date=str(payload.get("date", "")),
            start=str(payload.get("start", "")),
            duration_hours=payload.get("duration_hours"),
            notes=payload.get("notes"),
            selections=parse_selections(payload.get("selections")),
        )
        return jsonify({"ok": True, "reservation": record.to_dict()}), 201

    @app.get("/api/reservations/<reservation_id>")
    def get_reservation(reservation_id: str) -> Any:
        return jsonify({"ok": True, "reservation": engine.get_reservation(reservation_id).to_dict()})

    @app.get("/api/zones/<zone_id>/availability/<on_date>")
    def get_availability(zone_id: str, on_date: str) -> Any:
        grid = engine.get_availability(zone_id, on_date)
        return jsonify({"ok": True, "zone_id": zone_id, "date": on_date, **grid.to_dict()})

    @app.post("/api/reservations/<reservation_id>/payment")
    def report_payment(reservation_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        record = engine.report_payment_outcome(
            reservation_id,
            outcome=str(payload.get("outcome", "")),
            external_ref=payload.get("external_ref"),
            reason=payload.get("reason"),
        )
        return jsonify({"ok": True, "reservation": record.to_dict()})

    @app.post("/api/reservations/<reservation_id>/cancel")
    def cancel_reservation(reservation_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        record = engine.cancel_reservation(
            reservation_id,
            actor_id=payload.get("actor_id"),
            reason=payload.get("reason"),
        )
        return jsonify({"ok": True, "reservation": record.to_dict()})

    @app.post("/api/reservations/<reservation_id>/vendor-decision")
    def vendor_decision(reservation_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        record = engine.vendor_decide(
            reservation_id,
            actor_id=payload.get("actor_id"),
            decision=str(payload.get("decision", "")),
            reason=payload.get("reason"),
        )
        return jsonify({"ok": True, "reservation": record.to_dict()})

    @app.post("/api/maintenance/expiry-sweep")
    def expiry_sweep() -> Any:
        result = reaper.run_cycle()
        return jsonify({"ok": True, **result.to_dict()})

    @app.get("/api/maintenance/health")
    def health() -> Any:
        return jsonify({"ok": True, **reaper.health_check()})

    return app


def _status_for(error: ReservationError) -> int:
    for error_type in type(error).__mro__:
        if error_type in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[error_type]
    return 500


if __name__ == "__main__":
    app = create_app()
    app.run(host="127.0.0.1", port=5000, debug=False)
