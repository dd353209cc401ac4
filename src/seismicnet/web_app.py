from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from flask import Flask, jsonify, request, session

from .config import ConfigError, load_config
from .db import Db, DbError
from .device import Device, HistoryError, StateHistoryEntry
from .domain import Employee, IllegalTransition, Order, ReasonValue, Session
from .main import build_gateway, configure_logging
from .notifications import NotificationGateway
from .services.closure_service import CloseOrderWorkflow, ValidationError, WorkflowStep, WorkflowStepError
from .services.gateway import PersistenceError, PersistenceGateway

logger = logging.getLogger(__name__)


@dataclass
class _UserState:
    session: Session
    workflow: CloseOrderWorkflow | None = None
    listed: dict[int, Order] = field(default_factory=dict)


def _employee_json(e: Employee | None) -> dict | None:
    if e is None:
        return None
    return {"id": e.id, "name": e.name, "surname": e.surname, "email": e.email}


def _order_json(o: Order) -> dict:
    device = o.station.device
    return {
        "number": o.number,
        "status": o.status.value,
        "issued_at": o.issued_at.isoformat() if o.issued_at else None,
        "completed_at": o.completed_at.isoformat() if o.completed_at else None,
        "closed_at": o.closed_at.isoformat() if o.closed_at else None,
        "closed_observation": o.closed_observation,
        "station": {"code": o.station.code, "name": o.station.name},
        "device": {"id": device.id, "serial_no": device.serial_no, "status": device.status.value},
        "responsible": _employee_json(o.responsible),
    }


def _entry_json(h: StateHistoryEntry) -> dict:
    return {
        "status": h.status.value,
        "started_at": h.started_at.isoformat(),
        "ended_at": h.ended_at.isoformat() if h.ended_at else None,
        "comment": h.comment,
        "responsible": _employee_json(h.responsible),
        "reasons": [
            {"reason_type_id": r.reason_type.id, "description": r.reason_type.description, "comment": r.comment}
            for r in h.reasons
        ],
    }


def _error(status: int, message: str):
    return jsonify({"error": {"status": status, "detail": message}}), status


def _json_object() -> dict | None:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    return payload if isinstance(payload, dict) else None


def create_app(
    db: Db,
    gateway: PersistenceGateway,
    notifier: NotificationGateway,
    *,
    secret_key: str | None = None,
    clock: Callable[[], datetime] = datetime.now,
) -> Flask:
    app = Flask(__name__)
    app.secret_key = secret_key or os.environ.get("SEISMICNET_SECRET_KEY", "change-this-secret-key-in-production")

    # one workflow per logged user, held in process memory
    users: dict[str, _UserState] = {}

    def _state() -> _UserState | None:
        username = session.get("username")
        return users.get(username) if username else None

    def _workflow(state: _UserState) -> CloseOrderWorkflow:
        if state.workflow is None or state.workflow.step == WorkflowStep.CONFIRMED:
            state.workflow = CloseOrderWorkflow(
                db=db,
                gateway=gateway,
                notifier=notifier,
                employee=state.session.employee,
                clock=clock,
            )
        return state.workflow

    @app.errorhandler(ValidationError)
    def _validation_error(e):
        return _error(422, str(e))

    @app.errorhandler(WorkflowStepError)
    def _step_error(e):
        return _error(409, str(e))

    @app.errorhandler(IllegalTransition)
    @app.errorhandler(HistoryError)
    def _state_error(e):
        return _error(409, str(e))

    @app.errorhandler(PersistenceError)
    @app.errorhandler(DbError)
    def _db_error(e):
        logger.warning("Store error: %s", e)
        return _error(503, str(e))

    @app.before_request
    def _require_login():
        if request.endpoint in ("login", "static") or request.endpoint is None:
            return None
        if _state() is None:
            return _error(401, "Login required")
        return None

    @app.route("/login", methods=["POST"])
    def login():
        payload = _json_object()
        if payload is None:
            return _error(400, "request body must be a JSON object")
        username = str(payload.get("username", "")).strip()
        if not username:
            return _error(400, "username is required")
        with db.session() as conn:
            employee = gateway.find_employee_by_username(conn, username)
        if employee is None:
            return _error(401, f"Unknown user: {username}")
        users[username] = _UserState(session=Session(username=username, employee=employee))
        session["username"] = username
        logger.info("User %s logged in as %s", username, employee.full_name)
        return jsonify({"employee": _employee_json(employee)})

    @app.route("/logout", methods=["POST"])
    def logout():
        username = session.pop("username", None)
        state = users.pop(username, None)
        if state is not None:
            state.session.close()
        return jsonify({"ok": True})

    @app.route("/orders")
    def orders_list():
        state = _state()
        workflow = _workflow(state)
        orders = workflow.list_eligible_orders()
        state.listed = {o.number: o for o in orders}
        return jsonify({"orders": [_order_json(o) for o in orders]})

    @app.route("/reason-types")
    def reason_types():
        workflow = _workflow(_state())
        return jsonify(
            {"reason_types": [{"id": rt.id, "description": rt.description} for rt in workflow.available_reason_types()]}
        )

    @app.route("/closure", methods=["GET"])
    def closure_state():
        state = _state()
        workflow = _workflow(state)
        return jsonify(
            {
                "step": workflow.step.value,
                "order": workflow.order.number if workflow.order else None,
                "observation": workflow.observation,
                "reasons": len(workflow.reasons),
            }
        )

    @app.route("/closure/order", methods=["POST"])
    def closure_order():
        state = _state()
        payload = _json_object()
        if payload is None:
            return _error(400, "request body must be a JSON object")
        try:
            number = int(payload.get("number"))
        except (TypeError, ValueError):
            return _error(400, "number must be an integer")
        order = state.listed.get(number)
        if order is None:
            return _error(404, f"Order #{number} is not among the listed orders")
        workflow = _workflow(state)
        workflow.select_order(order)
        return jsonify({"step": workflow.step.value})

    @app.route("/closure/observation", methods=["POST"])
    def closure_observation():
        payload = _json_object()
        if payload is None:
            return _error(400, "request body must be a JSON object")
        workflow = _workflow(_state())
        text = payload.get("text", "")
        workflow.record_observation(str(text))
        return jsonify({"step": workflow.step.value})

    @app.route("/closure/reasons", methods=["POST"])
    def closure_reasons():
        payload = _json_object()
        if payload is None:
            return _error(400, "request body must be a JSON object")
        workflow = _workflow(_state())
        items = payload.get("reasons", [])
        if not isinstance(items, list):
            return _error(400, "reasons must be a list")
        known = {rt.id: rt for rt in workflow.available_reason_types()}
        reasons = []
        for item in items:
            rt = known.get(item.get("reason_type_id")) if isinstance(item, dict) else None
            if rt is None:
                return _error(400, f"Unknown reason type: {item!r}")
            reasons.append(ReasonValue(reason_type=rt, comment=str(item.get("comment", ""))))
        workflow.select_reasons(reasons)
        return jsonify({"step": workflow.step.value})

    @app.route("/closure/confirm", methods=["POST"])
    def closure_confirm():
        state = _state()
        workflow = _workflow(state)
        result = workflow.confirm()
        # the listing predates this close, relist before the next one
        state.listed = {}
        return jsonify(
            {
                "step": workflow.step.value,
                "order": _order_json(result.order),
                "history_entry": _entry_json(result.history_entry) if result.history_entry else None,
                "notified": list(result.recipients),
            }
        )

    @app.route("/closure/cancel", methods=["POST"])
    def closure_cancel():
        workflow = _workflow(_state())
        workflow.cancel()
        return jsonify({"step": workflow.step.value})

    @app.route("/devices/<int:device_id>/history")
    def device_history(device_id: int):
        with db.session() as conn:
            device: Device | None = gateway.find_device(conn, device_id)
        if device is None:
            return _error(404, f"Device {device_id} not found")
        return jsonify(
            {
                "device": {"id": device.id, "serial_no": device.serial_no, "status": device.status.value},
                "history": [_entry_json(h) for h in device.history],
            }
        )

    return app


def main() -> int:
    try:
        cfg = load_config(os.environ.get("SEISMICNET_CONFIG", "config.toml"))
    except ConfigError as e:
        print(f"[CONFIG ERROR] {e}")
        return 2
    configure_logging(cfg)
    app = create_app(Db(cfg.db), build_gateway(), NotificationGateway.from_config(cfg.mail, cfg.dashboard))
    app.run(debug=False, host="127.0.0.1", port=5000)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
