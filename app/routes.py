"""HTTP routes for the spa backend: health checks and appointments."""
from __future__ import annotations

from datetime import datetime

from flask import Blueprint, Flask, current_app, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .appointments import (book_appointment, cancel_appointment, list_appointments,
                           update_appointment_services)
from .closing import close_appointment
from .errors import MissingBranchError, ValidationError, register_error_handlers
from .extensions import db

bp = Blueprint("api", __name__)


def active_branch_id() -> str:
    """Branch the request acts on, taken from the X-Branch-Id header."""
    branch_id = (request.headers.get("X-Branch-Id") or "").strip()
    if not branch_id:
        raise MissingBranchError("X-Branch-Id header is required")
    return branch_id


def json_body() -> dict[str, object]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def json_integer(data: dict[str, object], field: str, default: int | None = None) -> int:
    """Read a whole number from a JSON body; fractional values are rejected, not truncated."""
    value = data.get(field)
    if value is None and default is not None:
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise ValidationError(f"{field} must be an integer")


def _service_ids(data: dict[str, object]) -> list[str]:
    service_ids = data.get("service_ids")
    if not isinstance(service_ids, list) or not all(isinstance(s, str) and s for s in service_ids):
        raise ValidationError("service_ids must be a non-empty list of service ids")
    return service_ids


@bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
    """
    return jsonify({"status": "ok"}), 200


@bp.get("/db-health")
def database_health() -> tuple[dict[str, str], int]:
    """Check connectivity to the configured database.
    ---
    tags:
      - Health
    responses:
      200:
        description: Database connection is ok.
      500:
        description: Database connection failed.
    """
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        current_app.logger.exception("Database connectivity check failed", exc_info=exc)
        return jsonify({"database": "unavailable"}), 500

    return jsonify({"database": "ok"}), 200


@bp.get("/appointments")
def list_branch_appointments() -> tuple[dict[str, object], int]:
    """List the appointments of the active branch ordered by scheduled time.
    ---
    tags:
      - Appointments
    parameters:
      - name: X-Branch-Id
        in: header
        type: string
        required: true
    responses:
      200:
        description: Appointments of the branch
      400:
        description: Missing branch header
    """
    branch_id = active_branch_id()
    return jsonify({"items": list_appointments(db.session, branch_id)}), 200


@bp.post("/appointments")
def create_appointment() -> tuple[dict[str, object], int]:
    """Book a pending appointment with one or more services.
    ---
    tags:
      - Appointments
    parameters:
      - name: X-Branch-Id
        in: header
        type: string
        required: true
      - in: body
        name: body
        required: true
        schema:
          properties:
            customer_id:
              type: string
            employee_id:
              type: string
            service_ids:
              type: array
              items:
                type: string
            scheduled_at:
              type: string
              format: date-time
            advance_cents:
              type: integer
    responses:
      201:
        description: Appointment booked
      400:
        description: Invalid input or inactive services
      404:
        description: Customer or employee not found
    """
    branch_id = active_branch_id()
    data = json_body()
    service_ids = _service_ids(data)

    if "scheduled_at" not in data:
        return jsonify({"error": "invalid_input", "message": "scheduled_at is required"}), 400
    try:
        scheduled_at = datetime.fromisoformat(str(data["scheduled_at"]).replace("Z", "+00:00"))
    except ValueError:
        return jsonify({"error": "invalid_datetime", "message": "Invalid datetime format"}), 400

    advance_cents = json_integer(data, "advance_cents", default=0)

    appointment = book_appointment(
        db.session,
        branch_id,
        data.get("customer_id"),
        service_ids,
        scheduled_at,
        employee_id=data.get("employee_id"),
        advance_cents=advance_cents,
    )
    return jsonify({"appointment": appointment.to_dict()}), 201


@bp.patch("/appointments/<appointment_id>/services")
def edit_appointment_services(appointment_id: str) -> tuple[dict[str, object], int]:
    """Replace the services of a pending appointment and recompute its total.
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: appointment_id
        required: true
        type: string
      - in: body
        name: body
        required: true
        schema:
          properties:
            service_ids:
              type: array
              items:
                type: string
            employee_id:
              type: string
    responses:
      200:
        description: Appointment updated
      400:
        description: Invalid services or appointment of another branch
      404:
        description: Appointment not found
      409:
        description: Appointment already closed or cancelled
    """
    branch_id = active_branch_id()
    data = json_body()
    appointment = update_appointment_services(
        db.session,
        appointment_id,
        branch_id,
        _service_ids(data),
        employee_id=data.get("employee_id"),
    )
    return jsonify({"appointment": appointment.to_dict(), "message": "Appointment services updated"}), 200


@bp.post("/appointments/<appointment_id>/cancel")
def cancel_branch_appointment(appointment_id: str) -> tuple[dict[str, object], int]:
    """Cancel an open appointment, recording the reason.
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: appointment_id
        required: true
        type: string
      - in: body
        name: body
        required: true
        schema:
          properties:
            reason:
              type: string
              minLength: 5
    responses:
      200:
        description: Appointment cancelled
      400:
        description: Missing reason or appointment of another branch
      404:
        description: Appointment not found
      409:
        description: Appointment already closed or cancelled
    """
    branch_id = active_branch_id()
    data = json_body()
    appointment = cancel_appointment(db.session, appointment_id, branch_id, str(data.get("reason") or ""))
    return jsonify({"appointment": appointment.to_dict()}), 200


@bp.post("/appointments/<appointment_id>/close")
def close_branch_appointment(appointment_id: str) -> tuple[dict[str, object], int]:
    """Close (sell) a pending appointment.

    Consumes recipe materials from the branch stock, awards loyalty points,
    records the employee commission and audits the sale in one transaction.
    ---
    tags:
      - Appointments
    parameters:
      - in: path
        name: appointment_id
        required: true
        type: string
      - in: body
        name: body
        required: false
        schema:
          properties:
            employee_id:
              type: string
              description: Employee to credit when none was assigned at booking
    responses:
      200:
        description: Appointment closed
      400:
        description: Appointment belongs to another branch
      404:
        description: Appointment or employee not found
      409:
        description: Insufficient stock, or appointment not pending
      500:
        description: Database error, nothing was changed
    """
    branch_id = active_branch_id()
    data = json_body()
    result = close_appointment(db.session, appointment_id, branch_id, employee_id=data.get("employee_id"))
    return jsonify(result.to_dict()), 200


def register_routes(app: Flask) -> None:
    from .routes_extended import bp_ext

    app.register_blueprint(bp)
    app.register_blueprint(bp_ext)
    register_error_handlers(app)
