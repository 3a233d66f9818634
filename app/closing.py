"""Appointment closing: the sale of a pending appointment.

Closing consumes the recipe materials of every booked service from the
branch inventory, credits loyalty points to the customer, records the
employee commission, writes an audit entry and marks the appointment
``closed``. All of it happens in the caller's session and is committed once;
any failure rolls every write back and leaves the appointment ``pending``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import (AlreadyClosedError, BranchMismatchError, InsufficientStockError,
                     InvalidStateError, NotFoundError, SpaError, TransactionFailureError)
from .models import Appointment, Branch, Employee
from .repositories import (append_audit_entry, append_commission_entry, append_points_entry,
                           decrement_stock, find_appointment_by_id, find_employee,
                           find_service_recipe, find_stock, update_appointment_state)

DEFAULT_POINTS_RATE = Decimal("0.05")


@dataclass
class ClosingResult:
    appointment_id: str
    branch_id: str
    state: str
    message: str
    points_awarded: int = 0
    commission_cents: int = 0
    stock_movements: list[dict[str, object]] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.appointment_id,
            "branch_id": self.branch_id,
            "state": self.state,
            "message": self.message,
            "points_awarded": self.points_awarded,
            "commission_cents": self.commission_cents,
            "stock_movements": self.stock_movements,
        }


def calculate_points(total_cents: int, rate: Decimal) -> int:
    """Points earned for a sale: ``floor(total * rate)`` with the total in currency units."""
    total = Decimal(total_cents) / 100
    return int((total * rate).to_integral_value(rounding=ROUND_FLOOR))


def calculate_commission_cents(total_cents: int, percent: Decimal) -> int:
    return int((Decimal(total_cents) * Decimal(percent) / 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def material_requirements(session: Session, appointment: Appointment) -> dict[str, Decimal]:
    """Total quantity of each material needed by all services of an appointment."""
    required: dict[str, Decimal] = {}
    for line in appointment.services:
        for material_id, quantity in find_service_recipe(session, line.service_id):
            required[material_id] = required.get(material_id, Decimal("0")) + quantity
    return required


def close_appointment(
    session: Session,
    appointment_id: str,
    branch_id: str,
    *,
    employee_id: str | None = None,
    points_rate: Decimal | None = None,
) -> ClosingResult:
    """Close a pending appointment of ``branch_id`` as one transaction.

    Raises NotFoundError, BranchMismatchError, AlreadyClosedError,
    InvalidStateError or InsufficientStockError before anything is written,
    and TransactionFailureError when the database cannot commit.
    """
    if points_rate is None:
        # str() first so a float from a config file keeps its decimal value
        points_rate = Decimal(str(current_app.config.get("POINTS_RATE", DEFAULT_POINTS_RATE)))

    try:
        result = _close(session, appointment_id, branch_id, employee_id, points_rate)
        session.commit()
    except SpaError as exc:
        session.rollback()
        current_app.logger.warning(
            "Close of appointment %s rejected (%s): %s", appointment_id, exc.code, exc.message
        )
        if current_app.config.get("AUDIT_FAILED_CLOSES"):
            _audit_rejected_close(session, appointment_id, branch_id, exc)
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        current_app.logger.exception("Failed to close appointment %s", appointment_id, exc_info=exc)
        raise TransactionFailureError("The appointment could not be closed, nothing was changed") from exc

    current_app.logger.info(
        "Closed appointment %s at branch %s: %d points, %d commission cents",
        appointment_id,
        branch_id,
        result.points_awarded,
        result.commission_cents,
    )
    return result


def _close(
    session: Session,
    appointment_id: str,
    branch_id: str,
    employee_id: str | None,
    points_rate: Decimal,
) -> ClosingResult:
    appointment = find_appointment_by_id(session, appointment_id, for_update=True)
    if appointment is None:
        raise NotFoundError("Appointment not found", appointment_id=appointment_id)
    if appointment.branch_id != branch_id:
        raise BranchMismatchError(
            "Appointment does not belong to the active branch",
            appointment_id=appointment_id,
        )
    if appointment.status == "closed":
        raise AlreadyClosedError("Appointment was already closed", appointment_id=appointment_id)
    if appointment.status != "pending":
        raise InvalidStateError(
            f"Cannot close an appointment with status '{appointment.status}'",
            appointment_id=appointment_id,
            status=appointment.status,
        )

    employee: Employee | None = appointment.employee
    if employee_id is not None:
        employee = find_employee(session, employee_id)
        if employee is None or employee.branch_id != branch_id:
            raise NotFoundError("Employee not found in this branch", employee_id=employee_id)

    required = material_requirements(session, appointment)
    for material_id, quantity in required.items():
        stock = find_stock(session, branch_id, material_id)
        if stock is None:
            raise InsufficientStockError(
                f"Material '{material_id}' is not stocked at this branch",
                material_id=material_id,
                required=float(quantity),
                available=0.0,
            )
        if stock.quantity < quantity:
            raise InsufficientStockError(
                f"Not enough stock of material '{material_id}'. "
                f"Required: {quantity}, available: {stock.quantity}",
                material_id=material_id,
                required=float(quantity),
                available=float(stock.quantity),
            )

    # Every check passed; from here on a failure rolls back the whole close.
    if employee is not None and appointment.employee_id != employee.employee_id:
        appointment.employee_id = employee.employee_id

    stock_movements = []
    for material_id, quantity in required.items():
        stock = decrement_stock(session, branch_id, material_id, quantity)
        stock_movements.append(
            {"material_id": material_id, "quantity": float(quantity), "remaining": float(stock.quantity)}
        )

    points = calculate_points(appointment.total_cents, points_rate)
    if appointment.customer_id and points > 0:
        append_points_entry(
            session,
            appointment.customer_id,
            branch_id,
            points,
            appointment_id=appointment_id,
        )
    else:
        points = 0

    commission_cents = 0
    if employee is not None:
        percent = Decimal(employee.commission_percent or 0)
        commission_cents = calculate_commission_cents(appointment.total_cents, percent)
        if commission_cents > 0:
            append_commission_entry(
                session,
                employee.employee_id,
                branch_id,
                commission_cents,
                percent=percent,
                appointment_id=appointment_id,
            )

    append_audit_entry(
        session,
        "appointment",
        "closed",
        f"Closed appointment {appointment_id}. Total: ${appointment.total_cents / 100:.2f}",
        branch_id,
        user_id=appointment.customer_id,
        details={
            "appointment_id": appointment_id,
            "services_processed": len(appointment.services),
            "points_awarded": points,
            "commission_cents": commission_cents,
        },
    )

    if not update_appointment_state(session, appointment_id, "closed", expected_state="pending"):
        raise AlreadyClosedError("Appointment was closed by a concurrent request", appointment_id=appointment_id)

    return ClosingResult(
        appointment_id=appointment_id,
        branch_id=branch_id,
        state="closed",
        message="Sale processed. Inventory updated and points awarded.",
        points_awarded=points,
        commission_cents=commission_cents,
        stock_movements=stock_movements,
    )


def _audit_rejected_close(session: Session, appointment_id: str, branch_id: str, exc: SpaError) -> None:
    if session.get(Branch, branch_id) is None:
        return
    try:
        append_audit_entry(
            session,
            "appointment",
            "close_rejected",
            f"Close of appointment {appointment_id} rejected: {exc.message}",
            branch_id,
            details={"appointment_id": appointment_id, "error": exc.code},
        )
        session.commit()
    except SQLAlchemyError as audit_exc:
        session.rollback()
        current_app.logger.exception("Failed to audit rejected close of %s", appointment_id, exc_info=audit_exc)
