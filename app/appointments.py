"""Booking, editing and cancelling appointments."""
from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from .errors import (BranchMismatchError, ConflictError, NotFoundError, SpaError,
                     TransactionFailureError, ValidationError)
from .models import (TERMINAL_STATUSES, Appointment, AppointmentService, Service, User,
                     to_naive_utc)
from .repositories import append_audit_entry, find_appointment_by_id, find_employee

MIN_CANCELLATION_REASON_LENGTH = 5


def list_appointments(session: Session, branch_id: str) -> list[dict[str, object]]:
    appointments = session.execute(
        select(Appointment)
        .where(Appointment.branch_id == branch_id)
        .options(
            selectinload(Appointment.customer),
            selectinload(Appointment.services).selectinload(AppointmentService.service),
        )
        .order_by(Appointment.scheduled_at.asc())
    ).scalars().all()

    items = []
    for appointment in appointments:
        service_names = ", ".join(line.service.name for line in appointment.services if line.service)
        items.append(
            {
                "id": appointment.appointment_id,
                "scheduled_at": appointment.scheduled_at.isoformat() if appointment.scheduled_at else None,
                "status": appointment.status,
                "customer": appointment.customer.name if appointment.customer else "Anonymous customer",
                "service": service_names or "No services assigned",
                "total_cents": appointment.total_cents,
                "total_dollars": appointment.total_cents / 100.0,
            }
        )
    return items


def _load_active_services(session: Session, service_ids: list[str]) -> list[Service]:
    if not service_ids:
        raise ValidationError("At least one service is required")
    unique_ids = list(dict.fromkeys(service_ids))
    found = session.execute(
        select(Service).where(Service.service_id.in_(unique_ids), Service.is_active.is_(True))
    ).scalars().all()
    if len(found) != len(unique_ids):
        raise ValidationError("One or more services do not exist or are inactive")
    by_id = {service.service_id: service for service in found}
    # Keep the caller's order; a service listed twice is booked twice.
    return [by_id[service_id] for service_id in service_ids]


def _get_branch_appointment(session: Session, appointment_id: str, branch_id: str) -> Appointment:
    appointment = find_appointment_by_id(session, appointment_id, for_update=True)
    if appointment is None:
        raise NotFoundError("Appointment not found", appointment_id=appointment_id)
    if appointment.branch_id != branch_id:
        raise BranchMismatchError(
            "Appointment does not belong to the active branch",
            appointment_id=appointment_id,
        )
    return appointment


def _commit(session: Session, failure_message: str) -> None:
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        current_app.logger.exception(failure_message, exc_info=exc)
        raise TransactionFailureError(failure_message) from exc


def book_appointment(
    session: Session,
    branch_id: str,
    customer_id: str | None,
    service_ids: list[str],
    scheduled_at: datetime,
    *,
    employee_id: str | None = None,
    advance_cents: int = 0,
) -> Appointment:
    """Create a pending appointment whose total is the sum of the services' base prices.

    ``scheduled_at`` is stored as naive UTC; aware values are converted first.
    """
    try:
        if advance_cents < 0:
            raise ValidationError("advance_cents cannot be negative")
        if customer_id is not None and session.get(User, customer_id) is None:
            raise NotFoundError("Customer not found", customer_id=customer_id)
        if employee_id is not None:
            employee = find_employee(session, employee_id)
            if employee is None or employee.branch_id != branch_id:
                raise NotFoundError("Employee not found in this branch", employee_id=employee_id)

        services = _load_active_services(session, service_ids)
        appointment = Appointment(
            branch_id=branch_id,
            customer_id=customer_id,
            employee_id=employee_id,
            scheduled_at=to_naive_utc(scheduled_at),
            status="pending",
            total_cents=sum(service.price_cents for service in services),
            advance_cents=advance_cents,
            services=[
                AppointmentService(service_id=service.service_id, price_cents=service.price_cents)
                for service in services
            ],
        )
        session.add(appointment)
    except SpaError:
        session.rollback()
        raise

    _commit(session, "Failed to book appointment")
    return appointment


def update_appointment_services(
    session: Session,
    appointment_id: str,
    branch_id: str,
    service_ids: list[str],
    *,
    employee_id: str | None = None,
) -> Appointment:
    """Replace the services of an open appointment and recompute its total."""
    try:
        appointment = _get_branch_appointment(session, appointment_id, branch_id)
        if appointment.status in TERMINAL_STATUSES:
            raise ConflictError(
                f"Cannot edit an appointment with status '{appointment.status}'",
                appointment_id=appointment_id,
                status=appointment.status,
            )
        if employee_id is not None:
            employee = find_employee(session, employee_id)
            if employee is None or employee.branch_id != branch_id:
                raise NotFoundError("Employee not found in this branch", employee_id=employee_id)
            appointment.employee_id = employee_id

        services = _load_active_services(session, service_ids)
        appointment.services = [
            AppointmentService(service_id=service.service_id, price_cents=service.price_cents)
            for service in services
        ]
        appointment.total_cents = sum(service.price_cents for service in services)
    except SpaError:
        session.rollback()
        raise

    _commit(session, "Failed to update appointment services")
    return appointment


def cancel_appointment(session: Session, appointment_id: str, branch_id: str, reason: str) -> Appointment:
    try:
        reason = (reason or "").strip()
        if len(reason) < MIN_CANCELLATION_REASON_LENGTH:
            raise ValidationError(
                f"A cancellation reason of at least {MIN_CANCELLATION_REASON_LENGTH} characters is required"
            )
        appointment = _get_branch_appointment(session, appointment_id, branch_id)
        if appointment.status in TERMINAL_STATUSES:
            raise ConflictError(
                f"Cannot cancel an appointment with status '{appointment.status}'",
                appointment_id=appointment_id,
                status=appointment.status,
            )
        appointment.status = "cancelled"
        appointment.cancellation_reason = reason
        append_audit_entry(
            session,
            "appointment",
            "cancelled",
            f"Cancelled appointment {appointment_id}: {reason}",
            branch_id,
            user_id=appointment.customer_id,
            details={"appointment_id": appointment_id},
        )
    except SpaError:
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        current_app.logger.exception("Failed to cancel appointment", exc_info=exc)
        raise TransactionFailureError("Failed to cancel appointment") from exc

    _commit(session, "Failed to cancel appointment")
    return appointment
