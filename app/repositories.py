"""Data-access helpers.

Every function takes the session explicitly and only flushes: committing or
rolling back is the job of the operation that opened the unit of work, so a
sequence of calls made with one session succeeds or fails as a whole.
"""
from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .errors import InsufficientStockError
from .models import (Appointment, AuditLog, Commission, Employee, PointsMovement,
                     ServiceMaterial, StockRecord)


def find_appointment_by_id(
    session: Session, appointment_id: str, *, for_update: bool = False
) -> Appointment | None:
    stmt = select(Appointment).where(Appointment.appointment_id == appointment_id)
    if for_update:
        # Row lock on backends that support it; ignored by SQLite.
        stmt = stmt.with_for_update()
    return session.execute(stmt).scalar_one_or_none()


def find_employee(session: Session, employee_id: str) -> Employee | None:
    return session.get(Employee, employee_id)


def find_service_recipe(session: Session, service_id: str) -> list[tuple[str, Decimal]]:
    """Return ``(material_id, quantity)`` pairs consumed by one occurrence of a service."""
    rows = session.execute(
        select(ServiceMaterial.material_id, ServiceMaterial.quantity)
        .where(ServiceMaterial.service_id == service_id)
        .order_by(ServiceMaterial.material_id)
    ).all()
    return [(material_id, Decimal(quantity)) for material_id, quantity in rows]


def find_stock(
    session: Session, branch_id: str, material_id: str, *, refresh: bool = False
) -> StockRecord | None:
    stmt = select(StockRecord).where(
        StockRecord.branch_id == branch_id,
        StockRecord.material_id == material_id,
    )
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    return session.execute(stmt).scalar_one_or_none()


def decrement_stock(
    session: Session, branch_id: str, material_id: str, quantity: Decimal
) -> StockRecord:
    """Subtract ``quantity`` from a stock record.

    The update only matches while enough stock remains, so a concurrent
    consumer can never drive the quantity below zero; a miss raises
    InsufficientStockError.
    """
    result = session.execute(
        update(StockRecord)
        .where(
            StockRecord.branch_id == branch_id,
            StockRecord.material_id == material_id,
            StockRecord.quantity >= quantity,
        )
        .values(quantity=StockRecord.quantity - quantity)
    )
    stock = find_stock(session, branch_id, material_id, refresh=True)
    if result.rowcount != 1:
        available = stock.quantity if stock is not None else Decimal("0")
        raise InsufficientStockError(
            f"Not enough stock of material '{material_id}'. "
            f"Required: {quantity}, available: {available}",
            material_id=material_id,
            required=float(quantity),
            available=float(available),
        )
    return stock


def increment_stock(
    session: Session, branch_id: str, material_id: str, quantity: Decimal
) -> StockRecord | None:
    result = session.execute(
        update(StockRecord)
        .where(
            StockRecord.branch_id == branch_id,
            StockRecord.material_id == material_id,
        )
        .values(quantity=StockRecord.quantity + quantity)
    )
    if result.rowcount != 1:
        return None
    return find_stock(session, branch_id, material_id, refresh=True)


def append_points_entry(
    session: Session,
    customer_id: str,
    branch_id: str,
    amount: int,
    *,
    kind: str = "earn",
    appointment_id: str | None = None,
) -> PointsMovement:
    movement = PointsMovement(
        customer_id=customer_id,
        branch_id=branch_id,
        appointment_id=appointment_id,
        kind=kind,
        amount=amount,
    )
    session.add(movement)
    session.flush()
    return movement


def append_commission_entry(
    session: Session,
    employee_id: str,
    branch_id: str,
    amount_cents: int,
    *,
    percent: Decimal,
    appointment_id: str | None = None,
) -> Commission:
    commission = Commission(
        employee_id=employee_id,
        branch_id=branch_id,
        appointment_id=appointment_id,
        percent=percent,
        amount_cents=amount_cents,
    )
    session.add(commission)
    session.flush()
    return commission


def append_audit_entry(
    session: Session,
    entity: str,
    action: str,
    description: str,
    branch_id: str,
    *,
    user_id: str | None = None,
    details: dict[str, object] | None = None,
) -> AuditLog:
    entry = AuditLog(
        entity=entity,
        action=action,
        description=description,
        branch_id=branch_id,
        user_id=user_id,
        details=details or {},
    )
    session.add(entry)
    session.flush()
    return entry


def update_appointment_state(
    session: Session,
    appointment_id: str,
    new_state: str,
    *,
    expected_state: str | None = None,
) -> bool:
    """Set an appointment's status; with ``expected_state`` this is a compare-and-set.

    Returns False when no row matched (unknown id or the state had already moved on).
    """
    stmt = update(Appointment).where(Appointment.appointment_id == appointment_id)
    if expected_state is not None:
        stmt = stmt.where(Appointment.status == expected_state)
    result = session.execute(stmt.values(status=new_state))
    return result.rowcount == 1
