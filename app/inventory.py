"""Branch inventory: stock listing, new materials and restocking."""
from __future__ import annotations

from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from .errors import ConflictError, NotFoundError, SpaError, TransactionFailureError, ValidationError
from .models import Material, StockRecord
from .repositories import append_audit_entry, increment_stock


def to_quantity(value: object, field_name: str) -> Decimal:
    try:
        quantity = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number") from None
    if not quantity.is_finite():
        raise ValidationError(f"{field_name} must be a number")
    return quantity


def list_inventory(session: Session, branch_id: str) -> list[dict[str, object]]:
    """Stock of every material at a branch, alphabetically, flagging records at or below minimum."""
    records = session.execute(
        select(StockRecord)
        .join(StockRecord.material)
        .where(StockRecord.branch_id == branch_id)
        .options(joinedload(StockRecord.material))
        .order_by(Material.name.asc())
    ).scalars().all()
    return [record.to_dict() for record in records]


def create_material(
    session: Session,
    branch_id: str,
    *,
    name: str,
    unit: str,
    initial_quantity: object,
    minimum_quantity: object,
    unit_cost_cents: int = 0,
) -> Material:
    """Register a catalog material and open its stock record at ``branch_id``."""
    try:
        name = (name or "").strip()
        unit = (unit or "").strip()
        if not name or not unit:
            raise ValidationError("name and unit are required")
        initial = to_quantity(initial_quantity, "initial_quantity")
        minimum = to_quantity(minimum_quantity, "minimum_quantity")
        if initial < 0 or minimum < 0:
            raise ValidationError("Stock quantities cannot be negative")

        existing = session.execute(
            select(Material).where(func.lower(Material.name) == name.lower())
        ).scalar_one_or_none()
        if existing is not None:
            raise ConflictError(f"Material '{name}' already exists in the catalog", material_id=existing.material_id)

        material = Material(name=name, unit=unit, unit_cost_cents=unit_cost_cents)
        session.add(material)
        session.flush()

        session.add(
            StockRecord(
                branch_id=branch_id,
                material_id=material.material_id,
                quantity=initial,
                minimum_quantity=minimum,
            )
        )
        append_audit_entry(
            session,
            "inventory",
            "material_created",
            f"Created {name}. Initial stock: {initial} {unit}",
            branch_id,
            details={"material_id": material.material_id},
        )
        session.commit()
    except SpaError:
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        current_app.logger.exception("Failed to create material", exc_info=exc)
        raise TransactionFailureError("Failed to create material") from exc

    return material


def restock(session: Session, branch_id: str, material_id: str, quantity: object) -> Decimal:
    """Add ``quantity`` to a branch stock record and return the new quantity on hand."""
    try:
        amount = to_quantity(quantity, "quantity")
        if amount <= 0:
            raise ValidationError("quantity must be greater than zero")

        stock = increment_stock(session, branch_id, material_id, amount)
        if stock is None:
            raise NotFoundError(
                "Material is not registered in this branch inventory", material_id=material_id
            )
        append_audit_entry(
            session,
            "inventory",
            "restocked",
            f"Material {material_id}: +{amount}. New total: {stock.quantity}",
            branch_id,
            details={"material_id": material_id, "quantity": float(amount)},
        )
        session.commit()
    except SpaError:
        session.rollback()
        raise
    except SQLAlchemyError as exc:
        session.rollback()
        current_app.logger.exception("Failed to restock material", exc_info=exc)
        raise TransactionFailureError("Failed to restock material") from exc

    current_app.logger.info("Restocked %s at branch %s by %s", material_id, branch_id, amount)
    return stock.quantity
