"""Database models for the spa backend."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from .extensions import db


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC for the naive ``DateTime`` columns; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


APPOINTMENT_STATUSES = ("pending", "confirmed", "closed", "cancelled")
TERMINAL_STATUSES = ("closed", "cancelled")


# Services targeted by a promotion; no rows means the promotion applies to every service.
promotion_services = db.Table(
    "promotion_services",
    db.Column("promotion_id", db.String(36), db.ForeignKey("promotions.promotion_id"), primary_key=True),
    db.Column("service_id", db.String(36), db.ForeignKey("services.service_id"), primary_key=True),
)


class Branch(db.Model):
    """A spa location; every appointment, stock record and ledger row belongs to one."""

    __tablename__ = "branches"

    branch_id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(150), nullable=False)
    timezone = db.Column(db.String(64), nullable=False, server_default="UTC")
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.branch_id,
            "name": self.name,
            "timezone": self.timezone,
        }


class User(db.Model):
    __tablename__ = "users"

    user_id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    phone = db.Column(db.String(30))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    def to_dict_basic(self) -> dict[str, object]:
        return {
            "id": self.user_id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
        }


class Employee(db.Model):
    """Staff member who performs services and earns commission."""

    __tablename__ = "employees"

    employee_id = db.Column(db.String(36), primary_key=True, default=new_id)
    branch_id = db.Column(db.String(36), db.ForeignKey("branches.branch_id"), nullable=False)
    user_id = db.Column(db.String(36), db.ForeignKey("users.user_id"), nullable=True)
    name = db.Column(db.String(100), nullable=False)
    commission_percent = db.Column(db.Numeric(5, 2), nullable=False, server_default="0")
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    branch = db.relationship("Branch")
    user = db.relationship("User")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.employee_id,
            "branch_id": self.branch_id,
            "user_id": self.user_id,
            "name": self.name,
            "commission_percent": float(self.commission_percent or 0),
        }


class Service(db.Model):
    """Catalog service; its recipe lists the materials consumed per occurrence."""

    __tablename__ = "services"

    service_id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    price_cents = db.Column(db.Integer, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    materials = db.relationship("ServiceMaterial", back_populates="service")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.service_id,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "price_dollars": self.price_cents / 100.0,
            "duration_minutes": self.duration_minutes,
            "is_active": self.is_active,
        }


class Material(db.Model):
    __tablename__ = "materials"

    material_id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(150), nullable=False)
    unit = db.Column(db.String(30), nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False, server_default="0")
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.material_id,
            "name": self.name,
            "unit": self.unit,
            "unit_cost_cents": self.unit_cost_cents,
        }


class ServiceMaterial(db.Model):
    """One recipe line: quantity of a material consumed each time a service is performed."""

    __tablename__ = "service_materials"

    service_id = db.Column(db.String(36), db.ForeignKey("services.service_id"), primary_key=True)
    material_id = db.Column(db.String(36), db.ForeignKey("materials.material_id"), primary_key=True)
    quantity = db.Column(db.Numeric(12, 3), nullable=False)

    service = db.relationship("Service", back_populates="materials")
    material = db.relationship("Material")


class StockRecord(db.Model):
    """Quantity on hand of a material at a branch. The quantity never goes negative."""

    __tablename__ = "stock_records"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "material_id", name="uq_stock_branch_material"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_quantity_non_negative"),
    )

    stock_record_id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.String(36), db.ForeignKey("branches.branch_id"), nullable=False)
    material_id = db.Column(db.String(36), db.ForeignKey("materials.material_id"), nullable=False)
    quantity = db.Column(db.Numeric(12, 3), nullable=False, server_default="0")
    minimum_quantity = db.Column(db.Numeric(12, 3), nullable=False, server_default="0")
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    branch = db.relationship("Branch")
    material = db.relationship("Material")

    @property
    def is_low(self) -> bool:
        return self.quantity <= self.minimum_quantity

    def to_dict(self) -> dict[str, object]:
        return {
            "material_id": self.material_id,
            "material": self.material.name if self.material else None,
            "unit": self.material.unit if self.material else None,
            "quantity": float(self.quantity),
            "minimum_quantity": float(self.minimum_quantity),
            "alert": self.is_low,
        }


class Appointment(db.Model):
    """A booking at a branch; pending until closed (sold) or cancelled."""

    __tablename__ = "appointments"

    appointment_id = db.Column(db.String(36), primary_key=True, default=new_id)
    branch_id = db.Column(db.String(36), db.ForeignKey("branches.branch_id"), nullable=False)
    customer_id = db.Column(db.String(36), db.ForeignKey("users.user_id"), nullable=True)
    employee_id = db.Column(db.String(36), db.ForeignKey("employees.employee_id"), nullable=True)
    scheduled_at = db.Column(db.DateTime, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False, server_default="0")
    advance_cents = db.Column(db.Integer, nullable=False, server_default="0")
    status = db.Column(
        db.Enum(
            *APPOINTMENT_STATUSES,
            name="appointment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="pending",
    )
    cancellation_reason = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    branch = db.relationship("Branch")
    customer = db.relationship("User")
    employee = db.relationship("Employee")
    services = db.relationship(
        "AppointmentService",
        back_populates="appointment",
        cascade="all, delete-orphan",
        order_by="AppointmentService.line_id",
    )

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.appointment_id,
            "branch_id": self.branch_id,
            "customer_id": self.customer_id,
            "customer": self.customer.name if self.customer else "Anonymous customer",
            "employee_id": self.employee_id,
            "employee": self.employee.name if self.employee else None,
            "services": [line.to_dict() for line in self.services],
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "total_cents": self.total_cents,
            "total_dollars": self.total_cents / 100.0,
            "advance_cents": self.advance_cents,
            "status": self.status,
            "cancellation_reason": self.cancellation_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class AppointmentService(db.Model):
    """A service booked in an appointment, with the price charged at booking time."""

    __tablename__ = "appointment_services"

    line_id = db.Column(db.Integer, primary_key=True)
    appointment_id = db.Column(db.String(36), db.ForeignKey("appointments.appointment_id"), nullable=False)
    service_id = db.Column(db.String(36), db.ForeignKey("services.service_id"), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)

    appointment = db.relationship("Appointment", back_populates="services")
    service = db.relationship("Service")

    def to_dict(self) -> dict[str, object]:
        return {
            "service_id": self.service_id,
            "name": self.service.name if self.service else None,
            "price_cents": self.price_cents,
        }


class PointsMovement(db.Model):
    """Loyalty points ledger entry (append-only)."""

    __tablename__ = "points_movements"

    movement_id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.String(36), db.ForeignKey("users.user_id"), nullable=False)
    branch_id = db.Column(db.String(36), db.ForeignKey("branches.branch_id"), nullable=False)
    appointment_id = db.Column(db.String(36), db.ForeignKey("appointments.appointment_id"), nullable=True)
    kind = db.Column(
        db.Enum("earn", "redeem", name="points_movement_kind", native_enum=False, validate_strings=True),
        nullable=False,
    )
    amount = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    customer = db.relationship("User")
    appointment = db.relationship("Appointment")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.movement_id,
            "customer_id": self.customer_id,
            "customer": self.customer.name if self.customer else None,
            "email": self.customer.email if self.customer else None,
            "kind": self.kind,
            "amount": self.amount,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "appointment_at": (
                self.appointment.scheduled_at.isoformat()
                if self.appointment and self.appointment.scheduled_at
                else None
            ),
        }


class Commission(db.Model):
    """Commission owed to an employee for a closed appointment (append-only)."""

    __tablename__ = "commissions"

    commission_id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.String(36), db.ForeignKey("employees.employee_id"), nullable=False)
    branch_id = db.Column(db.String(36), db.ForeignKey("branches.branch_id"), nullable=False)
    appointment_id = db.Column(db.String(36), db.ForeignKey("appointments.appointment_id"), nullable=True)
    percent = db.Column(db.Numeric(5, 2), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    employee = db.relationship("Employee")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.commission_id,
            "employee_id": self.employee_id,
            "employee": self.employee.name if self.employee else None,
            "appointment_id": self.appointment_id,
            "percent": float(self.percent),
            "amount_cents": self.amount_cents,
            "amount_dollars": self.amount_cents / 100.0,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    audit_id = db.Column(db.Integer, primary_key=True)
    entity = db.Column(db.String(50), nullable=False)
    action = db.Column(db.String(50), nullable=False)
    description = db.Column(db.Text, nullable=False)
    branch_id = db.Column(db.String(36), db.ForeignKey("branches.branch_id"), nullable=False)
    user_id = db.Column(db.String(36), db.ForeignKey("users.user_id"), nullable=True)
    details = db.Column(db.JSON, nullable=True, default=dict)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.audit_id,
            "entity": self.entity,
            "action": self.action,
            "description": self.description,
            "branch_id": self.branch_id,
            "user_id": self.user_id,
            "details": self.details or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Promotion(db.Model):
    """Percentage discount, global when branch_id is null."""

    __tablename__ = "promotions"

    promotion_id = db.Column(db.String(36), primary_key=True, default=new_id)
    branch_id = db.Column(db.String(36), db.ForeignKey("branches.branch_id"), nullable=True)
    name = db.Column(db.String(200), nullable=False)
    discount_percent = db.Column(db.Numeric(5, 2), nullable=False)
    start_date = db.Column(db.DateTime, nullable=False)
    end_date = db.Column(db.DateTime, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    services = db.relationship("Service", secondary=promotion_services)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.promotion_id,
            "name": self.name,
            "discount_percent": float(self.discount_percent),
            "scope": "local" if self.branch_id else "global",
            "branch_id": self.branch_id,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "is_active": self.is_active,
            "service_ids": [service.service_id for service in self.services],
        }
