#!/usr/bin/env python3
"""Seed the database with sample branches, staff, services, promotions and inventory."""
import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

# Add the parent directory to the path so we can import the app
sys.path.insert(0, str(Path(__file__).parent.parent))

from app import create_app
from app.extensions import db
from app.models import (Appointment, AppointmentService, Branch, Employee, Material, Promotion,
                        Service, ServiceMaterial, StockRecord, User)

BRANCHES = [
    {"branch_id": "branch-principal", "name": "Sucursal Principal", "timezone": "America/Mexico_City"},
    {"branch_id": "branch-norte", "name": "Sucursal Norte", "timezone": "America/Mexico_City"},
]

USERS = [
    {"user_id": "user-ana", "name": "Ana Estilista", "email": "ana@spa.com"},
    {"user_id": "user-pedro", "name": "Pedro Masajista", "email": "pedro@spa.com"},
    {"user_id": "user-maria", "name": "María Cliente", "email": "cliente@gmail.com"},
]

EMPLOYEES = [
    {"employee_id": "emp-ana", "branch_id": "branch-principal", "user_id": "user-ana",
     "name": "Ana Estilista", "commission_percent": Decimal("10")},
    {"employee_id": "emp-pedro", "branch_id": "branch-principal", "user_id": "user-pedro",
     "name": "Pedro Masajista", "commission_percent": Decimal("15")},
]

SERVICES = [
    {"service_id": "serv-1", "name": "Manicure premium", "price_cents": 42000, "duration_minutes": 60},
    {"service_id": "serv-2", "name": "Facial hidratante", "price_cents": 78000, "duration_minutes": 75},
]

MATERIALS = [
    {"material_id": "esponjas-termales", "name": "Esponjas termales", "unit": "unidad"},
    {"material_id": "gel-unas", "name": "Gel uñas", "unit": "ml"},
    {"material_id": "mascarilla-arcilla", "name": "Mascarilla arcilla", "unit": "g"},
]

RECIPES = [
    ("serv-1", "gel-unas", Decimal("2")),
    ("serv-2", "esponjas-termales", Decimal("2")),
    ("serv-2", "mascarilla-arcilla", Decimal("1")),
]

STOCK = [
    ("branch-principal", "esponjas-termales", Decimal("56"), Decimal("10")),
    ("branch-principal", "gel-unas", Decimal("34"), Decimal("15")),
    ("branch-principal", "mascarilla-arcilla", Decimal("25"), Decimal("5")),
    ("branch-norte", "mascarilla-arcilla", Decimal("18"), Decimal("20")),
]

PROMOTIONS = [
    {"promotion_id": "promo-1", "branch_id": None, "name": "Lunes zen", "discount_percent": Decimal("12")},
    {"promotion_id": "promo-2", "branch_id": "branch-norte", "name": "Norte VIP", "discount_percent": Decimal("15")},
]


def _add_missing(model, key: str, rows: list[dict]) -> int:
    created = 0
    for row in rows:
        if db.session.get(model, row[key]) is None:
            db.session.add(model(**row))
            created += 1
    db.session.flush()
    return created


def seed_data():
    """Insert the sample data; rows that already exist are left untouched."""
    app = create_app()

    with app.app_context():
        db.create_all()

        print(f"📍 Branches: {_add_missing(Branch, 'branch_id', BRANCHES)} created")
        print(f"👤 Users: {_add_missing(User, 'user_id', USERS)} created")
        print(f"💇 Employees: {_add_missing(Employee, 'employee_id', EMPLOYEES)} created")
        print(f"🧴 Services: {_add_missing(Service, 'service_id', SERVICES)} created")
        print(f"📦 Materials: {_add_missing(Material, 'material_id', MATERIALS)} created")

        for service_id, material_id, quantity in RECIPES:
            if db.session.get(ServiceMaterial, (service_id, material_id)) is None:
                db.session.add(ServiceMaterial(service_id=service_id, material_id=material_id, quantity=quantity))

        for branch_id, material_id, quantity, minimum in STOCK:
            exists = StockRecord.query.filter_by(branch_id=branch_id, material_id=material_id).first()
            if exists is None:
                db.session.add(StockRecord(
                    branch_id=branch_id,
                    material_id=material_id,
                    quantity=quantity,
                    minimum_quantity=minimum,
                ))

        now = datetime.now(timezone.utc)
        for promo in PROMOTIONS:
            if db.session.get(Promotion, promo["promotion_id"]) is None:
                db.session.add(Promotion(
                    start_date=now,
                    end_date=datetime(2026, 12, 31, tzinfo=timezone.utc),
                    **promo,
                ))

        if db.session.get(Appointment, "cita-demo") is None:
            db.session.add(Appointment(
                appointment_id="cita-demo",
                branch_id="branch-principal",
                customer_id="user-maria",
                employee_id="emp-ana",
                scheduled_at=now + timedelta(days=1),
                total_cents=42000,
                status="pending",
                services=[AppointmentService(service_id="serv-1", price_cents=42000)],
            ))

        db.session.commit()
        print("✅ Seed finished successfully")


if __name__ == "__main__":
    seed_data()
