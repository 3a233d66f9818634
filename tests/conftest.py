"""pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

# Ensure the project root is available on sys.path so tests can import the app package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app import create_app  # noqa: E402
from app.extensions import db  # noqa: E402
from app.models import (Appointment, AppointmentService, Branch, Employee, Material,  # noqa: E402
                        Service, ServiceMaterial, StockRecord, User)


@pytest.fixture
def app():
    flask_app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "AUDIT_FAILED_CLOSES": False,
    })
    with flask_app.app_context():
        db.create_all()
    yield flask_app
    with flask_app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def branch_headers():
    return {"X-Branch-Id": "suc-1"}


def seed_spa_data(app):
    """Branch suc-1 with a pending appointment cita-1 (total 1000.00) whose service uses 10 units of mat-1.

    The stock of mat-1 at suc-1 starts at 50 with a minimum of 5, and the
    assigned employee earns a 10% commission.
    """
    with app.app_context():
        branch = Branch(branch_id="suc-1", name="Principal", timezone="America/Mexico_City")
        other_branch = Branch(branch_id="suc-2", name="Norte", timezone="America/Mexico_City")
        customer = User(user_id="user-1", name="Maria Cliente", email="maria@example.com")
        employee = Employee(
            employee_id="emp-1",
            branch_id="suc-1",
            name="Ana Estilista",
            commission_percent=Decimal("10"),
        )
        material = Material(material_id="mat-1", name="Hot stones oil", unit="ml")
        service = Service(
            service_id="srv-1",
            name="Hot stone massage",
            price_cents=100000,
            duration_minutes=60,
        )
        recipe = ServiceMaterial(service_id="srv-1", material_id="mat-1", quantity=Decimal("10"))
        stock = StockRecord(
            branch_id="suc-1",
            material_id="mat-1",
            quantity=Decimal("50"),
            minimum_quantity=Decimal("5"),
        )
        appointment = Appointment(
            appointment_id="cita-1",
            branch_id="suc-1",
            customer_id="user-1",
            employee_id="emp-1",
            scheduled_at=datetime(2025, 10, 2, 11, 0, tzinfo=timezone.utc),
            total_cents=100000,
            status="pending",
            services=[AppointmentService(service_id="srv-1", price_cents=100000)],
        )
        db.session.add_all([branch, other_branch, customer, employee, material, service])
        db.session.flush()
        db.session.add_all([recipe, stock, appointment])
        db.session.commit()

    return {
        "branch_id": "suc-1",
        "appointment_id": "cita-1",
        "material_id": "mat-1",
        "service_id": "srv-1",
        "employee_id": "emp-1",
        "customer_id": "user-1",
    }


@pytest.fixture
def spa_data(app):
    return seed_spa_data(app)


@pytest.fixture
def file_app(tmp_path):
    """App on a SQLite file so several threads can hold their own connections."""
    flask_app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'spa.db'}",
        "AUDIT_FAILED_CLOSES": False,
    })
    with flask_app.app_context():
        db.create_all()
    seed_spa_data(flask_app)
    yield flask_app
    with flask_app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()
