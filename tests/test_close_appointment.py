"""Tests for closing appointments: stock consumption, points, commission and audit."""
from __future__ import annotations

import threading
from decimal import Decimal
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.closing import calculate_commission_cents, calculate_points, close_appointment
from app.errors import (AlreadyClosedError, BranchMismatchError, InsufficientStockError,
                        InvalidStateError, NotFoundError, TransactionFailureError)
from app.extensions import db
from app.models import (Appointment, AppointmentService, AuditLog, Commission, Employee,
                        Material, PointsMovement, Service, ServiceMaterial, StockRecord)
from app.repositories import decrement_stock, update_appointment_state


def _stock(material_id: str = "mat-1", branch_id: str = "suc-1") -> Decimal:
    return StockRecord.query.filter_by(branch_id=branch_id, material_id=material_id).one().quantity


def _set_stock(quantity: str, material_id: str = "mat-1") -> None:
    stock = StockRecord.query.filter_by(branch_id="suc-1", material_id=material_id).one()
    stock.quantity = Decimal(quantity)
    db.session.commit()


def _assert_nothing_written() -> None:
    assert db.session.get(Appointment, "cita-1").status == "pending"
    assert PointsMovement.query.count() == 0
    assert Commission.query.count() == 0
    assert AuditLog.query.count() == 0


def test_close_consumes_stock_and_writes_ledgers(app, spa_data) -> None:
    with app.app_context():
        result = close_appointment(db.session, "cita-1", "suc-1")

        assert result.state == "closed"
        assert result.appointment_id == "cita-1"
        assert result.branch_id == "suc-1"
        assert result.message

        assert _stock() == Decimal("40")
        assert db.session.get(Appointment, "cita-1").status == "closed"

        movements = PointsMovement.query.all()
        assert len(movements) == 1
        assert movements[0].kind == "earn"
        assert movements[0].amount == 50
        assert movements[0].customer_id == "user-1"
        assert movements[0].branch_id == "suc-1"

        commissions = Commission.query.all()
        assert len(commissions) == 1
        assert commissions[0].employee_id == "emp-1"
        assert commissions[0].amount_cents == 10000

        audit = AuditLog.query.all()
        assert len(audit) == 1
        assert audit[0].entity == "appointment"
        assert audit[0].action == "closed"
        assert audit[0].branch_id == "suc-1"


def test_close_with_insufficient_stock_changes_nothing(app, spa_data) -> None:
    with app.app_context():
        _set_stock("2")

        with pytest.raises(InsufficientStockError) as excinfo:
            close_appointment(db.session, "cita-1", "suc-1")

        assert excinfo.value.status_code == 409
        assert excinfo.value.details["material_id"] == "mat-1"
        assert _stock() == Decimal("2")
        _assert_nothing_written()


def test_close_from_other_branch_is_rejected(app, spa_data) -> None:
    with app.app_context():
        with pytest.raises(BranchMismatchError) as excinfo:
            close_appointment(db.session, "cita-1", "suc-OTRA")

        assert excinfo.value.status_code == 400
        assert _stock() == Decimal("50")
        _assert_nothing_written()


def test_close_unknown_appointment(app, spa_data) -> None:
    with app.app_context():
        with pytest.raises(NotFoundError):
            close_appointment(db.session, "cita-404", "suc-1")


def test_second_close_is_rejected(app, spa_data) -> None:
    with app.app_context():
        close_appointment(db.session, "cita-1", "suc-1")

        with pytest.raises(AlreadyClosedError) as excinfo:
            close_appointment(db.session, "cita-1", "suc-1")

        assert excinfo.value.status_code == 409
        assert _stock() == Decimal("40")
        assert PointsMovement.query.count() == 1
        assert Commission.query.count() == 1
        assert AuditLog.query.count() == 1


def test_close_loses_race_to_concurrent_close(app, spa_data) -> None:
    """The final compare-and-set fails when another request closed the appointment first."""
    with app.app_context():
        with patch("app.closing.update_appointment_state", return_value=False):
            with pytest.raises(AlreadyClosedError):
                close_appointment(db.session, "cita-1", "suc-1")

        assert _stock() == Decimal("50")
        _assert_nothing_written()


def test_close_cancelled_appointment_is_invalid_state(app, spa_data) -> None:
    with app.app_context():
        appointment = db.session.get(Appointment, "cita-1")
        appointment.status = "cancelled"
        db.session.commit()

        with pytest.raises(InvalidStateError):
            close_appointment(db.session, "cita-1", "suc-1")

        assert _stock() == Decimal("50")


def test_material_missing_from_branch_inventory(app, spa_data) -> None:
    with app.app_context():
        db.session.add(Material(material_id="mat-2", name="Clay mask", unit="g"))
        db.session.flush()
        db.session.add(ServiceMaterial(service_id="srv-1", material_id="mat-2", quantity=Decimal("1")))
        db.session.commit()

        with pytest.raises(InsufficientStockError) as excinfo:
            close_appointment(db.session, "cita-1", "suc-1")

        assert excinfo.value.details["material_id"] == "mat-2"
        assert excinfo.value.details["available"] == 0.0
        assert _stock() == Decimal("50")
        _assert_nothing_written()


def test_requirements_of_repeated_services_add_up(app, spa_data) -> None:
    with app.app_context():
        appointment = db.session.get(Appointment, "cita-1")
        appointment.services.append(AppointmentService(service_id="srv-1", price_cents=100000))
        db.session.commit()

        _set_stock("15")
        with pytest.raises(InsufficientStockError):
            close_appointment(db.session, "cita-1", "suc-1")
        assert _stock() == Decimal("15")

        _set_stock("20")
        result = close_appointment(db.session, "cita-1", "suc-1")
        assert _stock() == Decimal("0")
        assert result.stock_movements == [{"material_id": "mat-1", "quantity": 20.0, "remaining": 0.0}]


def test_service_without_recipe_closes_without_stock(app, spa_data) -> None:
    with app.app_context():
        db.session.add(Service(service_id="srv-2", name="Consultation", price_cents=30000, duration_minutes=15))
        appointment = db.session.get(Appointment, "cita-1")
        appointment.services = [AppointmentService(service_id="srv-2", price_cents=30000)]
        appointment.total_cents = 30000
        db.session.commit()

        result = close_appointment(db.session, "cita-1", "suc-1")

        assert result.stock_movements == []
        assert result.points_awarded == 15
        assert result.commission_cents == 3000
        assert _stock() == Decimal("50")


def test_no_commission_without_employee(app, spa_data) -> None:
    with app.app_context():
        appointment = db.session.get(Appointment, "cita-1")
        appointment.employee_id = None
        db.session.commit()

        result = close_appointment(db.session, "cita-1", "suc-1")

        assert result.commission_cents == 0
        assert Commission.query.count() == 0
        assert PointsMovement.query.count() == 1


def test_employee_can_be_assigned_when_closing(app, spa_data) -> None:
    with app.app_context():
        db.session.add(
            Employee(employee_id="emp-2", branch_id="suc-1", name="Pedro Masajista", commission_percent=Decimal("15"))
        )
        appointment = db.session.get(Appointment, "cita-1")
        appointment.employee_id = None
        db.session.commit()

        result = close_appointment(db.session, "cita-1", "suc-1", employee_id="emp-2")

        assert result.commission_cents == 15000
        assert db.session.get(Appointment, "cita-1").employee_id == "emp-2"
        assert Commission.query.one().employee_id == "emp-2"


def test_employee_from_other_branch_is_not_found(app, spa_data) -> None:
    with app.app_context():
        db.session.add(Employee(employee_id="emp-9", branch_id="suc-2", name="Lorena", commission_percent=Decimal("5")))
        db.session.commit()

        with pytest.raises(NotFoundError):
            close_appointment(db.session, "cita-1", "suc-1", employee_id="emp-9")

        _assert_nothing_written()


def test_database_failure_rolls_back_every_write(app, spa_data) -> None:
    with app.app_context():
        failure = OperationalError("INSERT INTO audit_logs", {}, Exception("disk I/O error"))
        with patch("app.closing.append_audit_entry", side_effect=failure):
            with pytest.raises(TransactionFailureError) as excinfo:
                close_appointment(db.session, "cita-1", "suc-1")

        assert excinfo.value.status_code == 500
        assert _stock() == Decimal("50")
        _assert_nothing_written()


def test_rejected_close_is_audited_when_enabled(app, spa_data) -> None:
    app.config["AUDIT_FAILED_CLOSES"] = True
    with app.app_context():
        _set_stock("2")

        with pytest.raises(InsufficientStockError):
            close_appointment(db.session, "cita-1", "suc-1")

        entries = AuditLog.query.all()
        assert len(entries) == 1
        assert entries[0].action == "close_rejected"
        assert entries[0].details["error"] == "insufficient_stock"
        assert db.session.get(Appointment, "cita-1").status == "pending"
        assert PointsMovement.query.count() == 0


def test_points_rate_is_configurable(app, spa_data) -> None:
    app.config["POINTS_RATE"] = Decimal("0.10")
    with app.app_context():
        result = close_appointment(db.session, "cita-1", "suc-1")

        assert result.points_awarded == 100
        assert PointsMovement.query.one().amount == 100


def test_calculations() -> None:
    assert calculate_points(100000, Decimal("0.05")) == 50
    assert calculate_points(1999, Decimal("0.05")) == 0
    assert calculate_points(45099, Decimal("0.05")) == 22
    assert calculate_commission_cents(100000, Decimal("10")) == 10000
    assert calculate_commission_cents(33333, Decimal("12.5")) == 4167
    assert calculate_commission_cents(100000, Decimal("0")) == 0


def test_points_rate_from_float_setting(app, spa_data) -> None:
    app.config["POINTS_RATE"] = 0.29
    with app.app_context():
        result = close_appointment(db.session, "cita-1", "suc-1")

        assert result.points_awarded == 290


def test_decrement_stock_never_goes_negative(app, spa_data) -> None:
    with app.app_context():
        with pytest.raises(InsufficientStockError) as excinfo:
            decrement_stock(db.session, "suc-1", "mat-1", Decimal("60"))
        db.session.rollback()

        assert excinfo.value.details == {"material_id": "mat-1", "required": 60.0, "available": 50.0}
        assert _stock() == Decimal("50")

        stock = decrement_stock(db.session, "suc-1", "mat-1", Decimal("50"))
        db.session.commit()
        assert stock.quantity == Decimal("0")
        assert _stock() == Decimal("0")


def test_state_change_is_compare_and_set(app, spa_data) -> None:
    with app.app_context():
        assert update_appointment_state(db.session, "cita-1", "closed", expected_state="pending") is True
        assert update_appointment_state(db.session, "cita-1", "closed", expected_state="pending") is False
        db.session.commit()

        assert db.session.get(Appointment, "cita-1").status == "closed"


def test_concurrent_closes_only_one_wins(file_app) -> None:
    barrier = threading.Barrier(2)
    outcomes: list[str] = []
    lock = threading.Lock()

    def close_in_own_session() -> None:
        with file_app.app_context():
            barrier.wait()
            try:
                close_appointment(db.session, "cita-1", "suc-1")
                outcome = "ok"
            except AlreadyClosedError:
                outcome = "already_closed"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=close_in_own_session) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(outcomes) == ["already_closed", "ok"]
    with file_app.app_context():
        assert _stock() == Decimal("40")
        assert db.session.get(Appointment, "cita-1").status == "closed"
        assert PointsMovement.query.count() == 1
        assert Commission.query.count() == 1
        assert AuditLog.query.count() == 1
