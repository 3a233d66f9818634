"""Domain errors raised by the service layer and rendered as JSON by the HTTP layer."""
from __future__ import annotations

from flask import Flask, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db


class SpaError(Exception):
    """Base error. ``code`` is the machine-readable ``error`` field of the JSON body."""

    code = "error"
    status_code = 500

    def __init__(self, message: str, **details: object) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, object]:
        return {"error": self.code, "message": self.message, **self.details}


class NotFoundError(SpaError):
    code = "not_found"
    status_code = 404


class ValidationError(SpaError):
    code = "invalid_input"
    status_code = 400


class MissingBranchError(ValidationError):
    code = "missing_branch"


class BranchMismatchError(SpaError):
    """The entity belongs to a branch other than the active one."""

    code = "branch_mismatch"
    status_code = 400


class ConflictError(SpaError):
    code = "conflict"
    status_code = 409


class InsufficientStockError(ConflictError):
    """A recipe material is missing from the branch inventory or below the required quantity."""

    code = "insufficient_stock"


class AlreadyClosedError(ConflictError):
    code = "already_closed"


class InvalidStateError(ConflictError):
    code = "invalid_state"


class TransactionFailureError(SpaError):
    code = "database_error"
    status_code = 500


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(SpaError)
    def handle_spa_error(exc: SpaError):
        if exc.status_code >= 500:
            current_app.logger.error("%s: %s", exc.code, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_database_error(exc: SQLAlchemyError):
        db.session.rollback()
        current_app.logger.exception("Unhandled database error", exc_info=exc)
        return jsonify({"error": "database_error"}), 500
