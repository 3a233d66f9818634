"""Default configuration for the spa backend."""
from __future__ import annotations

import os
from decimal import Decimal


class Config:
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///spa.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Loyalty points credited per currency unit of a closed appointment.
    POINTS_RATE = Decimal(os.environ.get("POINTS_RATE", "0.05"))

    # Write an audit entry for rejected closes as well as successful ones.
    AUDIT_FAILED_CLOSES = os.environ.get("AUDIT_FAILED_CLOSES", "0") in {"1", "true", "True"}

    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")
