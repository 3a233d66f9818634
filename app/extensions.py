"""Shared Flask extensions for the spa backend."""
from __future__ import annotations

from flask_sqlalchemy import SQLAlchemy

# SQLAlchemy database instance; db.session is the transactional scope for every operation.
db = SQLAlchemy()
