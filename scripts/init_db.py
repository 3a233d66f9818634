#!/usr/bin/env python3
"""Create the spa backend tables in the configured database."""
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app import create_app
from app.extensions import db


def init_database(drop: bool = False):
    app = create_app()
    with app.app_context():
        if drop:
            db.drop_all()
            print("🗑️  Existing tables dropped")
        db.create_all()
        print(f"✅ Database tables initialized at {app.config['SQLALCHEMY_DATABASE_URI']}")


if __name__ == "__main__":
    init_database(drop="--drop" in sys.argv[1:])
