"""Loyalty points history and balances."""
from __future__ import annotations

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session, joinedload

from .models import PointsMovement, User


def points_history(session: Session, branch_id: str) -> list[dict[str, object]]:
    movements = session.execute(
        select(PointsMovement)
        .where(PointsMovement.branch_id == branch_id)
        .options(
            joinedload(PointsMovement.customer),
            joinedload(PointsMovement.appointment),
        )
        .order_by(PointsMovement.created_at.desc(), PointsMovement.movement_id.desc())
    ).scalars().all()
    return [movement.to_dict() for movement in movements]


def points_balance(session: Session, branch_id: str) -> dict[str, object]:
    """Earned minus redeemed points per customer; customers without a positive balance are left out."""
    signed_amount = case(
        (PointsMovement.kind == "earn", PointsMovement.amount),
        else_=-PointsMovement.amount,
    )
    balance = func.sum(signed_amount).label("points")
    rows = session.execute(
        select(User.user_id, User.name, balance)
        .join(PointsMovement, PointsMovement.customer_id == User.user_id)
        .where(PointsMovement.branch_id == branch_id)
        .group_by(User.user_id, User.name)
        .having(balance > 0)
        .order_by(User.name.asc())
    ).all()
    return {
        "branch_id": branch_id,
        "balances": [
            {"customer_id": user_id, "customer": name, "points": int(points)}
            for user_id, name, points in rows
        ],
    }
