"""Promotions available at a branch and discount validation."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from .models import Promotion, to_naive_utc, utc_now


@dataclass
class PromotionCheck:
    valid: bool
    message: str
    promotion_id: str | None = None
    name: str | None = None
    discount_percent: float | None = None
    discount_cents: int = 0

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"valid": self.valid, "message": self.message}
        if self.valid:
            payload["promotion"] = {
                "id": self.promotion_id,
                "name": self.name,
                "discount_percent": self.discount_percent,
                "discount_cents": self.discount_cents,
                "discount_dollars": self.discount_cents / 100.0,
            }
        return payload


def calculate_discount_cents(total_cents: int, percent: Decimal) -> int:
    """Discount of ``percent`` on a total, rounded half-up to whole cents."""
    discount = Decimal(total_cents) * Decimal(percent) / 100
    return int(discount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def list_promotions(session: Session, branch_id: str | None, now: datetime | None = None) -> list[dict[str, object]]:
    """Active promotions valid right now, global or local to ``branch_id``, best discount first."""
    moment = to_naive_utc(now or utc_now())
    scope = Promotion.branch_id.is_(None)
    if branch_id:
        scope = or_(scope, Promotion.branch_id == branch_id)

    promotions = session.execute(
        select(Promotion)
        .where(
            Promotion.is_active.is_(True),
            Promotion.start_date <= moment,
            Promotion.end_date >= moment,
            scope,
        )
        .options(selectinload(Promotion.services))
        .order_by(Promotion.discount_percent.desc())
    ).scalars().all()
    return [promotion.to_dict() for promotion in promotions]


def validate_promotion(
    session: Session,
    promotion_id: str,
    branch_id: str,
    service_ids: list[str],
    total_cents: int,
    now: datetime | None = None,
) -> PromotionCheck:
    """Check a promotion against a cart and compute its discount.

    Rejections are reported in the result rather than raised; the caller
    shows the message to the user.
    """
    promotion = session.get(Promotion, promotion_id)
    if promotion is None:
        return PromotionCheck(False, "Promotion does not exist")
    if not promotion.is_active:
        return PromotionCheck(False, "Promotion is not active")

    moment = to_naive_utc(now or utc_now())
    if moment < to_naive_utc(promotion.start_date):
        return PromotionCheck(False, "Promotion has not started yet")
    if moment > to_naive_utc(promotion.end_date):
        return PromotionCheck(False, "Promotion has expired")

    if promotion.branch_id is not None and promotion.branch_id != branch_id:
        return PromotionCheck(False, "Promotion does not apply at this branch")

    targeted = {service.service_id for service in promotion.services}
    if targeted and not targeted.intersection(service_ids):
        return PromotionCheck(False, "Promotion does not apply to any of the selected services")

    percent = Decimal(promotion.discount_percent)
    return PromotionCheck(
        True,
        "Promotion applied",
        promotion_id=promotion.promotion_id,
        name=promotion.name,
        discount_percent=float(percent),
        discount_cents=calculate_discount_cents(total_cents, percent),
    )
