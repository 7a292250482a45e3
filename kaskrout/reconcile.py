from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kaskrout import store
from kaskrout.errors import ValidationError
from kaskrout.models import Consumable, ConsumableUsage, DailyEarnings

logger = logging.getLogger(__name__)

MONEY_QUANTUM = Decimal("0.001")
ZERO = Decimal("0")


def quantize(value: Decimal) -> Decimal:
    return Decimal(value).quantize(MONEY_QUANTUM)


def consumables_cost(db: Session, day: date) -> Decimal:
    rows = db.execute(
        select(ConsumableUsage.used_count, Consumable.price)
        .join(Consumable, Consumable.id == ConsumableUsage.consumable_id)
        .where(ConsumableUsage.record_date == day)
    ).all()
    return quantize(sum((Decimal(used) * Decimal(price) for used, price in rows), ZERO))


def _apply(
    db: Session,
    day: date,
    total_earnings: Optional[Decimal] = None,
    notes: Optional[str] = None,
) -> DailyEarnings:
    cost = consumables_cost(db, day)
    earnings = store.get_earnings(db, day)
    if earnings is None:
        earnings = DailyEarnings(
            record_date=day,
            total_earnings=ZERO,
            consumables_cost=ZERO,
            net_profit=ZERO,
            notes="",
        )
        db.add(earnings)

    total = quantize(total_earnings if total_earnings is not None else earnings.total_earnings)
    values = {
        "total_earnings": total,
        "consumables_cost": cost,
        "net_profit": quantize(total - cost),
        "notes": notes if notes is not None else earnings.notes,
    }
    if earnings.id is not None and all(getattr(earnings, key) == value for key, value in values.items()):
        return earnings

    for key, value in values.items():
        setattr(earnings, key, value)
    earnings.updated_at = store.now()
    db.commit()
    db.refresh(earnings)
    return earnings


def reconcile(db: Session, day: date) -> DailyEarnings:
    """Recompute the derived earnings fields for ``day``.

    ``total_earnings`` and ``notes`` of an existing row are left untouched; a
    missing row is created with zero earnings, so its net profit is the
    negative cost. Running it twice without a usage change stores the same
    values.
    """
    return _apply(db, day)


def save_earnings(db: Session, day: date, total_earnings: Decimal, notes: str) -> DailyEarnings:
    earnings = _apply(db, day, total_earnings=total_earnings, notes=notes)
    logger.info(
        "Saved earnings for %s: total %s, cost %s, net %s",
        day,
        earnings.total_earnings,
        earnings.consumables_cost,
        earnings.net_profit,
    )
    return earnings


def reconcile_after_usage_change(db: Session, day: date) -> bool:
    try:
        reconcile(db, day)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Earnings reconciliation failed for %s; usage change kept", day)
        return False
    return True


def reconcile_range(db: Session, from_date: date, to_date: date) -> list[DailyEarnings]:
    if from_date > to_date:
        raise ValidationError("from_date must not be after to_date")
    repaired = [reconcile(db, day) for day in store.dates_with_activity(db, from_date, to_date)]
    logger.info("Reconciled %s day(s) between %s and %s", len(repaired), from_date, to_date)
    return repaired
