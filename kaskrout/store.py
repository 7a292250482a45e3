"""Keyed reads and upserts for the per-day records; every mutating function commits."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Callable, NamedTuple, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from kaskrout.counts import CountPatch, resolve_counts, used_count
from kaskrout.errors import NotFoundError, ValidationError
from kaskrout.models import (
    Consumable,
    ConsumableUsage,
    DailyBaguettes,
    DailyEarnings,
    DailyLeftover,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UsageKey(NamedTuple):
    record_date: date
    consumable_id: int


def now() -> datetime:
    return datetime.now(timezone.utc)


def _commit_upsert(db: Session, write: Callable[[], T]) -> T:
    try:
        row = write()
        db.commit()
    except IntegrityError:
        # a concurrent request inserted the same key first
        db.rollback()
        row = write()
        db.commit()
    db.refresh(row)
    return row


def get_by_date(db: Session, model: type[T], day: date) -> Optional[T]:
    return db.execute(select(model).where(model.record_date == day)).scalar_one_or_none()


def get_usage(db: Session, key: UsageKey) -> Optional[ConsumableUsage]:
    return db.execute(
        select(ConsumableUsage).where(
            ConsumableUsage.record_date == key.record_date,
            ConsumableUsage.consumable_id == key.consumable_id,
        )
    ).scalar_one_or_none()


def list_usage_for_day(db: Session, day: date) -> list[ConsumableUsage]:
    return list(
        db.execute(
            select(ConsumableUsage)
            .join(ConsumableUsage.consumable)
            .where(ConsumableUsage.record_date == day)
            .order_by(Consumable.name)
        )
        .unique()
        .scalars()
    )


def upsert_usage(db: Session, key: UsageKey, start_count: int, end_count: int) -> ConsumableUsage:
    if db.get(Consumable, key.consumable_id) is None:
        raise NotFoundError("consumable not found")

    def write() -> ConsumableUsage:
        stamp = now()
        usage = get_usage(db, key)
        if usage is None:
            usage = ConsumableUsage(
                record_date=key.record_date,
                consumable_id=key.consumable_id,
                created_at=stamp,
            )
            db.add(usage)
        usage.start_count = start_count
        usage.end_count = end_count
        usage.used_count = used_count(start_count, end_count)
        usage.updated_at = stamp
        return usage

    usage = _commit_upsert(db, write)
    logger.info(
        "Saved usage for consumable %s on %s: used %s",
        key.consumable_id,
        key.record_date,
        usage.used_count,
    )
    return usage


def patch_usage(db: Session, usage_id: int, patch: CountPatch) -> ConsumableUsage:
    usage = db.get(ConsumableUsage, usage_id)
    if usage is None:
        raise NotFoundError("daily consumable usage not found")
    if patch.is_empty():
        raise ValidationError("start_count or end_count is required")
    usage.start_count, usage.end_count, usage.used_count = resolve_counts(usage, patch)
    usage.updated_at = now()
    db.commit()
    db.refresh(usage)
    return usage


def delete_usage(db: Session, usage_id: int) -> date:
    usage = db.get(ConsumableUsage, usage_id)
    if usage is None:
        raise NotFoundError("daily consumable usage not found")
    record_date = usage.record_date
    db.delete(usage)
    db.commit()
    logger.info("Deleted usage %s for %s", usage_id, record_date)
    return record_date


def get_baguettes(db: Session, day: date) -> Optional[DailyBaguettes]:
    return get_by_date(db, DailyBaguettes, day)


def upsert_baguettes(db: Session, day: date, start_count: int, end_count: int) -> DailyBaguettes:
    def write() -> DailyBaguettes:
        row = get_baguettes(db, day)
        if row is None:
            row = DailyBaguettes(record_date=day)
            db.add(row)
        row.start_count = start_count
        row.end_count = end_count
        row.used_count = used_count(start_count, end_count)
        row.updated_at = now()
        return row

    return _commit_upsert(db, write)


def get_earnings(db: Session, day: date) -> Optional[DailyEarnings]:
    return get_by_date(db, DailyEarnings, day)


def get_leftover(db: Session, day: date) -> Optional[DailyLeftover]:
    return get_by_date(db, DailyLeftover, day)


def upsert_leftover(
    db: Session,
    day: date,
    bread_baguettes: int,
    cooked_eggs: int,
    salami_pieces: int,
    notes: str,
) -> DailyLeftover:
    def write() -> DailyLeftover:
        row = get_leftover(db, day)
        if row is None:
            row = DailyLeftover(record_date=day)
            db.add(row)
        row.bread_baguettes = bread_baguettes
        row.cooked_eggs = cooked_eggs
        row.salami_pieces = salami_pieces
        row.notes = notes
        row.updated_at = now()
        return row

    return _commit_upsert(db, write)


def dates_with_activity(db: Session, from_date: date, to_date: date) -> list[date]:
    usage_dates = db.execute(
        select(ConsumableUsage.record_date)
        .where(ConsumableUsage.record_date.between(from_date, to_date))
        .distinct()
    ).scalars()
    earnings_dates = db.execute(
        select(DailyEarnings.record_date).where(DailyEarnings.record_date.between(from_date, to_date))
    ).scalars()
    return sorted(set(usage_dates) | set(earnings_dates))
