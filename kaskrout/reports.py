from __future__ import annotations

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from kaskrout import store
from kaskrout.models import ConsumableUsage, DailyBaguettes, DailyEarnings
from kaskrout.reconcile import ZERO, quantize

logger = logging.getLogger(__name__)


def money(value: Optional[Decimal]) -> float:
    return float(quantize(value or ZERO))


def usage_data(usage: ConsumableUsage) -> dict:
    return {
        "usage_id": usage.id,
        "record_date": usage.record_date.isoformat(),
        "consumable_id": usage.consumable_id,
        "start_count": usage.start_count,
        "end_count": usage.end_count,
        "used_count": usage.used_count,
        "consumable": {
            "consumable_id": usage.consumable.id,
            "name": usage.consumable.name,
            "price": money(usage.consumable.price),
        },
    }


def baguettes_data(day: date, row: Optional[DailyBaguettes]) -> dict:
    if row is None:
        return {"record_date": day.isoformat(), "start_count": 0, "end_count": 0, "used_count": 0}
    return {
        "baguettes_id": row.id,
        "record_date": row.record_date.isoformat(),
        "start_count": row.start_count,
        "end_count": row.end_count,
        "used_count": row.used_count,
    }


def earnings_data(day: date, row: Optional[DailyEarnings]) -> dict:
    if row is None:
        return {
            "record_date": day.isoformat(),
            "total_earnings": 0.0,
            "consumables_cost": 0.0,
            "net_profit": 0.0,
            "notes": "",
        }
    return {
        "earnings_id": row.id,
        "record_date": row.record_date.isoformat(),
        "total_earnings": money(row.total_earnings),
        "consumables_cost": money(row.consumables_cost),
        "net_profit": money(row.net_profit),
        "notes": row.notes,
    }


def summarize(db: Session, day: date) -> dict:
    """Build the dashboard view of one day.

    Absent baguettes or earnings rows are reported as zero defaults. The
    consumables total is folded from the usage rows at current prices rather
    than read from the stored earnings row; once reconciliation has run for
    the day, both agree.
    """
    usages = store.list_usage_for_day(db, day)
    baguettes = store.get_baguettes(db, day)
    earnings = store.get_earnings(db, day)

    total_cost = sum((Decimal(u.used_count) * u.consumable.price for u in usages), ZERO)
    return {
        "date": day.isoformat(),
        "consumables": [usage_data(u) for u in usages],
        "baguettes": baguettes_data(day, baguettes),
        "earnings": earnings_data(day, earnings),
        "summary": {
            "total_consumables_cost": money(total_cost),
            "total_consumables_used": sum(u.used_count for u in usages),
            "total_baguettes_used": baguettes.used_count if baguettes else 0,
        },
    }


def week_start(anchor: date) -> date:
    # weekday(): Monday == 0 ... Sunday == 6
    return anchor - timedelta(days=anchor.weekday())


def _empty_day(day: date) -> dict:
    return {
        "date": day.isoformat(),
        "available": False,
        "total_cost": 0.0,
        "total_earnings": 0.0,
        "net_profit": 0.0,
        "baguettes_used": 0,
    }


def weekly_report(db: Session, anchor: date) -> dict:
    start = week_start(anchor)
    days: list[dict[str, Any]] = []
    per_consumable: dict[str, dict[str, Any]] = {}
    total_cost = total_earnings = total_net = ZERO
    total_baguettes = 0

    for offset in range(7):
        day = start + timedelta(days=offset)
        try:
            summary = summarize(db, day)
        except Exception:
            db.rollback()
            logger.warning("Skipping %s in weekly report", day, exc_info=True)
            days.append(_empty_day(day))
            continue

        cost = Decimal(str(summary["summary"]["total_consumables_cost"]))
        earned = Decimal(str(summary["earnings"]["total_earnings"]))
        net = earned - cost
        baguettes_used = summary["baguettes"]["used_count"]

        total_cost += cost
        total_earnings += earned
        total_net += net
        total_baguettes += baguettes_used

        for usage in summary["consumables"]:
            name = usage["consumable"]["name"]
            bucket = per_consumable.setdefault(name, {"used": 0, "cost": ZERO})
            bucket["used"] += usage["used_count"]
            bucket["cost"] += usage["used_count"] * Decimal(str(usage["consumable"]["price"]))

        days.append(
            {
                "date": day.isoformat(),
                "available": True,
                "total_cost": money(cost),
                "total_earnings": money(earned),
                "net_profit": money(net),
                "baguettes_used": baguettes_used,
            }
        )

    return {
        "week_start": start.isoformat(),
        "week_end": (start + timedelta(days=6)).isoformat(),
        "days": days,
        "totals": {
            "total_cost": money(total_cost),
            "total_earnings": money(total_earnings),
            "total_net_profit": money(total_net),
            "total_baguettes_used": total_baguettes,
        },
        "consumables": [
            {"name": name, "used": bucket["used"], "cost": money(bucket["cost"])}
            for name, bucket in sorted(per_consumable.items())
        ],
    }
