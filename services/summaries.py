"""
Energy cascade: daily <- curtailment records, monthly <- daily, yearly <- monthly.

Every level is recomputed from its children; nothing is patched with deltas.
A level whose children are all gone loses its row.
"""
from __future__ import annotations
import logging
from datetime import date
from typing import Dict, Iterable, Optional

from tortoise.functions import Count, Sum
from tortoise.transactions import in_transaction

from models import CurtailmentRecord, DailySummary, MonthlySummary, YearlySummary

logger = logging.getLogger(__name__)


def year_month_of(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def month_bounds(year_month: str) -> tuple[date, date]:
    y, m = (int(x) for x in year_month.split("-"))
    start = date(y, m, 1)
    end = date(y + 1, 1, 1) if m == 12 else date(y, m + 1, 1)
    return start, end


async def recompute_daily(summary_date: date) -> Optional[DailySummary]:
    rows = await CurtailmentRecord.filter(settlement_date=summary_date).values("volume", "payment")
    if not rows:
        await DailySummary.filter(summary_date=summary_date).delete()
        return None

    energy = sum(abs(r["volume"]) for r in rows)
    payment = sum(r["payment"] for r in rows)
    obj, _ = await DailySummary.update_or_create(
        defaults=dict(total_curtailed_energy=energy, total_payment=payment, record_count=len(rows)),
        summary_date=summary_date,
    )
    return obj


async def recompute_monthly(year_month: str) -> Optional[MonthlySummary]:
    start, end = month_bounds(year_month)
    agg = await DailySummary.filter(summary_date__gte=start, summary_date__lt=end).annotate(
        energy=Sum("total_curtailed_energy"), payment=Sum("total_payment"), n=Count("summary_date"),
    ).values("energy", "payment", "n")
    row = agg[0] if agg else {}
    if not row.get("n"):
        await MonthlySummary.filter(year_month=year_month).delete()
        return None

    obj, _ = await MonthlySummary.update_or_create(
        defaults=dict(total_curtailed_energy=row["energy"] or 0.0, total_payment=row["payment"] or 0.0),
        year_month=year_month,
    )
    return obj


async def recompute_yearly(year: str) -> Optional[YearlySummary]:
    agg = await MonthlySummary.filter(year_month__startswith=f"{year}-").annotate(
        energy=Sum("total_curtailed_energy"), payment=Sum("total_payment"), n=Count("year_month"),
    ).values("energy", "payment", "n")
    row = agg[0] if agg else {}
    if not row.get("n"):
        await YearlySummary.filter(year=year).delete()
        return None

    obj, _ = await YearlySummary.update_or_create(
        defaults=dict(total_curtailed_energy=row["energy"] or 0.0, total_payment=row["payment"] or 0.0),
        year=year,
    )
    return obj


async def cascade(dates: Iterable[date]) -> Dict[str, int]:
    """Recompute daily for each date, then every month and year they fall in."""
    days = sorted(set(dates))
    months = sorted({year_month_of(d) for d in days})
    years = sorted({ym[:4] for ym in months})

    async with in_transaction():
        for d in days:
            await recompute_daily(d)
        for ym in months:
            await recompute_monthly(ym)
        for y in years:
            await recompute_yearly(y)

    if days:
        logger.info(f"[cascade] energy summaries recomputed: {len(days)} day(s), {len(months)} month(s), {len(years)} year(s)")
    return {"days": len(days), "months": len(months), "years": len(years)}
