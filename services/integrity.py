from __future__ import annotations
import logging
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple

from models import CurtailmentRecord, HistoricalBitcoinCalculation
from schemas import VerifyResponse
from services import config
from services.context import RunContext
from services.errors import NetworkError
from services.validator import validate

logger = logging.getLogger(__name__)


async def _stored_totals(settlement_date: date, period: int) -> Tuple[float, float, int]:
    rows = await CurtailmentRecord.filter(settlement_date=settlement_date, settlement_period=period).values(
        "volume", "payment"
    )
    return sum(abs(r["volume"]) for r in rows), sum(r["payment"] for r in rows), len(rows)


async def needs_reprocessing(
    ctx: RunContext,
    settlement_date: date,
    sample_periods: Optional[Iterable[int]] = None,
) -> Tuple[bool, Dict[str, Any]]:
    """
    Spot-check a date against the settlement API on a few sample periods.
    Any total outside tolerance, or any fetch that fails, means reprocess.
    """
    periods = list(sample_periods or config.SAMPLE_PERIODS)
    details: Dict[str, Any] = {}
    stale = False

    for p in periods:
        key = f"P{p}"
        try:
            fetched = await ctx.fetcher.fetch(settlement_date, p)
        except NetworkError as e:
            details[key] = {"error": str(e)}
            stale = True
            continue

        outcome = validate(fetched.entries, ctx.registry, settlement_date, p)
        api_volume = sum(abs(r.volume) for r in outcome.records)
        api_payment = sum(r.payment for r in outcome.records)
        db_volume, db_payment, db_count = await _stored_totals(settlement_date, p)

        mismatch = (
            abs(api_volume - db_volume) > ctx.tolerance
            or abs(api_payment - db_payment) > ctx.tolerance
            or len(outcome.records) != db_count
            or fetched.partial
        )
        details[key] = {
            "api_volume": round(api_volume, 4),
            "db_volume": round(db_volume, 4),
            "api_payment": round(api_payment, 4),
            "db_payment": round(db_payment, 4),
            "api_records": len(outcome.records),
            "db_records": db_count,
            "partial": fetched.partial,
            "mismatch": mismatch,
        }
        stale = stale or mismatch

    if stale:
        logger.info(f"[verify {settlement_date}] needs reprocessing")
    return stale, details


async def find_missing_periods(
    settlement_date: date,
    miner_models: Optional[Iterable[str]] = None,
) -> Dict[str, Any]:
    """
    empty_periods: periods with no stored curtailment (an empty partition can be
    legitimate or a crash between delete and insert; needs_reprocessing tells them apart).
    missing_bitcoin: per model, periods with curtailment but no calculation.
    """
    models_ = list(miner_models or config.MINER_MODELS)
    stored = set(await CurtailmentRecord.filter(settlement_date=settlement_date).distinct().values_list(
        "settlement_period", flat=True
    ))
    empty = [p for p in range(1, config.SETTLEMENT_PERIODS + 1) if p not in stored]

    missing_bitcoin: Dict[str, List[int]] = {}
    for model in models_:
        have = set(await HistoricalBitcoinCalculation.filter(
            settlement_date=settlement_date, miner_model=model
        ).distinct().values_list("settlement_period", flat=True))
        gap = sorted(stored - have)
        if gap:
            missing_bitcoin[model] = gap

    return {"empty_periods": empty, "missing_bitcoin": missing_bitcoin}


async def verify_date(ctx: RunContext, settlement_date: date) -> VerifyResponse:
    stale, details = await needs_reprocessing(ctx, settlement_date)
    gaps = await find_missing_periods(settlement_date, ctx.miner_models)
    return VerifyResponse(
        settlement_date=settlement_date,
        needs_reprocessing=stale or bool(gaps["missing_bitcoin"]),
        empty_periods=gaps["empty_periods"],
        periods_missing_bitcoin=gaps["missing_bitcoin"],
        details=details,
    )
