from __future__ import annotations
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

import httpx

from schemas import RunReport
from services import config, difficulty, integrity, orchestrator
from services.context import RunContext
from services.elexon import build_client

logger = logging.getLogger(__name__)

LONDON = ZoneInfo("Europe/London")


def current_settlement_period(now: Optional[datetime] = None) -> tuple[date, int]:
    """UK trading day and half-hour slot (1..48) for `now`, in London local time."""
    local = (now or datetime.now(tz=LONDON)).astimezone(LONDON)
    period = (local.hour * 60 + local.minute) // 30 + 1
    return local.date(), min(period, config.SETTLEMENT_PERIODS)


# ---------- Update runner ----------

async def run_update_today(now: Optional[datetime] = None, **ctx_kwargs) -> RunReport:
    """
    Reconcile today's periods up to the current one.
    """
    today, period = current_settlement_period(now)
    return await orchestrator.run_reconciliation(
        today, today, 1, period, trigger="scheduler", **ctx_kwargs
    )


# ---------- Look-back verification ----------

async def run_lookback(
    days: Optional[int] = None,
    today: Optional[date] = None,
    **ctx_kwargs,
) -> Dict[str, Any]:
    """
    Spot-check the last `days` dates; reprocess any that drifted from the API
    and fill Bitcoin gaps for dates whose curtailment is already correct.
    """
    days = config.LOOKBACK_DAYS if days is None else days
    today = today or current_settlement_period()[0]
    out: Dict[str, Any] = {"checked": [], "reprocessed": [], "bitcoin_filled": []}

    async with RunContext.open(**ctx_kwargs) as ctx:
        for i in range(1, days + 1):
            d = today - timedelta(days=i)
            out["checked"].append(d.isoformat())
            stale, _ = await integrity.needs_reprocessing(ctx, d)
            if stale:
                report = await orchestrator.reconcile(ctx, d, trigger="scheduler")
                out["reprocessed"].append({"date": d.isoformat(), "status": report.status, "run_id": report.run_id})
                continue
            gaps = await integrity.find_missing_periods(d, ctx.miner_models)
            if gaps["missing_bitcoin"]:
                await orchestrator.run_bitcoin(d, d, ctx.miner_models)
                out["bitcoin_filled"].append(d.isoformat())

    logger.info(
        f"[lookback] checked {len(out['checked'])} dates, reprocessed {len(out['reprocessed'])}, "
        f"bitcoin filled {len(out['bitcoin_filled'])}"
    )
    return out


# ---------- Difficulty feed ----------

async def run_refresh_difficulty(transport: Optional[httpx.AsyncBaseTransport] = None) -> Dict[str, Any]:
    async with build_client(transport) as client:
        s = await difficulty.refresh_current_difficulty(client)
    return {"sample_date": s.sample_date.isoformat(), "difficulty": s.difficulty, "source": s.source}
