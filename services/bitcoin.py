"""
Curtailed energy -> potential Bitcoin mined.

A period's curtailed MWh is treated as a half-hour of fleet power for the
chosen miner model. The fleet's share of network hashrate, times the block
reward and the blocks in a half hour, is the estimate.
"""
from __future__ import annotations
import logging
import math
from datetime import date
from typing import Dict, Iterable, List, Optional

from tortoise.exceptions import BaseORMException
from tortoise.functions import Sum
from tortoise.transactions import in_transaction

from models import (
    BitcoinDailySummary,
    BitcoinMonthlySummary,
    BitcoinYearlySummary,
    CurtailmentRecord,
    HistoricalBitcoinCalculation,
)
from schemas import BitcoinRunStats
from services import config, difficulty as difficulty_feed
from services.errors import InvalidDifficultyError, InvalidModelError
from services.miners import require_miner
from services.summaries import month_bounds, year_month_of

logger = logging.getLogger(__name__)

BLOCKS_PER_DAY = 144
PERIODS_PER_DAY = 48
SECONDS_PER_PERIOD = 1800

# (first date, reward) in ascending order
HALVINGS = [
    (date(2009, 1, 3), 50.0),
    (date(2012, 11, 28), 25.0),
    (date(2016, 7, 9), 12.5),
    (date(2020, 5, 11), 6.25),
    (date(2024, 4, 20), 3.125),
]


def block_subsidy_for_height(block_height: int) -> float:
    """50 BTC halving every 210,000 blocks; zero after 34 halvings."""
    halvings = block_height // 210_000
    if halvings >= 34:
        return 0.0
    return round(50.0 / (2 ** halvings), 8)


def block_reward_for_date(settlement_date: date) -> float:
    reward = 0.0
    for start, value in HALVINGS:
        if settlement_date < start:
            break
        reward = value
    return reward


def network_hashrate_th(difficulty: float) -> float:
    return difficulty * 2 ** 32 / 600 / 1e12


def compute(energy_mwh: float, miner_model: str, difficulty: float, block_reward: float) -> float:
    """BTC that `energy_mwh` curtailed in one settlement period could have mined."""
    if difficulty is None or not math.isfinite(difficulty) or difficulty <= 0:
        raise InvalidDifficultyError(f"difficulty must be finite and > 0, got {difficulty!r}")
    miner = require_miner(miner_model)
    energy = abs(energy_mwh)
    if energy == 0:
        return 0.0

    fleet_watts = energy * 1e6 * 3600 / SECONDS_PER_PERIOD
    fleet_th = fleet_watts / miner.efficiency_j_th
    share = fleet_th / network_hashrate_th(difficulty)
    bitcoin_per_day = share * block_reward * BLOCKS_PER_DAY
    return bitcoin_per_day / PERIODS_PER_DAY


async def process_bitcoin_for_date(
    settlement_date: date,
    miner_models: Optional[Iterable[str]] = None,
    *,
    difficulty: Optional[float] = None,
) -> BitcoinRunStats:
    """
    Recreate every calculation for the date, per miner model. One bad model or
    record is counted and skipped; the other combinations still land.
    """
    models_ = list(miner_models or config.MINER_MODELS)
    stats = BitcoinRunStats()
    tag = f"[bitcoin {settlement_date}]"

    records = await CurtailmentRecord.filter(settlement_date=settlement_date).values(
        "settlement_period", "farm_id", "volume"
    )
    if difficulty is None:
        difficulty, source = await difficulty_feed.difficulty_for_date(settlement_date)
    else:
        source = "override"
    reward = block_reward_for_date(settlement_date)
    logger.info(f"{tag} {len(records)} records, difficulty {difficulty:.0f} ({source}), reward {reward}")

    # drop rows for miner models that are no longer configured
    active = set(config.MINER_MODELS) | set(models_)
    dropped = await HistoricalBitcoinCalculation.filter(settlement_date=settlement_date).exclude(
        miner_model__in=list(active)
    ).delete()
    if dropped:
        logger.info(f"{tag} removed {dropped} calculation(s) for retired miner models")

    for model in models_:
        rows: List[HistoricalBitcoinCalculation] = []
        total = 0.0
        for r in records:
            try:
                mined = compute(r["volume"], model, difficulty, reward)
            except (InvalidModelError, InvalidDifficultyError) as e:
                stats.calculations_failed += 1
                if str(e) not in stats.errors:
                    stats.errors.append(str(e))
                continue
            total += mined
            rows.append(HistoricalBitcoinCalculation(
                settlement_date=settlement_date,
                settlement_period=r["settlement_period"],
                farm_id=r["farm_id"],
                miner_model=model,
                bitcoin_mined=mined,
                difficulty=difficulty,
                block_reward=reward,
            ))

        if records and not rows:
            logger.warning(f"{tag} {model}: every calculation failed; keeping stored values")
            continue

        try:
            async with in_transaction():
                await HistoricalBitcoinCalculation.filter(
                    settlement_date=settlement_date, miner_model=model
                ).delete()
                if rows:
                    await HistoricalBitcoinCalculation.bulk_create(rows)
        except BaseORMException as e:
            stats.calculations_failed += len(rows)
            stats.errors.append(f"{tag} {model}: {e}")
            logger.warning(f"{tag} {model} write failed: {e}")
            continue

        stats.calculations_written += len(rows)
        stats.bitcoin_by_model[model] = stats.bitcoin_by_model.get(model, 0.0) + total

    return stats


# ---------- cascade ----------

async def _sum_by_model(qs) -> Dict[str, float]:
    rows = await qs.annotate(total=Sum("bitcoin_mined")).group_by("miner_model").values("miner_model", "total")
    return {r["miner_model"]: float(r["total"] or 0.0) for r in rows}


async def _store(model_cls, key: Dict[str, object], totals: Dict[str, float]) -> None:
    qs = model_cls.filter(**key)
    if totals:
        qs = qs.exclude(miner_model__in=list(totals))
    await qs.delete()
    for miner_model, total in totals.items():
        await model_cls.update_or_create(defaults=dict(bitcoin_mined=total), miner_model=miner_model, **key)


async def recompute_bitcoin_daily(summary_date: date) -> Dict[str, float]:
    totals = await _sum_by_model(HistoricalBitcoinCalculation.filter(settlement_date=summary_date))
    await _store(BitcoinDailySummary, {"summary_date": summary_date}, totals)
    return totals


async def recompute_bitcoin_monthly(year_month: str) -> Dict[str, float]:
    start, end = month_bounds(year_month)
    totals = await _sum_by_model(BitcoinDailySummary.filter(summary_date__gte=start, summary_date__lt=end))
    await _store(BitcoinMonthlySummary, {"year_month": year_month}, totals)
    return totals


async def recompute_bitcoin_yearly(year: str) -> Dict[str, float]:
    totals = await _sum_by_model(BitcoinMonthlySummary.filter(year_month__startswith=f"{year}-"))
    await _store(BitcoinYearlySummary, {"year": year}, totals)
    return totals


async def bitcoin_cascade(dates: Iterable[date]) -> Dict[str, int]:
    days = sorted(set(dates))
    months = sorted({year_month_of(d) for d in days})
    years = sorted({ym[:4] for ym in months})

    async with in_transaction():
        for d in days:
            await recompute_bitcoin_daily(d)
        for ym in months:
            await recompute_bitcoin_monthly(ym)
        for y in years:
            await recompute_bitcoin_yearly(y)

    if days:
        logger.info(f"[cascade] bitcoin summaries recomputed: {len(days)} day(s), {len(months)} month(s), {len(years)} year(s)")
    return {"days": len(days), "months": len(months), "years": len(years)}
