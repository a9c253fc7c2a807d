# services/orchestrator.py
from __future__ import annotations
import asyncio
import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Sequence, Tuple

from tortoise.exceptions import BaseORMException

from models import ReconciliationRun
from schemas import BitcoinRunStats, PeriodResult, RunReport
from services import bitcoin, config, replace, summaries
from services.context import RunContext
from services.errors import CurtailmentError, FatalError, NetworkError
from services.validator import validate

logger = logging.getLogger(__name__)
UTC = timezone.utc


def date_span(start_date: date, end_date: Optional[date] = None) -> List[date]:
    end_date = end_date or start_date
    if end_date < start_date:
        raise ValueError(f"end_date {end_date} is before start_date {start_date}")
    return [start_date + timedelta(days=i) for i in range((end_date - start_date).days + 1)]


def _check_periods(start_period: int, end_period: int) -> None:
    if not (1 <= start_period <= end_period <= config.SETTLEMENT_PERIODS):
        raise ValueError(f"period range {start_period}..{end_period} outside 1..{config.SETTLEMENT_PERIODS}")


async def process_period(ctx: RunContext, settlement_date: date, period: int) -> PeriodResult:
    """fetch -> validate -> diff/replace for one partition. Never raises except FatalError."""
    tag = f"[{settlement_date} P{period}]"
    result = PeriodResult(settlement_date=settlement_date, settlement_period=period)
    try:
        fetched = await ctx.fetcher.fetch(settlement_date, period)
        if fetched.partial and not ctx.accept_partial:
            raise NetworkError(f"{tag} {', '.join(fetched.failed_sides)} stack unavailable")

        outcome = validate(fetched.entries, ctx.registry, settlement_date, period)
        async with ctx.write_lock:
            d, inserted = await replace.reconcile_partition(
                settlement_date, period, outcome.records, ctx.tolerance, keep_stale=fetched.partial
            )
    except FatalError:
        raise
    except CurtailmentError as e:
        result.status = "failed"
        result.error = str(e)
        logger.warning(f"{tag} failed: {e}")
        return result
    except Exception as e:
        result.status = "failed"
        result.error = f"{type(e).__name__}: {e}"
        logger.exception(f"{tag} unexpected error")
        return result

    result.records_found = len(outcome.records)
    result.records_dropped = outcome.dropped_total
    result.records_inserted = inserted
    result.missing = len(d.missing)
    result.changed = len(d.changed)
    result.identical = len(d.identical)
    result.stale = len(d.stale)
    result.kept = len(d.kept)
    result.volume = sum(abs(r.volume) for r in outcome.records)
    result.payment = sum(r.payment for r in outcome.records)
    if fetched.partial:
        result.status = "partial"
    elif not d.needs_replace:
        result.status = "unchanged"
    return result


async def _run_periods(ctx: RunContext, keys: Sequence[Tuple[date, int]], sequential: bool) -> List[PeriodResult]:
    if sequential:
        return [await process_period(ctx, d, p) for d, p in keys]

    out: List[PeriodResult] = []
    size = max(1, ctx.batch_size)
    for i in range(0, len(keys), size):
        batch = keys[i:i + size]
        out.extend(await asyncio.gather(*(process_period(ctx, d, p) for d, p in batch)))
        if i + size < len(keys) and ctx.batch_delay_seconds > 0:
            await ctx.sleep(ctx.batch_delay_seconds)
    return out


def _summarise(report: RunReport, results: List[PeriodResult]) -> None:
    report.periods = results
    report.periods_requested = len(results)
    for r in results:
        if not r.succeeded:
            report.periods_failed += 1
            report.failed_periods.append(f"{r.settlement_date.isoformat()} P{r.settlement_period}")
            continue
        report.periods_succeeded += 1
        report.records_found += r.records_found
        report.records_inserted += r.records_inserted
        report.records_dropped += r.records_dropped
        report.missing += r.missing
        report.changed += r.changed
        report.identical += r.identical
        report.total_volume += r.volume
        report.total_payment += r.payment

    if report.expected_total:
        report.deviation_pct = (report.total_payment - report.expected_total) / report.expected_total * 100

    if report.periods_succeeded == 0 and report.periods_requested:
        report.status = "failed"
    elif report.periods_failed or any(r.status == "partial" for r in results):
        report.status = "partial"


async def _cascade(ctx: RunContext, report: RunReport, dates: List[date], with_bitcoin: bool) -> None:
    try:
        await summaries.cascade(dates)
    except BaseORMException as e:
        report.errors.append(f"energy cascade failed: {e}")
        logger.error(f"[cascade] energy summaries failed: {e}")
        return

    if not with_bitcoin:
        return
    for d in dates:
        try:
            stats = await bitcoin.process_bitcoin_for_date(d, ctx.miner_models)
        except BaseORMException as e:
            msg = f"bitcoin calculations for {d} failed: {e}"
            report.bitcoin.dates_failed += 1
            report.bitcoin.errors.append(msg)
            report.errors.append(msg)
            logger.error(f"[bitcoin {d}] calculations failed: {e}")
            continue
        _merge_bitcoin(report.bitcoin, stats)
    try:
        await bitcoin.bitcoin_cascade(dates)
    except BaseORMException as e:
        report.errors.append(f"bitcoin cascade failed: {e}")
        logger.error(f"[cascade] bitcoin summaries failed: {e}")


def _merge_bitcoin(into: BitcoinRunStats, stats: BitcoinRunStats) -> None:
    into.calculations_written += stats.calculations_written
    into.calculations_failed += stats.calculations_failed
    into.dates_failed += stats.dates_failed
    for model, v in stats.bitcoin_by_model.items():
        into.bitcoin_by_model[model] = into.bitcoin_by_model.get(model, 0.0) + v
    into.errors.extend(e for e in stats.errors if e not in into.errors)


async def _open_run(trigger: str, start_date: date, end_date: date, start_period: int, end_period: int) -> ReconciliationRun:
    try:
        return await ReconciliationRun.create(
            trigger=trigger,
            start_date=start_date,
            end_date=end_date,
            start_period=start_period,
            end_period=end_period,
            status="running",
        )
    except BaseORMException as e:
        raise FatalError(f"record store unavailable: {e}") from e


async def _close_run(run: ReconciliationRun, report: RunReport, error: Optional[str] = None) -> None:
    run.status = report.status
    run.periods_requested = report.periods_requested
    run.periods_succeeded = report.periods_succeeded
    run.periods_failed = report.periods_failed
    run.records_inserted = report.records_inserted
    run.error_message = error or ("; ".join(report.errors) or None)
    run.report = report.model_dump(mode="json")
    run.finished_at = datetime.now(tz=UTC)
    try:
        await run.save()
    except BaseORMException as e:
        logger.error(f"[run #{run.id}] could not persist run log: {e}")


async def reconcile(
    ctx: RunContext,
    start_date: date,
    end_date: Optional[date] = None,
    start_period: int = 1,
    end_period: int = config.SETTLEMENT_PERIODS,
    *,
    expected_total: Optional[float] = None,
    sequential: bool = False,
    with_bitcoin: bool = True,
    trigger: str = "manual",
) -> RunReport:
    """
    Reconcile every (date, period) in the span, then recompute the cascades for
    every date with at least one successful period. Cascade errors are
    reported, never raised; the run row is always closed.
    """
    dates = date_span(start_date, end_date)
    _check_periods(start_period, end_period)
    keys = [(d, p) for d in dates for p in range(start_period, end_period + 1)]

    run = await _open_run(trigger, dates[0], dates[-1], start_period, end_period)
    report = RunReport(
        run_id=run.id,
        start_date=dates[0],
        end_date=dates[-1],
        start_period=start_period,
        end_period=end_period,
        expected_total=expected_total,
    )
    logger.info(f"[run #{run.id}] {dates[0]}..{dates[-1]} P{start_period}-P{end_period}: {len(keys)} periods")

    try:
        results = await _run_periods(ctx, keys, sequential)
        _summarise(report, results)

        # barrier: every period write is done before any summary is read
        report.dates_touched = sorted(
            {r.settlement_date for r in results if r.succeeded and (r.missing or r.changed or r.stale)}
        )
        # every date with a successful period is re-cascaded, including dates
        # left behind by an earlier failed cascade
        processed = sorted({r.settlement_date for r in results if r.succeeded})
        if processed:
            await _cascade(ctx, report, processed, with_bitcoin)
        if report.errors and report.status == "completed":
            report.status = "partial"
    except FatalError as e:
        report.status = "failed"
        await _close_run(run, report, error=str(e))
        logger.error(f"[run #{run.id}] aborted: {e}")
        raise
    except Exception as e:
        report.status = "failed"
        await _close_run(run, report, error=f"{type(e).__name__}: {e}")
        logger.exception(f"[run #{run.id}] aborted")
        raise

    await _close_run(run, report)
    logger.info(
        f"[run #{run.id}] {report.status}: {report.periods_succeeded}/{report.periods_requested} periods ok, "
        f"{report.missing} missing, {report.changed} changed, {report.identical} identical, "
        f"{report.total_volume:.2f} MWh, £{report.total_payment:.2f}"
    )
    if report.deviation_pct is not None:
        logger.info(f"[run #{run.id}] deviation from expected £{expected_total:.2f}: {report.deviation_pct:+.2f}%")
    return report


async def run_reconciliation(
    start_date: date,
    end_date: Optional[date] = None,
    start_period: int = 1,
    end_period: int = config.SETTLEMENT_PERIODS,
    *,
    expected_total: Optional[float] = None,
    sequential: bool = False,
    with_bitcoin: bool = True,
    trigger: str = "manual",
    **ctx_kwargs,
) -> RunReport:
    """Open a fresh RunContext for one run and close it afterwards."""
    async with RunContext.open(**ctx_kwargs) as ctx:
        return await reconcile(
            ctx, start_date, end_date, start_period, end_period,
            expected_total=expected_total,
            sequential=sequential,
            with_bitcoin=with_bitcoin,
            trigger=trigger,
        )


async def run_bitcoin(
    start_date: date,
    end_date: Optional[date] = None,
    miner_models: Optional[List[str]] = None,
) -> BitcoinRunStats:
    """Recreate Bitcoin calculations and their cascade for already-stored curtailment."""
    dates = date_span(start_date, end_date)
    total = BitcoinRunStats()
    for d in dates:
        _merge_bitcoin(total, await bitcoin.process_bitcoin_for_date(d, miner_models))
    await bitcoin.bitcoin_cascade(dates)
    return total
