# services/replace.py
from __future__ import annotations
import logging
from datetime import date
from typing import List, Sequence, Tuple

from tortoise.exceptions import BaseORMException, TransactionManagementError
from tortoise.transactions import in_transaction

from models import CurtailmentRecord
from schemas import CurtailmentRecordIn, ReconciliationDiff
from services import reconciliation
from services.errors import PersistenceError

logger = logging.getLogger(__name__)

RECORD_FIELDS = (
    "settlement_date", "settlement_period", "farm_id", "lead_party_name",
    "volume", "payment", "original_price", "final_price", "so_flag", "cadl_flag",
)


async def load_partition(settlement_date: date, settlement_period: int) -> List[CurtailmentRecordIn]:
    rows = await CurtailmentRecord.filter(
        settlement_date=settlement_date, settlement_period=settlement_period
    ).values(*RECORD_FIELDS)
    return [CurtailmentRecordIn(**r) for r in rows]


async def _replace(settlement_date: date, settlement_period: int, records: Sequence[CurtailmentRecordIn]) -> int:
    await CurtailmentRecord.filter(
        settlement_date=settlement_date, settlement_period=settlement_period
    ).delete()
    if records:
        await CurtailmentRecord.bulk_create([CurtailmentRecord(**r.model_dump()) for r in records])
    return len(records)


def _wrap(settlement_date: date, settlement_period: int, e: Exception) -> PersistenceError:
    tag = f"[{settlement_date} P{settlement_period}]"
    if isinstance(e, TransactionManagementError):
        return PersistenceError(f"{tag} transaction state unknown: {e}", corrupted=True)
    return PersistenceError(f"{tag} replace rolled back: {e}")


async def apply(settlement_date: date, settlement_period: int, records: Sequence[CurtailmentRecordIn]) -> int:
    """Delete the whole (date, period) partition and insert `records`, atomically."""
    for r in records:
        if r.settlement_date != settlement_date or r.settlement_period != settlement_period:
            raise ValueError(f"record {r.farm_id} belongs to {r.settlement_date} P{r.settlement_period}")
    try:
        async with in_transaction():
            return await _replace(settlement_date, settlement_period, records)
    except BaseORMException as e:
        raise _wrap(settlement_date, settlement_period, e) from e


async def reconcile_partition(
    settlement_date: date,
    settlement_period: int,
    authoritative: Sequence[CurtailmentRecordIn],
    tolerance: float | None = None,
    *,
    keep_stale: bool = False,
) -> Tuple[ReconciliationDiff, int]:
    """
    Read, diff and (if anything differs) replace one partition in one transaction.
    Returns the diff and the number of rows written (0 when identical).

    With keep_stale (an incomplete fetch), stored farms absent from
    `authoritative` are carried over instead of deleted; they are reported in
    `kept` and the diff's `stale` list is emptied.
    """
    try:
        async with in_transaction():
            persisted = await load_partition(settlement_date, settlement_period)
            d = reconciliation.diff(authoritative, persisted, tolerance)
            records = list(authoritative)
            if keep_stale and d.stale:
                kept = set(d.stale)
                records.extend(p for p in persisted if p.farm_id in kept)
                d.kept = d.stale
                d.stale = []
            if not d.needs_replace:
                return d, 0
            inserted = await _replace(settlement_date, settlement_period, records)
    except BaseORMException as e:
        raise _wrap(settlement_date, settlement_period, e) from e

    logger.info(
        f"[{settlement_date} P{settlement_period}] replaced partition: "
        f"{len(d.missing)} missing, {len(d.changed)} changed, {len(d.stale)} stale, "
        f"{len(d.kept)} kept, {inserted} written"
    )
    return d, inserted
