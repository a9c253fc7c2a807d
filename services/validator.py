from __future__ import annotations
import logging
from collections import Counter
from datetime import date
from typing import Any, Dict, Iterable, List

from pydantic import ValidationError as PydanticValidationError

from schemas import CurtailmentRecordIn, RawEntry, ValidationOutcome
from services.errors import ValidationError
from services.reference import WindFarmRegistry

logger = logging.getLogger(__name__)


def _parse(raw: Any) -> RawEntry:
    if isinstance(raw, RawEntry):
        return raw
    try:
        return RawEntry.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError(f"malformed entry: {e.error_count()} error(s)", reason="malformed") from e


def admit(entry: RawEntry, registry: WindFarmRegistry) -> RawEntry:
    """Raise ValidationError unless the entry is a flagged curtailment of a known wind farm."""
    if entry.volume >= 0:
        raise ValidationError(f"{entry.bmu_id}: volume {entry.volume} is not a curtailment", reason="not_curtailment")
    if not (entry.so_flag or entry.cadl_flag):
        raise ValidationError(f"{entry.bmu_id}: neither soFlag nor cadlFlag set", reason="no_flag")
    if not registry.contains(entry.bmu_id):
        raise ValidationError(f"{entry.bmu_id}: not a mapped wind farm", reason="unmapped")
    return entry


def _merge(rows: List[CurtailmentRecordIn]) -> CurtailmentRecordIn:
    if len(rows) == 1:
        return rows[0]
    first = rows[0]
    weight = sum(abs(r.volume) for r in rows)
    return first.model_copy(update={
        "volume": sum(r.volume for r in rows),
        "payment": sum(r.payment for r in rows),
        "original_price": sum(abs(r.volume) * r.original_price for r in rows) / weight,
        "final_price": sum(abs(r.volume) * r.final_price for r in rows) / weight,
        "so_flag": any(r.so_flag for r in rows),
        "cadl_flag": any(r.cadl_flag for r in rows),
    })


def validate(
    entries: Iterable[Any],
    registry: WindFarmRegistry,
    settlement_date: date,
    settlement_period: int,
) -> ValidationOutcome:
    """
    Filter raw stack entries down to curtailment records for one (date, period).

    Rejected entries are counted by reason, never raised. Several entries for the
    same BMU collapse into one record so the natural key stays unique.
    """
    dropped: Counter = Counter()
    by_farm: Dict[str, List[CurtailmentRecordIn]] = {}
    seen = 0

    for raw in entries:
        seen += 1
        try:
            e = admit(_parse(raw), registry)
        except ValidationError as err:
            dropped[err.reason] += 1
            continue

        by_farm.setdefault(e.bmu_id, []).append(CurtailmentRecordIn(
            settlement_date=settlement_date,
            settlement_period=settlement_period,
            farm_id=e.bmu_id,
            lead_party_name=registry.lead_party(e.bmu_id),
            volume=e.volume,
            payment=abs(e.volume) * e.original_price,
            original_price=e.original_price,
            final_price=e.final_price if e.final_price is not None else e.original_price,
            so_flag=e.so_flag,
            cadl_flag=bool(e.cadl_flag),
        ))

    records = [_merge(rows) for _, rows in sorted(by_farm.items())]
    merged = sum(len(rows) - 1 for rows in by_farm.values())
    if merged:
        logger.info(f"[{settlement_date} P{settlement_period}] merged {merged} duplicate stack entries")

    return ValidationOutcome(records=records, entries_seen=seen, dropped=dict(dropped), merged=merged)
