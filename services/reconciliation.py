from __future__ import annotations
from typing import Iterable, List

from schemas import ChangedPair, CurtailmentRecordIn, ReconciliationDiff
from services import config

# compared with an absolute tolerance; payment is derived from these two
TOLERANT_FIELDS = ("volume", "original_price", "final_price")
EXACT_FIELDS = ("so_flag", "cadl_flag", "lead_party_name")


def changed_fields(
    authoritative: CurtailmentRecordIn,
    persisted: CurtailmentRecordIn,
    tolerance: float,
) -> List[str]:
    out = []
    for f in TOLERANT_FIELDS:
        if abs(getattr(authoritative, f) - getattr(persisted, f)) > tolerance:
            out.append(f)
    for f in EXACT_FIELDS:
        if getattr(authoritative, f) != getattr(persisted, f):
            out.append(f)
    return out


def diff(
    authoritative: Iterable[CurtailmentRecordIn],
    persisted: Iterable[CurtailmentRecordIn],
    tolerance: float | None = None,
) -> ReconciliationDiff:
    """
    Classify one (date, period) partition by farm_id.

    missing: authoritative only; changed: any field outside tolerance;
    identical: everything within tolerance; stale: persisted only.
    """
    tol = config.RECONCILE_TOLERANCE if tolerance is None else tolerance
    stored = {r.farm_id: r for r in persisted}
    result = ReconciliationDiff()

    seen = set()
    for rec in authoritative:
        seen.add(rec.farm_id)
        old = stored.get(rec.farm_id)
        if old is None:
            result.missing.append(rec)
            continue
        fields = changed_fields(rec, old, tol)
        if fields:
            result.changed.append(ChangedPair(authoritative=rec, persisted=old, fields=fields))
        else:
            result.identical.append(rec)

    result.stale = sorted(fid for fid in stored if fid not in seen)
    return result
