# services/seeder.py
from __future__ import annotations
import json
from datetime import date
from pathlib import Path

from tortoise.transactions import in_transaction

from models import DifficultySample
from services import config


def _load_json(path: Path):
    return json.loads(path.read_text(encoding="utf-8")) if path.exists() else []


async def seed_if_empty(logger=print, path: Path | None = None) -> dict:
    """Load difficulty samples from the seed file when the table is empty."""
    count = await DifficultySample.all().count()
    logger(f"[seed] counts => difficulty_samples={count}")
    if count:
        logger("[seed] already populated, skipping.")
        return {"created": 0, "skipped": 0}

    rows = _load_json(Path(path or config.DIFFICULTY_SEED_FILE))
    created = skipped = 0
    async with in_transaction():
        for r in rows:
            try:
                d = date.fromisoformat(str(r.get("sample_date") or ""))
                diff = float(r.get("difficulty") or 0)
            except (TypeError, ValueError):
                skipped += 1
                continue
            if diff <= 0:
                skipped += 1
                continue
            _, was_created = await DifficultySample.get_or_create(
                sample_date=d,
                defaults=dict(
                    difficulty=diff,
                    price_usd=r.get("price_usd"),
                    price_gbp=r.get("price_gbp"),
                    source=r.get("source") or "seed",
                ),
            )
            created += int(was_created)

    logger(f"[seed] difficulty_samples created={created} skipped={skipped}")
    return {"created": created, "skipped": skipped}
