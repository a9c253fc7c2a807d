"""
Command-line reconciliation.

    python reconcile.py --date 2025-03-28
    python reconcile.py --date 2025-03-01 --end-date 2025-03-31 --sequential
    python reconcile.py --date 2025-03-28 --start-period 20 --end-period 30 --expected-total 3784089.62
    python reconcile.py --date 2025-03-28 --verify

Prints the run report as JSON. Exit status is 0 when at least one period was
reconciled, 1 otherwise.
"""
from __future__ import annotations
import argparse
import asyncio
import json
import logging
import sys
from datetime import date, datetime

from tortoise import Tortoise

from services import config, integrity
from services.context import RunContext
from services.errors import FatalError
from services.orchestrator import run_reconciliation
from services.seeder import seed_if_empty

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("reconcile")


def _date(v: str) -> date:
    try:
        return datetime.strptime(v, "%Y-%m-%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a YYYY-MM-DD date: {v!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reconcile wind curtailment settlement data")
    parser.add_argument("--date", type=_date, required=True, help="Settlement date (YYYY-MM-DD)")
    parser.add_argument("--end-date", type=_date, help="Last date of a range (inclusive)")
    parser.add_argument("--start-period", type=int, default=1, help="First settlement period (1-48)")
    parser.add_argument("--end-period", type=int, default=config.SETTLEMENT_PERIODS, help="Last settlement period (1-48)")
    parser.add_argument("--expected-total", type=float, help="Expected total payment (GBP) for the deviation check")
    parser.add_argument("--sequential", action="store_true", help="One period at a time instead of batches")
    parser.add_argument("--no-bitcoin", action="store_true", help="Skip Bitcoin calculations")
    parser.add_argument("--verify", action="store_true", help="Only check whether --date needs reprocessing")
    return parser


async def _main(args: argparse.Namespace) -> int:
    await Tortoise.init(db_url=config.DB_URL, modules={"models": ["models"]})
    await Tortoise.generate_schemas()
    try:
        await seed_if_empty(logger=logger.info)
        if args.verify:
            async with RunContext.open() as ctx:
                res = await integrity.verify_date(ctx, args.date)
            print(res.model_dump_json(indent=2))
            return 0

        report = await run_reconciliation(
            args.date,
            args.end_date,
            args.start_period,
            args.end_period,
            expected_total=args.expected_total,
            sequential=args.sequential,
            with_bitcoin=not args.no_bitcoin,
            trigger="cli",
        )
        print(json.dumps(report.model_dump(mode="json", exclude={"periods"}), indent=2))
        return 0 if report.periods_succeeded > 0 else 1
    finally:
        await Tortoise.close_connections()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(_main(args))
    except FatalError as e:
        logger.error(f"aborted: {e}")
        return 1
    except ValueError as e:
        logger.error(str(e))
        return 2


if __name__ == "__main__":
    sys.exit(main())
