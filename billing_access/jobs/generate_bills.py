"""
Bill Generation Job.

Creates the bills and payments that active schedules fall due for within the
generation window. Runs are idempotent per (schedule, due date), so the job
can be retried or scheduled with overlapping windows.

Run as a daily cron job:
    python -m billing_access.jobs.generate_bills [--as-of 2021-02-01] [--horizon-days 31]

Configuration:
- POSTGRES_URL: database connection string
- BILL_GENERATION_HORIZON_DAYS: days ahead of --as-of to generate (default: 31)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date, datetime, timezone

from ..config import get_settings
from ..domain.generator import BillGenerator
from ..repository import ScheduleRepository, build_pool

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate bills and payments from schedules.")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None)
    parser.add_argument("--horizon-days", type=int, default=None)
    parser.add_argument(
        "--since",
        type=date.fromisoformat,
        default=None,
        help="backfill charges due from this date instead of --as-of",
    )
    return parser.parse_args(argv)


def run_generation(args: argparse.Namespace) -> dict:
    settings = get_settings()
    pool = build_pool(settings)
    pool.open()
    try:
        generator = BillGenerator(
            ScheduleRepository(pool), horizon_days=settings.bill_generation_horizon_days
        )
        as_of = args.as_of or datetime.now(timezone.utc).date()
        report = generator.run(as_of, horizon_days=args.horizon_days, since=args.since)
        return report.to_dict()
    finally:
        pool.close()


def main(argv: list[str] | None = None) -> None:
    """Entry point for running bill generation from the command line."""
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        result = run_generation(parse_args(argv))
        print(json.dumps(result))
        sys.exit(0)
    except Exception as e:
        logger.error("bill generation failed: %s", e)
        sys.exit(1)


if __name__ == "__main__":
    main()
