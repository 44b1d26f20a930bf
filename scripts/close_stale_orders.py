#!/usr/bin/env python3
"""
Close Stale Orders

Closes pending orders whose payment window has passed but whose close-order
task never ran (broker outage, lost task). Safe to run from cron: orders paid
or closed in the meantime are left alone.

Usage:
    # Close orders older than the configured window (default 15 minutes)
    python3 scripts/close_stale_orders.py

    # Custom window and batch size
    python3 scripts/close_stale_orders.py --minutes 60 --limit 100
"""

import argparse
import asyncio
import os
import sys
from collections import Counter
from datetime import timedelta

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from panel_orders.config import settings  # noqa: E402
from panel_orders.db.session import close_engines, get_session  # noqa: E402
from panel_orders.observability import get_logger, setup_logging  # noqa: E402
from panel_orders.services.expiry import close_stale_orders  # noqa: E402

logger = get_logger(__name__)


async def run(minutes: int, limit: int) -> Counter:
    try:
        async with get_session() as session:
            outcomes = await close_stale_orders(
                session, window=timedelta(minutes=minutes), limit=limit
            )
    finally:
        await close_engines()
    return Counter(outcome.value for outcome in outcomes)


def positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Close pending orders past their payment window")
    parser.add_argument(
        "--minutes",
        type=positive_int,
        default=settings.close_order_minutes,
        help="Age in minutes after which a pending order is stale",
    )
    parser.add_argument(
        "--limit",
        type=positive_int,
        default=settings.stale_order_sweep_limit,
        help="Maximum orders per run",
    )
    return parser


def main() -> None:
    args = build_parser().parse_args()

    setup_logging(component="script")
    counts = asyncio.run(run(args.minutes, args.limit))
    logger.info("stale_orders_closed", **dict(counts))


if __name__ == "__main__":
    main()
