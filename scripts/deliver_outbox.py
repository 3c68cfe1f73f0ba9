#!/usr/bin/env python3
"""
Outbox Delivery Worker

Posts due outbound webhook events (lead-processing notifications) and
schedules retries with exponential backoff.

Usage:
    python3 scripts/deliver_outbox.py            # one pass
    python3 scripts/deliver_outbox.py --loop     # keep polling
"""

import argparse
import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.db.session import close_engines, get_write_session
from app.observability import get_logger, setup_logging
from app.services.outbox import OutboxService

logger = get_logger(__name__)


async def deliver_once(limit: int | None) -> None:
    """Run one delivery pass."""
    async with get_write_session() as session:
        stats = await OutboxService(session).deliver_due(limit=limit)
    logger.info(
        "outbox_worker_pass",
        delivered=stats.delivered,
        retried=stats.retried,
        failed=stats.failed,
    )


async def run_loop(interval_seconds: int, limit: int | None) -> None:
    """Run delivery passes until interrupted."""
    logger.info("outbox_worker_started", check_interval_seconds=interval_seconds)

    try:
        while True:
            try:
                await deliver_once(limit)
            except Exception as e:
                logger.error("outbox_worker_error", error=str(e), exc_info=True)

            await asyncio.sleep(interval_seconds)
    finally:
        await close_engines()


async def run_once(limit: int | None) -> None:
    try:
        await deliver_once(limit)
    finally:
        await close_engines()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Deliver pending outbox events")
    parser.add_argument("--loop", action="store_true", help="Keep polling")
    parser.add_argument("--interval", type=int, default=30, help="Seconds between passes")
    parser.add_argument("--limit", type=int, default=None, help="Events per pass")
    args = parser.parse_args()

    setup_logging()
    try:
        if args.loop:
            asyncio.run(run_loop(args.interval, args.limit))
        else:
            asyncio.run(run_once(args.limit))
    except KeyboardInterrupt:
        logger.info("outbox_worker_stopped")
        sys.exit(0)


if __name__ == "__main__":
    main()
