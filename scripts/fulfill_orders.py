#!/usr/bin/env python3
"""
Fulfil Orders Script

Finds succeeded payments that never got their access grant (the process died,
or the grant write failed after the payment was recorded) and writes the
missing grants.

Runs once by default; pass --interval to keep sweeping, e.g. from a sidecar.

Usage:
  python3 scripts/fulfill_orders.py
  python3 scripts/fulfill_orders.py --interval 300 --limit 500
"""

import argparse
import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

from storefront.db.session import close_engines, get_write_session
from storefront.observability import setup_logging
from storefront.services.reconciliation import fulfill_unfulfilled_orders

logger = structlog.get_logger()


async def sweep_once(limit: int) -> int:
    """One pass over unfulfilled payments."""
    async with get_write_session() as session:
        written = await fulfill_unfulfilled_orders(session, limit=limit)
    logger.info("fulfill_orders_sweep_completed", grants_written=written)
    return written


async def run(interval: int | None, limit: int) -> None:
    try:
        if interval is None:
            await sweep_once(limit)
            return

        logger.info("fulfill_orders_loop_started", interval_seconds=interval)
        while True:
            try:
                await sweep_once(limit)
            except Exception as e:
                logger.error("fulfill_orders_sweep_error", error=str(e), exc_info=True)
            await asyncio.sleep(interval)
    finally:
        await close_engines()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Grant access for paid but unfulfilled orders")
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between sweeps; omit to sweep once and exit",
    )
    parser.add_argument(
        "--limit", type=int, default=100, help="Maximum payments examined per sweep"
    )
    args = parser.parse_args()

    setup_logging()
    try:
        asyncio.run(run(args.interval, args.limit))
    except KeyboardInterrupt:
        logger.info("fulfill_orders_stopped")
        sys.exit(0)


if __name__ == "__main__":
    main()
