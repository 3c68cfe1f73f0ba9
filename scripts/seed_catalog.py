#!/usr/bin/env python3
"""
Seed Catalog Script

Installs the launch pricing plans, project templates and the launch
channel partner into an empty database. Does nothing when plans exist.

Usage:
    python3 scripts/seed_catalog.py
    python3 scripts/seed_catalog.py --migrate   # apply migrations first
"""

import argparse
import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.db.migration_runner import run_migrations
from app.db.session import close_engines, get_write_session
from app.observability import get_logger, setup_logging
from app.services.catalog import CatalogService

logger = get_logger(__name__)


async def seed() -> bool:
    """Seed the catalog in its own session."""
    try:
        async with get_write_session() as session:
            return await CatalogService(session).seed_catalog()
    finally:
        await close_engines()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Seed plans, templates and launch partner")
    parser.add_argument("--migrate", action="store_true", help="Apply migrations before seeding")
    args = parser.parse_args()

    setup_logging()
    if args.migrate:
        run_migrations()

    seeded = asyncio.run(seed())
    logger.info("seed_catalog_finished", seeded=seeded)


if __name__ == "__main__":
    main()
