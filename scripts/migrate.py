#!/usr/bin/env python3
"""
Apply pending database migrations.

Usage:
    python3 scripts/migrate.py           # upgrade to head
    python3 scripts/migrate.py --check   # report status, exit 1 if behind
"""

import argparse
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.db.migration_runner import check_migrations_status, run_migrations
from app.observability import get_logger, setup_logging

logger = get_logger(__name__)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Apply Alembic migrations")
    parser.add_argument("--check", action="store_true", help="Only report pending migrations")
    args = parser.parse_args()

    setup_logging()
    if args.check:
        status = check_migrations_status()
        logger.info(
            "migration_status",
            current=status.current_revision,
            head=status.head_revision,
            pending=status.pending,
        )
        sys.exit(1 if status.pending else 0)

    run_migrations()


if __name__ == "__main__":
    main()
