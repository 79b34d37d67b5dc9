#!/usr/bin/env python3
"""
Create (or recreate) the approval tables.

Usage:
    python3 scripts/init_db.py [--database-url URL] [--drop]

The database URL defaults to the active configuration's database_url
(DATABASE_URL in the environment overrides it).
"""

import argparse
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Create the approval workflow tables")
    p.add_argument("--database-url", default=None, help="SQLAlchemy database URL")
    p.add_argument("--drop", action="store_true", help="Drop existing tables first")
    p.add_argument("--echo", action="store_true", help="Echo SQL statements")
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from approval_config import get_active_config
    from approval_kernel.db.engine import (
        create_tables,
        drop_tables,
        init_engine_from_url,
    )

    database_url = args.database_url or get_active_config().database_url
    if not database_url:
        print("Error: no database URL configured", file=sys.stderr)
        return 1

    init_engine_from_url(database_url, echo=args.echo)
    if args.drop:
        print("Dropping tables...")
        drop_tables()
    print("Creating tables...")
    create_tables()
    print("Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
