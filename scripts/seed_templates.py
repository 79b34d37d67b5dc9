#!/usr/bin/env python3
"""
Seed the configured approval flow templates.

Templates are read from the active configuration set
(approval_config/sets/<set>/templates/*.yaml).  Seeding is idempotent:
templates whose code already exists are skipped.

Usage:
    python3 scripts/seed_templates.py --actor-id UUID [--config-set default]
        [--database-url URL]
"""

import argparse
import sys
from pathlib import Path
from uuid import UUID

# ---------------------------------------------------------------------------
# Project root on sys.path
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Seed approval flow templates from configuration")
    p.add_argument("--actor-id", required=True, type=UUID, help="User id recorded as creator")
    p.add_argument("--config-set", default="default", help="Configuration set name")
    p.add_argument("--database-url", default=None, help="SQLAlchemy database URL")
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from approval_config import get_active_config
    from approval_config.bridges import seed_templates
    from approval_kernel.db.engine import init_engine_from_url, session_scope

    settings = get_active_config(config_set=args.config_set)
    database_url = args.database_url or settings.database_url
    if not database_url:
        print("Error: no database URL configured", file=sys.stderr)
        return 1

    init_engine_from_url(database_url)
    print(f"Config set {settings.config_id} v{settings.version} ({settings.checksum[:16]}...)")

    with session_scope() as session:
        created = seed_templates(session, settings, actor_id=args.actor_id)

    for template in created:
        print(f"  created {template.template_code}: {template.name} ({len(template.steps)} steps)")
    skipped = len(settings.templates) - len(created)
    print(f"Done. {len(created)} created, {skipped} already present.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
