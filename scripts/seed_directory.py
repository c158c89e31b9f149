#!/usr/bin/env python3
"""
Load an approver directory seed file into the approvers tables.

Registers (or updates) every approver in the YAML file together with the
units they are authorized for.  Approvers missing from the file are left
untouched; set ``active: false`` in the file to retire someone.

Usage:
  python3 scripts/seed_directory.py config/directory.example.yaml
  python3 scripts/seed_directory.py directory.yaml --db-url postgresql://...

Settings come from $PROCUREMENT_CONFIG (or --config); --db-url overrides
the configured database URL.
"""

import argparse
import sys


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Seed the approver directory from YAML")
    p.add_argument("directory", help="Approver directory seed file (YAML)")
    p.add_argument("--config", default=None, help="Engine settings file (default: $PROCUREMENT_CONFIG)")
    p.add_argument("--db-url", default=None, help="Database URL (overrides settings)")
    p.add_argument(
        "--create-tables",
        action="store_true",
        help="Create missing tables before seeding",
    )
    p.add_argument("--actor", default="seed_directory", help="Recorded as created_by_id")
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from sqlalchemy.exc import SQLAlchemyError

    from procurement_config import get_active_settings, load_directory
    from procurement_kernel.db.engine import create_tables, init_engine_from_url, session_scope
    from procurement_kernel.services.approver_directory import SqlApproverDirectory

    settings = get_active_settings(args.config)
    seed = load_directory(args.directory)

    print()
    print(f"  [1/3] Parsed {len(seed.approvers)} approvers (checksum {seed.checksum[:16]}...)")

    print("  [2/3] Connecting...")
    try:
        init_engine_from_url(args.db_url or settings.database_url, echo=settings.echo)
        if args.create_tables:
            create_tables()
    except SQLAlchemyError as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 1

    print("  [3/3] Registering approvers...")
    with session_scope() as session:
        directory = SqlApproverDirectory(session)
        for entry in seed.approvers:
            directory.register_approver(entry, actor_id=args.actor)
            units = ", ".join(sorted(entry.units)) or "-"
            state = "" if entry.active else " (inactive)"
            print(f"    {entry.approver_id:<24} {entry.role.value:<14} {units}{state}")

    print()
    print("  Done.")
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
