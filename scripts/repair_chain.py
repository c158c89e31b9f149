#!/usr/bin/env python3
"""
Operator repair of requisition approval chains.

Closes gaps in step orders, applies a missing self-authorization, and
re-derives the cached status of each named requisition, one transaction
per requisition.  With --verify the requisition's hash-chained history is
validated afterwards.

Usage:
  python3 scripts/repair_chain.py REQ-000042 [REQ-000043 ...]
  python3 scripts/repair_chain.py REQ-000042 --verify --actor ops.oncall
"""

import argparse
import sys


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Repair requisition approval chains")
    p.add_argument("codes", nargs="+", help="Requisition codes to repair")
    p.add_argument("--config", default=None, help="Engine settings file (default: $PROCUREMENT_CONFIG)")
    p.add_argument("--db-url", default=None, help="Database URL (overrides settings)")
    p.add_argument("--actor", default="repair_chain", help="Recorded on the chain_repaired history event")
    p.add_argument("--verify", action="store_true", help="Validate the history chain after repair")
    return p.parse_args()


def main() -> int:
    args = _parse_args()

    from procurement_config import get_active_settings
    from procurement_kernel.db.engine import init_engine_from_url, session_scope
    from procurement_kernel.exceptions import ProcurementKernelError
    from procurement_kernel.services.approval_state_machine import ApprovalStateMachine
    from procurement_kernel.services.auditor_service import AuditorService

    settings = get_active_settings(args.config)
    init_engine_from_url(args.db_url or settings.database_url, echo=settings.echo)

    failures = 0
    for code in args.codes:
        try:
            with session_scope() as session:
                result = ApprovalStateMachine(session).repair_chain(
                    code, args.actor, settings.self_authorization_comment,
                )
                if args.verify:
                    AuditorService(session).validate_chain(code)
        except ProcurementKernelError as exc:
            failures += 1
            print(f"  {code}: FAILED [{exc.code}] {exc}", file=sys.stderr)
            continue

        print(
            f"  {code}: renumbered={result.renumbered} "
            f"self_authorized={result.self_authorized} "
            f"{result.previous_status.value} -> {result.status.value}"
        )

    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
