"""Inspect, audit and resolve ledger integrity holds."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Manage public.integrity_holds, which halt automated sweeps.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    list_cmd = commands.add_parser("list", help="Show open holds for a user.")
    list_cmd.add_argument("user_id", type=str)

    audit_cmd = commands.add_parser(
        "audit",
        help="Refold ledgers and open holds for any violation found.",
    )
    audit_cmd.add_argument(
        "user_ids",
        nargs="*",
        help="Users to audit (default: every user with ledger entries).",
    )

    resolve_cmd = commands.add_parser(
        "resolve",
        help="Mark a hold reconciled so sweeps resume.",
    )
    resolve_cmd.add_argument("hold_id", type=str)
    return parser.parse_args(argv)


def print_holds(holds: Sequence[dict[str, Any]]) -> None:
    """Print holds one per line."""
    print(f"{len(holds)} open hold(s):")
    for hold in holds:
        print(f"{hold['id']}  {hold['reason']}  {hold['detected_at']}  {hold.get('detail') or ''}")


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    args = parse_args(argv)

    from app.services.balance_service import BalanceService
    from app.services.integrity_service import IntegrityService
    from app.utils.supabase_client import get_service_client

    client = get_service_client()
    if args.command == "list":
        print_holds(IntegrityService(client).open_holds(args.user_id))
    elif args.command == "audit":
        balances = BalanceService(client)
        user_ids = args.user_ids or balances.ledger_user_ids()
        for user_id in user_ids:
            for violation in balances.audit(user_id):
                print(f"{user_id}: {violation.reason} ({violation.detail})")
        print(f"Audited {len(user_ids)} user(s)")
    else:
        hold = IntegrityService(client).resolve(args.hold_id)
        print(f"Resolved hold {hold['id']} for user {hold['user_id']}")


if __name__ == "__main__":
    main()
