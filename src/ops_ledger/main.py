"""
Main entry point for the Operations Ledger command-line tool.

Provides read-only inspection of the ledger (lots, transaction history,
FIFO plans, batch audit trails and movement summaries, lot integrity) plus
database initialization.

Usage:
    ops-ledger init-db
    ops-ledger lots rm_001
    ops-ledger fifo rm_001 40
    ops-ledger audit 3
"""

import argparse
import json
import logging
import sys
from decimal import Decimal
from typing import List, Optional

from ops_ledger import __version__
from ops_ledger.services import batch_reporting_service, inventory_service
from ops_ledger.services.database import initialize_app_database
from ops_ledger.services.exceptions import ServiceError
from ops_ledger.services.logging_utils import configure_logging
from ops_ledger.utils.config import get_config


def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "to_dict"):
        return value.to_dict()
    raise TypeError(f"Cannot serialize {type(value).__name__}")


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=_json_default))


def cmd_init_db(args) -> int:
    config = get_config()
    print(f"Initializing database at {config.database_url}...")
    initialize_app_database()
    print("Database initialized successfully")
    return 0


def cmd_lots(args) -> int:
    lots = inventory_service.get_available_lots(args.material_id)
    if not lots:
        print(f"No available lots for material '{args.material_id}'")
        return 0
    for lot in lots:
        expiry = lot.expiry_date.date().isoformat() if lot.expiry_date else "-"
        print(
            f"{lot.id:>6}  {lot.lot_number:<20} {lot.remaining:>12} "
            f"@ {lot.cost_per_unit:<10} intake {lot.intake_date.date().isoformat()} "
            f"expires {expiry}"
        )
    return 0


def cmd_history(args) -> int:
    history = inventory_service.get_transaction_history(args.lot_id, limit=args.limit)
    _print_json([txn.to_dict() for txn in history])
    return 0


def cmd_fifo(args) -> int:
    plan = inventory_service.select_fifo(args.material_id, args.quantity)
    for selection in plan["selections"]:
        selection.pop("lot")
    _print_json(plan)
    return 0


def cmd_audit(args) -> int:
    _print_json(batch_reporting_service.audit_trail(args.batch_id))
    return 0


def cmd_summary(args) -> int:
    _print_json(batch_reporting_service.movement_summary(args.batch_id))
    return 0


def cmd_verify(args) -> int:
    result = inventory_service.verify_lot_integrity(args.lot_id)
    _print_json(result)
    return 0 if result["is_consistent"] else 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ops-ledger",
        description="Inspect the material lot ledger and production batches",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sub = subparsers.add_parser("init-db", help="Create database tables")
    sub.set_defaults(func=cmd_init_db)

    sub = subparsers.add_parser("lots", help="List available lots for a material in FIFO order")
    sub.add_argument("material_id")
    sub.set_defaults(func=cmd_lots)

    sub = subparsers.add_parser("history", help="Show a lot's transaction history, newest first")
    sub.add_argument("lot_id", type=int)
    sub.add_argument("--limit", type=int, default=None)
    sub.set_defaults(func=cmd_history)

    sub = subparsers.add_parser("fifo", help="Plan a FIFO consumption without changing anything")
    sub.add_argument("material_id")
    sub.add_argument("quantity", type=Decimal)
    sub.set_defaults(func=cmd_fifo)

    sub = subparsers.add_parser("audit", help="Show a batch's audit trail")
    sub.add_argument("batch_id", type=int)
    sub.set_defaults(func=cmd_audit)

    sub = subparsers.add_parser("summary", help="Show a batch's movement summary")
    sub.add_argument("batch_id", type=int)
    sub.set_defaults(func=cmd_summary)

    sub = subparsers.add_parser("verify", help="Check a lot's history reconstructs its quantity")
    sub.add_argument("lot_id", type=int)
    sub.set_defaults(func=cmd_verify)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main command-line entry point.

    Returns:
        Process exit code
    """
    args = build_parser().parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)

    try:
        return args.func(args)
    except ServiceError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
