"""
pickbridge command line

Examples:
  pickbridge import-sales --states sale,done --since 2025-01-01 --limit 200
  pickbridge import-pickings --states assigned,confirmed
  pickbridge sync S00042
  pickbridge remaining S00042
  pickbridge prepare 12 31=5 32=2
  pickbridge push 12 --no-backorder
  pickbridge delivery-state 12

Errors print the structured error as JSON and exit with status 1.
"""
import argparse
import json
import sys
from typing import Any, Callable, ContextManager, Dict, List, Optional

from sqlalchemy.orm import Session

from pickbridge.core.settings import settings
from pickbridge.exceptions import InvalidPayloadError, PickBridgeException
from pickbridge.logging_config import get_logger, setup_logging

logger = get_logger(__name__)


def _csv(value: str) -> List[str]:
    return [part.strip() for part in value.split(",") if part.strip()]


def _line_qty(value: str) -> tuple:
    """LINE_ID=QTY"""
    line_id, sep, qty = value.partition("=")
    if not sep:
        raise argparse.ArgumentTypeError(f"expected LINE_ID=QTY, got {value!r}")
    try:
        return int(line_id), (None if qty.strip() == "" else float(qty))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected LINE_ID=QTY, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pickbridge",
        description="Odoo fulfillment reconciliation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def add_batch_args(p: argparse.ArgumentParser, default_states: List[str]) -> None:
        p.add_argument("--states", type=_csv, default=default_states,
                       help=f"Comma-separated states (default: {','.join(default_states)})")
        p.add_argument("--since", help="Lower date bound, YYYY-MM-DD[ HH:MM:SS]")
        p.add_argument("--until", help="Upper date bound, YYYY-MM-DD[ HH:MM:SS]")
        p.add_argument("--limit", type=int, default=settings.SYNC_BATCH_LIMIT)
        p.add_argument("--offset", type=int, default=0)

    p = sub.add_parser("import-sales", help="Import a page of Odoo sale orders")
    add_batch_args(p, settings.SYNC_DEFAULT_STATES)
    p.add_argument("--strict", action="store_true", help="Exit non-zero if any order failed")

    p = sub.add_parser("import-pickings", help="Refresh the local picking cache")
    add_batch_args(p, settings.PICKING_DEFAULT_STATES)

    p = sub.add_parser("sync", help="Import one sale order by Odoo id or name")
    p.add_argument("reference")

    p = sub.add_parser("remaining", help="Remaining quantity per product")
    p.add_argument("reference")

    p = sub.add_parser("prepare", help="Record prepared quantities (LINE_ID=QTY, empty QTY clears)")
    p.add_argument("order_id", type=int)
    p.add_argument("quantities", nargs="+", type=_line_qty)

    p = sub.add_parser("push", help="Push prepared quantities and validate the picking")
    p.add_argument("order_id", type=int)
    group = p.add_mutually_exclusive_group()
    group.add_argument("--backorder", dest="create_backorder", action="store_true", default=None,
                       help="Keep the remainder as a backorder")
    group.add_argument("--no-backorder", dest="create_backorder", action="store_false",
                       help="Drop the remainder instead of creating a backorder")

    p = sub.add_parser("delivery-state", help="Best delivery state of a local order")
    p.add_argument("order_id", type=int)

    p = sub.add_parser("confirm", help="Confirm the Odoo sale order")
    p.add_argument("order_id", type=int)

    p = sub.add_parser("cancel", help="Cancel the Odoo sale order")
    p.add_argument("order_id", type=int)

    return parser


def _run(args: argparse.Namespace, service: Any, db: Session) -> Dict[str, Any]:
    if args.command == "import-sales":
        result = service.sync_batch(db, args.states, args.since, args.until, args.limit, args.offset)
        if args.strict:
            result.raise_for_errors()
        return result.to_dict()
    if args.command == "import-pickings":
        count = service.sync_pickings(db, args.states, args.since, args.until, args.limit, args.offset)
        return {"imported": count}
    if args.command == "sync":
        return {"order_id": service.sync_one(db, args.reference)}
    if args.command == "remaining":
        remaining = service.get_remaining(args.reference)
        return {"remaining": {str(pid): qty for pid, qty in sorted(remaining.items())}}
    if args.command == "prepare":
        prepared = service.record_prepared_quantities(db, args.order_id, dict(args.quantities))
        return {"order_id": args.order_id, "prepared": {str(pid): q for pid, q in prepared.items()}}
    if args.command == "push":
        result = service.push_and_validate(db, args.order_id, create_backorder=args.create_backorder)
        return {
            "order_id": result.order_id,
            "picking": result.picking_name,
            "pushed": {str(pid): q for pid, q in result.pushed.items()},
            "unplaced": {str(pid): q for pid, q in result.unplaced.items()},
            "state": result.validation.state.value,
            "backorders": result.validation.backorder_ids,
            "resynced": result.resynced,
        }
    if args.command == "delivery-state":
        return {"order_id": args.order_id, "delivery_state": service.get_best_delivery_state(db, args.order_id)}
    if args.command == "confirm":
        return {"order_id": service.confirm_sale_order(db, args.order_id)}
    if args.command == "cancel":
        return {"order_id": service.cancel_sale_order(db, args.order_id)}
    raise InvalidPayloadError(f"Unknown command {args.command}", field="command")


def main(
    argv: Optional[List[str]] = None,
    service_factory: Optional[Callable[[], Any]] = None,
    session_factory: Optional[Callable[[], ContextManager[Session]]] = None,
) -> int:
    """CLI entry point"""
    args = build_parser().parse_args(argv)
    setup_logging()

    if service_factory is None:
        from pickbridge.services.fulfillment_service import FulfillmentService
        service_factory = FulfillmentService.from_settings
    if session_factory is None:
        from pickbridge.db.session import session_scope
        session_factory = session_scope

    try:
        service = service_factory()
        with session_factory() as db:
            output = _run(args, service, db)
    except PickBridgeException as e:
        logger.error(f"{args.command} failed: {e.message}", extra={"error_code": e.error_code})
        print(json.dumps(e.to_dict(), indent=2, default=str), file=sys.stderr)
        return 1

    print(json.dumps(output, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
