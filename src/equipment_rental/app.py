"""Application entry point: maintenance commands over the rental database."""

from __future__ import annotations

import argparse
import sqlite3
from datetime import date
from pathlib import Path
from typing import Optional, Sequence

from equipment_rental.config import AppConfig, PolicySettings
from equipment_rental.db.connection import get_connection
from equipment_rental.db.migrations import apply_migrations
from equipment_rental.logging_config import configure_logging, get_logger
from equipment_rental.paths import get_config_path, get_db_path, get_logs_dir
from equipment_rental.services.errors import ServiceError
from equipment_rental.services.fees import to_date
from equipment_rental.services.inventory_service import InventoryService
from equipment_rental.services.rental_service import RentalService
from equipment_rental.services.return_workflow import ReturnService
from equipment_rental.services.waiver_service import WaiverService
from equipment_rental.utils.policy_store import load_policy_settings


def _parse_date(value: str) -> date:
    try:
        return to_date(value)
    except ServiceError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_parser() -> argparse.ArgumentParser:
    config = AppConfig()
    parser = argparse.ArgumentParser(
        prog="equipment-rental",
        description=f"{config.app_name} maintenance commands.",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="SQLite database file (defaults to the app data directory).",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="JSON configuration file holding the policy settings.",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser(
        "reconcile", help="Repair item statuses from the active rentals."
    )
    expire = commands.add_parser(
        "expire-waivers", help="Mark signed waivers past their expiry as expired."
    )
    expire.add_argument("--today", type=_parse_date, default=None)
    commands.add_parser(
        "resume-returns", help="Finish equipment returns left incomplete."
    )
    overdue = commands.add_parser("overdue", help="List overdue rentals.")
    overdue.add_argument("--today", type=_parse_date, default=None)
    return parser


def _reconcile(connection: sqlite3.Connection, policy: PolicySettings, args) -> None:
    report = InventoryService(connection).reconcile()
    print(
        f"Released {len(report.released)}, claimed {len(report.claimed)}, "
        f"conflicts {len(report.conflicts)}, double booked {len(report.double_booked)}."
    )
    for conflict in report.conflicts:
        print(
            f"  item {conflict.item_id} is {conflict.status.value} "
            f"but held by rental(s) {', '.join(map(str, conflict.rental_ids))}"
        )
    for booking in report.double_booked:
        print(
            f"  item {booking.item_id} held by rentals "
            f"{', '.join(map(str, booking.rental_ids))}, kept {booking.kept_rental_id}"
        )


def _expire_waivers(connection: sqlite3.Connection, policy: PolicySettings, args) -> None:
    expired = WaiverService(connection, policy).mark_expired_waivers(args.today)
    print(f"Expired {len(expired)} waiver(s).")


def _resume_returns(connection: sqlite3.Connection, policy: PolicySettings, args) -> None:
    results = ReturnService(connection, policy).resume_pending_returns()
    for result in results:
        steps = ", ".join(result.applied_steps) or "nothing left"
        print(f"Rental {result.rental.id}: applied {steps}.")
    print(f"Resumed {len(results)} return(s).")


def _overdue(connection: sqlite3.Connection, policy: PolicySettings, args) -> None:
    rentals = RentalService(connection, policy).list_overdue_rentals(
        args.today or date.today()
    )
    for rental in rentals:
        print(f"#{rental.id}  {rental.customer_name}  due {rental.end_date}")
    print(f"{len(rentals)} overdue rental(s).")


COMMANDS = {
    "reconcile": _reconcile,
    "expire-waivers": _expire_waivers,
    "resume-returns": _resume_returns,
    "overdue": _overdue,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run one maintenance command against the configured database."""
    args = build_parser().parse_args(argv)
    configure_logging(get_logs_dir())
    logger = get_logger(__name__)

    connection = get_connection(args.db or get_db_path())
    try:
        apply_migrations(connection)
        policy = load_policy_settings(args.config or get_config_path())
        logger.info("Running %s", args.command)
        COMMANDS[args.command](connection, policy, args)
    except ServiceError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1
    finally:
        connection.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
