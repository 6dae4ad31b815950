"""Reconciliation database management CLI.

Usage:
    python src/manage.py setup-db         # Create all tables
    python src/manage.py drop-db          # Drop all tables
    python src/manage.py ledger --limit 5 # Show the latest processed events
"""

import argparse
import sys


def _domain():
    from reconciliation.domain import reconciliation

    reconciliation.init()
    return reconciliation


def setup_database():
    from reconciliation.utils.db import setup_db

    domain = _domain()
    print("Creating reconciliation database schema...")
    tables = setup_db(domain)
    print(f"Done ({len(tables)} tables).")


def drop_database():
    from reconciliation.utils.db import drop_db

    domain = _domain()
    print("Dropping reconciliation database schema...")
    tables = drop_db(domain)
    print(f"Done ({len(tables)} tables).")


def ledger_table(events, limit: int):
    from rich.table import Table

    table = Table(title=f"Processed events (latest {limit})")
    table.add_column("Event ID")
    table.add_column("Type")
    table.add_column("Received")
    table.add_column("Processed")
    for event in events:
        table.add_row(
            event.event_id,
            event.event_type,
            event.received_at.isoformat() if event.received_at else "",
            event.processed_at.isoformat() if event.processed_at else "",
        )
    return table


def show_ledger(limit: int = 20):
    from rich.console import Console

    from reconciliation.ledger.ledger import EventLedger

    domain = _domain()
    with domain.domain_context():
        events = EventLedger().recent(limit)

    Console().print(ledger_table(events, limit))
    return events


def main(argv=None):
    parser = argparse.ArgumentParser(description="Payment reconciliation database management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")
    ledger_parser = subparsers.add_parser("ledger", help="List the latest processed gateway events")
    ledger_parser.add_argument("--limit", type=int, default=20, help="Number of events to show (default: 20)")

    args = parser.parse_args(argv)

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    elif args.command == "ledger":
        show_ledger(args.limit)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
