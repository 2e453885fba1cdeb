"""Storefront management CLI.

Usage:
    python src/manage.py setup-db                      # Create all tables
    python src/manage.py drop-db                       # Drop all tables
    python src/manage.py sweep expire_stale_payments   # Run one sweep once
"""

import argparse
import sys

from storefront.sweeps import SWEEPS


def setup_database():
    from storefront.domain import storefront
    from storefront.utils.db import setup_db

    print("Initializing storefront domain...")
    storefront.init()
    touched = setup_db(storefront)
    if touched:
        print(f"  schema ready on {touched} provider(s).")
    else:
        print("  no SQL provider configured (set PROTEAN_ENV=production for PostgreSQL).")
    print("Done.")


def drop_database():
    from storefront.domain import storefront
    from storefront.utils.db import drop_db

    print("Initializing storefront domain...")
    storefront.init()
    touched = drop_db(storefront)
    print(f"  schema dropped on {touched} provider(s).")
    print("Done.")


def run_sweep(name):
    from storefront.domain import storefront
    from storefront.services import build_services
    from storefront.sweeps import run_sweep as run_named_sweep

    storefront.init()
    with storefront.domain_context():
        services = build_services()
    result = run_named_sweep(storefront, services, name)
    print(f"{name}: {result}")


def main():
    parser = argparse.ArgumentParser(description="Storefront management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")

    sweep_parser = subparsers.add_parser("sweep", help="Run one background sweep once")
    sweep_parser.add_argument("name", choices=sorted(SWEEPS))

    args = parser.parse_args()

    from storefront.utils.logging import configure_logging

    configure_logging()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    elif args.command == "sweep":
        run_sweep(args.name)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
