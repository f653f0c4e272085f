"""Create the trade ledger schema.

Usage:
    python -m ledger_db.init_db [--db-type sqlite|postgresql] [--db-name NAME]

Environment variables:
    LEDGER_DATABASE_URL: Full SQLAlchemy URL (overrides everything else)
    LEDGER_DB_TYPE, LEDGER_DB_NAME: Database type and name/file path
    LEDGER_DB_HOST, LEDGER_DB_PORT, LEDGER_DB_USER, LEDGER_DB_PASSWORD: PostgreSQL config
"""

import argparse
import sys
from typing import Optional

from sqlalchemy import inspect

from ledger_db.database import DatabaseFactory
from ledger_db.settings import DatabaseSettings
from ledger_db.utils import redact_db_url


def initialize_database(settings: Optional[DatabaseSettings] = None) -> DatabaseFactory:
    """Create all ledger tables and return the ready factory."""
    db = DatabaseFactory(settings or DatabaseSettings())
    db.create_tables()
    return db


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Initialize the trade ledger database")
    parser.add_argument("--db-type", choices=["sqlite", "postgresql"], help="Database type (default: sqlite)")
    parser.add_argument("--db-name", help="Database name or SQLite file path")
    parser.add_argument("--echo-sql", action="store_true", help="Echo SQL statements")
    args = parser.parse_args(argv)

    overrides = {}
    if args.db_type:
        overrides["db_type"] = args.db_type
    if args.db_name:
        overrides["db_name"] = args.db_name
    if args.echo_sql:
        overrides["echo_sql"] = True
    settings = DatabaseSettings(**overrides)

    print(f"Initializing ledger database: {redact_db_url(settings.get_database_url())}")
    try:
        db = initialize_database(settings)
    except Exception as e:
        print(f"Error initializing database: {e}", file=sys.stderr)
        return 1

    print("Ledger database ready. Tables:")
    for table in inspect(db.engine).get_table_names():
        print(f"  - {table}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
