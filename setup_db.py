#!/usr/bin/env python3
"""Check the club Supabase database before the first ``clubops migrate``.

Verifies that the application tables exist (through the REST API, so
only SUPABASE_URL + a key are needed) and prints the manual SQL for every
registered migration when tables are missing or no direct database path
is configured.

Usage:
    python setup_db.py
"""

import sys

from dotenv import load_dotenv
from postgrest.exceptions import APIError

from clubops.config import Settings
from clubops.db import get_admin_client
from clubops.errors import ClubOpsError
from clubops.migrations import render_manual_sql
from clubops.registry import MIGRATIONS, REQUIRED_TABLES

load_dotenv()


def check_tables(client) -> list[str]:
    """Return the required tables the REST API cannot see."""
    missing = []
    for table in REQUIRED_TABLES:
        try:
            client.table(table).select("*").limit(1).execute()
            print(f"  ✓ {table}")
        except APIError as e:
            print(f"  ✗ {table}  — {e.message}")
            missing.append(table)
    return missing


def main() -> int:
    try:
        settings = Settings.from_env()
        client = get_admin_client(settings)
    except ClubOpsError as e:
        print(f"ERROR: {e}")
        return 1

    print("Checking Supabase tables …\n")
    missing = check_tables(client)

    if missing:
        print("\n" + "=" * 60)
        print("Some application tables are missing. Restore the base schema")
        print("first; clubops migrations only extend existing tables.")
        print("=" * 60)
        return 1

    print("\nAll application tables exist.")
    if settings.database_url:
        print("Run `clubops migrate` to apply pending schema migrations.")
        return 0

    print("\n" + "=" * 60)
    print("DATABASE_URL is not set. Run the following SQL in the")
    print("Supabase SQL Editor (https://supabase.com/dashboard), or set")
    print("DATABASE_URL and run `clubops migrate`:\n")
    for migration in MIGRATIONS:
        print(render_manual_sql(migration))
    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
