"""Database access for clubops: direct Postgres and Supabase clients."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import psycopg
from psycopg.rows import dict_row
from supabase import Client, create_client

from .config import Settings
from .errors import classify

logger = logging.getLogger(__name__)


@contextmanager
def connect(settings: Settings) -> Iterator[psycopg.Connection]:
    """Open a direct Postgres connection (``DATABASE_URL``).

    The connection is in autocommit mode; callers delimit units of work
    with ``conn.transaction()``.  Connection failures are re-raised as
    classified errors (network vs. credentials vs. missing database).
    """
    settings.require("database_url")
    logger.debug("Connecting to %s", settings.database_host)
    try:
        conn = psycopg.connect(
            settings.database_url,
            autocommit=True,
            connect_timeout=settings.db_connect_timeout,
            sslmode="require",
            row_factory=dict_row,
        )
    except psycopg.Error as e:
        raise classify(e) from e
    try:
        yield conn
    finally:
        conn.close()
        logger.debug("Connection to %s closed", settings.database_host)


def get_client(settings: Settings) -> Client:
    """Create a Supabase client with the anon key (subject to RLS)."""
    settings.require("supabase_url", "supabase_anon_key")
    return create_client(settings.supabase_url, settings.supabase_anon_key)


def get_admin_client(settings: Settings) -> Client:
    """Create a Supabase client with the service-role key (bypasses RLS).

    Required for auth admin calls, storage bucket management and DDL via RPC.
    """
    settings.require("supabase_url", "supabase_service_role_key")
    return create_client(settings.supabase_url, settings.supabase_service_role_key)


# ---------------------------------------------------------------------------
# Catalog probes
# ---------------------------------------------------------------------------

def table_exists(conn: psycopg.Connection, table: str, schema: str = "public") -> bool:
    row = conn.execute(
        "SELECT 1 FROM information_schema.tables WHERE table_schema = %s AND table_name = %s",
        (schema, table),
    ).fetchone()
    return row is not None


def column_exists(conn: psycopg.Connection, table: str, column: str, schema: str = "public") -> bool:
    row = conn.execute(
        "SELECT 1 FROM information_schema.columns"
        " WHERE table_schema = %s AND table_name = %s AND column_name = %s",
        (schema, table, column),
    ).fetchone()
    return row is not None


def fetch_columns(conn: psycopg.Connection, table: str, schema: str = "public") -> dict[str, str]:
    """Return ``{column_name: data_type}`` for *table*, in ordinal order."""
    try:
        rows = conn.execute(
            "SELECT column_name, data_type FROM information_schema.columns"
            " WHERE table_schema = %s AND table_name = %s ORDER BY ordinal_position",
            (schema, table),
        ).fetchall()
    except psycopg.Error as e:
        raise classify(e) from e
    return {r["column_name"]: r["data_type"] for r in rows}
