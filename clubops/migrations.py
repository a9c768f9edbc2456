"""Ledger-backed, transactional schema migrations.

A migration is an ordered list of additive changes.  Applying one runs in a
single transaction guarded by an advisory lock:

    ledger says applied  -> no-op
    catalog has it all   -> record in ledger, no-op
    otherwise            -> run DDL for the missing changes, re-probe,
                            record, commit (or roll everything back)

Execution paths ("executors") are tried in order.  Only capability failures
(unreachable, bad credentials, no privilege, no exec_sql RPC) move on to
the next path; anything else fails fast.  When every path is exhausted the
operator gets a self-contained SQL script to run by hand.
"""

from __future__ import annotations

import hashlib
import logging
import re
import time
from collections.abc import Iterable, Iterator, Sequence
from typing import Literal, Protocol

import psycopg
from postgrest.exceptions import APIError
from pydantic import BaseModel, ConfigDict, field_validator
from supabase import Client

from .changes import Change, quote_literal
from .config import Settings
from .db import connect, get_admin_client, table_exists
from .errors import (
    CAPABILITY_ERRORS,
    ManualRemediationRequired,
    MissingObject,
    NotFound,
    VerificationFailed,
    classify,
)

logger = logging.getLogger(__name__)

LEDGER_TABLE = "schema_migrations"

LEDGER_DDL = """\
CREATE TABLE IF NOT EXISTS public.schema_migrations (
    id          TEXT PRIMARY KEY,
    description TEXT NOT NULL,
    checksum    TEXT NOT NULL,
    applied_via TEXT NOT NULL,
    applied_at  TIMESTAMPTZ NOT NULL DEFAULT now()
)"""

LEDGER_LOOKUP = "SELECT id, checksum, applied_via, applied_at FROM public.schema_migrations WHERE id = %s"
LEDGER_ALL = "SELECT id, checksum, applied_via, applied_at FROM public.schema_migrations ORDER BY id"
LEDGER_RECORD = (
    "INSERT INTO public.schema_migrations (id, description, checksum, applied_via)"
    " VALUES (%s, %s, %s, %s) ON CONFLICT (id) DO NOTHING"
)
LOCK_SQL = "SELECT pg_advisory_xact_lock(hashtext(%s))"
RELOAD_SCHEMA_SQL = "NOTIFY pgrst, 'reload schema'"

_MIGRATION_ID = re.compile(r"^\d{4}_[a-z0-9_]+$")

# Trial SELECTs after an RPC apply can race PostgREST's schema reload.
_VERIFY_ATTEMPTS = 3
_VERIFY_DELAY = 1  # seconds

Status = Literal["applied", "already_applied", "pending"]


def _hash(text: str) -> str:
    """Return a short SHA-256 hex digest."""
    return hashlib.sha256(text.encode()).hexdigest()[:16]


class Migration(BaseModel):
    """A numbered, described group of changes applied atomically."""

    model_config = ConfigDict(frozen=True)

    id: str
    description: str
    changes: tuple[Change, ...]

    @field_validator("id")
    @classmethod
    def _valid_id(cls, value: str) -> str:
        if not _MIGRATION_ID.match(value):
            raise ValueError(f"migration id must look like 0001_snake_case, got {value!r}")
        return value

    @field_validator("changes")
    @classmethod
    def _not_empty(cls, value: tuple[Change, ...]) -> tuple[Change, ...]:
        if not value:
            raise ValueError("a migration needs at least one change")
        return value

    @property
    def statements(self) -> list[str]:
        return [stmt for change in self.changes for stmt in change.statements()]

    @property
    def checksum(self) -> str:
        return _hash("\n".join(self.statements))

    def script(self, applied_via: str) -> str:
        """All statements plus the ledger insert, as one idempotent SQL script."""
        lines = [f"{stmt};" for stmt in self.statements]
        lines.append(f"{LEDGER_DDL};")
        lines.append(
            "INSERT INTO public.schema_migrations (id, description, checksum, applied_via) VALUES ("
            f"{quote_literal(self.id)}, {quote_literal(self.description)}, "
            f"{quote_literal(self.checksum)}, {quote_literal(applied_via)}"
            ") ON CONFLICT (id) DO NOTHING;"
        )
        lines.append(f"{RELOAD_SCHEMA_SQL};")
        return "\n".join(lines)


class MigrationResult(BaseModel):
    migration_id: str
    status: Status
    executor: str
    detail: str = ""
    statements: list[str] = []


def render_manual_sql(migration: Migration) -> str:
    """SQL for an operator to paste into the Supabase SQL editor."""
    return (
        f"-- {migration.id}: {migration.description}\n"
        "-- Safe to run more than once.\n"
        "BEGIN;\n"
        f"{migration.script('manual')}\n"
        "COMMIT;\n"
    )


# ---------------------------------------------------------------------------
# Direct Postgres runner
# ---------------------------------------------------------------------------

def _ledger_entry(conn: psycopg.Connection, migration_id: str) -> dict | None:
    if not table_exists(conn, LEDGER_TABLE):
        return None
    return conn.execute(LEDGER_LOOKUP, (migration_id,)).fetchone()


def _record(conn: psycopg.Connection, migration: Migration, applied_via: str) -> None:
    conn.execute(LEDGER_DDL)
    conn.execute(LEDGER_RECORD, (migration.id, migration.description, migration.checksum, applied_via))


def apply_migration(
    conn: psycopg.Connection,
    migration: Migration,
    dry_run: bool = False,
    applied_via: str = "postgres",
) -> MigrationResult:
    """Apply *migration* on *conn* exactly once, atomically.

    Returns:
        A result with status ``applied``, ``already_applied`` or (dry run)
        ``pending``.

    Raises:
        VerificationFailed: a change was not visible after its DDL ran; the
            whole migration is rolled back.
        ClubOpsError: any database error, classified.
    """
    try:
        with conn.transaction():
            conn.execute(LOCK_SQL, (f"clubops:{migration.id}",))

            entry = _ledger_entry(conn, migration.id)
            if entry:
                if entry["checksum"] != migration.checksum:
                    logger.warning(
                        "%s was applied with checksum %s but now renders as %s",
                        migration.id,
                        entry["checksum"],
                        migration.checksum,
                    )
                return MigrationResult(
                    migration_id=migration.id,
                    status="already_applied",
                    executor=applied_via,
                    detail=f"recorded in ledger via {entry['applied_via']}",
                )

            pending = [c for c in migration.changes if not c.exists(conn)]
            if not pending:
                if not dry_run:
                    _record(conn, migration, applied_via)
                logger.info("%s already exists in the catalog", migration.id)
                return MigrationResult(
                    migration_id=migration.id,
                    status="already_applied",
                    executor=applied_via,
                    detail="already exists",
                )

            statements = [stmt for change in pending for stmt in change.statements()]
            if dry_run:
                return MigrationResult(
                    migration_id=migration.id,
                    status="pending",
                    executor=applied_via,
                    detail=f"{len(pending)} of {len(migration.changes)} changes missing",
                    statements=statements,
                )

            for stmt in statements:
                logger.debug("%s: %s", migration.id, stmt)
                conn.execute(stmt)

            missing = [c.describe() for c in migration.changes if not c.exists(conn)]
            if missing:
                raise VerificationFailed(f"{migration.id}: not visible after apply: {', '.join(missing)}")

            _record(conn, migration, applied_via)
            conn.execute(RELOAD_SCHEMA_SQL)
    except psycopg.Error as e:
        raise classify(e) from e

    logger.info("%s applied (%d statements)", migration.id, len(statements))
    return MigrationResult(
        migration_id=migration.id,
        status="applied",
        executor=applied_via,
        detail=f"{len(pending)} changes applied",
        statements=statements,
    )


def migration_status(conn: psycopg.Connection, migrations: Sequence[Migration]) -> list[dict]:
    """Ledger state for each known migration (``applied`` / ``pending`` / ``drift``)."""
    recorded: dict[str, dict] = {}
    try:
        if table_exists(conn, LEDGER_TABLE):
            recorded = {row["id"]: row for row in conn.execute(LEDGER_ALL).fetchall()}
    except psycopg.Error as e:
        raise classify(e) from e

    status = []
    for migration in migrations:
        row = recorded.get(migration.id)
        if row is None:
            state = "pending"
        elif row["checksum"] != migration.checksum:
            state = "drift"
        else:
            state = "applied"
        status.append(
            {
                "id": migration.id,
                "description": migration.description,
                "state": state,
                "applied_at": row["applied_at"] if row else None,
                "applied_via": row["applied_via"] if row else None,
            }
        )
    return status


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------

class Executor(Protocol):
    name: str

    def apply(self, migration: Migration, dry_run: bool = False) -> MigrationResult: ...


class PostgresExecutor:
    """Direct connection through ``DATABASE_URL``."""

    name = "postgres"

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def apply(self, migration: Migration, dry_run: bool = False) -> MigrationResult:
        with connect(self.settings) as conn:
            return apply_migration(conn, migration, dry_run=dry_run, applied_via=self.name)


class RpcExecutor:
    """Supabase REST ``rpc/<function>`` taking a ``sql`` text argument.

    The function must exist in the database (``SECURITY DEFINER``, owned by
    a role allowed to run DDL).  One RPC call is one transaction, so the
    script is still applied atomically.
    """

    name = "rpc"

    def __init__(self, client: Client, function: str = "exec_sql") -> None:
        self.client = client
        self.function = function

    def _ledger_entry(self, migration_id: str) -> dict | None:
        try:
            rows = (
                self.client.table(LEDGER_TABLE)
                .select("id, checksum, applied_via")
                .eq("id", migration_id)
                .execute()
                .data
            )
        except APIError as e:
            err = classify(e)
            if isinstance(err, MissingObject):
                return None
            raise err from e
        return rows[0] if rows else None

    def _verify(self, migration: Migration) -> None:
        for change in migration.changes:
            probe = change.rest_probe()
            if probe is None:
                continue
            table, select = probe
            for attempt in range(_VERIFY_ATTEMPTS):
                try:
                    self.client.table(table).select(select).limit(1).execute()
                    break
                except APIError as e:
                    if attempt == _VERIFY_ATTEMPTS - 1:
                        raise VerificationFailed(
                            f"{migration.id}: {change.describe()} not visible through the REST API: {e.message}"
                        ) from e
                    time.sleep(_VERIFY_DELAY * (attempt + 1))

    def apply(self, migration: Migration, dry_run: bool = False) -> MigrationResult:
        entry = self._ledger_entry(migration.id)
        if entry:
            return MigrationResult(
                migration_id=migration.id,
                status="already_applied",
                executor=self.name,
                detail=f"recorded in ledger via {entry.get('applied_via', '?')}",
            )

        if dry_run:
            return MigrationResult(
                migration_id=migration.id,
                status="pending",
                executor=self.name,
                detail="not in ledger (catalog not inspected over REST)",
                statements=migration.statements,
            )

        try:
            self.client.rpc(self.function, {"sql": migration.script(self.name)}).execute()
        except APIError as e:
            raise classify(e) from e

        self._verify(migration)
        logger.info("%s applied via rpc/%s", migration.id, self.function)
        return MigrationResult(
            migration_id=migration.id,
            status="applied",
            executor=self.name,
            detail=f"applied via rpc/{self.function}",
            statements=migration.statements,
        )


def build_executors(settings: Settings) -> list[Executor]:
    """Configured execution paths, most capable first."""
    executors: list[Executor] = []
    if settings.database_url:
        executors.append(PostgresExecutor(settings))
    if settings.supabase_url and settings.supabase_service_role_key:
        executors.append(RpcExecutor(get_admin_client(settings), settings.exec_sql_function))
    return executors


def apply_with_fallback(
    migration: Migration,
    executors: Sequence[Executor],
    dry_run: bool = False,
) -> MigrationResult:
    """Try each executor until one can run *migration*.

    Raises:
        ManualRemediationRequired: no executor was able to run it.
        ClubOpsError: a non-capability failure (fails fast, no fallback).
    """
    attempts: list[str] = []
    for executor in executors:
        try:
            return executor.apply(migration, dry_run=dry_run)
        except CAPABILITY_ERRORS as e:
            logger.warning("%s path unavailable for %s: %s", executor.name, migration.id, e)
            attempts.append(f"{executor.name}: {e.category}: {e}")

    if not executors:
        attempts.append("no execution path configured (DATABASE_URL, or SUPABASE_URL + service role key)")
    raise ManualRemediationRequired(
        f"Could not apply {migration.id} automatically",
        sql=render_manual_sql(migration),
        attempts=attempts,
    )


def select_migrations(migrations: Sequence[Migration], ids: Iterable[str] | None = None) -> list[Migration]:
    """Pick migrations by id (or all), always in id order."""
    ordered = sorted(migrations, key=lambda m: m.id)
    wanted = list(ids or [])
    if not wanted:
        return ordered
    known = {m.id for m in ordered}
    unknown = [i for i in wanted if i not in known]
    if unknown:
        raise NotFound(f"Unknown migration id(s): {', '.join(unknown)}")
    return [m for m in ordered if m.id in set(wanted)]


def apply_all(
    executors: Sequence[Executor],
    migrations: Sequence[Migration],
    only: Iterable[str] | None = None,
    dry_run: bool = False,
) -> Iterator[MigrationResult]:
    """Apply migrations in id order, stopping at the first failure."""
    for migration in select_migrations(migrations, only):
        yield apply_with_fallback(migration, executors, dry_run=dry_run)
