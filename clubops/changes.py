"""Declarative, additive schema changes.

Each change knows two things: how to ask the catalog whether it is already
present (``probe``) and which DDL creates it.  The DDL always carries its
own idempotency guard (``IF NOT EXISTS`` or ``DROP ... IF EXISTS`` first),
so a rendered change is safe to run by hand even when the probe was skipped.
"""

from __future__ import annotations

import hashlib
import re
from typing import Literal

import psycopg
from pydantic import BaseModel, ConfigDict, field_validator

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def check_identifier(value: str) -> str:
    """Reject anything that is not a plain SQL identifier."""
    if not _IDENTIFIER.match(value):
        raise ValueError(f"invalid SQL identifier: {value!r}")
    return value


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def quote_name(value: str) -> str:
    """Double-quote a free-text name such as a policy name."""
    return '"' + value.replace('"', '""') + '"'


class Change(BaseModel):
    """Base class for one additive change to one database object."""

    model_config = ConfigDict(frozen=True)

    kind: str = "change"
    schema_name: str = "public"

    @field_validator("schema_name")
    @classmethod
    def _valid_schema(cls, value: str) -> str:
        return check_identifier(value)

    def describe(self) -> str:
        raise NotImplementedError

    def statements(self) -> list[str]:
        raise NotImplementedError

    def probe(self) -> tuple[str, tuple]:
        """Catalog query returning a row iff the change is present."""
        raise NotImplementedError

    def rest_probe(self) -> tuple[str, str] | None:
        """``(table, select)`` usable for a trial REST SELECT, if any."""
        return None

    def exists(self, conn: psycopg.Connection) -> bool:
        query, params = self.probe()
        return conn.execute(query, params).fetchone() is not None

    def _qualified(self, name: str) -> str:
        return f"{self.schema_name}.{name}"


class AddColumn(Change):
    kind: Literal["add_column"] = "add_column"
    table: str
    column: str
    sql_type: str
    default: str | None = None

    @field_validator("table", "column")
    @classmethod
    def _valid_names(cls, value: str) -> str:
        return check_identifier(value)

    def describe(self) -> str:
        return f"column {self.table}.{self.column} ({self.sql_type})"

    def statements(self) -> list[str]:
        stmt = f"ALTER TABLE {self._qualified(self.table)} ADD COLUMN IF NOT EXISTS {self.column} {self.sql_type}"
        if self.default is not None:
            stmt += f" DEFAULT {self.default}"
        return [stmt]

    def probe(self) -> tuple[str, tuple]:
        return (
            "SELECT 1 FROM information_schema.columns"
            " WHERE table_schema = %s AND table_name = %s AND column_name = %s",
            (self.schema_name, self.table, self.column),
        )

    def rest_probe(self) -> tuple[str, str] | None:
        return self.table, self.column


class CreateTable(Change):
    kind: Literal["create_table"] = "create_table"
    table: str
    columns: tuple[str, ...]

    @field_validator("table")
    @classmethod
    def _valid_table(cls, value: str) -> str:
        return check_identifier(value)

    def describe(self) -> str:
        return f"table {self.table}"

    def statements(self) -> list[str]:
        body = ",\n    ".join(self.columns)
        return [f"CREATE TABLE IF NOT EXISTS {self._qualified(self.table)} (\n    {body}\n)"]

    def probe(self) -> tuple[str, tuple]:
        return (
            "SELECT 1 FROM information_schema.tables WHERE table_schema = %s AND table_name = %s",
            (self.schema_name, self.table),
        )

    def rest_probe(self) -> tuple[str, str] | None:
        return self.table, "*"


class CreateIndex(Change):
    kind: Literal["create_index"] = "create_index"
    name: str
    table: str
    columns: tuple[str, ...]
    unique: bool = False
    where: str | None = None

    @field_validator("name", "table")
    @classmethod
    def _valid_names(cls, value: str) -> str:
        return check_identifier(value)

    def describe(self) -> str:
        return f"index {self.name} on {self.table}"

    def statements(self) -> list[str]:
        unique = "UNIQUE " if self.unique else ""
        cols = ", ".join(self.columns)
        stmt = f"CREATE {unique}INDEX IF NOT EXISTS {self.name} ON {self._qualified(self.table)} ({cols})"
        if self.where:
            stmt += f" WHERE {self.where}"
        return [stmt]

    def probe(self) -> tuple[str, tuple]:
        return (
            "SELECT 1 FROM pg_indexes WHERE schemaname = %s AND tablename = %s AND indexname = %s",
            (self.schema_name, self.table, self.name),
        )


class EnableRowLevelSecurity(Change):
    kind: Literal["enable_rls"] = "enable_rls"
    table: str

    @field_validator("table")
    @classmethod
    def _valid_table(cls, value: str) -> str:
        return check_identifier(value)

    def describe(self) -> str:
        return f"row level security on {self.table}"

    def statements(self) -> list[str]:
        return [f"ALTER TABLE {self._qualified(self.table)} ENABLE ROW LEVEL SECURITY"]

    def probe(self) -> tuple[str, tuple]:
        return (
            "SELECT 1 FROM pg_class c JOIN pg_namespace n ON n.oid = c.relnamespace"
            " WHERE n.nspname = %s AND c.relname = %s AND c.relrowsecurity",
            (self.schema_name, self.table),
        )


class CreatePolicy(Change):
    """An RLS policy.  Postgres has no ``CREATE POLICY IF NOT EXISTS``."""

    kind: Literal["create_policy"] = "create_policy"
    table: str
    name: str
    command: Literal["ALL", "SELECT", "INSERT", "UPDATE", "DELETE"] = "ALL"
    using: str | None = None
    check: str | None = None

    @field_validator("table")
    @classmethod
    def _valid_table(cls, value: str) -> str:
        return check_identifier(value)

    def describe(self) -> str:
        return f'policy "{self.name}" on {self.table}'

    def statements(self) -> list[str]:
        target = self._qualified(self.table)
        create = f"CREATE POLICY {quote_name(self.name)} ON {target} FOR {self.command}"
        if self.using:
            create += f" USING ({self.using})"
        if self.check:
            create += f" WITH CHECK ({self.check})"
        return [f"DROP POLICY IF EXISTS {quote_name(self.name)} ON {target}", create]

    def probe(self) -> tuple[str, tuple]:
        return (
            "SELECT 1 FROM pg_policies WHERE schemaname = %s AND tablename = %s AND policyname = %s",
            (self.schema_name, self.table, self.name),
        )


class AddConstraint(Change):
    """A named constraint, replaced when its definition has changed.

    The constraint is tagged with a comment holding a digest of
    ``definition``; the probe matches name and digest, so a same-named
    constraint with an older definition counts as missing.
    """

    kind: Literal["add_constraint"] = "add_constraint"
    table: str
    name: str
    definition: str

    @field_validator("table", "name")
    @classmethod
    def _valid_names(cls, value: str) -> str:
        return check_identifier(value)

    @property
    def fingerprint(self) -> str:
        return "clubops:" + hashlib.sha256(self.definition.encode()).hexdigest()[:16]

    def describe(self) -> str:
        return f"constraint {self.name} on {self.table}"

    def statements(self) -> list[str]:
        target = self._qualified(self.table)
        return [
            f"ALTER TABLE {target} DROP CONSTRAINT IF EXISTS {self.name}",
            f"ALTER TABLE {target} ADD CONSTRAINT {self.name} {self.definition}",
            f"COMMENT ON CONSTRAINT {self.name} ON {target} IS {quote_literal(self.fingerprint)}",
        ]

    def probe(self) -> tuple[str, tuple]:
        return (
            "SELECT 1 FROM pg_constraint con"
            " JOIN pg_class c ON c.oid = con.conrelid"
            " JOIN pg_namespace n ON n.oid = c.relnamespace"
            " WHERE n.nspname = %s AND c.relname = %s AND con.conname = %s"
            " AND obj_description(con.oid, 'pg_constraint') = %s",
            (self.schema_name, self.table, self.name, self.fingerprint),
        )


class CreateExtension(Change):
    kind: Literal["create_extension"] = "create_extension"
    name: str
    schema_name: str = "extensions"

    @field_validator("name")
    @classmethod
    def _valid_name(cls, value: str) -> str:
        return check_identifier(value)

    def describe(self) -> str:
        return f"extension {self.name}"

    def statements(self) -> list[str]:
        return [f"CREATE EXTENSION IF NOT EXISTS {self.name} WITH SCHEMA {self.schema_name}"]

    def probe(self) -> tuple[str, tuple]:
        return "SELECT 1 FROM pg_extension WHERE extname = %s", (self.name,)


class CreateFunction(Change):
    """A trigger function.  Present only if the stored source is identical."""

    kind: Literal["create_function"] = "create_function"
    name: str
    body: str
    returns: str = "trigger"
    language: str = "plpgsql"
    security_definer: bool = False

    @field_validator("name")
    @classmethod
    def _valid_name(cls, value: str) -> str:
        return check_identifier(value)

    def describe(self) -> str:
        return f"function {self.name}()"

    def statements(self) -> list[str]:
        security = " SECURITY DEFINER" if self.security_definer else ""
        return [
            f"CREATE OR REPLACE FUNCTION {self._qualified(self.name)}()"
            f" RETURNS {self.returns} LANGUAGE {self.language}{security}"
            f" AS $function${self.body}$function$"
        ]

    def probe(self) -> tuple[str, tuple]:
        return (
            "SELECT 1 FROM pg_proc p JOIN pg_namespace n ON n.oid = p.pronamespace"
            " WHERE n.nspname = %s AND p.proname = %s AND p.prosrc = %s",
            (self.schema_name, self.name, self.body),
        )


class CreateTrigger(Change):
    kind: Literal["create_trigger"] = "create_trigger"
    name: str
    table: str
    function: str
    timing: Literal["BEFORE", "AFTER"] = "AFTER"
    events: tuple[Literal["INSERT", "UPDATE", "DELETE"], ...] = ("INSERT",)
    when: str | None = None

    @field_validator("name", "table", "function")
    @classmethod
    def _valid_names(cls, value: str) -> str:
        return check_identifier(value)

    def describe(self) -> str:
        return f"trigger {self.name} on {self.table}"

    def statements(self) -> list[str]:
        target = self._qualified(self.table)
        events = " OR ".join(self.events)
        create = f"CREATE TRIGGER {self.name} {self.timing} {events} ON {target} FOR EACH ROW"
        if self.when:
            create += f" WHEN ({self.when})"
        create += f" EXECUTE FUNCTION {self._qualified(self.function)}()"
        return [f"DROP TRIGGER IF EXISTS {self.name} ON {target}", create]

    def probe(self) -> tuple[str, tuple]:
        return (
            "SELECT 1 FROM pg_trigger t"
            " JOIN pg_class c ON c.oid = t.tgrelid"
            " JOIN pg_namespace n ON n.oid = c.relnamespace"
            " WHERE NOT t.tgisinternal AND n.nspname = %s AND c.relname = %s AND t.tgname = %s",
            (self.schema_name, self.table, self.name),
        )
