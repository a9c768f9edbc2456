"""Tests for clubops.changes — rendered DDL and catalog probes."""

from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError

from clubops.changes import (
    AddColumn,
    AddConstraint,
    CreateExtension,
    CreateFunction,
    CreateIndex,
    CreatePolicy,
    CreateTable,
    CreateTrigger,
    EnableRowLevelSecurity,
    check_identifier,
    quote_literal,
    quote_name,
)


class TestIdentifiers:
    @pytest.mark.parametrize("name", ["users", "_private", "case_study_requests", "Col1"])
    def test_accepts_plain_identifiers(self, name):
        assert check_identifier(name) == name

    @pytest.mark.parametrize("name", ["", "1abc", "users; DROP TABLE users", "a-b", "public.users", 'x"y'])
    def test_rejects_everything_else(self, name):
        with pytest.raises(ValueError, match="invalid SQL identifier"):
            check_identifier(name)

    def test_change_rejects_bad_table(self):
        with pytest.raises(ValidationError):
            AddColumn(table="users;--", column="x", sql_type="TEXT")

    def test_change_rejects_bad_schema(self):
        with pytest.raises(ValidationError):
            EnableRowLevelSecurity(table="users", schema_name="pub lic")

    def test_quote_literal_doubles_quotes(self):
        assert quote_literal("O'Brien") == "'O''Brien'"

    def test_quote_name_doubles_quotes(self):
        assert quote_name('say "hi"') == '"say ""hi"""'


class TestAddColumn:
    def test_statement_is_guarded(self):
        change = AddColumn(table="users", column="stripe_customer_id", sql_type="TEXT UNIQUE")
        assert change.statements() == [
            "ALTER TABLE public.users ADD COLUMN IF NOT EXISTS stripe_customer_id TEXT UNIQUE"
        ]

    def test_default_is_appended(self):
        change = AddColumn(table="video_lessons", column="sort_order", sql_type="INTEGER", default="0")
        assert change.statements()[0].endswith("sort_order INTEGER DEFAULT 0")

    def test_probe_uses_information_schema(self):
        query, params = AddColumn(table="users", column="nickname", sql_type="TEXT").probe()
        assert "information_schema.columns" in query
        assert params == ("public", "users", "nickname")

    def test_rest_probe_selects_column(self):
        assert AddColumn(table="users", column="nickname", sql_type="TEXT").rest_probe() == ("users", "nickname")

    def test_describe(self):
        assert AddColumn(table="users", column="nickname", sql_type="TEXT").describe() == "column users.nickname (TEXT)"


class TestExists:
    def test_true_when_probe_returns_row(self):
        conn = MagicMock()
        conn.execute.return_value.fetchone.return_value = {"?column?": 1}
        change = CreateTable(table="student_feedback", columns=("id UUID PRIMARY KEY",))

        assert change.exists(conn) is True
        conn.execute.assert_called_once_with(*change.probe())

    def test_false_when_no_row(self):
        conn = MagicMock()
        conn.execute.return_value.fetchone.return_value = None

        assert CreateIndex(name="idx_a", table="users", columns=("a",)).exists(conn) is False


class TestCreateTable:
    def test_renders_columns(self):
        change = CreateTable(table="ratings", columns=("id UUID PRIMARY KEY", "rating INTEGER NOT NULL"))
        stmt = change.statements()[0]
        assert stmt.startswith("CREATE TABLE IF NOT EXISTS public.ratings (")
        assert "    id UUID PRIMARY KEY,\n    rating INTEGER NOT NULL\n)" in stmt

    def test_rest_probe_selects_star(self):
        assert CreateTable(table="ratings", columns=("id UUID",)).rest_probe() == ("ratings", "*")


class TestCreateIndex:
    def test_unique_index(self):
        change = CreateIndex(name="idx_u", table="users", columns=("email",), unique=True)
        assert change.statements() == ["CREATE UNIQUE INDEX IF NOT EXISTS idx_u ON public.users (email)"]

    def test_partial_index(self):
        change = CreateIndex(
            name="idx_reminders",
            table="student_feedback",
            columns=("review_date", "email_reminder"),
            where="email_reminder = true",
        )
        assert change.statements()[0].endswith("(review_date, email_reminder) WHERE email_reminder = true")

    def test_no_rest_probe(self):
        assert CreateIndex(name="idx_u", table="users", columns=("email",)).rest_probe() is None


class TestRowLevelSecurity:
    def test_statement_and_probe(self):
        change = EnableRowLevelSecurity(table="student_feedback")
        assert change.statements() == ["ALTER TABLE public.student_feedback ENABLE ROW LEVEL SECURITY"]
        query, params = change.probe()
        assert "relrowsecurity" in query
        assert params == ("public", "student_feedback")


class TestCreatePolicy:
    def test_drops_then_creates(self):
        change = CreatePolicy(
            table="student_feedback",
            name="Users can view their own feedback",
            command="SELECT",
            using="auth.uid() = user_id",
        )
        drop, create = change.statements()
        assert drop == 'DROP POLICY IF EXISTS "Users can view their own feedback" ON public.student_feedback'
        assert create == (
            'CREATE POLICY "Users can view their own feedback" ON public.student_feedback'
            " FOR SELECT USING (auth.uid() = user_id)"
        )

    def test_with_check(self):
        change = CreatePolicy(table="t", name="ins", command="INSERT", check="auth.uid() = user_id")
        assert change.statements()[1].endswith("FOR INSERT WITH CHECK (auth.uid() = user_id)")

    def test_rejects_unknown_command(self):
        with pytest.raises(ValidationError):
            CreatePolicy(table="t", name="p", command="TRUNCATE")

    def test_probe_matches_policy_name(self):
        _, params = CreatePolicy(table="t", name="My policy").probe()
        assert params == ("public", "t", "My policy")


class TestAddConstraint:
    def _change(self, definition="CHECK (message_type IN ('text', 'file'))"):
        return AddConstraint(table="messages", name="messages_message_type_check", definition=definition)

    def test_replaces_constraint(self):
        change = self._change()
        assert change.statements() == [
            "ALTER TABLE public.messages DROP CONSTRAINT IF EXISTS messages_message_type_check",
            "ALTER TABLE public.messages ADD CONSTRAINT messages_message_type_check"
            " CHECK (message_type IN ('text', 'file'))",
            "COMMENT ON CONSTRAINT messages_message_type_check ON public.messages"
            f" IS '{change.fingerprint}'",
        ]

    def test_probe_matches_definition_not_just_name(self):
        query, params = self._change().probe()
        assert "obj_description(con.oid, 'pg_constraint')" in query
        assert params[:3] == ("public", "messages", "messages_message_type_check")
        assert params[3] == self._change().fingerprint

    def test_fingerprint_follows_definition(self):
        old = self._change("CHECK (message_type IN ('text', 'system'))")
        new = self._change()
        assert old.fingerprint != new.fingerprint
        assert old.probe()[1] != new.probe()[1]
        assert new.fingerprint.startswith("clubops:")


class TestCreateExtension:
    def test_defaults_to_extensions_schema(self):
        change = CreateExtension(name="pg_net")
        assert change.statements() == ["CREATE EXTENSION IF NOT EXISTS pg_net WITH SCHEMA extensions"]
        assert change.probe()[1] == ("pg_net",)


class TestCreateFunction:
    def test_renders_body_between_dollar_quotes(self):
        change = CreateFunction(name="f", body="\nBEGIN\n  RETURN NEW;\nEND;\n", security_definer=True)
        stmt = change.statements()[0]
        assert stmt.startswith("CREATE OR REPLACE FUNCTION public.f() RETURNS trigger LANGUAGE plpgsql SECURITY DEFINER")
        assert stmt.endswith("AS $function$\nBEGIN\n  RETURN NEW;\nEND;\n$function$")

    def test_probe_compares_source(self):
        body = "\nBEGIN RETURN NEW; END;\n"
        query, params = CreateFunction(name="f", body=body).probe()
        assert "prosrc" in query
        assert params == ("public", "f", body)


class TestCreateTrigger:
    def test_drops_then_creates(self):
        change = CreateTrigger(
            name="submission_notification_trigger",
            table="case_study_requests",
            function="notify_instructor_on_submission",
            events=("UPDATE",),
        )
        drop, create = change.statements()
        assert drop == "DROP TRIGGER IF EXISTS submission_notification_trigger ON public.case_study_requests"
        assert create == (
            "CREATE TRIGGER submission_notification_trigger AFTER UPDATE ON public.case_study_requests"
            " FOR EACH ROW EXECUTE FUNCTION public.notify_instructor_on_submission()"
        )

    def test_multiple_events_and_when(self):
        change = CreateTrigger(
            name="t", table="x", function="f", timing="BEFORE", events=("INSERT", "UPDATE"), when="NEW.a IS NOT NULL"
        )
        create = change.statements()[1]
        assert "BEFORE INSERT OR UPDATE ON public.x" in create
        assert "WHEN (NEW.a IS NOT NULL)" in create

    def test_probe_excludes_internal_triggers(self):
        query, params = CreateTrigger(name="t", table="x", function="f").probe()
        assert "NOT t.tgisinternal" in query
        assert params == ("public", "x", "t")
