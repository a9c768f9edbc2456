"""Tests for clubops.registry and clubops.triggers — the concrete migrations."""

import pytest

from clubops.changes import CreateExtension, CreateFunction, CreateTrigger
from clubops.migrations import render_manual_sql
from clubops.registry import MIGRATIONS, REQUIRED_TABLES, get_migration
from clubops.triggers import (
    DOZENT_WEBHOOK_FUNCTION,
    STUDENT_WEBHOOK_FUNCTION,
    SUBMISSION_FUNCTION,
    notification_webhook_changes,
    submission_notification_changes,
    webhook_body,
)


class TestRegistry:
    def test_ids_unique_and_sorted(self):
        ids = [m.id for m in MIGRATIONS]
        assert len(ids) == len(set(ids))
        assert ids == sorted(ids)

    def test_checksums_unique(self):
        checksums = [m.checksum for m in MIGRATIONS]
        assert len(checksums) == len(set(checksums))

    def test_get_migration(self):
        assert get_migration("0009_student_feedback").description.startswith("Student self-review")
        assert get_migration("9999_missing") is None

    @pytest.mark.parametrize("migration", MIGRATIONS, ids=lambda m: m.id)
    def test_every_statement_is_rerunnable(self, migration):
        for stmt in migration.statements:
            guarded = (
                "IF NOT EXISTS" in stmt
                or stmt.startswith(("DROP POLICY IF EXISTS", "DROP TRIGGER IF EXISTS", "CREATE OR REPLACE"))
                or " DROP CONSTRAINT IF EXISTS " in stmt
                or stmt.startswith("COMMENT ON CONSTRAINT")
                or "ENABLE ROW LEVEL SECURITY" in stmt
            )
            follows_drop = stmt.startswith(("CREATE POLICY", "CREATE TRIGGER")) or " ADD CONSTRAINT " in stmt
            assert guarded or follows_drop, stmt

    def test_stripe_customer_column(self):
        (change,) = get_migration("0001_stripe_customer_id").changes
        assert change.statements() == [
            "ALTER TABLE public.users ADD COLUMN IF NOT EXISTS stripe_customer_id TEXT UNIQUE"
        ]

    def test_student_feedback_has_rls_and_policies(self):
        sql = render_manual_sql(get_migration("0009_student_feedback"))
        assert "CREATE TABLE IF NOT EXISTS public.student_feedback" in sql
        assert "ALTER TABLE public.student_feedback ENABLE ROW LEVEL SECURITY;" in sql
        assert '"Users can view their own feedback"' in sql
        assert "WHERE email_reminder = true AND reminder_sent = false" in sql

    def test_springer_role_constraint(self):
        sql = render_manual_sql(get_migration("0007_springer_role"))
        assert "'springer'" in sql
        assert "'Öffentliches Recht'" in sql

    def test_required_tables(self):
        assert "users" in REQUIRED_TABLES
        assert "case_study_requests" in REQUIRED_TABLES


class TestSubmissionTrigger:
    def test_function_then_trigger(self):
        function, trigger = submission_notification_changes()
        assert isinstance(function, CreateFunction)
        assert isinstance(trigger, CreateTrigger)
        assert trigger.function == function.name == SUBMISSION_FUNCTION
        assert trigger.table == "case_study_requests"
        assert trigger.events == ("UPDATE",)

    def test_falls_back_to_springer(self):
        function, _ = submission_notification_changes()
        assert "role = 'instructor'" in function.body
        assert "role = 'springer'" in function.body
        assert function.body.index("'instructor'") < function.body.index("'springer'")

    def test_only_on_transition_to_submitted(self):
        function, _ = submission_notification_changes()
        assert "NEW.status = 'submitted'" in function.body
        assert "OLD.status <> 'submitted'" in function.body

    def test_errors_become_warnings(self):
        function, _ = submission_notification_changes()
        assert "EXCEPTION\n  WHEN OTHERS THEN\n    RAISE WARNING" in function.body
        assert function.body.rstrip().endswith("END;")


class TestWebhookTriggers:
    def test_enables_pg_net_first(self):
        changes = notification_webhook_changes()
        assert isinstance(changes[0], CreateExtension)
        assert changes[0].name == "pg_net"

    def test_triggers_on_notification_insert(self):
        triggers = [c for c in notification_webhook_changes() if isinstance(c, CreateTrigger)]
        assert {t.function for t in triggers} == {DOZENT_WEBHOOK_FUNCTION, STUDENT_WEBHOOK_FUNCTION}
        assert all(t.table == "notifications" and t.events == ("INSERT",) for t in triggers)

    def test_body_reads_settings_not_literals(self):
        body = webhook_body(DOZENT_WEBHOOK_FUNCTION, "notify-dozent")
        assert "current_setting('app.settings.supabase_url', true) || '/functions/v1/notify-dozent'" in body
        assert "current_setting('app.settings.service_role_key', true)" in body
        assert "supabase.co" not in body
        assert "eyJ" not in body

    def test_body_swallows_errors_with_warning(self):
        body = webhook_body(STUDENT_WEBHOOK_FUNCTION, "notify-student")
        assert "net.http_post" in body
        assert f"RAISE WARNING '{STUDENT_WEBHOOK_FUNCTION} failed" in body
        assert "RETURN NEW;\nEND;" in body
