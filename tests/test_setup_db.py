"""Tests for setup_db.py — table check and manual SQL fallback."""

from unittest.mock import MagicMock, patch

from postgrest.exceptions import APIError

import setup_db
from clubops.config import Settings
from clubops.registry import MIGRATIONS, REQUIRED_TABLES


def _client(missing=()):
    client = MagicMock()

    def table(name):
        query = MagicMock()
        if name in missing:
            query.select.return_value.limit.return_value.execute.side_effect = APIError(
                {"code": "PGRST205", "message": f"Could not find the table 'public.{name}'"}
            )
        return query

    client.table.side_effect = table
    return client


class TestCheckTables:
    def test_all_present(self, capsys):
        assert setup_db.check_tables(_client()) == []
        assert capsys.readouterr().out.count("✓") == len(REQUIRED_TABLES)

    def test_reports_missing(self, capsys):
        assert setup_db.check_tables(_client(missing=("notifications",))) == ["notifications"]
        assert "✗ notifications" in capsys.readouterr().out


class TestMain:
    def test_missing_tables_exit_1(self, settings):
        with (
            patch("setup_db.Settings.from_env", return_value=settings),
            patch("setup_db.get_admin_client", return_value=_client(missing=("users",))),
        ):
            assert setup_db.main() == 1

    def test_points_to_migrate_when_database_url_set(self, settings, capsys):
        with (
            patch("setup_db.Settings.from_env", return_value=settings),
            patch("setup_db.get_admin_client", return_value=_client()),
        ):
            assert setup_db.main() == 0
        out = capsys.readouterr().out
        assert "clubops migrate" in out
        assert "BEGIN;" not in out

    def test_prints_manual_sql_without_database_url(self, settings, capsys):
        settings = settings.model_copy(update={"database_url": None})
        with (
            patch("setup_db.Settings.from_env", return_value=settings),
            patch("setup_db.get_admin_client", return_value=_client()),
        ):
            assert setup_db.main() == 0
        out = capsys.readouterr().out
        assert out.count("BEGIN;") == len(MIGRATIONS)
        assert MIGRATIONS[-1].id in out

    def test_missing_credentials(self, capsys):
        with patch("setup_db.Settings.from_env", return_value=Settings()):
            assert setup_db.main() == 1
        assert "ERROR" in capsys.readouterr().out
