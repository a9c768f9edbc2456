"""Shared pytest fixtures for clubops tests."""

import pytest

from clubops.changes import AddColumn, CreateIndex
from clubops.config import Settings, get_settings
from clubops.migrations import Migration


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        database_url="postgresql://postgres:pw@db.example.supabase.co:5432/postgres",
        supabase_url="https://example.supabase.co",
        supabase_service_role_key="service-role-key",
        supabase_anon_key="anon-key",
        stripe_secret_key="sk_test_dummy",
        resend_api_key="re_test_dummy",
        app_url="https://club.example.com",
    )


@pytest.fixture()
def sample_migration() -> Migration:
    return Migration(
        id="0100_user_nickname",
        description="Nickname for users",
        changes=(
            AddColumn(table="users", column="nickname", sql_type="TEXT"),
            CreateIndex(name="idx_users_nickname", table="users", columns=("nickname",)),
        ),
    )
