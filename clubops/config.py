"""Process-wide configuration for clubops.

All endpoints and credentials come from the environment (optionally a
``.env`` file loaded by the entry point).  Historical scripts used several
names for the same value; they are accepted as aliases, first match wins.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from functools import lru_cache
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ConfigError

ENV_ALIASES: dict[str, tuple[str, ...]] = {
    "database_url": ("DATABASE_URL", "SUPABASE_DB_URL"),
    "supabase_url": ("SUPABASE_URL", "REACT_APP_SUPABASE_URL"),
    "supabase_service_role_key": (
        "SUPABASE_SERVICE_ROLE_KEY",
        "REACT_APP_SUPABASE_SERVICE_ROLE_KEY",
        "SUPABASE_SERVICE_KEY",
    ),
    "supabase_anon_key": ("SUPABASE_ANON_KEY", "REACT_APP_SUPABASE_ANON_KEY", "SUPABASE_KEY"),
    "stripe_secret_key": ("STRIPE_SECRET_KEY",),
    "resend_api_key": ("RESEND_API_KEY",),
    "resend_from": ("RESEND_FROM",),
    "app_url": ("APP_URL",),
    "db_connect_timeout": ("DB_CONNECT_TIMEOUT",),
    "exec_sql_function": ("SUPABASE_EXEC_SQL_FUNCTION",),
    "log_level": ("LOG_LEVEL",),
}


class Settings(BaseModel):
    """Typed, validated view of the environment."""

    model_config = ConfigDict(frozen=True)

    database_url: str | None = Field(default=None, repr=False)
    supabase_url: str | None = None
    supabase_service_role_key: str | None = Field(default=None, repr=False)
    supabase_anon_key: str | None = Field(default=None, repr=False)
    stripe_secret_key: str | None = Field(default=None, repr=False)
    resend_api_key: str | None = Field(default=None, repr=False)
    resend_from: str = "Club Admin <admin@example.com>"
    app_url: str = ""
    db_connect_timeout: int = Field(default=10, ge=1, le=300)
    exec_sql_function: str = "exec_sql"
    log_level: str = "INFO"

    @field_validator("database_url")
    @classmethod
    def _normalise_database_url(cls, value: str | None) -> str | None:
        if not value:
            return None
        if value.startswith("postgres://"):
            value = value.replace("postgres://", "postgresql://", 1)
        if not value.startswith("postgresql://"):
            raise ValueError("database_url must be a postgresql:// connection string")
        return value

    @field_validator("supabase_url", "app_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str | None) -> str | None:
        if not value:
            return value
        if not value.startswith(("http://", "https://")):
            raise ValueError("must be an http(s) URL")
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return value.upper()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from *environ* (defaults to ``os.environ``)."""
        env = os.environ if environ is None else environ
        values: dict[str, str] = {}
        for field_name, names in ENV_ALIASES.items():
            for name in names:
                raw = env.get(name, "").strip()
                if raw:
                    values[field_name] = raw
                    break
        try:
            return cls(**values)
        except ValueError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def require(self, *fields: str) -> None:
        """Fail fast when any of *fields* is unset.

        Raises:
            ConfigError: naming the environment variable(s) to set.
        """
        missing = [f for f in fields if not getattr(self, f)]
        if missing:
            hints = ", ".join(" or ".join(ENV_ALIASES[f]) for f in missing)
            raise ConfigError(f"Missing configuration. Set: {hints}")

    @property
    def database_host(self) -> str:
        """Host:port of the database, without credentials, for display."""
        if not self.database_url:
            return ""
        parts = urlsplit(self.database_url)
        if parts.port:
            return f"{parts.hostname}:{parts.port}"
        return parts.hostname or ""

    def describe(self) -> dict[str, str]:
        """Redacted summary of what is configured (safe to print)."""

        def _flag(value: str | None) -> str:
            return "set" if value else "missing"

        return {
            "database": self.database_host or "missing",
            "supabase_url": self.supabase_url or "missing",
            "service_role_key": _flag(self.supabase_service_role_key),
            "anon_key": _flag(self.supabase_anon_key),
            "stripe_secret_key": _flag(self.stripe_secret_key),
            "resend_api_key": _flag(self.resend_api_key),
            "exec_sql_function": self.exec_sql_function,
        }


@lru_cache()
def get_settings() -> Settings:
    return Settings.from_env()
