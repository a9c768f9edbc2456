"""Error taxonomy for clubops.

Every failure that reaches the CLI is one of the classes below, so the
operator can tell "the database is unreachable" apart from "the service
role may not run DDL" apart from "the change is already there".
``classify()`` turns driver/SDK exceptions into these classes using
structured codes (SQLSTATE, PostgREST codes, HTTP status) and only falls
back to message matching for errors that carry no code at all.
"""

from __future__ import annotations

import httpx
import psycopg
import stripe
from postgrest.exceptions import APIError
from storage3.exceptions import StorageApiError
from supabase_auth.errors import AuthError, AuthRetryableError


class ClubOpsError(Exception):
    """Base class for all classified clubops failures."""

    category = "error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class ConfigError(ClubOpsError, ValueError):
    """A required setting is missing or malformed."""

    category = "configuration"


class ConnectionFailure(ClubOpsError):
    """The database or API endpoint could not be reached."""

    category = "network"


class AuthFailure(ClubOpsError):
    """Credentials were rejected."""

    category = "authentication"


class InsufficientPrivilege(ClubOpsError):
    """Credentials were accepted but lack the permission for this operation."""

    category = "privilege"


class MissingObject(ClubOpsError):
    """A database, table, column, function or endpoint does not exist."""

    category = "missing"


class AlreadyExists(ClubOpsError):
    """The object being created is already present."""

    category = "exists"


class ConstraintViolation(ClubOpsError):
    """Existing data violates a constraint the change tried to enforce."""

    category = "constraint"


class CapabilityMissing(ClubOpsError):
    """The execution path is not available (e.g. no exec_sql RPC installed)."""

    category = "capability"


class VerificationFailed(ClubOpsError):
    """The post-change catalog check did not see the change."""

    category = "verification"


class NotFound(ClubOpsError):
    """A user, customer or other record looked up by the operator does not exist."""

    category = "not-found"


class FunctionInvocationError(ClubOpsError):
    """An Edge Function or webhook answered with a non-success status."""

    category = "function"

    def __init__(self, message: str, *, status_code: int, body: str = "") -> None:
        super().__init__(message, code=str(status_code))
        self.status_code = status_code
        self.body = body


class ManualRemediationRequired(ClubOpsError):
    """Every automated path failed; ``sql`` must be run by hand."""

    category = "manual"

    def __init__(self, message: str, *, sql: str, attempts: list[str] | None = None) -> None:
        super().__init__(message)
        self.sql = sql
        self.attempts = attempts or []


# Failures that mean "try the next execution path", not "this change is broken".
CAPABILITY_ERRORS: tuple[type[ClubOpsError], ...] = (
    ConnectionFailure,
    AuthFailure,
    InsufficientPrivilege,
    CapabilityMissing,
)

_SQLSTATE_CLASSES: dict[str, type[ClubOpsError]] = {
    "28P01": AuthFailure,
    "28000": AuthFailure,
    "42501": InsufficientPrivilege,
    "3D000": MissingObject,
    "42P01": MissingObject,
    "42703": MissingObject,
    "42883": MissingObject,
    "42704": MissingObject,
    "42P07": AlreadyExists,
    "42701": AlreadyExists,
    "42710": AlreadyExists,
    "42723": AlreadyExists,
    "08001": ConnectionFailure,
    "08006": ConnectionFailure,
    "57P03": ConnectionFailure,
}

_POSTGREST_CLASSES: dict[str, type[ClubOpsError]] = {
    "PGRST202": CapabilityMissing,  # function not found in schema cache
    "PGRST205": MissingObject,  # table not found in schema cache
    "PGRST301": AuthFailure,  # JWT invalid
    "PGRST302": AuthFailure,
}

# Ordered: first match wins. Only used when the error has no code.
_MESSAGE_HINTS: tuple[tuple[str, type[ClubOpsError]], ...] = (
    ("password authentication failed", AuthFailure),
    ("invalid api key", AuthFailure),
    ("permission denied", InsufficientPrivilege),
    ("must be owner of", InsufficientPrivilege),
    ("does not exist", MissingObject),
    ("already exists", AlreadyExists),
    ("could not translate host name", ConnectionFailure),
    ("name or service not known", ConnectionFailure),
    ("nodename nor servname", ConnectionFailure),
    ("connection refused", ConnectionFailure),
    ("timeout expired", ConnectionFailure),
    ("timed out", ConnectionFailure),
    ("econnrefused", ConnectionFailure),
    ("enotfound", ConnectionFailure),
)


def _from_sqlstate(sqlstate: str | None) -> type[ClubOpsError] | None:
    if not sqlstate:
        return None
    if sqlstate in _SQLSTATE_CLASSES:
        return _SQLSTATE_CLASSES[sqlstate]
    if sqlstate.startswith("23"):
        return ConstraintViolation
    if sqlstate.startswith("08"):
        return ConnectionFailure
    return None


def _from_message(message: str) -> type[ClubOpsError] | None:
    lowered = message.lower()
    for needle, cls in _MESSAGE_HINTS:
        if needle in lowered:
            return cls
    return None


def _from_http_status(status: int) -> type[ClubOpsError] | None:
    if status == 401:
        return AuthFailure
    if status == 403:
        return InsufficientPrivilege
    if status == 404:
        return MissingObject
    if status == 409:
        return AlreadyExists
    if status in {502, 503, 504}:
        return ConnectionFailure
    return None


def _status_code(value: object) -> int | None:
    # storage3 reports the status as a string
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def classify(exc: BaseException) -> ClubOpsError:
    """Map a driver/SDK exception onto the clubops taxonomy.

    Already-classified errors are returned unchanged.  Anything that cannot
    be classified becomes a plain ``ClubOpsError`` so the CLI still reports
    it, but it never counts as a capability failure.
    """
    if isinstance(exc, ClubOpsError):
        return exc

    message = str(exc).strip() or type(exc).__name__
    code: str | None = None
    cls: type[ClubOpsError] | None = None

    if isinstance(exc, psycopg.Error):
        code = exc.sqlstate
        cls = _from_sqlstate(code)
        if cls is None and isinstance(exc, psycopg.OperationalError):
            cls = _from_message(message) or ConnectionFailure
    elif isinstance(exc, APIError):
        code = exc.code
        message = exc.message or message
        if code:
            cls = _POSTGREST_CLASSES.get(code) or _from_sqlstate(code)
    elif isinstance(exc, (AuthError, StorageApiError)):
        message = exc.message or message
        status = _status_code(getattr(exc, "status", None))
        if status:
            code = str(status)
            cls = _from_http_status(status)
        if cls is None and isinstance(exc, AuthRetryableError):
            cls = ConnectionFailure
    elif isinstance(exc, httpx.HTTPStatusError):
        code = str(exc.response.status_code)
        cls = _from_http_status(exc.response.status_code)
    elif isinstance(exc, (httpx.ConnectError, httpx.TimeoutException)):
        cls = ConnectionFailure
    elif isinstance(exc, stripe.AuthenticationError):
        cls = AuthFailure
    elif isinstance(exc, stripe.PermissionError):
        cls = InsufficientPrivilege
    elif isinstance(exc, stripe.APIConnectionError):
        cls = ConnectionFailure
    elif isinstance(exc, (ConnectionRefusedError, TimeoutError)):
        cls = ConnectionFailure

    if cls is None and code is None:
        cls = _from_message(message)

    return (cls or ClubOpsError)(message, code=code)
