"""Supabase Auth + ``public.users`` admin operations.

Every function takes a service-role client (see ``db.get_admin_client``).
An account has two halves: the Auth user (login, password) and the
profile row in ``public.users`` (name, role).  The helpers here keep both
in step and are safe to re-run.  SDK failures are raised as classified
``ClubOpsError``s.
"""

from __future__ import annotations

import logging
import re
import secrets
import string
from typing import Any

import httpx
from postgrest.exceptions import APIError
from supabase import Client
from supabase_auth.errors import AuthError

from .errors import NotFound, classify

logger = logging.getLogger(__name__)

ROLES = ("student", "instructor", "springer", "admin")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_PAGE_SIZE = 1000
_PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%&*?"
_SDK_ERRORS = (AuthError, APIError, httpx.HTTPError)


def is_valid_email(email: str) -> bool:
    return bool(_EMAIL_RE.match(email.strip()))


def generate_password(length: int = 16) -> str:
    """Random temporary password with at least one lower, upper, digit and symbol."""
    while True:
        password = "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))
        if (
            any(c.islower() for c in password)
            and any(c.isupper() for c in password)
            and any(c.isdigit() for c in password)
            and any(c in "!@#$%&*?" for c in password)
        ):
            return password


def find_auth_user(client: Client, email: str) -> Any | None:
    """Return the Auth user with *email* (case-insensitive), or None."""
    wanted = email.strip().lower()
    page = 1
    while True:
        try:
            users = client.auth.admin.list_users(page=page, per_page=_PAGE_SIZE)
        except _SDK_ERRORS as e:
            raise classify(e) from e
        for user in users:
            if (user.email or "").lower() == wanted:
                return user
        if len(users) < _PAGE_SIZE:
            return None
        page += 1


def get_profile(client: Client, email: str) -> dict | None:
    try:
        rows = client.table("users").select("*").eq("email", email.strip().lower()).execute().data
    except _SDK_ERRORS as e:
        raise classify(e) from e
    return rows[0] if rows else None


def user_status(client: Client, email: str) -> dict:
    """Summarise the Auth user and profile row for *email*.

    Raises:
        NotFound: neither an Auth user nor a profile row exists.
    """
    auth_user = find_auth_user(client, email)
    profile = get_profile(client, email)
    if auth_user is None and profile is None:
        raise NotFound(f"No user with email {email}")

    return {
        "email": email,
        "auth_id": auth_user.id if auth_user else None,
        "confirmed": bool(auth_user and auth_user.email_confirmed_at),
        "last_sign_in_at": auth_user.last_sign_in_at if auth_user else None,
        "profile_id": profile["id"] if profile else None,
        "role": profile.get("role") if profile else None,
        "name": f"{profile.get('first_name') or ''} {profile.get('last_name') or ''}".strip() if profile else "",
    }


def reset_password(client: Client, email: str, password: str | None = None) -> str:
    """Set a new password for *email* and confirm the address.

    Returns:
        The password that was set (generated when *password* is None).

    Raises:
        NotFound: no Auth user with that email.
    """
    user = find_auth_user(client, email)
    if user is None:
        raise NotFound(f"No auth user with email {email}")

    new_password = password or generate_password()
    try:
        client.auth.admin.update_user_by_id(user.id, {"password": new_password, "email_confirm": True})
    except _SDK_ERRORS as e:
        raise classify(e) from e
    logger.info("Password reset for %s", email)
    return new_password


def set_role(client: Client, email: str, role: str) -> bool:
    """Set the profile role.  Returns False when it already had *role*.

    Raises:
        ValueError: unknown role.
        NotFound: no profile row for *email*.
    """
    if role not in ROLES:
        raise ValueError(f"Unknown role {role!r}; expected one of {', '.join(ROLES)}")
    profile = get_profile(client, email)
    if profile is None:
        raise NotFound(f"No profile row in public.users for {email}")
    if profile.get("role") == role:
        logger.info("%s already has role %s", email, role)
        return False

    try:
        client.table("users").update({"role": role}).eq("id", profile["id"]).execute()
    except _SDK_ERRORS as e:
        raise classify(e) from e
    logger.info("Role of %s changed from %s to %s", email, profile.get("role"), role)
    return True


def ensure_user(
    client: Client,
    email: str,
    first_name: str,
    last_name: str,
    role: str = "student",
    password: str | None = None,
) -> tuple[str, str | None]:
    """Create the Auth user and profile row for *email* if missing.

    Returns:
        ``("created", password)`` for a new Auth user, ``("exists", None)``
        when the Auth user was already there (the profile row is still
        upserted so it matches).
    """
    if role not in ROLES:
        raise ValueError(f"Unknown role {role!r}; expected one of {', '.join(ROLES)}")

    email = email.strip().lower()
    user = find_auth_user(client, email)
    status, new_password = "exists", None
    try:
        if user is None:
            new_password = password or generate_password()
            response = client.auth.admin.create_user(
                {
                    "email": email,
                    "password": new_password,
                    "email_confirm": True,
                    "user_metadata": {"first_name": first_name, "last_name": last_name},
                }
            )
            user = response.user
            status = "created"
            logger.info("Created auth user %s (%s)", email, user.id)

        client.table("users").upsert(
            {
                "id": user.id,
                "email": email,
                "first_name": first_name,
                "last_name": last_name,
                "role": role,
            },
            on_conflict="id",
        ).execute()
    except _SDK_ERRORS as e:
        raise classify(e) from e
    return status, new_password


def delete_user(client: Client, email: str) -> None:
    """Delete the profile row and the Auth user for *email*.

    Raises:
        NotFound: neither exists.
    """
    user = find_auth_user(client, email)
    profile = get_profile(client, email)
    if user is None and profile is None:
        raise NotFound(f"No user with email {email}")

    try:
        if profile is not None:
            client.table("users").delete().eq("id", profile["id"]).execute()
        if user is not None:
            client.auth.admin.delete_user(user.id)
    except _SDK_ERRORS as e:
        raise classify(e) from e
    logger.info("Deleted user %s", email)
