"""Stripe setup helpers: webhook endpoint, customer linking, promotion codes."""

from __future__ import annotations

import logging
from typing import Any

import psycopg
import stripe

from .config import Settings
from .errors import NotFound, classify

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS = (
    "payment_intent.succeeded",
    "payment_intent.payment_failed",
    "checkout.session.completed",
)

_FIND_USER = "SELECT id, email, stripe_customer_id FROM public.users WHERE email = %s OR stripe_customer_id = %s"
_LINK_USER = (
    "UPDATE public.users SET stripe_customer_id = %s,"
    " first_name = COALESCE(first_name, %s), last_name = COALESCE(last_name, %s)"
    " WHERE id = %s"
)


def configure(settings: Settings) -> None:
    """Set the process-wide Stripe key from *settings*."""
    settings.require("stripe_secret_key")
    stripe.api_key = settings.stripe_secret_key


def split_name(name: str | None) -> tuple[str | None, str | None]:
    """``"Anna Maria Schulz"`` -> ``("Anna", "Maria Schulz")``."""
    parts = (name or "").split()
    if not parts:
        return None, None
    return parts[0], " ".join(parts[1:]) or None


def ensure_webhook_endpoint(url: str, events: list[str] | tuple[str, ...] = WEBHOOK_EVENTS) -> dict[str, Any]:
    """Create the webhook endpoint for *url* or reconcile its events.

    Returns:
        ``{"status": "created" | "updated" | "unchanged", "id": ..., "secret": ...}``.
        ``secret`` (the signing secret) is only known right after creation.
    """
    wanted = sorted(set(events))
    try:
        existing = next((w for w in stripe.WebhookEndpoint.list(limit=100).auto_paging_iter() if w.url == url), None)
        if existing is None:
            endpoint = stripe.WebhookEndpoint.create(url=url, enabled_events=wanted)
            logger.info("Created Stripe webhook %s for %s", endpoint.id, url)
            return {"status": "created", "id": endpoint.id, "secret": endpoint.secret}

        if sorted(existing.enabled_events) == wanted:
            return {"status": "unchanged", "id": existing.id, "secret": None}

        stripe.WebhookEndpoint.modify(existing.id, enabled_events=wanted)
        logger.info("Updated events of Stripe webhook %s", existing.id)
        return {"status": "updated", "id": existing.id, "secret": None}
    except stripe.StripeError as e:
        raise classify(e) from e


def find_customer(email: str) -> Any | None:
    try:
        customers = stripe.Customer.list(email=email, limit=1)
    except stripe.StripeError as e:
        raise classify(e) from e
    return customers.data[0] if customers.data else None


def sync_customer(conn: psycopg.Connection, email: str) -> str:
    """Link the Stripe customer for *email* to its ``public.users`` row.

    Returns:
        ``"linked"``, ``"already_linked"`` or ``"no_user"`` (no profile row;
        nothing is created).

    Raises:
        NotFound: Stripe has no customer with that email.
    """
    customer = find_customer(email)
    if customer is None:
        raise NotFound(f"No Stripe customer with email {email}")

    row = conn.execute(_FIND_USER, (customer.email or email, customer.id)).fetchone()
    if row is None:
        logger.warning("Stripe customer %s has no matching user row", customer.id)
        return "no_user"
    if row["stripe_customer_id"]:
        if row["stripe_customer_id"] != customer.id:
            logger.warning(
                "User %s is linked to %s, Stripe returned %s",
                row["id"],
                row["stripe_customer_id"],
                customer.id,
            )
        return "already_linked"

    first_name, last_name = split_name(customer.name)
    conn.execute(_LINK_USER, (customer.id, first_name, last_name, row["id"]))
    logger.info("Linked user %s to Stripe customer %s", row["id"], customer.id)
    return "linked"


def ensure_promotion_code(code: str, percent_off: float = 100) -> dict[str, Any]:
    """Create an active promotion code (and its coupon) unless *code* exists."""
    try:
        found = stripe.PromotionCode.list(code=code, limit=1).data
        if found:
            return {"status": "exists", "id": found[0].id, "active": found[0].active}

        coupon = stripe.Coupon.create(
            percent_off=percent_off,
            duration="forever",
            name=f"{code} ({percent_off:g}% off)",
            metadata={"created_by": "clubops"},
        )
        promo = stripe.PromotionCode.create(coupon=coupon.id, code=code, active=True)
    except stripe.StripeError as e:
        raise classify(e) from e
    logger.info("Created promotion code %s (coupon %s)", code, coupon.id)
    return {"status": "created", "id": promo.id, "active": True}
