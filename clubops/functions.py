"""Calling Supabase Edge Functions and webhook endpoints over HTTPS."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from .config import Settings
from .errors import FunctionInvocationError, classify

logger = logging.getLogger(__name__)

_TIMEOUT = 30.0

# Retry settings for transient server errors.
_MAX_RETRIES = 3
_BASE_DELAY = 2  # seconds
_RETRY_STATUSES = {429, 500, 502, 503, 504}


def _post_with_retry(client: httpx.Client, url: str, payload: dict, headers: dict) -> httpx.Response:
    """POST with retry on 429/5xx and network errors.

    Raises:
        FunctionInvocationError: non-success status after retries.
        ClubOpsError: network failure after retries (classified).
    """
    for attempt in range(_MAX_RETRIES):
        try:
            resp = client.post(url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            if attempt == _MAX_RETRIES - 1:
                raise classify(exc) from exc
            delay = _BASE_DELAY * (2**attempt)
            logger.warning("POST %s network error: %s, retry in %ss", url, exc, delay)
            time.sleep(delay)
            continue
        if resp.is_success:
            return resp
        if resp.status_code in _RETRY_STATUSES and attempt < _MAX_RETRIES - 1:
            delay = _BASE_DELAY * (2**attempt)
            logger.warning("POST %s returned %s, retry in %ss", url, resp.status_code, delay)
            time.sleep(delay)
            continue
        break

    raise FunctionInvocationError(
        f"POST {url} returned {resp.status_code}",
        status_code=resp.status_code,
        body=resp.text[:500],
    )


def _decode(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


def invoke_function(
    settings: Settings,
    name: str,
    payload: dict | None = None,
    client: httpx.Client | None = None,
) -> Any:
    """Invoke the Edge Function *name* with the service-role key.

    Returns:
        The decoded JSON response (or raw text if the body is not JSON).
    """
    settings.require("supabase_url", "supabase_service_role_key")
    url = f"{settings.supabase_url}/functions/v1/{name}"
    headers = {"Authorization": f"Bearer {settings.supabase_service_role_key}"}

    owns_client = client is None
    http = client or httpx.Client(timeout=_TIMEOUT)
    try:
        logger.info("Invoking edge function %s", name)
        resp = _post_with_retry(http, url, payload or {}, headers)
    finally:
        if owns_client:
            http.close()
    return _decode(resp)


def post_webhook(url: str, payload: dict, client: httpx.Client | None = None) -> Any:
    """POST *payload* to an arbitrary webhook (smoke test)."""
    owns_client = client is None
    http = client or httpx.Client(timeout=_TIMEOUT)
    try:
        resp = _post_with_retry(http, url, payload, {})
    finally:
        if owns_client:
            http.close()
    return _decode(resp)
