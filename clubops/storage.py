"""Supabase Storage bucket setup."""

from __future__ import annotations

import logging
from typing import Literal

import httpx
from storage3.exceptions import StorageApiError
from supabase import Client

from .errors import classify

logger = logging.getLogger(__name__)

CASE_STUDY_MIME_TYPES = (
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
)
DEFAULT_FILE_SIZE_LIMIT = 10 * 1024 * 1024
_SDK_ERRORS = (StorageApiError, httpx.HTTPError)


def ensure_bucket(
    client: Client,
    bucket_id: str,
    public: bool = False,
    allowed_mime_types: list[str] | tuple[str, ...] | None = None,
    file_size_limit: int | None = None,
) -> Literal["created", "updated", "unchanged"]:
    """Create *bucket_id* or bring its settings in line.

    Args:
        client: Service-role Supabase client.
        bucket_id: Bucket id (also used as its name).
        public: Whether objects are readable without a signed URL.
        allowed_mime_types: Upload whitelist; None allows everything.
        file_size_limit: Max upload size in bytes; None means no limit.
    """
    mime_types = sorted(allowed_mime_types) if allowed_mime_types else None
    file_size_limit = file_size_limit or None

    try:
        existing = next((b for b in client.storage.list_buckets() if b.id == bucket_id), None)
        if existing is None:
            options: dict = {"public": public}
            if mime_types:
                options["allowed_mime_types"] = mime_types
            if file_size_limit:
                options["file_size_limit"] = file_size_limit
            client.storage.create_bucket(bucket_id, options=options)
            logger.info("Created bucket %s (public=%s)", bucket_id, public)
            return "created"

        current_mime = sorted(existing.allowed_mime_types) if existing.allowed_mime_types else None
        if (
            bool(existing.public) == public
            and current_mime == mime_types
            and (existing.file_size_limit or None) == file_size_limit
        ):
            logger.info("Bucket %s already configured", bucket_id)
            return "unchanged"

        # None clears a whitelist or limit left over from an earlier setup
        client.storage.update_bucket(
            bucket_id,
            {"public": public, "allowed_mime_types": mime_types, "file_size_limit": file_size_limit},
        )
    except _SDK_ERRORS as e:
        raise classify(e) from e
    logger.info("Updated bucket %s", bucket_id)
    return "updated"
