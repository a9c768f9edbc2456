"""Find (and optionally redact) hard-coded credentials in a source tree.

Detects Supabase JWTs (service-role vs anon, by decoding the payload),
Postgres URLs with an inline password, Stripe secret / restricted /
webhook-signing keys and Resend API keys.  Lines carrying
``pragma: allowlist secret`` are skipped.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from collections.abc import Iterator
from pathlib import Path
from typing import Literal

from pydantic import BaseModel

logger = logging.getLogger(__name__)

ALLOWLIST_MARKER = "pragma: allowlist secret"
SKIP_DIRS = {".git", "node_modules", ".venv", "venv", "__pycache__", "dist", "build", ".next"}
MAX_FILE_BYTES = 1_000_000

_JWT_RE = re.compile(r"eyJ[A-Za-z0-9_-]+\.(eyJ[A-Za-z0-9_-]+)\.[A-Za-z0-9_-]+")
_PG_URL_RE = re.compile(r"(postgres(?:ql)?://[^:\s/'\"@]+:)([^@\s'\"]+)(@[^\s'\"]+)")
_PG_PLACEHOLDER = "<redacted:postgres-password>"

# (kind, severity, pattern); the whole match is the secret.
_TOKEN_PATTERNS: tuple[tuple[str, str, re.Pattern[str]], ...] = (
    ("stripe-secret-key", "high", re.compile(r"\bsk_(?:live|test)_[A-Za-z0-9]{16,}")),
    ("stripe-restricted-key", "high", re.compile(r"\brk_(?:live|test)_[A-Za-z0-9]{16,}")),
    ("stripe-webhook-secret", "high", re.compile(r"\bwhsec_[A-Za-z0-9]{16,}")),
    ("resend-api-key", "high", re.compile(r"\bre_[A-Za-z0-9]{8,}_[A-Za-z0-9]{8,}")),
)

Severity = Literal["high", "low"]


class Finding(BaseModel):
    path: str
    line: int
    kind: str
    severity: Severity
    preview: str


def _mask(secret: str) -> str:
    if len(secret) <= 8:
        return "*" * len(secret)
    return f"{secret[:4]}…{secret[-4:]}"


def jwt_role(token: str) -> str | None:
    """Return the ``role`` claim of a JWT without verifying it, or None."""
    parts = token.split(".")
    if len(parts) != 3:
        return None
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(payload))
    except (binascii.Error, ValueError):
        return None
    if not isinstance(claims, dict):
        return None
    return claims.get("role")


def _classify_jwt(token: str) -> tuple[str, Severity] | None:
    role = jwt_role(token)
    if role == "service_role":
        return "supabase-service-role-key", "high"
    if role == "anon":
        return "supabase-anon-key", "low"
    return None


def scan_line(line: str) -> Iterator[tuple[str, Severity, str]]:
    """Yield ``(kind, severity, secret)`` for each credential on *line*."""
    if ALLOWLIST_MARKER in line:
        return
    for match in _JWT_RE.finditer(line):
        classified = _classify_jwt(match.group(0))
        if classified:
            yield classified[0], classified[1], match.group(0)
    for match in _PG_URL_RE.finditer(line):
        if match.group(2) != _PG_PLACEHOLDER:
            yield "postgres-password", "high", match.group(2)
    for kind, severity, pattern in _TOKEN_PATTERNS:
        for match in pattern.finditer(line):
            yield kind, severity, match.group(0)


def _read_text(path: Path) -> str | None:
    try:
        if path.stat().st_size > MAX_FILE_BYTES:
            return None
        data = path.read_bytes()
    except OSError as e:
        logger.warning("Cannot read %s: %s", path, e)
        return None
    if b"\x00" in data:
        return None
    return data.decode("utf-8", errors="replace")


def iter_files(root: Path) -> Iterator[Path]:
    if root.is_file():
        yield root
        return
    for path in sorted(root.rglob("*")):
        if path.is_file() and not SKIP_DIRS.intersection(path.relative_to(root).parts):
            yield path


def scan_tree(root: str | Path) -> list[Finding]:
    """Scan every text file under *root* and return the findings."""
    root = Path(root)
    findings: list[Finding] = []
    for path in iter_files(root):
        text = _read_text(path)
        if text is None:
            continue
        for lineno, line in enumerate(text.splitlines(), start=1):
            for kind, severity, secret in scan_line(line):
                findings.append(
                    Finding(path=str(path), line=lineno, kind=kind, severity=severity, preview=_mask(secret))
                )
    logger.info("Scanned %s: %d finding(s)", root, len(findings))
    return findings


def _placeholder(kind: str) -> str:
    return f"<redacted:{kind}>"


def redact_text(text: str) -> tuple[str, int]:
    """Replace every detected secret in *text*.  Returns ``(new_text, count)``."""
    count = 0
    out_lines = []
    for line in text.splitlines(keepends=True):
        if ALLOWLIST_MARKER in line:
            out_lines.append(line)
            continue

        def _jwt(match: re.Match[str]) -> str:
            nonlocal count
            classified = _classify_jwt(match.group(0))
            if classified is None:
                return match.group(0)
            count += 1
            return _placeholder(classified[0])

        def _pg(match: re.Match[str]) -> str:
            nonlocal count
            if match.group(2) == _PG_PLACEHOLDER:
                return match.group(0)
            count += 1
            return f"{match.group(1)}{_PG_PLACEHOLDER}{match.group(3)}"

        line = _JWT_RE.sub(_jwt, line)
        line = _PG_URL_RE.sub(_pg, line)
        for kind, _severity, pattern in _TOKEN_PATTERNS:
            line, n = pattern.subn(_placeholder(kind), line)
            count += n
        out_lines.append(line)
    return "".join(out_lines), count


def redact_file(path: str | Path) -> int:
    """Redact secrets in *path* in place.  Returns the number replaced."""
    path = Path(path)
    text = _read_text(path)
    if text is None:
        return 0
    redacted, count = redact_text(text)
    if count:
        path.write_text(redacted, encoding="utf-8")
        logger.info("Redacted %d secret(s) in %s", count, path)
    return count
