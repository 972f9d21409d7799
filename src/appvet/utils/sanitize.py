"""Redaction helpers to prevent credential leakage in logs and findings."""

from __future__ import annotations

import os
import re

MAX_SNIPPET_CHARS = 200

_QUOTED_VALUE_RE = re.compile(r"""(['"`])([^'"`\s]{4})[^'"`]*(['"`])""")
_KEY_PREFIX_RE = re.compile(
    r"\b(sk[-_]live[-_]|pk[-_]live[-_]|sk-ant-|ghp_|gho_|xox[bp]-|AKIA)[A-Za-z0-9_\-]+"
)


def sanitize_error(message: str) -> str:
    """Sanitize error messages to prevent API key and path leakage."""
    if not message:
        return message

    sanitized = message
    # Redact API key patterns
    sanitized = re.sub(r"sk-ant-[a-zA-Z0-9_-]+", "[REDACTED_KEY]", sanitized)
    sanitized = re.sub(r"sk-[a-zA-Z0-9_-]{20,}", "[REDACTED_KEY]", sanitized)
    sanitized = re.sub(r"Bearer\s+\S+", "Bearer [REDACTED]", sanitized)
    sanitized = re.sub(r"api-key:\s*\S+", "api-key: [REDACTED]", sanitized)
    sanitized = re.sub(r"x-api-key:\s*\S+", "x-api-key: [REDACTED]", sanitized)
    sanitized = re.sub(r"Authorization:\s*\S+", "Authorization: [REDACTED]", sanitized)

    # Redact user home paths
    home = os.environ.get("USERPROFILE") or os.environ.get("HOME") or ""
    if home and home != "/":
        sanitized = sanitized.replace(home, "[USER_HOME]")

    return sanitized


def redact_secret(snippet: str) -> str:
    """Mask the secret part of a matched line, keeping enough to locate it.

    Vendor-prefixed keys keep their prefix, quoted literals keep their
    first four characters.
    """
    if not snippet:
        return snippet
    redacted = _KEY_PREFIX_RE.sub(lambda m: f"{m.group(1)}[REDACTED]", snippet)
    redacted = _QUOTED_VALUE_RE.sub(r"\1\2[REDACTED]\3", redacted)
    return redacted


def truncate(text: str, max_length: int = MAX_SNIPPET_CHARS) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
