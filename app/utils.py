"""Utility helpers for the SeerrCatalog service."""

from __future__ import annotations

import re
from datetime import datetime, timezone


MARKUP_TAG_RE = re.compile(r"<[^>]*>")
MANIFEST_SUFFIXES = ("/manifest.json", "/manifest")


def utcnow() -> datetime:
    """Return the current UTC time as a naive datetime, as stored in SQLite."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def strip_markup(value: str) -> str:
    """Replace embedded markup tags with spaces and trim the result."""

    return MARKUP_TAG_RE.sub(" ", value).strip()


def first_line(value: str) -> str:
    """Return the first line of a multi-line string, stripped."""

    return value.split("\n", 1)[0].strip()


def addon_base_url(transport_url: str) -> str:
    """Return the addon base URL with any trailing manifest file removed."""

    normalized = (transport_url or "").strip().rstrip("/")
    lowered = normalized.lower()
    for suffix in MANIFEST_SUFFIXES:
        if lowered.endswith(suffix):
            normalized = normalized[: -len(suffix)].rstrip("/")
            break
    return normalized


def is_stale(checked_at: datetime | None, max_age_seconds: float, *, now: datetime | None = None) -> bool:
    """Return ``True`` when a timestamp is missing or older than ``max_age_seconds``."""

    if checked_at is None:
        return True
    reference = now or utcnow()
    return (reference - checked_at).total_seconds() > max_age_seconds
