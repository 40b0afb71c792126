"""Shared UTC time helpers.

Provides a single ``utc_now`` function so that every module that needs the
current UTC timestamp uses the same implementation, plus a tolerant ISO
parser for timestamps read back from persisted JSON.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Return the current UTC timestamp."""
    return datetime.now(UTC)


def utc_now_iso() -> str:
    """Return the current UTC timestamp as an ISO-8601 string."""
    return utc_now().isoformat()


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp, returning None for missing or bad input.

    Naive timestamps are treated as UTC.
    """
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
