"""Shared datetime utilities."""

from __future__ import annotations

from datetime import datetime


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO 8601 datetime string, returning None on invalid input.

    Accepts a trailing ``Z`` and explicit offsets. Returns a naive datetime
    (tzinfo stripped) so stored and freshly created timestamps compare cleanly.
    """
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return None


def timestamp_slug(moment: datetime) -> str:
    """Filesystem-safe, lexically sortable rendering of a timestamp."""
    return moment.strftime("%Y-%m-%dT%H-%M-%S-%f")
