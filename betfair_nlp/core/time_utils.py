"""Shared time parsing helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from dateutil.parser import isoparse


def ensure_utc(value: datetime | None) -> datetime | None:
    """Ensure a datetime is timezone-aware (UTC)."""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def from_epoch_millis(value: Any) -> datetime:
    """Convert epoch milliseconds into a UTC datetime.

    :raises ValueError: If the value is not numeric or out of range.
    """
    if isinstance(value, bool) or value is None:
        raise ValueError(f"invalid epoch millis: {value!r}")
    try:
        millis = float(value)
        return datetime.fromtimestamp(millis / 1000.0, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError) as exc:
        raise ValueError(f"invalid epoch millis: {value!r}") from exc


def parse_ts(value: Any) -> datetime | None:
    """Parse an ISO timestamp or passthrough a datetime, ensuring timezone."""
    if not value:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        parsed = isoparse(str(value))
    except (TypeError, ValueError):
        return None
    return ensure_utc(parsed)
