"""Environment variable parsing helpers."""

from __future__ import annotations

import os
from typing import Optional

_TRUTHY = {"1", "true", "t", "yes", "y", "on"}


def _parse_int(raw: str | None, fallback: int) -> int:
    if not raw:
        return fallback
    try:
        return int(raw)
    except (TypeError, ValueError):
        return fallback


def _parse_float(raw: str | None, fallback: float) -> float:
    if not raw:
        return fallback
    try:
        return float(raw)
    except (TypeError, ValueError):
        return fallback


def parse_bool(raw: str | None, default: bool = False) -> bool:
    """Parse a boolean-ish string value."""
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def parse_int(raw: str | None, fallback: int, minimum: Optional[int] = None) -> int:
    """Parse an integer-ish string value."""
    value = _parse_int(raw, fallback)
    if minimum is not None and value < minimum:
        return minimum
    return value


def parse_float(raw: str | None, fallback: float, minimum: Optional[float] = None) -> float:
    """Parse a float-ish string value."""
    value = _parse_float(raw, fallback)
    if minimum is not None and value < minimum:
        return minimum
    return value


def env_bool(name: str, default: bool = False) -> bool:
    """Read a boolean environment variable."""
    return parse_bool(os.getenv(name), default)


def env_int(name: str, fallback: int, minimum: Optional[int] = None) -> int:
    """Read an integer environment variable with an optional minimum."""
    return parse_int(os.getenv(name), fallback, minimum)


def env_str(name: str, default: str | None = None) -> str | None:
    """Read a string environment variable, treating blanks as unset."""
    raw = os.getenv(name)
    if raw is None:
        return default
    raw = raw.strip()
    return raw or default
