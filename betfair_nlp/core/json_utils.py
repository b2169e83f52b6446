"""JSON helpers for JSONB payloads and model responses."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any


def json_default(value: Any) -> Any:
    """Default serializer for datetimes and decimals."""
    if isinstance(value, datetime):
        ts_value = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return ts_value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return str(value)


def to_json_value(value: Any) -> Any:
    """Serialize dict/list payloads for JSONB columns."""
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=json_default)
    return value


def dumps_pretty(value: Any) -> str:
    """Render a payload as indented JSON for human-facing output."""
    return json.dumps(value, indent=2, default=json_default, ensure_ascii=False)
