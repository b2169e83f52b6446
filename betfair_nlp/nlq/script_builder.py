"""Build parameter-free SELECT scripts for common lookups."""

from __future__ import annotations

import json
import math
import re
from typing import Any, Mapping, Optional, Sequence, Union

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")
AGGREGATE_FUNCTIONS = ("count", "sum", "avg", "min", "max")

OrderSpec = Union[str, tuple[str, str]]


def validate_ident(name: str) -> str:
    """Validate an identifier and return it unchanged.

    :raises ValueError: If the name is not a plain SQL identifier.
    """
    if not isinstance(name, str) or not _IDENT_RE.match(name):
        raise ValueError(f"Invalid identifier: {name!r}")
    return name


def sql_literal(value: Any) -> str:
    """Render a Python value as an inline SQL literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Non-finite number: {value!r}")
        return repr(value)
    if isinstance(value, (dict, list)):
        value = json.dumps(value)
    return "'" + str(value).replace("'", "''") + "'"


def _where_clause(filters: Optional[Mapping[str, Any]]) -> str:
    if not filters:
        return ""
    parts = []
    for column, value in filters.items():
        column = validate_ident(column)
        if value is None:
            parts.append(f"{column} IS NULL")
        elif isinstance(value, (list, tuple)):
            if not value:
                parts.append("FALSE")
            else:
                items = ", ".join(sql_literal(item) for item in value)
                parts.append(f"{column} IN ({items})")
        else:
            parts.append(f"{column} = {sql_literal(value)}")
    return " WHERE " + " AND ".join(parts)


def _order_clause(order_by: Optional[Sequence[OrderSpec]]) -> str:
    if not order_by:
        return ""
    parts = []
    for spec in order_by:
        if isinstance(spec, tuple):
            column, direction = spec
        elif spec.startswith("-"):
            column, direction = spec[1:], "desc"
        else:
            column, direction = spec, "asc"
        direction = direction.lower()
        if direction not in ("asc", "desc"):
            raise ValueError(f"Invalid sort direction: {direction!r}")
        parts.append(f"{validate_ident(column)} {direction.upper()}")
    return " ORDER BY " + ", ".join(parts)


def _wrap_json(inner: str) -> str:
    return f"SELECT row_to_json(t) FROM ({inner}) t;"


def build_find_script(
    table: str,
    filters: Optional[Mapping[str, Any]] = None,
    *,
    columns: Optional[Sequence[str]] = None,
    order_by: Optional[Sequence[OrderSpec]] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> str:
    """Build a filtered, sorted SELECT returning one JSON object per row.

    Filter values are equality matches; a list or tuple becomes an ``IN``
    list and ``None`` becomes ``IS NULL``. ``order_by`` entries are column
    names (prefix ``-`` for descending) or ``(column, direction)`` pairs.
    """
    select_list = ", ".join(validate_ident(col) for col in columns) if columns else "*"
    inner = f"SELECT {select_list} FROM {validate_ident(table)}"
    inner += _where_clause(filters)
    inner += _order_clause(order_by)
    if limit is not None:
        inner += f" LIMIT {max(int(limit), 0)}"
    if offset:
        inner += f" OFFSET {max(int(offset), 0)}"
    return _wrap_json(inner)


def build_aggregate_script(
    table: str,
    group_by: Sequence[str],
    aggregates: Mapping[str, tuple[str, str]],
    filters: Optional[Mapping[str, Any]] = None,
) -> str:
    """Build a GROUP BY query returning one JSON object per group.

    ``aggregates`` maps an output alias to ``(function, column)``; the
    column ``*`` is accepted for ``count``.
    """
    group_cols = [validate_ident(col) for col in group_by]
    select_parts = list(group_cols)
    for alias, (func, column) in aggregates.items():
        func = func.lower()
        if func not in AGGREGATE_FUNCTIONS:
            raise ValueError(f"Unsupported aggregate: {func!r}")
        if column == "*" and func != "count":
            raise ValueError("Only count accepts '*'")
        target = "*" if column == "*" else validate_ident(column)
        select_parts.append(f"{func}({target}) AS {validate_ident(alias)}")
    if not select_parts:
        raise ValueError("Aggregate script needs group_by columns or aggregates")
    inner = f"SELECT {', '.join(select_parts)} FROM {validate_ident(table)}"
    inner += _where_clause(filters)
    if group_cols:
        inner += " GROUP BY " + ", ".join(group_cols)
    return _wrap_json(inner)
