"""Connection and schema helpers for the market store."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import psycopg  # pylint: disable=import-error

from ..core.env_utils import env_bool, env_int

SCHEMA_VERSION = 1

logger = logging.getLogger(__name__)


def schema_path() -> str:
    """Return the filesystem path of the packaged schema SQL."""
    return str(Path(__file__).resolve().parent / "schema.sql")


def connect(database_url: str) -> psycopg.Connection:
    """Open a store connection; the caller owns its lifecycle."""
    return psycopg.connect(database_url)


def safe_close(conn: Any) -> None:
    """Close a connection, logging instead of raising on failure."""
    if conn is None:
        return
    try:
        conn.close()
    except psycopg.Error:
        logger.warning("DB close failed")


def safe_rollback(conn: Any) -> None:
    """Roll back the current transaction, logging instead of raising."""
    try:
        conn.rollback()
    except psycopg.Error:
        logger.exception("DB rollback failed")


def init_schema(conn: psycopg.Connection, path: Optional[str] = None) -> None:
    """Initialize the database schema from a SQL file.

    :param conn: Open database connection.
    :type conn: psycopg.Connection
    :param path: Filesystem path to the schema SQL (defaults to the packaged file).
    :type path: str | None
    """
    with open(path or schema_path(), "r", encoding="utf-8") as schema_file:
        sql = schema_file.read()
    with conn.cursor() as cur:
        cur.execute(sql)
    conn.commit()


def maybe_init_schema(conn: psycopg.Connection, path: Optional[str] = None) -> None:
    """Initialize schema when DB_INIT_SCHEMA is enabled (default true)."""
    if not env_bool("DB_INIT_SCHEMA", True):
        return
    init_schema(conn, path)


def _schema_compat_range() -> tuple[int, int]:
    min_version = env_int("SCHEMA_COMPAT_MIN", SCHEMA_VERSION, minimum=1)
    max_version = env_int("SCHEMA_COMPAT_MAX", SCHEMA_VERSION, minimum=min_version)
    return min_version, max_version


def _fetch_schema_version(conn: psycopg.Connection) -> Optional[int]:
    try:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
            )
            row = cur.fetchone()
    except psycopg.errors.UndefinedTable:
        safe_rollback(conn)
        return None
    return int(row[0]) if row and row[0] is not None else None


def ensure_schema_compatible(conn: psycopg.Connection) -> int:
    """Validate schema version compatibility before running services."""
    if not env_bool("SCHEMA_VALIDATE", True):
        return -1
    min_version, max_version = _schema_compat_range()
    version = _fetch_schema_version(conn)
    if version is None:
        raise RuntimeError(
            "schema_version table missing; run with DB_INIT_SCHEMA=1 to create it."
        )
    if version < min_version or version > max_version:
        raise RuntimeError(
            "Schema version mismatch: "
            f"db={version}, expected [{min_version}, {max_version}]."
        )
    return version
