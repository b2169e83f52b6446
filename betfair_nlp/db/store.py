"""Market store capability interface and its Postgres adapter."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, Protocol, Sequence

import psycopg  # pylint: disable=import-error
from psycopg.rows import dict_row  # pylint: disable=import-error

from ..core.errors import DuplicateKeyError, PersistenceError
from ..core.json_utils import to_json_value
from ..feed.models import (
    MarketDefinitionRecord,
    MarketStatusRecord,
    PriceUpdateRecord,
    runner_from_payload,
)
from .db import safe_rollback

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100


class MarketStore(Protocol):
    """Store operations the ingestion projectors depend on."""

    def insert_market_definition(self, record: MarketDefinitionRecord) -> None:
        """Insert one definition; raise DuplicateKeyError on a repeated identity."""

    def insert_market_status(self, record: MarketStatusRecord) -> None:
        """Insert one status; raise DuplicateKeyError on a repeated identity."""

    def latest_market_definition(self, market_id: str) -> Optional[MarketDefinitionRecord]:
        """Return the most recent definition for a market."""

    def insert_price_updates(self, records: Sequence[PriceUpdateRecord]) -> int:
        """Insert a batch, skipping rows that already exist; return rows inserted."""


_DEFINITION_COLUMNS = (
    "market_id",
    "change_id",
    "ts",
    "publish_time",
    "status",
    "event_id",
    "event_name",
    "name",
    "event_type_id",
    "market_type",
    "betting_type",
    "market_time",
    "suspend_time",
    "open_date",
    "settled_time",
    "country_code",
    "timezone",
    "number_of_active_runners",
    "number_of_winners",
    "in_play",
    "complete",
    "bet_delay",
    "version",
    "runners",
    "definition",
)

_STATUS_COLUMNS = (
    "market_id",
    "status",
    "ts",
    "change_id",
    "publish_time",
    "event_id",
    "event_name",
    "number_of_active_runners",
)

_PRICE_COLUMNS = (
    "market_id",
    "runner_id",
    "runner_name",
    "last_traded_price",
    "ts",
    "change_id",
    "publish_time",
    "event_id",
    "event_name",
)


def _insert_sql(table: str, columns: Sequence[str], suffix: str = "") -> str:
    names = ", ".join(columns)
    params = ", ".join(f"%({column})s" for column in columns)
    return f"INSERT INTO {table} ({names}) VALUES ({params}){suffix}"


_INSERT_DEFINITION_SQL = _insert_sql("market_definitions", _DEFINITION_COLUMNS)
_INSERT_STATUS_SQL = _insert_sql("market_statuses", _STATUS_COLUMNS)
_INSERT_PRICES_SQL = _insert_sql(
    "price_updates",
    _PRICE_COLUMNS,
    " ON CONFLICT (change_id, market_id, runner_id) DO NOTHING",
)


def _definition_payload(record: MarketDefinitionRecord) -> dict[str, Any]:
    return {
        "market_id": record.market_id,
        "change_id": record.change_id,
        "ts": record.timestamp,
        "publish_time": record.publish_time,
        "status": record.status,
        "event_id": record.event_id,
        "event_name": record.event_name,
        "name": record.name,
        "event_type_id": record.event_type_id,
        "market_type": record.market_type,
        "betting_type": record.betting_type,
        "market_time": record.market_time,
        "suspend_time": record.suspend_time,
        "open_date": record.open_date,
        "settled_time": record.settled_time,
        "country_code": record.country_code,
        "timezone": record.timezone,
        "number_of_active_runners": record.number_of_active_runners,
        "number_of_winners": record.number_of_winners,
        "in_play": record.in_play,
        "complete": record.complete,
        "bet_delay": record.bet_delay,
        "version": record.version,
        "runners": to_json_value([runner.to_dict() for runner in record.runners]),
        "definition": to_json_value(record.definition),
    }


def _status_payload(record: MarketStatusRecord) -> dict[str, Any]:
    return {
        "market_id": record.market_id,
        "status": record.status,
        "ts": record.timestamp,
        "change_id": record.change_id,
        "publish_time": record.publish_time,
        "event_id": record.event_id,
        "event_name": record.event_name,
        "number_of_active_runners": record.active_runner_count,
    }


def _price_payload(record: PriceUpdateRecord) -> dict[str, Any]:
    return {
        "market_id": record.market_id,
        "runner_id": record.runner_id,
        "runner_name": record.runner_name,
        "last_traded_price": record.last_traded_price,
        "ts": record.timestamp,
        "change_id": record.change_id,
        "publish_time": record.publish_time,
        "event_id": record.event_id,
        "event_name": record.event_name,
    }


def definition_from_row(row: dict[str, Any]) -> MarketDefinitionRecord:
    """Map a market_definitions row back into a record."""
    runners = tuple(
        runner_from_payload(item)
        for item in row.get("runners") or []
        if isinstance(item, dict) and item.get("id") is not None
    )
    return MarketDefinitionRecord(
        market_id=row["market_id"],
        change_id=row["change_id"],
        timestamp=row["ts"],
        publish_time=row["publish_time"],
        status=row.get("status"),
        event_id=row.get("event_id") or "",
        event_name=row.get("event_name") or "",
        name=row.get("name"),
        event_type_id=row.get("event_type_id"),
        market_type=row.get("market_type"),
        betting_type=row.get("betting_type"),
        market_time=row.get("market_time"),
        suspend_time=row.get("suspend_time"),
        open_date=row.get("open_date"),
        settled_time=row.get("settled_time"),
        country_code=row.get("country_code"),
        timezone=row.get("timezone"),
        number_of_active_runners=row.get("number_of_active_runners"),
        number_of_winners=row.get("number_of_winners"),
        in_play=row.get("in_play"),
        complete=row.get("complete"),
        bet_delay=row.get("bet_delay"),
        version=row.get("version"),
        runners=runners,
        definition=row.get("definition") or {},
    )


def status_from_row(row: dict[str, Any]) -> MarketStatusRecord:
    """Map a market_statuses row back into a record."""
    return MarketStatusRecord(
        market_id=row["market_id"],
        status=row.get("status"),
        timestamp=row["ts"],
        change_id=row["change_id"],
        publish_time=row["publish_time"],
        event_id=row.get("event_id") or "",
        event_name=row.get("event_name") or "",
        active_runner_count=row.get("number_of_active_runners"),
    )


def price_from_row(row: dict[str, Any]) -> PriceUpdateRecord:
    """Map a price_updates row back into a record."""
    return PriceUpdateRecord(
        market_id=row["market_id"],
        runner_id=int(row["runner_id"]),
        runner_name=row.get("runner_name") or "",
        last_traded_price=float(row["last_traded_price"]),
        timestamp=row["ts"],
        change_id=row["change_id"],
        publish_time=row["publish_time"],
        event_id=row.get("event_id") or "",
        event_name=row.get("event_name") or "",
    )


class PostgresMarketStore:
    """MarketStore backed by a caller-owned psycopg connection."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self.conn = conn

    def _insert_one(self, sql: str, payload: dict[str, Any], label: str) -> None:
        try:
            with self.conn.cursor() as cur:
                cur.execute(sql, payload)
        except psycopg.errors.UniqueViolation as exc:
            safe_rollback(self.conn)
            raise DuplicateKeyError(
                f"{label} already stored (change_id={payload.get('change_id')})"
            ) from exc
        except psycopg.Error as exc:
            safe_rollback(self.conn)
            raise PersistenceError(f"{label} insert failed: {exc}") from exc
        self.conn.commit()

    def insert_market_definition(self, record: MarketDefinitionRecord) -> None:
        """Insert a market definition row."""
        self._insert_one(_INSERT_DEFINITION_SQL, _definition_payload(record), "market definition")

    def insert_market_status(self, record: MarketStatusRecord) -> None:
        """Insert a market status row."""
        self._insert_one(_INSERT_STATUS_SQL, _status_payload(record), "market status")

    def insert_price_updates(self, records: Sequence[PriceUpdateRecord]) -> int:
        """Insert price rows in one transaction, skipping existing identities."""
        if not records:
            return 0
        payloads = [_price_payload(record) for record in records]
        try:
            with self.conn.cursor() as cur:
                cur.executemany(_INSERT_PRICES_SQL, payloads)
                inserted = max(cur.rowcount, 0)
        except psycopg.Error as exc:
            safe_rollback(self.conn)
            raise PersistenceError(f"price update insert failed: {exc}") from exc
        self.conn.commit()
        return inserted

    def _fetch_all(self, sql: str, params: Sequence[Any]) -> list[dict[str, Any]]:
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(sql, params)
            return list(cur.fetchall())

    def _fetch_one(self, sql: str, params: Sequence[Any]) -> Optional[dict[str, Any]]:
        with self.conn.cursor(row_factory=dict_row) as cur:
            cur.execute(sql, params)
            return cur.fetchone()

    def latest_market_definition(self, market_id: str) -> Optional[MarketDefinitionRecord]:
        """Return the most recent definition for a market."""
        row = self._fetch_one(
            """
            SELECT *
            FROM market_definitions
            WHERE market_id = %s
            ORDER BY ts DESC, id DESC
            LIMIT 1
            """,
            (market_id,),
        )
        return definition_from_row(row) if row else None

    def market_definitions_by_market(
        self,
        market_id: str,
        limit: int = DEFAULT_LIMIT,
    ) -> list[MarketDefinitionRecord]:
        """Return definitions for a market, newest first."""
        rows = self._fetch_all(
            "SELECT * FROM market_definitions WHERE market_id = %s "
            "ORDER BY ts DESC, id DESC LIMIT %s",
            (market_id, limit),
        )
        return [definition_from_row(row) for row in rows]

    def market_definitions_by_event(
        self,
        event_id: str,
        limit: int = DEFAULT_LIMIT,
    ) -> list[MarketDefinitionRecord]:
        """Return definitions for an event, newest first."""
        rows = self._fetch_all(
            "SELECT * FROM market_definitions WHERE event_id = %s "
            "ORDER BY ts DESC, id DESC LIMIT %s",
            (event_id, limit),
        )
        return [definition_from_row(row) for row in rows]

    def market_definitions_by_status(
        self,
        status: str,
        limit: int = DEFAULT_LIMIT,
    ) -> list[MarketDefinitionRecord]:
        """Return definitions with a given status, newest first."""
        rows = self._fetch_all(
            "SELECT * FROM market_definitions WHERE status = %s "
            "ORDER BY ts DESC, id DESC LIMIT %s",
            (status, limit),
        )
        return [definition_from_row(row) for row in rows]

    def latest_definitions_for_event(self, event_id: str) -> list[MarketDefinitionRecord]:
        """Return the most recent definition of every market in an event."""
        rows = self._fetch_all(
            """
            SELECT DISTINCT ON (market_id) *
            FROM market_definitions
            WHERE event_id = %s
            ORDER BY market_id, ts DESC, id DESC
            """,
            (event_id,),
        )
        return [definition_from_row(row) for row in rows]

    def status_history(
        self,
        market_id: str,
        limit: int = DEFAULT_LIMIT,
    ) -> list[MarketStatusRecord]:
        """Return status rows for a market, newest first."""
        rows = self._fetch_all(
            "SELECT * FROM market_statuses WHERE market_id = %s "
            "ORDER BY ts DESC, id DESC LIMIT %s",
            (market_id, limit),
        )
        return [status_from_row(row) for row in rows]

    def status_transitions(self, market_id: str) -> list[MarketStatusRecord]:
        """Return every status row for a market in time order."""
        rows = self._fetch_all(
            "SELECT * FROM market_statuses WHERE market_id = %s ORDER BY ts ASC, id ASC",
            (market_id,),
        )
        return [status_from_row(row) for row in rows]

    def latest_status(self, market_id: str) -> Optional[MarketStatusRecord]:
        """Return the most recent status row for a market."""
        row = self._fetch_one(
            "SELECT * FROM market_statuses WHERE market_id = %s "
            "ORDER BY ts DESC, id DESC LIMIT 1",
            (market_id,),
        )
        return status_from_row(row) if row else None

    def statuses_by_status(
        self,
        status: str,
        limit: int = DEFAULT_LIMIT,
    ) -> list[MarketStatusRecord]:
        """Return status rows with a given status, newest first."""
        rows = self._fetch_all(
            "SELECT * FROM market_statuses WHERE status = %s "
            "ORDER BY ts DESC, id DESC LIMIT %s",
            (status, limit),
        )
        return [status_from_row(row) for row in rows]

    def statuses_by_active_runner_count(
        self,
        min_count: int,
        max_count: Optional[int] = None,
    ) -> list[MarketStatusRecord]:
        """Return status rows whose active runner count falls in a range."""
        if max_count is None:
            rows = self._fetch_all(
                "SELECT * FROM market_statuses WHERE number_of_active_runners >= %s "
                "ORDER BY ts DESC, id DESC",
                (min_count,),
            )
        else:
            rows = self._fetch_all(
                "SELECT * FROM market_statuses "
                "WHERE number_of_active_runners BETWEEN %s AND %s "
                "ORDER BY ts DESC, id DESC",
                (min_count, max_count),
            )
        return [status_from_row(row) for row in rows]

    def price_updates_by_market(
        self,
        market_id: str,
        limit: Optional[int] = DEFAULT_LIMIT,
    ) -> list[PriceUpdateRecord]:
        """Return price rows for a market, newest first (limit=None for all)."""
        rows = self._fetch_all(
            "SELECT * FROM price_updates WHERE market_id = %s "
            "ORDER BY ts DESC, id DESC LIMIT %s",
            (market_id, limit),
        )
        return [price_from_row(row) for row in rows]

    def price_updates_by_runner(
        self,
        runner_id: int,
        market_id: Optional[str] = None,
        limit: int = DEFAULT_LIMIT,
    ) -> list[PriceUpdateRecord]:
        """Return price rows for a runner, optionally scoped to one market."""
        rows = self._fetch_all(
            """
            SELECT *
            FROM price_updates
            WHERE runner_id = %s
              AND (%s::text IS NULL OR market_id = %s)
            ORDER BY ts DESC, id DESC
            LIMIT %s
            """,
            (runner_id, market_id, market_id, limit),
        )
        return [price_from_row(row) for row in rows]

    def price_updates_by_event(
        self,
        event_id: str,
        limit: int = DEFAULT_LIMIT,
    ) -> list[PriceUpdateRecord]:
        """Return price rows for an event, newest first."""
        rows = self._fetch_all(
            "SELECT * FROM price_updates WHERE event_id = %s "
            "ORDER BY ts DESC, id DESC LIMIT %s",
            (event_id, limit),
        )
        return [price_from_row(row) for row in rows]

    def price_updates_in_range(
        self,
        start: datetime,
        end: datetime,
        limit: int = DEFAULT_LIMIT,
    ) -> list[PriceUpdateRecord]:
        """Return price rows published within [start, end], newest first."""
        rows = self._fetch_all(
            "SELECT * FROM price_updates WHERE ts >= %s AND ts <= %s "
            "ORDER BY ts DESC, id DESC LIMIT %s",
            (start, end, limit),
        )
        return [price_from_row(row) for row in rows]

    def latest_price_for_runner(
        self,
        runner_id: int,
        market_id: Optional[str] = None,
    ) -> Optional[PriceUpdateRecord]:
        """Return the most recent price row for a runner."""
        rows = self.price_updates_by_runner(runner_id, market_id=market_id, limit=1)
        return rows[0] if rows else None
