"""Projectors that derive persisted records from transient change payloads."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, Sequence

from ..core.errors import DuplicateKeyError
from .models import (
    MarketDefinitionRecord,
    PriceUpdateRecord,
    RunnerDelta,
    build_definition_record,
    build_status_record,
)

logger = logging.getLogger(__name__)


def placeholder_runner_name(runner_id: int) -> str:
    """Name used when a runner cannot be found in any definition."""
    return f"Runner_{runner_id}"


def resolve_runner_name(
    runner_id: int,
    definition: Optional[MarketDefinitionRecord],
) -> str:
    """Resolve a runner's display name from the latest known definition."""
    if definition is None:
        return placeholder_runner_name(runner_id)
    return definition.runner_name(runner_id) or placeholder_runner_name(runner_id)


class DefinitionProjector:
    """Persist a market definition and its status projection."""

    def __init__(self, store) -> None:
        self.store = store

    def project(
        self,
        definition: dict[str, Any],
        market_id: str,
        timestamp: datetime,
        change_id: str,
    ) -> MarketDefinitionRecord:
        """Build and store the definition and status records.

        Duplicate identities are treated as already applied. Other store
        failures propagate as PersistenceError.
        """
        record = build_definition_record(definition, market_id, timestamp, change_id)
        try:
            self.store.insert_market_definition(record)
        except DuplicateKeyError:
            logger.debug("market definition already stored change_id=%s", record.change_id)
        else:
            logger.debug(
                "stored market definition market=%s status=%s",
                market_id,
                record.status,
            )
        status = build_status_record(record)
        try:
            self.store.insert_market_status(status)
        except DuplicateKeyError:
            logger.debug("market status already stored change_id=%s", status.change_id)
        return record


class PriceProjector:
    """Persist price observations enriched with definition context."""

    def __init__(self, store) -> None:
        self.store = store

    def build_records(
        self,
        deltas: Sequence[RunnerDelta],
        market_id: str,
        timestamp: datetime,
        change_id: str,
        definition: Optional[MarketDefinitionRecord],
    ) -> list[PriceUpdateRecord]:
        """Create one price record per delta."""
        event_id = definition.event_id if definition else ""
        event_name = definition.event_name if definition else ""
        return [
            PriceUpdateRecord(
                market_id=market_id,
                runner_id=delta.runner_id,
                runner_name=resolve_runner_name(delta.runner_id, definition),
                last_traded_price=delta.last_traded_price,
                timestamp=timestamp,
                change_id=change_id,
                publish_time=timestamp,
                event_id=event_id,
                event_name=event_name,
            )
            for delta in deltas
        ]

    def project(
        self,
        deltas: Sequence[RunnerDelta],
        market_id: str,
        timestamp: datetime,
        change_id: str,
    ) -> int:
        """Store a batch of price records and return how many were new."""
        if not deltas:
            return 0
        definition = self.store.latest_market_definition(market_id)
        records = self.build_records(deltas, market_id, timestamp, change_id, definition)
        inserted = self.store.insert_price_updates(records)
        skipped = len(records) - inserted
        if skipped:
            logger.debug(
                "price updates market=%s inserted=%d already_stored=%d",
                market_id,
                inserted,
                skipped,
            )
        return inserted
