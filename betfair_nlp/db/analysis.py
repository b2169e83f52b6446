"""Read-side market and event summaries built on the market store."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from ..feed.models import (
    MARKET_STATUS_CLOSED,
    MARKET_STATUS_OPEN,
    MARKET_STATUS_SUSPENDED,
    MarketDefinitionRecord,
    PriceUpdateRecord,
)
from .store import PostgresMarketStore


@dataclass(frozen=True)
class MarketAnalysis:
    """Latest definition plus price and status history for one market."""

    market_definition: MarketDefinitionRecord
    price_history: list[PriceUpdateRecord]
    total_price_updates: int
    price_min: float
    price_max: float
    status_transitions: list[Optional[str]] = field(default_factory=list)


@dataclass(frozen=True)
class EventSummary:
    """Market counts for one event, based on each market's latest status."""

    event_id: str
    event_name: str
    markets: list[str]
    total_runners: int
    active_markets: int
    suspended_markets: int
    closed_markets: int


def market_analysis(store: PostgresMarketStore, market_id: str) -> MarketAnalysis:
    """Summarize a market's prices and status transitions.

    :raises LookupError: If no definition exists for the market.
    """
    definition = store.latest_market_definition(market_id)
    if definition is None:
        raise LookupError(f"Market definition not found for market ID: {market_id}")
    prices = store.price_updates_by_market(market_id, limit=None)
    values = [price.last_traded_price for price in prices]
    transitions = [status.status for status in store.status_transitions(market_id)]
    return MarketAnalysis(
        market_definition=definition,
        price_history=prices,
        total_price_updates=len(prices),
        price_min=min(values) if values else 0.0,
        price_max=max(values) if values else 0.0,
        status_transitions=transitions,
    )


def event_summary(store: PostgresMarketStore, event_id: str) -> EventSummary:
    """Count an event's markets by their most recent status.

    :raises LookupError: If the event has no stored markets.
    """
    latest = store.latest_definitions_for_event(event_id)
    if not latest:
        raise LookupError(f"No markets found for event ID: {event_id}")
    statuses = [record.status for record in latest]
    named = next((record.event_name for record in latest if record.event_name), "")
    return EventSummary(
        event_id=event_id,
        event_name=named or "Unknown Event",
        markets=[record.market_id for record in latest],
        total_runners=sum(len(record.runners) for record in latest),
        active_markets=statuses.count(MARKET_STATUS_OPEN),
        suspended_markets=statuses.count(MARKET_STATUS_SUSPENDED),
        closed_markets=statuses.count(MARKET_STATUS_CLOSED),
    )
