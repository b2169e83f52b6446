"""Dataclasses for feed change messages and the records projected from them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ..core.time_utils import parse_ts

MARKET_STATUS_OPEN = "OPEN"
MARKET_STATUS_SUSPENDED = "SUSPENDED"
MARKET_STATUS_CLOSED = "CLOSED"
MARKET_STATUSES = (MARKET_STATUS_OPEN, MARKET_STATUS_SUSPENDED, MARKET_STATUS_CLOSED)


@dataclass(frozen=True)
class RunnerDelta:
    """A single last-traded-price observation for one runner."""

    runner_id: int
    last_traded_price: float


@dataclass(frozen=True)
class MarketChange:
    """Per-market payload embedded in a change message."""

    market_id: str
    definition: Optional[dict[str, Any]] = None
    runner_deltas: tuple[RunnerDelta, ...] = ()


@dataclass(frozen=True)
class ChangeMessage:
    """One line of the feed: a batch of market changes at one publish time."""

    operation: str
    change_id: str
    publish_time: int
    market_changes: tuple[MarketChange, ...] = ()


@dataclass(frozen=True)
class Runner:
    """Runner entry from a market definition roster."""

    runner_id: int
    name: str
    status: Optional[str] = None
    sort_priority: Optional[int] = None
    adjustment_factor: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        """Return the roster entry in feed field naming."""
        return {
            "id": self.runner_id,
            "name": self.name,
            "status": self.status,
            "sortPriority": self.sort_priority,
            "adjustmentFactor": self.adjustment_factor,
        }


def runner_from_payload(payload: dict[str, Any]) -> Runner:
    """Build a Runner from a raw roster entry."""
    runner_id = int(payload["id"])
    return Runner(
        runner_id=runner_id,
        name=str(payload.get("name") or ""),
        status=payload.get("status"),
        sort_priority=payload.get("sortPriority"),
        adjustment_factor=payload.get("adjustmentFactor"),
    )


@dataclass(frozen=True)
class MarketDefinitionRecord:
    """Full market snapshot at one point in time.

    ``change_id`` is the feed change id joined with the market id so that one
    feed message touching several markets yields distinct identities.
    """

    # pylint: disable=too-many-instance-attributes
    market_id: str
    change_id: str
    timestamp: datetime
    publish_time: datetime
    status: Optional[str]
    event_id: str
    event_name: str
    name: Optional[str] = None
    event_type_id: Optional[str] = None
    market_type: Optional[str] = None
    betting_type: Optional[str] = None
    market_time: Optional[datetime] = None
    suspend_time: Optional[datetime] = None
    open_date: Optional[datetime] = None
    settled_time: Optional[datetime] = None
    country_code: Optional[str] = None
    timezone: Optional[str] = None
    number_of_active_runners: Optional[int] = None
    number_of_winners: Optional[int] = None
    in_play: Optional[bool] = None
    complete: Optional[bool] = None
    bet_delay: Optional[int] = None
    version: Optional[int] = None
    runners: tuple[Runner, ...] = ()
    definition: dict[str, Any] = field(default_factory=dict)

    def runner_name(self, runner_id: int) -> Optional[str]:
        """Return the roster name for a runner id, if present."""
        for runner in self.runners:
            if runner.runner_id == runner_id and runner.name:
                return runner.name
        return None


@dataclass(frozen=True)
class MarketStatusRecord:
    """Narrow status trail entry derived from a market definition."""

    market_id: str
    status: Optional[str]
    timestamp: datetime
    change_id: str
    publish_time: datetime
    event_id: str
    event_name: str
    active_runner_count: Optional[int]


@dataclass(frozen=True)
class PriceUpdateRecord:
    """One persisted price point for a runner."""

    # pylint: disable=too-many-instance-attributes
    market_id: str
    runner_id: int
    runner_name: str
    last_traded_price: float
    timestamp: datetime
    change_id: str
    publish_time: datetime
    event_id: str
    event_name: str


def definition_change_id(change_id: str, market_id: str) -> str:
    """Combine a feed change id with a market id into a unique identity."""
    return f"{change_id}_{market_id}"


def build_definition_record(
    definition: dict[str, Any],
    market_id: str,
    timestamp: datetime,
    change_id: str,
) -> MarketDefinitionRecord:
    """Copy a raw definition payload into a MarketDefinitionRecord."""
    runners = tuple(
        runner_from_payload(item)
        for item in definition.get("runners") or []
        if isinstance(item, dict) and item.get("id") is not None
    )
    return MarketDefinitionRecord(
        market_id=market_id,
        change_id=definition_change_id(change_id, market_id),
        timestamp=timestamp,
        publish_time=timestamp,
        status=definition.get("status"),
        event_id=str(definition.get("eventId") or ""),
        event_name=str(definition.get("eventName") or ""),
        name=definition.get("name"),
        event_type_id=definition.get("eventTypeId"),
        market_type=definition.get("marketType"),
        betting_type=definition.get("bettingType"),
        market_time=parse_ts(definition.get("marketTime")),
        suspend_time=parse_ts(definition.get("suspendTime")),
        open_date=parse_ts(definition.get("openDate")),
        settled_time=parse_ts(definition.get("settledTime")),
        country_code=definition.get("countryCode"),
        timezone=definition.get("timezone"),
        number_of_active_runners=definition.get("numberOfActiveRunners"),
        number_of_winners=definition.get("numberOfWinners"),
        in_play=definition.get("inPlay"),
        complete=definition.get("complete"),
        bet_delay=definition.get("betDelay"),
        version=definition.get("version"),
        runners=runners,
        definition=dict(definition),
    )


def build_status_record(record: MarketDefinitionRecord) -> MarketStatusRecord:
    """Project the status-relevant fields of a definition record."""
    return MarketStatusRecord(
        market_id=record.market_id,
        status=record.status,
        timestamp=record.timestamp,
        change_id=record.change_id,
        publish_time=record.publish_time,
        event_id=record.event_id,
        event_name=record.event_name,
        active_runner_count=record.number_of_active_runners,
    )
