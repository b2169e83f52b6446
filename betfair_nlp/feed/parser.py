"""Parse line-delimited change messages from the market data feed."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from ..core.errors import LineParseError, PersistenceError
from ..core.time_utils import from_epoch_millis
from .models import ChangeMessage, MarketChange, RunnerDelta

logger = logging.getLogger(__name__)

MessageHandler = Callable[[ChangeMessage], None]

_LINE_PREVIEW_CHARS = 200


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite number {name} in message")


@dataclass(frozen=True)
class ParseStats:
    """Aggregate line counts for one input sequence."""

    processed: int = 0
    errored: int = 0


def _require_dict(value: Any, label: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"{label} must be an object")
    return value


def _parse_runner_deltas(raw: Any) -> tuple[RunnerDelta, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ValueError("rc must be a list")
    deltas = []
    for item in raw:
        item = _require_dict(item, "runner change")
        if item.get("id") is None:
            raise ValueError("runner change missing id")
        ltp = item.get("ltp")
        if ltp is None:
            # Runner changes without a traded price carry no observation.
            continue
        deltas.append(RunnerDelta(runner_id=int(item["id"]), last_traded_price=float(ltp)))
    return tuple(deltas)


def _parse_market_change(raw: Any) -> MarketChange:
    item = _require_dict(raw, "market change")
    market_id = item.get("id")
    if not market_id:
        raise ValueError("market change missing id")
    definition = item.get("marketDefinition")
    if definition is not None:
        definition = _require_dict(definition, "marketDefinition")
    return MarketChange(
        market_id=str(market_id),
        definition=definition,
        runner_deltas=_parse_runner_deltas(item.get("rc")),
    )


def parse_change_message(payload: Any) -> ChangeMessage:
    """Build a ChangeMessage from a decoded feed payload.

    :raises ValueError: If required fields are missing or malformed.
    """
    payload = _require_dict(payload, "message")
    change_id = payload.get("clk")
    if change_id is None or change_id == "":
        raise ValueError("message missing clk")
    publish_time = payload.get("pt")
    if isinstance(publish_time, bool) or not isinstance(publish_time, (int, float)):
        raise ValueError("message missing numeric pt")
    from_epoch_millis(publish_time)
    raw_changes = payload.get("mc") or []
    if not isinstance(raw_changes, list):
        raise ValueError("mc must be a list")
    return ChangeMessage(
        operation=str(payload.get("op") or ""),
        change_id=str(change_id),
        publish_time=int(publish_time),
        market_changes=tuple(_parse_market_change(item) for item in raw_changes),
    )


def parse_line(line: str, line_number: int | None = None) -> ChangeMessage:
    """Parse one raw feed line.

    :raises LineParseError: If the line is not a structurally valid message.
    """
    try:
        payload = json.loads(line, parse_constant=_reject_constant)
        return parse_change_message(payload)
    except (ValueError, TypeError, KeyError, OverflowError) as exc:
        raise LineParseError(str(exc), line_number=line_number) from exc


def _preview(line: str) -> str:
    text = line.strip()
    if len(text) <= _LINE_PREVIEW_CHARS:
        return text
    return text[:_LINE_PREVIEW_CHARS] + "..."


class MessageParser:
    """Parse feed lines one at a time, isolating failures per line."""

    def __init__(self, handler: MessageHandler) -> None:
        self.handler = handler

    def process_lines(self, lines: Iterable[str]) -> ParseStats:
        """Parse and hand off each non-blank line, returning aggregate counts."""
        processed = 0
        errored = 0
        for line_number, line in enumerate(lines, start=1):
            if not line or not line.strip():
                continue
            try:
                message = parse_line(line, line_number=line_number)
            except LineParseError as exc:
                errored += 1
                logger.warning(
                    "line %d parse failed: %s (line=%s)",
                    line_number,
                    exc,
                    _preview(line),
                )
                continue
            try:
                self.handler(message)
            except (PersistenceError, ValueError, TypeError, KeyError, OverflowError):
                errored += 1
                logger.exception(
                    "line %d processing failed (clk=%s)",
                    line_number,
                    message.change_id,
                )
                continue
            processed += 1
        return ParseStats(processed=processed, errored=errored)
