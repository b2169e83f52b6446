"""Route embedded market changes to the projectors that apply to them."""

from __future__ import annotations

from ..core.time_utils import from_epoch_millis
from .models import ChangeMessage, MarketChange
from .projectors import DefinitionProjector, PriceProjector


class ChangeRouter:
    """Fan one change message out to the definition and price projectors."""

    def __init__(
        self,
        definitions: DefinitionProjector,
        prices: PriceProjector,
    ) -> None:
        self.definitions = definitions
        self.prices = prices

    @classmethod
    def for_store(cls, store) -> "ChangeRouter":
        """Build a router whose projectors share one store."""
        return cls(DefinitionProjector(store), PriceProjector(store))

    def route(self, message: ChangeMessage) -> None:
        """Project every market change carried by the message."""
        timestamp = from_epoch_millis(message.publish_time)
        for change in message.market_changes:
            self._route_change(change, timestamp, message.change_id)

    __call__ = route

    def _route_change(self, change: MarketChange, timestamp, change_id: str) -> None:
        # Definitions go first so the price projector sees the freshest roster.
        if change.definition is not None:
            self.definitions.project(change.definition, change.market_id, timestamp, change_id)
        if change.runner_deltas:
            self.prices.project(change.runner_deltas, change.market_id, timestamp, change_id)
