from __future__ import annotations

import sys
from pathlib import Path


def add_src_to_path() -> Path:
    root = Path(__file__).resolve().parents[1]
    if str(root) not in sys.path:
        sys.path.insert(0, str(root))
    return root


class FakeMarketStore:
    """In-memory store enforcing the same identity keys as the Postgres schema."""

    def __init__(self, fail_definitions: bool = False) -> None:
        self.definitions = {}
        self.statuses = {}
        self.prices = {}
        self.calls = []
        self.fail_definitions = fail_definitions

    def insert_market_definition(self, record) -> None:
        from betfair_nlp.core.errors import DuplicateKeyError, PersistenceError

        self.calls.append(("definition", record.change_id))
        if self.fail_definitions:
            raise PersistenceError("store offline")
        if record.change_id in self.definitions:
            raise DuplicateKeyError(record.change_id)
        self.definitions[record.change_id] = record

    def insert_market_status(self, record) -> None:
        from betfair_nlp.core.errors import DuplicateKeyError

        self.calls.append(("status", record.change_id))
        if record.change_id in self.statuses:
            raise DuplicateKeyError(record.change_id)
        self.statuses[record.change_id] = record

    def latest_market_definition(self, market_id):
        self.calls.append(("latest", market_id))
        latest = None
        for record in self.definitions.values():
            if record.market_id != market_id:
                continue
            if latest is None or record.timestamp >= latest.timestamp:
                latest = record
        return latest

    def insert_price_updates(self, records) -> int:
        self.calls.append(("prices", len(records)))
        inserted = 0
        for record in records:
            key = (record.change_id, record.market_id, record.runner_id)
            if key in self.prices:
                continue
            self.prices[key] = record
            inserted += 1
        return inserted
