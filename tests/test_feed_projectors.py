import unittest
from datetime import datetime, timedelta, timezone
import importlib

from _test_utils import FakeMarketStore, add_src_to_path

add_src_to_path()

models = importlib.import_module("betfair_nlp.feed.models")
projectors = importlib.import_module("betfair_nlp.feed.projectors")
router_module = importlib.import_module("betfair_nlp.feed.router")
errors = importlib.import_module("betfair_nlp.core.errors")

TS = datetime(2024, 1, 1, 13, 0, tzinfo=timezone.utc)


def _definition(status="OPEN", runners=None):
    return {
        "status": status,
        "eventId": "30001",
        "eventName": "Cheltenham 1st Jan",
        "name": "2m Hcap Chase",
        "marketTime": "2024-01-01T14:00:00.000Z",
        "numberOfActiveRunners": 2,
        "runners": runners
        if runners is not None
        else [
            {"id": 11, "name": "Red Rum", "status": "ACTIVE", "sortPriority": 1},
            {"id": 12, "name": "Arkle", "status": "ACTIVE", "sortPriority": 2},
        ],
    }


class TestDefinitionRecords(unittest.TestCase):
    def test_build_definition_record(self) -> None:
        record = models.build_definition_record(_definition(), "1.5", TS, "900")
        self.assertEqual(record.change_id, "900_1.5")
        self.assertEqual(record.event_id, "30001")
        self.assertEqual(record.market_time, datetime(2024, 1, 1, 14, tzinfo=timezone.utc))
        self.assertEqual(record.runner_name(12), "Arkle")
        self.assertIsNone(record.runner_name(99))
        status = models.build_status_record(record)
        self.assertEqual(status.change_id, record.change_id)
        self.assertEqual(status.active_runner_count, 2)
        self.assertEqual(status.status, "OPEN")

    def test_missing_event_fields_become_empty(self) -> None:
        record = models.build_definition_record({"status": "OPEN"}, "1.5", TS, "900")
        self.assertEqual(record.event_id, "")
        self.assertEqual(record.event_name, "")
        self.assertEqual(record.runners, ())


class TestDefinitionProjector(unittest.TestCase):
    def test_project_stores_definition_and_status(self) -> None:
        store = FakeMarketStore()
        projector = projectors.DefinitionProjector(store)
        record = projector.project(_definition(), "1.5", TS, "900")
        self.assertIn(record.change_id, store.definitions)
        self.assertIn(record.change_id, store.statuses)

    def test_duplicate_is_a_noop(self) -> None:
        store = FakeMarketStore()
        projector = projectors.DefinitionProjector(store)
        projector.project(_definition(), "1.5", TS, "900")
        with self.assertLogs("betfair_nlp.feed.projectors", level="DEBUG") as logs:
            projector.project(_definition(), "1.5", TS, "900")
        self.assertEqual(len(store.definitions), 1)
        self.assertEqual(len(store.statuses), 1)
        self.assertTrue(all("DEBUG" in line for line in logs.output))

    def test_persistence_error_propagates(self) -> None:
        store = FakeMarketStore(fail_definitions=True)
        projector = projectors.DefinitionProjector(store)
        with self.assertRaises(errors.PersistenceError):
            projector.project(_definition(), "1.5", TS, "900")
        self.assertEqual(store.statuses, {})


class TestPriceProjector(unittest.TestCase):
    def test_empty_batch_does_not_touch_store(self) -> None:
        store = FakeMarketStore()
        self.assertEqual(projectors.PriceProjector(store).project([], "1.5", TS, "900"), 0)
        self.assertEqual(store.calls, [])

    def test_without_definition_uses_placeholders(self) -> None:
        store = FakeMarketStore()
        deltas = [models.RunnerDelta(11, 4.2), models.RunnerDelta(12, 6.0)]
        inserted = projectors.PriceProjector(store).project(deltas, "1.5", TS, "900")
        self.assertEqual(inserted, 2)
        records = list(store.prices.values())
        self.assertEqual([r.runner_name for r in records], ["Runner_11", "Runner_12"])
        self.assertTrue(all(r.event_id == "" and r.event_name == "" for r in records))

    def test_resolves_names_from_latest_definition(self) -> None:
        store = FakeMarketStore()
        definitions = projectors.DefinitionProjector(store)
        definitions.project(_definition(), "1.5", TS, "900")
        renamed = [{"id": 11, "name": "Red Rum II"}]
        definitions.project(_definition(runners=renamed), "1.5", TS + timedelta(seconds=5), "901")
        deltas = [models.RunnerDelta(11, 4.2), models.RunnerDelta(77, 20.0)]
        projectors.PriceProjector(store).project(deltas, "1.5", TS, "902")
        by_runner = {r.runner_id: r for r in store.prices.values()}
        self.assertEqual(by_runner[11].runner_name, "Red Rum II")
        self.assertEqual(by_runner[77].runner_name, "Runner_77")
        self.assertEqual(by_runner[11].event_name, "Cheltenham 1st Jan")

    def test_partial_duplicates_are_skipped(self) -> None:
        store = FakeMarketStore()
        projector = projectors.PriceProjector(store)
        projector.project([models.RunnerDelta(11, 4.2)], "1.5", TS, "900")
        inserted = projector.project(
            [models.RunnerDelta(11, 4.2), models.RunnerDelta(12, 5.0)],
            "1.5",
            TS,
            "900",
        )
        self.assertEqual(inserted, 1)
        self.assertEqual(len(store.prices), 2)


class TestChangeRouter(unittest.TestCase):
    def test_definition_is_projected_before_prices(self) -> None:
        store = FakeMarketStore()
        router = router_module.ChangeRouter.for_store(store)
        message = models.ChangeMessage(
            operation="mcm",
            change_id="900",
            publish_time=1704114000000,
            market_changes=(
                models.MarketChange(
                    market_id="1.5",
                    definition=_definition(),
                    runner_deltas=(models.RunnerDelta(11, 3.0),),
                ),
            ),
        )
        router(message)
        kinds = [call[0] for call in store.calls]
        self.assertEqual(kinds, ["definition", "status", "latest", "prices"])
        price = next(iter(store.prices.values()))
        self.assertEqual(price.runner_name, "Red Rum")
        self.assertEqual(price.timestamp, TS)
        self.assertEqual(len(store.definitions), 1)

    def test_routes_each_market_change(self) -> None:
        store = FakeMarketStore()
        router = router_module.ChangeRouter.for_store(store)
        message = models.ChangeMessage(
            operation="mcm",
            change_id="900",
            publish_time=1704114000000,
            market_changes=(
                models.MarketChange(market_id="1.5", definition=_definition()),
                models.MarketChange(market_id="1.6", definition=_definition()),
                models.MarketChange(market_id="1.7"),
            ),
        )
        router.route(message)
        self.assertEqual(sorted(store.definitions), ["900_1.5", "900_1.6"])
        self.assertEqual(store.prices, {})


if __name__ == "__main__":
    unittest.main()
