import json
import unittest
from datetime import datetime, timezone
import importlib

import psycopg  # pylint: disable=import-error

from _test_utils import add_src_to_path

add_src_to_path()

store_module = importlib.import_module("betfair_nlp.db.store")
models = importlib.import_module("betfair_nlp.feed.models")
errors = importlib.import_module("betfair_nlp.core.errors")

TS = datetime(2024, 1, 1, 13, 0, tzinfo=timezone.utc)


class FakeCursor:
    def __init__(self, conn, row_factory=None):
        self.conn = conn
        self.row_factory = row_factory
        self.rowcount = conn.rowcount

    def execute(self, sql, params=None):
        self.conn.executes.append((sql, params))
        if self.conn.execute_error is not None:
            raise self.conn.execute_error

    def executemany(self, sql, params):
        self.conn.executemanys.append((sql, list(params)))
        if self.conn.execute_error is not None:
            raise self.conn.execute_error

    def fetchone(self):
        if self.conn.fetchone_queue:
            return self.conn.fetchone_queue.pop(0)
        return None

    def fetchall(self):
        if self.conn.fetchall_queue:
            return self.conn.fetchall_queue.pop(0)
        return []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeConn:
    def __init__(self, fetchone_queue=None, fetchall_queue=None, rowcount=0, execute_error=None):
        self.executes = []
        self.executemanys = []
        self.commits = 0
        self.rollbacks = 0
        self.fetchone_queue = list(fetchone_queue or [])
        self.fetchall_queue = list(fetchall_queue or [])
        self.rowcount = rowcount
        self.execute_error = execute_error

    def cursor(self, row_factory=None):
        return FakeCursor(self, row_factory=row_factory)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


def _definition_record():
    return models.build_definition_record(
        {
            "status": "OPEN",
            "eventId": "30001",
            "eventName": "Cheltenham 1st Jan",
            "runners": [{"id": 11, "name": "Red Rum", "sortPriority": 1}],
        },
        "1.5",
        TS,
        "900",
    )


def _price_record(runner_id=11):
    return models.PriceUpdateRecord(
        market_id="1.5",
        runner_id=runner_id,
        runner_name="Red Rum",
        last_traded_price=3.5,
        timestamp=TS,
        change_id="900",
        publish_time=TS,
        event_id="30001",
        event_name="Cheltenham 1st Jan",
    )


def _definition_row(**overrides):
    row = {
        "market_id": "1.5",
        "change_id": "900_1.5",
        "ts": TS,
        "publish_time": TS,
        "status": "OPEN",
        "event_id": "30001",
        "event_name": "Cheltenham 1st Jan",
        "runners": [{"id": 11, "name": "Red Rum"}, {"name": "no id"}],
        "definition": {"status": "OPEN"},
    }
    row.update(overrides)
    return row


def _price_row(**overrides):
    row = {
        "market_id": "1.5",
        "runner_id": 11,
        "runner_name": "Red Rum",
        "last_traded_price": 3.5,
        "ts": TS,
        "change_id": "900",
        "publish_time": TS,
        "event_id": None,
        "event_name": None,
    }
    row.update(overrides)
    return row


class TestStoreWrites(unittest.TestCase):
    def test_insert_definition_serializes_jsonb(self) -> None:
        conn = FakeConn()
        store = store_module.PostgresMarketStore(conn)
        store.insert_market_definition(_definition_record())
        sql, params = conn.executes[0]
        self.assertIn("INSERT INTO market_definitions", sql)
        self.assertEqual(params["change_id"], "900_1.5")
        self.assertEqual(json.loads(params["runners"])[0]["name"], "Red Rum")
        self.assertEqual(json.loads(params["definition"])["eventId"], "30001")
        self.assertEqual(conn.commits, 1)

    def test_unique_violation_becomes_duplicate_key(self) -> None:
        conn = FakeConn(execute_error=psycopg.errors.UniqueViolation("dup"))
        store = store_module.PostgresMarketStore(conn)
        with self.assertRaises(errors.DuplicateKeyError):
            store.insert_market_status(models.build_status_record(_definition_record()))
        self.assertEqual(conn.rollbacks, 1)
        self.assertEqual(conn.commits, 0)

    def test_other_errors_become_persistence_error(self) -> None:
        conn = FakeConn(execute_error=psycopg.OperationalError("down"))
        store = store_module.PostgresMarketStore(conn)
        with self.assertRaises(errors.PersistenceError):
            store.insert_market_definition(_definition_record())
        self.assertEqual(conn.rollbacks, 1)

    def test_insert_price_updates_reports_inserted_rows(self) -> None:
        conn = FakeConn(rowcount=1)
        store = store_module.PostgresMarketStore(conn)
        inserted = store.insert_price_updates([_price_record(11), _price_record(12)])
        self.assertEqual(inserted, 1)
        sql, params = conn.executemanys[0]
        self.assertIn("ON CONFLICT (change_id, market_id, runner_id) DO NOTHING", sql)
        self.assertEqual([p["runner_id"] for p in params], [11, 12])
        self.assertEqual(conn.commits, 1)

    def test_insert_price_updates_empty(self) -> None:
        conn = FakeConn()
        self.assertEqual(store_module.PostgresMarketStore(conn).insert_price_updates([]), 0)
        self.assertEqual(conn.executemanys, [])

    def test_insert_price_updates_error(self) -> None:
        conn = FakeConn(execute_error=psycopg.OperationalError("down"))
        store = store_module.PostgresMarketStore(conn)
        with self.assertRaises(errors.PersistenceError):
            store.insert_price_updates([_price_record()])
        self.assertEqual(conn.rollbacks, 1)


class TestStoreReads(unittest.TestCase):
    def test_latest_market_definition(self) -> None:
        conn = FakeConn(fetchone_queue=[_definition_row()])
        record = store_module.PostgresMarketStore(conn).latest_market_definition("1.5")
        self.assertEqual(record.change_id, "900_1.5")
        self.assertEqual(record.runner_name(11), "Red Rum")
        self.assertEqual(len(record.runners), 1)
        self.assertEqual(conn.executes[0][1], ("1.5",))

    def test_latest_market_definition_missing(self) -> None:
        conn = FakeConn()
        self.assertIsNone(store_module.PostgresMarketStore(conn).latest_market_definition("x"))

    def test_list_reads_pass_limit(self) -> None:
        conn = FakeConn(fetchall_queue=[[_definition_row()], [_definition_row()]])
        store = store_module.PostgresMarketStore(conn)
        self.assertEqual(len(store.market_definitions_by_event("30001")), 1)
        self.assertEqual(len(store.market_definitions_by_status("OPEN", limit=5)), 1)
        self.assertEqual(conn.executes[0][1], ("30001", 100))
        self.assertEqual(conn.executes[1][1], ("OPEN", 5))

    def test_latest_definitions_for_event_uses_distinct_on(self) -> None:
        conn = FakeConn(fetchall_queue=[[_definition_row()]])
        store_module.PostgresMarketStore(conn).latest_definitions_for_event("30001")
        self.assertIn("DISTINCT ON (market_id)", conn.executes[0][0])

    def test_status_reads(self) -> None:
        status_row = {
            "market_id": "1.5",
            "status": "SUSPENDED",
            "ts": TS,
            "change_id": "900_1.5",
            "publish_time": TS,
            "event_id": "30001",
            "event_name": "",
            "number_of_active_runners": 8,
        }
        conn = FakeConn(fetchall_queue=[[status_row], [status_row]], fetchone_queue=[status_row])
        store = store_module.PostgresMarketStore(conn)
        transitions = store.status_transitions("1.5")
        self.assertEqual(transitions[0].active_runner_count, 8)
        self.assertIn("ORDER BY ts ASC", conn.executes[0][0])
        self.assertEqual(store.latest_status("1.5").status, "SUSPENDED")
        ranged = store.statuses_by_active_runner_count(5, 10)
        self.assertEqual(len(ranged), 1)
        self.assertEqual(conn.executes[2][1], (5, 10))

    def test_price_reads(self) -> None:
        conn = FakeConn(fetchall_queue=[[_price_row()], [_price_row()], [_price_row()]])
        store = store_module.PostgresMarketStore(conn)
        prices = store.price_updates_by_market("1.5", limit=None)
        self.assertEqual(prices[0].event_id, "")
        self.assertEqual(conn.executes[0][1], ("1.5", None))
        store.price_updates_by_runner(11, market_id="1.5", limit=3)
        self.assertEqual(conn.executes[1][1], (11, "1.5", "1.5", 3))
        latest = store.latest_price_for_runner(11)
        self.assertEqual(latest.last_traded_price, 3.5)
        self.assertEqual(conn.executes[2][1], (11, None, None, 1))

    def test_price_updates_by_event(self) -> None:
        row = _price_row(
            event_id="30001",
            event_name="Cheltenham 1st Jan",
            last_traded_price="4.2",
        )
        conn = FakeConn(fetchall_queue=[[row]])
        prices = store_module.PostgresMarketStore(conn).price_updates_by_event("30001", limit=7)
        sql, params = conn.executes[0]
        self.assertIn("WHERE event_id = %s", sql)
        self.assertIn("ORDER BY ts DESC", sql)
        self.assertEqual(params, ("30001", 7))
        self.assertEqual(prices[0].event_name, "Cheltenham 1st Jan")
        self.assertEqual(prices[0].last_traded_price, 4.2)
        self.assertEqual(prices[0].runner_id, 11)

    def test_price_updates_in_range_is_inclusive(self) -> None:
        end = datetime(2024, 1, 1, 14, 0, tzinfo=timezone.utc)
        conn = FakeConn(fetchall_queue=[[_price_row(ts=end), _price_row()]])
        prices = store_module.PostgresMarketStore(conn).price_updates_in_range(TS, end)
        sql, params = conn.executes[0]
        self.assertIn("ts >= %s AND ts <= %s", sql)
        self.assertEqual(params, (TS, end, 100))
        self.assertEqual([price.timestamp for price in prices], [end, TS])

    def test_statuses_by_status_and_history(self) -> None:
        status_row = {
            "market_id": "1.6",
            "status": "CLOSED",
            "ts": TS,
            "change_id": "901_1.6",
            "publish_time": TS,
            "event_id": None,
            "event_name": None,
            "number_of_active_runners": None,
        }
        conn = FakeConn(fetchall_queue=[[status_row], [status_row], [status_row]])
        store = store_module.PostgresMarketStore(conn)
        closed = store.statuses_by_status("CLOSED", limit=2)
        self.assertIn("WHERE status = %s", conn.executes[0][0])
        self.assertEqual(conn.executes[0][1], ("CLOSED", 2))
        self.assertEqual(closed[0].change_id, "901_1.6")
        self.assertEqual(closed[0].event_id, "")
        self.assertIsNone(closed[0].active_runner_count)
        history = store.status_history("1.6")
        self.assertIn("ORDER BY ts DESC", conn.executes[1][0])
        self.assertEqual(conn.executes[1][1], ("1.6", 100))
        self.assertEqual(history[0].status, "CLOSED")
        store.statuses_by_active_runner_count(5)
        self.assertIn("number_of_active_runners >= %s", conn.executes[2][0])
        self.assertEqual(conn.executes[2][1], (5,))

    def test_definitions_by_market(self) -> None:
        conn = FakeConn(fetchall_queue=[[_definition_row(status="SUSPENDED")]])
        records = store_module.PostgresMarketStore(conn).market_definitions_by_market("1.5")
        self.assertIn("WHERE market_id = %s", conn.executes[0][0])
        self.assertEqual(conn.executes[0][1], ("1.5", 100))
        self.assertEqual(records[0].status, "SUSPENDED")

    def test_latest_price_for_runner_missing(self) -> None:
        conn = FakeConn()
        self.assertIsNone(store_module.PostgresMarketStore(conn).latest_price_for_runner(11))


if __name__ == "__main__":
    unittest.main()
