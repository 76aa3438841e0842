import os
import sys
from datetime import timedelta

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
for path in (PROJECT_ROOT, CURRENT_DIR):
    if path not in sys.path:
        sys.path.insert(0, path)

from margin_trader.data.store import InMemoryStore, SQLiteStore
from margin_trader.execution.ledger import settle
from margin_trader.execution.models import CLOSED, LONG, OPEN, SHORT, EventRecord, Fill, Position

from fakes import NOW

import unittest


class StoreBehaviour:
    """Checks shared by every `TradingStore` implementation."""

    def make_store(self):
        raise NotImplementedError

    def setUp(self) -> None:
        self.store = self.make_store()

    def tearDown(self) -> None:
        self.store.close()

    def _open(self, side=LONG, minutes_ago=0, config_id=1, symbol="BTC/JPY"):
        return self.store.create_position(
            Position(symbol, side, 0.5, 100.0, NOW - timedelta(minutes=minutes_ago),
                     trailing_stop_price=99.3, config_id=config_id)
        )

    def test_create_assigns_ids_and_round_trips(self) -> None:
        first = self._open()
        second = self._open(side=SHORT)
        self.assertNotEqual(first.id, second.id)
        loaded = self.store.get_position(first.id)
        self.assertEqual((loaded.side, loaded.quantity, loaded.entry_price), (LONG, 0.5, 100.0))
        self.assertEqual(loaded.opened_at, NOW)
        self.assertAlmostEqual(loaded.trailing_stop_price, 99.3)
        self.assertIsNone(self.store.get_position(999))

    def test_open_positions_are_ordered_by_opening_time(self) -> None:
        newer = self._open(minutes_ago=1)
        older = self._open(minutes_ago=10)
        self._open(side=SHORT)
        self._open(symbol="ETH/JPY")
        ids = [p.id for p in self.store.open_positions("BTC/JPY", LONG)]
        self.assertEqual(ids, [older.id, newer.id])
        self.assertEqual(self.store.latest_open("BTC/JPY", LONG).id, newer.id)
        self.assertIsNone(self.store.latest_open("XRP/JPY", LONG))

    def test_closing_removes_from_open_set(self) -> None:
        position = self._open()
        settle(position, Fill(90.0, 0.01), NOW, "stop_loss")
        self.store.update_position(position)
        self.assertEqual(self.store.open_positions("BTC/JPY"), [])
        (closed,) = self.store.find_positions(status=CLOSED)
        self.assertEqual(closed.close_reason, "stop_loss")
        self.assertAlmostEqual(closed.profit_loss, -5.01)

    def test_closed_since_and_config_filter(self) -> None:
        recent, stale, foreign = self._open(), self._open(), self._open(config_id=9)
        settle(recent, Fill(99.0), NOW - timedelta(minutes=5), "timeout")
        settle(stale, Fill(99.0), NOW - timedelta(minutes=50), "timeout")
        settle(foreign, Fill(99.0), NOW - timedelta(minutes=5), "timeout")
        for position in (recent, stale, foreign):
            self.store.update_position(position)
        found = self.store.find_positions(config_ids=[1], closed_since=NOW - timedelta(minutes=30))
        self.assertEqual([p.id for p in found], [recent.id])
        self.assertEqual(self.store.find_positions(config_ids=[]), [])

    def test_update_unknown_position(self) -> None:
        with self.assertRaises(KeyError):
            self.store.update_position(Position("BTC/JPY", LONG, 1.0, 100.0, NOW, id=12345))

    def test_events_are_append_only(self) -> None:
        self.store.append_event(EventRecord("BTC/JPY", "open_long", NOW, 0.5, 100.0, {"fee": 0.05}, "high_breakout"))
        self.store.append_event(EventRecord("ETH/JPY", "hold", NOW))
        events = self.store.events("BTC/JPY")
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].result, {"fee": 0.05})
        self.assertEqual(events[0].message, "high_breakout")
        self.assertEqual(len(self.store.events()), 2)

    def test_price_history(self) -> None:
        for i, price in enumerate([100.0, 101.0, 102.0]):
            self.store.record_price("BTC/JPY", price, NOW + timedelta(minutes=i))
        self.store.record_price("ETH/JPY", 5.0, NOW)
        series = self.store.load_series("BTC/JPY")
        self.assertEqual(series.prices, [100.0, 101.0, 102.0])
        self.assertEqual(self.store.load_series("BTC/JPY", limit=2).prices, [101.0, 102.0])
        self.assertEqual(len(self.store.load_series("XRP/JPY")), 0)


class TestInMemoryStore(StoreBehaviour, unittest.TestCase):
    def make_store(self):
        return InMemoryStore()


class TestSQLiteStore(StoreBehaviour, unittest.TestCase):
    def make_store(self):
        return SQLiteStore(":memory:")

    def test_status_column(self) -> None:
        position = self._open()
        self.assertEqual(self.store.get_position(position.id).status, OPEN)


if __name__ == '__main__':
    unittest.main()
