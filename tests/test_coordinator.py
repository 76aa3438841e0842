import os
import sys
from datetime import timedelta

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
for path in (PROJECT_ROOT, CURRENT_DIR):
    if path not in sys.path:
        sys.path.insert(0, path)

from margin_trader.config.schema import StrategyParameters
from margin_trader.data.store import InMemoryStore, SQLiteStore
from margin_trader.execution.admission import AdmissionControl
from margin_trader.execution.coordinator import ExecutionCoordinator
from margin_trader.execution.fills import FillReconciler
from margin_trader.execution.models import (
    LONG, REVERSAL, SHORT, SIGNAL_SELL, TRAILING_STOP, Failed, Ok, Position, Rejected,
)

from fakes import NOW, ExplodingNotifier, FakeGateway, RecordingNotifier, RestingLimitGateway

import unittest


PARAMS = StrategyParameters(
    symbol="BTC/JPY", strategy="breakout", name="btc-breakout", config_id=1,
    lookback_period=3, breakout_threshold=0.1, trade_size=0.5,
)


def make_coordinator(gateway, store=None, notifier=None, families=None):
    store = store if store is not None else InMemoryStore()
    return ExecutionCoordinator(
        gateway=gateway,
        store=store,
        notifier=notifier if notifier is not None else RecordingNotifier(),
        admission=AdmissionControl(store, families or {}),
        reconciler=FillReconciler(gateway, sleep=lambda seconds: None),
        config_names={1: "btc-breakout", 2: "btc-other"},
        clock=lambda: NOW,
    )


class TestExecutionCoordinator(unittest.TestCase):
    def test_breakout_entry_opens_long(self) -> None:
        gateway = FakeGateway([100, 100, 100, 115])
        coordinator = make_coordinator(gateway)
        result = coordinator.execute(PARAMS)

        self.assertIsInstance(result, Ok)
        self.assertEqual(result.action, "buy")
        (position,) = coordinator.store.open_positions("BTC/JPY")
        self.assertEqual((position.side, position.quantity, position.entry_price), (LONG, 0.5, 115))
        self.assertAlmostEqual(position.trailing_stop_price, 115 * 0.993)
        self.assertEqual(position.config_id, 1)
        self.assertEqual(gateway.orders, [("BUY", "BTC/JPY", 0.5, None)])
        self.assertEqual([e.action for e in coordinator.store.events()], ["open_long", "buy"])
        self.assertEqual(coordinator.notifier.calls[0]["action"], "entry")
        self.assertEqual(coordinator.notifier.calls[0]["strategy_name"], "btc-breakout")

    def test_hold_records_summary_event(self) -> None:
        coordinator = make_coordinator(FakeGateway([98, 103, 100, 101]))
        result = coordinator.execute(PARAMS)
        self.assertEqual((type(result), result.action), (Ok, "hold"))
        self.assertEqual([e.action for e in coordinator.store.events()], ["hold"])
        self.assertEqual(len(coordinator.store.load_series("BTC/JPY")), 1)

    def test_reversal_closes_opposite_positions_first(self) -> None:
        gateway = FakeGateway([100, 100, 100, 85])
        coordinator = make_coordinator(gateway)
        store = coordinator.store
        old = store.create_position(
            Position("BTC/JPY", LONG, 0.5, 100.0, NOW - timedelta(minutes=5), config_id=2)
        )
        result = coordinator.execute(PARAMS)

        self.assertIsInstance(result, Ok)
        closed = store.get_position(old.id)
        self.assertFalse(closed.is_open)
        self.assertEqual(closed.close_reason, REVERSAL)
        self.assertAlmostEqual(closed.profit_loss, -7.5)
        (short,) = store.open_positions("BTC/JPY")
        self.assertEqual(short.side, SHORT)
        self.assertEqual([o[0] for o in gateway.orders], ["SELL", "SELL"])
        exit_note = coordinator.notifier.calls[0]
        self.assertEqual((exit_note["action"], exit_note["strategy_name"]), ("exit", "btc-other"))

    def test_failed_reversal_aborts_entry(self) -> None:
        gateway = FakeGateway([100, 100, 100, 115])
        gateway.fail_sides.add("BUY")
        coordinator = make_coordinator(gateway)
        store = coordinator.store
        short = store.create_position(Position("BTC/JPY", SHORT, 0.5, 100.0, NOW, config_id=2))

        result = coordinator.execute(PARAMS)

        self.assertIsInstance(result, Failed)
        self.assertTrue(store.get_position(short.id).is_open)
        self.assertEqual(store.open_positions("BTC/JPY", LONG), [])
        self.assertEqual(len(gateway.orders), 1)
        self.assertIn("reverse_breakout_buy_failed", [e.action for e in store.events()])

    def test_wide_spread_rejects_without_ordering(self) -> None:
        gateway = FakeGateway([100, 100, 100, 115], spread=10.0)
        coordinator = make_coordinator(gateway)
        result = coordinator.execute(PARAMS)
        self.assertIsInstance(result, Rejected)
        self.assertIn("spread", result.reason)
        self.assertEqual(gateway.orders, [])

    def test_trailing_stop_exit(self) -> None:
        coordinator = make_coordinator(FakeGateway([98, 101, 100, 99]))
        store = coordinator.store
        position = store.create_position(
            Position("BTC/JPY", LONG, 0.5, 100.0, NOW - timedelta(minutes=3),
                     trailing_stop_price=99.3, config_id=1)
        )
        result = coordinator.execute(PARAMS)

        self.assertEqual(result.action, "hold")
        closed = store.get_position(position.id)
        self.assertEqual(closed.close_reason, TRAILING_STOP)
        self.assertAlmostEqual(closed.profit_loss, -0.5)
        self.assertEqual(coordinator.notifier.calls[0]["reason"], TRAILING_STOP)
        self.assertIn("trailing_stop_sell", [e.action for e in store.events()])

    def test_ratcheted_stop_is_persisted(self) -> None:
        store = SQLiteStore(":memory:")
        coordinator = make_coordinator(FakeGateway([98, 103, 100, 102]), store=store)
        position = store.create_position(
            Position("BTC/JPY", LONG, 0.5, 100.0, NOW - timedelta(minutes=3),
                     trailing_stop_price=99.3, config_id=1)
        )
        coordinator.execute(PARAMS)
        self.assertAlmostEqual(store.get_position(position.id).trailing_stop_price, 102 * 0.995)
        store.close()

    def test_dead_cross_closes_latest_long(self) -> None:
        gateway = FakeGateway([10, 10, 10, 7])
        coordinator = make_coordinator(gateway)
        store = coordinator.store
        store.create_position(Position("XRP/JPY", LONG, 1.0, 9.0, NOW - timedelta(minutes=9), config_id=5))
        latest = store.create_position(
            Position("XRP/JPY", LONG, 1.0, 10.0, NOW - timedelta(minutes=2), config_id=5)
        )
        params = StrategyParameters(symbol="XRP/JPY", strategy="ma_cross", config_id=1,
                                    short_period=2, long_period=3, trade_size=1.0)
        result = coordinator.execute(params)

        self.assertEqual((result.action, result.position_ids), ("sell", (latest.id,)))
        self.assertEqual(store.get_position(latest.id).close_reason, SIGNAL_SELL)
        self.assertAlmostEqual(store.get_position(latest.id).profit_loss, -3.0)
        self.assertEqual(len(store.open_positions("XRP/JPY")), 1)

    def test_resting_limit_order_is_canceled_without_a_position(self) -> None:
        gateway = RestingLimitGateway([10, 10, 10, 13])
        coordinator = make_coordinator(gateway)
        params = StrategyParameters(symbol="XRP/JPY", strategy="ma_cross", config_id=1,
                                    short_period=2, long_period=3, trade_size=1.0)
        result = coordinator.execute(params)

        self.assertIsInstance(result, Failed)
        self.assertEqual(result.action, "buy")
        self.assertEqual(gateway.orders, [("BUY", "XRP/JPY", 1.0, 13)])
        self.assertEqual(gateway.canceled, ["1"])
        self.assertGreater(gateway.status_calls, 0)
        self.assertEqual(coordinator.store.open_positions("XRP/JPY"), [])
        self.assertEqual([e.action for e in coordinator.store.events()], ["open_long_failed", "buy"])
        self.assertEqual(coordinator.notifier.calls, [])

    def test_notifier_failure_does_not_fail_the_tick(self) -> None:
        coordinator = make_coordinator(FakeGateway([100, 100, 100, 115]), notifier=ExplodingNotifier())
        result = coordinator.execute(PARAMS)
        self.assertIsInstance(result, Ok)
        self.assertEqual(len(coordinator.store.open_positions("BTC/JPY")), 1)

    def test_unexpected_error_becomes_failed_result(self) -> None:
        gateway = FakeGateway([100])
        gateway.fail_market_data = True
        coordinator = make_coordinator(gateway)
        result = coordinator.execute(PARAMS)
        self.assertIsInstance(result, Failed)
        self.assertEqual(result.action, "error")
        self.assertEqual(coordinator.store.events()[-1].action, "error")


if __name__ == '__main__':
    unittest.main()
