import os
import sys

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
for path in (PROJECT_ROOT, CURRENT_DIR):
    if path not in sys.path:
        sys.path.insert(0, path)

from margin_trader.config.schema import StrategyParameters
from margin_trader.errors import PositionStateError
from margin_trader.execution.ledger import (
    initial_trailing_stop,
    managed_by,
    net_pnl,
    open_position,
    plan_exits,
    plan_reversal,
    ratchet_trailing_stop,
    settle,
    stop_loss_price,
)
from margin_trader.execution.models import LONG, SHORT, STOP_LOSS, TRAILING_STOP, Fill, Position

from fakes import NOW

import unittest


def long_position(entry=100.0, stop=None, config_id=1):
    return Position("BTC/JPY", LONG, 1.0, entry, NOW, trailing_stop_price=stop, config_id=config_id)


class TestStopArithmetic(unittest.TestCase):
    def test_stop_loss_price(self) -> None:
        self.assertAlmostEqual(stop_loss_price(LONG, 320.0, 1.0), 316.8)
        self.assertAlmostEqual(stop_loss_price(SHORT, 320.0, 1.0), 323.2)

    def test_initial_trailing_stop(self) -> None:
        self.assertAlmostEqual(initial_trailing_stop(LONG, 100.0, 0.7), 99.3)
        self.assertAlmostEqual(initial_trailing_stop(SHORT, 100.0, 0.7), 100.7)

    def test_long_stop_never_moves_down(self) -> None:
        stop = ratchet_trailing_stop(LONG, 99.0, 110.0, 0.5)
        self.assertAlmostEqual(stop, 109.45)
        self.assertAlmostEqual(ratchet_trailing_stop(LONG, stop, 100.0, 0.5), 109.45)

    def test_short_stop_never_moves_up(self) -> None:
        stop = ratchet_trailing_stop(SHORT, 101.0, 90.0, 0.5)
        self.assertAlmostEqual(stop, 90.45)
        self.assertAlmostEqual(ratchet_trailing_stop(SHORT, stop, 95.0, 0.5), 90.45)

    def test_net_pnl_deducts_both_fees(self) -> None:
        self.assertAlmostEqual(net_pnl(LONG, 100.0, 110.0, 1.0, 0.05, 0.055), 9.895)
        self.assertAlmostEqual(net_pnl(SHORT, 100.0, 110.0, 2.0, 0.0, 0.0), -20.0)


class TestPlanExits(unittest.TestCase):
    def setUp(self) -> None:
        self.params = StrategyParameters(
            config_id=1,
            stop_loss_percent=1.0,
            initial_trailing_stop_percent=0.7,
            trailing_stop_offset_percent=0.5,
        )

    def test_ratchet_then_trailing_breach(self) -> None:
        position = long_position(stop=99.3)
        self.assertEqual(plan_exits([position], 110.0, self.params), [])
        self.assertAlmostEqual(position.trailing_stop_price, 109.45)

        exits = plan_exits([position], 105.0, self.params)
        self.assertEqual(len(exits), 1)
        self.assertEqual(exits[0].reason, TRAILING_STOP)
        self.assertAlmostEqual(position.trailing_stop_price, 109.45)

    def test_missing_stop_gets_initial_stop(self) -> None:
        position = long_position(stop=None)
        plan_exits([position], 100.5, self.params)
        self.assertAlmostEqual(position.trailing_stop_price, 99.3)

    def test_fixed_stop_loss_when_trailing_is_wider(self) -> None:
        params = self.params.replace(initial_trailing_stop_percent=2.0)
        position = long_position(entry=320.0, stop=initial_trailing_stop(LONG, 320.0, 2.0))
        exits = plan_exits([position], 316.0, params)
        self.assertEqual([e.reason for e in exits], [STOP_LOSS])

    def test_fixed_stop_loss_triggers_at_its_level(self) -> None:
        params = self.params.replace(initial_trailing_stop_percent=2.0)
        position = long_position(entry=320.0, stop=initial_trailing_stop(LONG, 320.0, 2.0))
        self.assertEqual(plan_exits([position], 316.81, params), [])
        exits = plan_exits([position], 316.8, params)
        self.assertEqual([e.reason for e in exits], [STOP_LOSS])

    def test_strategy_exit_wins_and_leaves_stop_alone(self) -> None:
        position = long_position(stop=99.3)
        exits = plan_exits([position], 50.0, self.params, lambda p: "timeout")
        self.assertEqual([e.reason for e in exits], ["timeout"])
        self.assertEqual(position.trailing_stop_price, 99.3)

    def test_closed_positions_are_skipped(self) -> None:
        position = long_position(stop=99.3)
        settle(position, Fill(90.0), NOW, TRAILING_STOP)
        self.assertEqual(plan_exits([position], 50.0, self.params), [])


class TestPositionLifecycle(unittest.TestCase):
    def test_open_position_sets_stop_fee_and_owner(self) -> None:
        params = StrategyParameters(config_id=7, initial_trailing_stop_percent=0.7)
        position = open_position("BTC/JPY", SHORT, 0.5, Fill(200.0, 0.05), NOW, params)
        self.assertAlmostEqual(position.trailing_stop_price, 201.4)
        self.assertEqual(position.entry_fee, 0.05)
        self.assertEqual(position.config_id, 7)
        self.assertTrue(position.is_open)

    def test_settle_closes_exactly_once(self) -> None:
        position = Position("BTC/JPY", LONG, 1.0, 100.0, NOW, entry_fee=0.05)
        pnl = settle(position, Fill(110.0, 0.055), NOW, "signal_sell")
        self.assertAlmostEqual(pnl, 9.895)
        self.assertAlmostEqual(position.profit_loss, 9.895)
        self.assertFalse(position.is_open)
        with self.assertRaises(PositionStateError):
            settle(position, Fill(120.0), NOW, "signal_sell")
        with self.assertRaises(PositionStateError):
            position.ratchet_to(115.0)

    def test_plan_reversal_targets_opposite_side(self) -> None:
        longs = [long_position(), long_position()]
        short = Position("BTC/JPY", SHORT, 1.0, 100.0, NOW)
        self.assertEqual(plan_reversal(longs + [short], SHORT), longs)
        self.assertEqual(plan_reversal(longs + [short], LONG), [short])

    def test_managed_by_includes_untagged_positions(self) -> None:
        own, other, untagged = long_position(config_id=1), long_position(config_id=2), long_position(config_id=None)
        self.assertEqual(managed_by([own, other, untagged], 1), [own, untagged])

    def test_invalid_position(self) -> None:
        with self.assertRaises(ValueError):
            Position("BTC/JPY", "sideways", 1.0, 100.0, NOW)
        with self.assertRaises(ValueError):
            Position("BTC/JPY", LONG, 0.0, 100.0, NOW)


if __name__ == '__main__':
    unittest.main()
