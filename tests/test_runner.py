import os
import sys

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
for path in (PROJECT_ROOT, CURRENT_DIR):
    if path not in sys.path:
        sys.path.insert(0, path)

from margin_trader.config.schema import Config, ExchangeConfig, ScheduleConfig, StrategyConfig
from margin_trader.data.store import InMemoryStore
from margin_trader.errors import ConfigError
from margin_trader.exchange.paper import PaperExchange
from margin_trader.execution.models import Ok
from margin_trader.execution.runner import TradingRunner, build_gateway

from fakes import FakeGateway, RecordingNotifier

import unittest


def config_with(strategies, max_workers=1):
    return Config(schedule=ScheduleConfig(interval_seconds=5, max_workers=max_workers),
                  strategies=strategies)


STRATEGIES = [
    StrategyConfig(1, "btc-breakout", "BTC/JPY", "breakout", {"lookback_period": 3}),
    StrategyConfig(2, "broken", "BTC/JPY", "does_not_exist"),
    StrategyConfig(3, "eth-breakout", "ETH/JPY", "breakout", {"lookback_period": 3}),
    StrategyConfig(4, "paused", "XRP/JPY", "breakout", is_active=False),
]


class TestTradingRunner(unittest.TestCase):
    def _runner(self, max_workers=1):
        self.gateway = FakeGateway([100, 100, 100, 115])
        self.store = InMemoryStore()
        self.notifier = RecordingNotifier()
        return TradingRunner.from_config(
            config_with(STRATEGIES, max_workers), gateway=self.gateway, store=self.store,
            notifier=self.notifier,
        )

    def test_bad_configuration_does_not_stop_the_others(self) -> None:
        results = self._runner().run_once()
        self.assertEqual(sorted(results), [1, 2, 3])
        self.assertIsNone(results[2])
        self.assertIsInstance(results[1], Ok)
        self.assertIsInstance(results[3], Ok)
        self.assertEqual(len(self.store.open_positions("ETH/JPY")), 1)

    def test_thread_pool_gives_same_outcome(self) -> None:
        results = self._runner(max_workers=3).run_once()
        self.assertEqual({k: type(v).__name__ for k, v in results.items()},
                         {1: "Ok", 2: "NoneType", 3: "Ok"})

    def test_run_forever_sleeps_between_ticks(self) -> None:
        runner = self._runner()
        sleeps = []
        runner.sleep = sleeps.append
        runner.run_forever(max_ticks=2)
        self.assertEqual(len(sleeps), 1)
        self.assertLessEqual(sleeps[0], 5)

    def test_gateway_selection(self) -> None:
        paper = build_gateway(Config(mode="paper"))
        self.assertIsInstance(paper, PaperExchange)
        with self.assertRaises(ConfigError):
            build_gateway(Config(exchange=ExchangeConfig(name="kraken")))


if __name__ == '__main__':
    unittest.main()
