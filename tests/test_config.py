import os
import sys
import tempfile
from unittest import mock

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from margin_trader.config.schema import StrategyParameters, load_config
from margin_trader.errors import ConfigError
from margin_trader.execution.runner import strategy_families

import unittest


CONFIG_YAML = """
mode: paper
defaults:
  trade_size: 0.02
  max_positions: 2
schedule:
  interval_seconds: 30
strategies:
  - id: 1
    name: btc-breakout
    symbol: BTC/JPY
    strategy: breakout
    parameters:
      lookback_period: 15
  - id: 2
    name: eth-rsi
    symbol: ETH/JPY
    strategy: App\\\\Trading\\\\Strategy\\\\RSIContrarianStrategy
    parameters:
      rsi_exit_threshold: 55
      max_spread: 0.2
  - id: 3
    name: old-rsi
    symbol: XRP/JPY
    strategy: rsi_contrarian
    is_active: false
"""


class TestConfigLoading(unittest.TestCase):
    def _write(self, text):
        handle = tempfile.NamedTemporaryFile("w", suffix=".yaml", delete=False, encoding="utf-8")
        handle.write(text)
        handle.close()
        self.addCleanup(os.unlink, handle.name)
        return handle.name

    def test_sections_and_defaults(self) -> None:
        config = load_config(self._write(CONFIG_YAML))
        self.assertEqual(config.mode, "paper")
        self.assertEqual(config.schedule.interval_seconds, 30)
        self.assertEqual(config.schedule.max_workers, 1)
        self.assertEqual(config.exchange.name, "gmo")
        self.assertEqual([s.id for s in config.active_strategies()], [1, 2])

    def test_resolve_layers_defaults_and_overrides(self) -> None:
        config = load_config(self._write(CONFIG_YAML))
        params = config.strategies[0].resolve(config.defaults)
        self.assertEqual(params.lookback_period, 15)
        self.assertEqual(params.trade_size, 0.02)
        self.assertEqual(params.max_positions, 2)
        self.assertEqual((params.config_id, params.name, params.symbol), (1, "btc-breakout", "BTC/JPY"))

    def test_legacy_parameter_names(self) -> None:
        config = load_config(self._write(CONFIG_YAML))
        params = config.strategies[1].resolve(config.defaults)
        self.assertEqual((params.rsi_exit_long, params.rsi_exit_short), (55.0, 55.0))
        self.assertEqual(params.max_spread_percent, 0.2)

    def test_families_include_inactive_configurations(self) -> None:
        config = load_config(self._write(CONFIG_YAML))
        self.assertEqual(strategy_families(config), {"breakout": [1], "rsi_contrarian": [2, 3]})

    def test_unknown_parameter_is_rejected(self) -> None:
        with self.assertRaises(ConfigError):
            StrategyParameters.from_mapping({"lookback": 3})

    def test_invalid_values(self) -> None:
        with self.assertRaises(ConfigError):
            StrategyParameters.from_mapping({"trade_size": 0})
        with self.assertRaises(ConfigError):
            StrategyParameters.from_mapping({"rsi_period": "fourteen"})

    def test_duplicate_ids(self) -> None:
        text = "strategies:\n  - {id: 1, symbol: BTC/JPY, strategy: breakout}\n" \
               "  - {id: 1, symbol: ETH/JPY, strategy: breakout}\n"
        with self.assertRaises(ConfigError):
            load_config(self._write(text))

    def test_unsupported_mode_and_missing_file(self) -> None:
        with self.assertRaises(ConfigError):
            load_config(self._write("mode: yolo\n"))
        with self.assertRaises(ConfigError):
            load_config(os.path.join(tempfile.gettempdir(), "does-not-exist.yaml"))

    def test_environment_overrides_secrets(self) -> None:
        env = {"MARGIN_TRADER_API_KEY": "key-from-env", "MARGIN_TRADER_MODE": "live"}
        with mock.patch.dict(os.environ, env):
            config = load_config(self._write(CONFIG_YAML))
        self.assertEqual(config.exchange.api_key, "key-from-env")
        self.assertEqual(config.mode, "live")

    def test_no_file_gives_defaults(self) -> None:
        config = load_config(None)
        self.assertEqual(config.backtest.fee_rate, 0.0005)
        self.assertEqual(config.strategies, [])


if __name__ == '__main__':
    unittest.main()
