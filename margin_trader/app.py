"""
Application entry point.

This module defines the command-line interface of the trading agent:

* ``execute`` runs one tick (or a loop of ticks) for every active
  strategy configuration in the YAML file, in paper or live mode;
* ``backtest`` replays a strategy over stored or CSV price history,
  either once with the given parameters or as a grid search with
  ``--optimize``.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Any, Dict, List, Optional

from .config.schema import Config, StrategyParameters, load_config
from .data.csv_data import CSVPriceLoader
from .data.price_series import PriceSeries
from .data.store import SQLiteStore
from .errors import ConfigError, TradingError
from .execution.backtest_exec import BacktestSimulator
from .execution.models import BACKTEST_END, END_OF_DATA
from .execution.optimizer import ParameterOptimizer
from .execution.runner import TradingRunner
from .reporting.report import generate_backtest_report, print_backtest_summary, print_rankings
from .strategy.registry import canonical_name, create_strategy


logger = logging.getLogger(__name__)

# CLI flag -> strategy parameter
KNOB_FLAGS = {
    "lookback": "lookback_period",
    "threshold": "breakout_threshold",
    "rsi_period": "rsi_period",
    "rsi_oversold": "rsi_oversold",
    "rsi_overbought": "rsi_overbought",
    "rsi_exit_long": "rsi_exit_long",
    "rsi_exit_short": "rsi_exit_short",
    "max_hold": "max_hold_minutes",
    "cooldown": "cooldown_minutes",
    "short_period": "short_period",
    "long_period": "long_period",
    "stop_loss": "stop_loss_percent",
    "initial_trailing": "initial_trailing_stop_percent",
    "trailing_offset": "trailing_stop_offset_percent",
    "max_positions": "max_positions",
    "max_spread": "max_spread_percent",
    "trade_size": "trade_size",
}


def _setup_logging(verbose: bool) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="margin-trader", description="Crypto margin trading agent")
    parser.add_argument('-v', '--verbose', action='store_true', help="Enable debug logging")
    sub = parser.add_subparsers(dest='command', required=True)

    ex = sub.add_parser('execute', help="Run one trading tick for all active configurations")
    ex.add_argument('--config', default='config.yaml', help="Path to configuration YAML file")
    ex.add_argument('--loop', action='store_true', help="Keep ticking every schedule.interval_seconds")
    ex.add_argument('--max-ticks', type=int, default=None, help="Stop the loop after N ticks")

    bt = sub.add_parser('backtest', help="Backtest or optimize a strategy on price history")
    bt.add_argument('--strategy', required=True, help="breakout, rsi_contrarian or ma_cross")
    bt.add_argument('--symbol', default='BTC/JPY', help="Trading symbol")
    bt.add_argument('--config', default=None, help="Optional configuration file (defaults, db path)")
    bt.add_argument('--csv', default=None, help="CSV price file (symbol,price,recorded_at)")
    bt.add_argument('--db', default=None, help="SQLite database holding price history")
    bt.add_argument('--optimize', action='store_true', help="Run the parameter grid search")
    bt.add_argument('--workers', type=int, default=None, help="Processes used by --optimize")
    bt.add_argument('--min-trades', type=int, default=None, help="Minimum trades to rank a combination")
    bt.add_argument('--fee-rate', type=float, default=None, help="Fee per fill (fraction of notional)")
    bt.add_argument('--spread', type=float, default=None, help="Static spread assumption in percent")
    bt.add_argument('--out-dir', default=None, help="Write trades, curve, summary and chart here")

    knobs = bt.add_argument_group('strategy parameters')
    knobs.add_argument('--lookback', type=int, help="Breakout lookback period")
    knobs.add_argument('--threshold', type=float, help="Breakout threshold percent")
    knobs.add_argument('--rsi-period', type=int)
    knobs.add_argument('--rsi-oversold', type=float)
    knobs.add_argument('--rsi-overbought', type=float)
    knobs.add_argument('--rsi-exit-long', type=float)
    knobs.add_argument('--rsi-exit-short', type=float)
    knobs.add_argument('--max-hold', type=float, help="Maximum hold time in minutes")
    knobs.add_argument('--cooldown', type=float, help="Loss cooldown in minutes")
    knobs.add_argument('--short-period', type=int, help="Short moving average period")
    knobs.add_argument('--long-period', type=int, help="Long moving average period")
    knobs.add_argument('--stop-loss', type=float, help="Stop loss percent")
    knobs.add_argument('--initial-trailing', type=float, help="Initial trailing stop percent")
    knobs.add_argument('--trailing-offset', type=float, help="Trailing stop offset percent")
    knobs.add_argument('--max-positions', type=int, help="Maximum positions per direction")
    knobs.add_argument('--max-spread', type=float, help="Maximum spread percent for entries")
    # quantities are normalised to one unit unless told otherwise
    knobs.add_argument('--trade-size', type=float, default=1.0, help="Simulated quantity per entry")
    return parser


def backtest_parameters(args: argparse.Namespace) -> StrategyParameters:
    values: Dict[str, Any] = {
        "symbol": args.symbol,
        "strategy": canonical_name(args.strategy),
        "name": f"backtest-{args.strategy}",
    }
    for flag, param in KNOB_FLAGS.items():
        value = getattr(args, flag, None)
        if value is not None:
            values[param] = value
    return StrategyParameters.from_mapping(values)


def load_prices(args: argparse.Namespace, config: Config) -> PriceSeries:
    if args.csv:
        logger.info("Loading prices for %s from %s", args.symbol, args.csv)
        return CSVPriceLoader(args.csv).load(args.symbol)
    db_path = args.db or config.storage.db_path
    logger.info("Loading prices for %s from %s", args.symbol, db_path)
    store = SQLiteStore(db_path)
    try:
        return store.load_series(args.symbol)
    finally:
        store.close()


def run_backtest(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    params = backtest_parameters(args)
    fee_rate = args.fee_rate if args.fee_rate is not None else config.backtest.fee_rate
    spread = args.spread if args.spread is not None else config.backtest.spread_percent

    series = load_prices(args, config)
    if len(series) == 0:
        logger.error("No price data for %s", args.symbol)
        return 1
    logger.info("Loaded %d prices (%s to %s)", len(series),
                series.timestamps[0].isoformat(), series.last_timestamp.isoformat())

    if args.optimize:
        optimizer = ParameterOptimizer(
            params,
            fee_rate=fee_rate,
            spread_percent=spread,
            min_trades=args.min_trades if args.min_trades is not None else config.backtest.min_trades,
            workers=args.workers if args.workers is not None else config.backtest.workers,
            top_n=config.backtest.top_n,
        )
        print_rankings(optimizer.run(series))
        return 0

    end_reason = END_OF_DATA if params.strategy == "rsi_contrarian" else BACKTEST_END
    simulator = BacktestSimulator(
        create_strategy(params.strategy), params,
        fee_rate=fee_rate, spread_percent=spread, end_reason=end_reason,
    )
    result = simulator.run(series)
    print_backtest_summary(result, title=f"{params.strategy} on {params.symbol}")
    if args.out_dir:
        generate_backtest_report(result, out_dir=args.out_dir, params=params.to_dict())
        logger.info("Backtest report written to %s", args.out_dir)
    return 0


def run_execute(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.config)
    except ConfigError as exc:
        logger.error("Cannot load configuration: %s", exc)
        return 1
    try:
        runner = TradingRunner.from_config(config)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1
    logger.info("Running %d active configuration(s) in %s mode",
                len(config.active_strategies()), config.mode)
    if args.loop:
        runner.run_forever(max_ticks=args.max_ticks)
    else:
        runner.run_once()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Parse command-line arguments and dispatch to the selected command."""
    args = build_parser().parse_args(argv)
    _setup_logging(args.verbose)

    if args.command == 'execute':
        return run_execute(args)
    try:
        return run_backtest(args)
    except (TradingError, ValueError, FileNotFoundError) as exc:
        logger.error("Backtest failed: %s", exc)
        return 1


if __name__ == '__main__':
    sys.exit(main())
