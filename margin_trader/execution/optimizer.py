"""
Grid-search parameter optimizer.

Every combination of the parameter grid is replayed with a fresh
`BacktestSimulator`.  Combinations with fewer than `min_trades`
closed trades are discarded; the rest are ranked independently by
total PnL, win rate, profit factor and PnL per unit of drawdown.

Runs are independent, so they can be spread over a process pool.
Each worker process receives the price series once through the pool
initializer.
"""

from __future__ import annotations

import itertools
import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..config.schema import StrategyParameters
from ..data.price_series import PriceSeries
from ..errors import ConfigError
from ..reporting.metrics import BacktestResult
from ..strategy.registry import canonical_name, create_strategy
from .backtest_exec import BacktestSimulator


logger = logging.getLogger(__name__)


DEFAULT_GRIDS: Dict[str, Dict[str, List[Any]]] = {
    "breakout": {
        "breakout_threshold": [0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.8, 1.0],
        "lookback_period": [10, 15, 20, 30, 40, 60],
        "stop_loss_percent": [0.5, 1.0, 1.5, 2.0],
        "initial_trailing_stop_percent": [0.3, 0.5, 0.7, 1.0],
        "trailing_stop_offset_percent": [0.3, 0.5, 0.7, 1.0],
        "max_positions": [1, 2, 3],
    },
    "rsi_contrarian": {
        "rsi_period": [14, 20, 30, 40, 60],
        "rsi_oversold": [20, 25, 30, 35],
        "rsi_overbought": [65, 70, 75, 80],
        "rsi_exit_long": [45, 50, 55, 60],
        "rsi_exit_short": [40, 45, 50, 55],
        "max_hold_minutes": [30, 60, 120],
        "stop_loss_percent": [0.5, 1.0, 1.5],
    },
    "ma_cross": {
        "short_period": [3, 5, 8, 10, 15],
        "long_period": [20, 30, 40, 60],
        "stop_loss_percent": [0.5, 1.0, 1.5, 2.0],
        "initial_trailing_stop_percent": [0.5, 0.7, 1.0],
        "trailing_stop_offset_percent": [0.3, 0.5, 0.7],
    },
}

RANKINGS = ("total_pnl", "win_rate", "profit_factor", "risk_adjusted")


@dataclass
class OptimizationRun:
    """One evaluated parameter combination."""

    overrides: Dict[str, Any]
    result: BacktestResult


@dataclass
class OptimizationReport:
    evaluated: int = 0
    qualified: List[OptimizationRun] = field(default_factory=list)
    rankings: Dict[str, List[OptimizationRun]] = field(default_factory=dict)


def iter_grid(grid: Mapping[str, Sequence[Any]]) -> Iterator[Dict[str, Any]]:
    """Yield every combination of `grid` as a dict, in a stable order."""
    keys = list(grid)
    for values in itertools.product(*(grid[k] for k in keys)):
        yield dict(zip(keys, values))


def rank(runs: Sequence[OptimizationRun], key: str, top_n: int) -> List[OptimizationRun]:
    return sorted(runs, key=lambda r: getattr(r.result, key), reverse=True)[:top_n]


# Worker-process state, set once per process by the pool initializer.
_WORKER: Dict[str, Any] = {}


def _init_worker(series: PriceSeries, base: StrategyParameters, fee_rate: float,
                 spread_percent: float) -> None:
    _WORKER.update(series=series, base=base, fee_rate=fee_rate, spread_percent=spread_percent)


def _evaluate(overrides: Dict[str, Any]) -> Tuple[Dict[str, Any], Optional[BacktestResult]]:
    base: StrategyParameters = _WORKER["base"]
    try:
        params = StrategyParameters.from_mapping({**base.to_dict(), **overrides})
    except ConfigError as exc:
        logger.debug("Skipping invalid combination %s: %s", overrides, exc)
        return overrides, None
    simulator = BacktestSimulator(
        create_strategy(params.strategy),
        params,
        fee_rate=_WORKER["fee_rate"],
        spread_percent=_WORKER["spread_percent"],
    )
    result = simulator.run(_WORKER["series"])
    # trade lists stay in the worker; rankings only need the statistics
    result.trades = []
    result.equity_curve = []
    return overrides, result


class ParameterOptimizer:
    """Exhaustive grid search over strategy parameters.

    Parameters
    ----------
    base : StrategyParameters
        Parameters shared by every combination (symbol, strategy,
        trade size and any knob not in the grid).
    grid : mapping, optional
        Parameter name to candidate values.  Defaults to the grid of
        the base strategy in `DEFAULT_GRIDS`.
    min_trades : int
        Combinations with fewer closed trades are discarded.
    workers : int
        Number of processes; 1 runs everything in this process.
    """

    def __init__(
        self,
        base: StrategyParameters,
        grid: Optional[Mapping[str, Sequence[Any]]] = None,
        fee_rate: float = 0.0005,
        spread_percent: float = 0.0,
        min_trades: int = 10,
        workers: int = 1,
        top_n: int = 10,
    ) -> None:
        self.base = base
        self.grid = dict(grid) if grid is not None else DEFAULT_GRIDS[canonical_name(base.strategy)]
        self.fee_rate = fee_rate
        self.spread_percent = spread_percent
        self.min_trades = min_trades
        self.workers = max(1, workers)
        self.top_n = top_n

    def combinations(self) -> List[Dict[str, Any]]:
        return list(iter_grid(self.grid))

    def _results(self, series: PriceSeries, combos: List[Dict[str, Any]]):
        initargs = (series, self.base, self.fee_rate, self.spread_percent)
        if self.workers == 1:
            _init_worker(*initargs)
            for combo in combos:
                yield _evaluate(combo)
            return
        chunksize = max(1, len(combos) // (self.workers * 8))
        with ProcessPoolExecutor(
            max_workers=self.workers, initializer=_init_worker, initargs=initargs
        ) as pool:
            yield from pool.map(_evaluate, combos, chunksize=chunksize)

    def run(self, series: PriceSeries) -> OptimizationReport:
        combos = self.combinations()
        logger.info(
            "Optimizing %s on %s: %d combinations, %d worker(s)",
            self.base.strategy, series.symbol, len(combos), self.workers,
        )
        report = OptimizationReport()
        for i, (overrides, result) in enumerate(self._results(series, combos), start=1):
            if result is not None:
                report.evaluated += 1
                if result.total_trades >= self.min_trades:
                    report.qualified.append(OptimizationRun(overrides, result))
            if i % 1000 == 0:
                logger.info("Progress: %d/%d", i, len(combos))
        for key in RANKINGS:
            report.rankings[key] = rank(report.qualified, key, self.top_n)
        logger.info(
            "Optimization finished: %d evaluated, %d with at least %d trades",
            report.evaluated, len(report.qualified), self.min_trades,
        )
        return report
