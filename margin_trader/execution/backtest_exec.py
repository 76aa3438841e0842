"""
Backtest execution engine.

This module contains the `BacktestSimulator` class, which replays a
strategy over a historical price series with the same exit planner,
reversal rule and admission gates the live coordinator uses.  The
differences to live trading are confined to execution:

* orders fill immediately at the tick price (the signal's limit price
  for limit orders), with no polling;
* every fill pays ``price * quantity * fee_rate``;
* the spread is a static percentage of the price;
* positions still open after the last tick are closed at the final
  price with the ``backtest_end`` reason.

Each run works on a fresh in-memory store, so runs are independent
and can be executed in parallel.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from ..config.schema import StrategyParameters
from ..data.price_series import PriceSeries
from ..data.store import InMemoryStore
from ..reporting.metrics import BacktestResult, DrawdownTracker, summarize
from ..strategy.base import BUY, SELL, SHORT, Strategy, TradingSignal
from .admission import AdmissionControl
from .ledger import managed_by, open_position, plan_exits, plan_reversal, settle
from .models import BACKTEST_END, LONG, REVERSAL, SIGNAL_SELL, ClosedTrade, Fill, Position
from .models import SHORT as SHORT_SIDE


logger = logging.getLogger(__name__)

# configuration id given to the positions of a run that has none
BACKTEST_CONFIG_ID = 0


class BacktestSimulator:
    """Replay one strategy configuration over a price series.

    Parameters
    ----------
    strategy : Strategy
        Signal generator to replay.
    params : StrategyParameters
        Resolved parameters; `trade_size` is the simulated quantity.
    fee_rate : float
        Fee per fill as a fraction of notional.
    spread_percent : float
        Static spread assumption, in percent of the price.
    end_reason : str
        Close reason for positions still open at the end of the data.
    """

    def __init__(
        self,
        strategy: Strategy,
        params: StrategyParameters,
        fee_rate: float = 0.0005,
        spread_percent: float = 0.0,
        end_reason: str = BACKTEST_END,
    ) -> None:
        if params.config_id is None:
            params = params.replace(config_id=BACKTEST_CONFIG_ID)
        self.strategy = strategy
        self.params = params
        self.fee_rate = fee_rate
        self.spread_percent = spread_percent
        self.end_reason = end_reason

    def _fill(self, price: float, quantity: float) -> Fill:
        return Fill(price=price, fee=price * quantity * self.fee_rate)

    def run(self, series: PriceSeries) -> BacktestResult:
        """Execute the backtest over `series`.

        Returns
        -------
        BacktestResult
            Statistics, closed trades and the cumulative PnL curve.
        """
        params = self.params
        strategy = self.strategy
        symbol = series.symbol
        store = InMemoryStore()
        admission = AdmissionControl(store, {strategy.name: [params.config_id]}, verbose=False)
        tracker = DrawdownTracker()
        trades: List[ClosedTrade] = []
        curve: List[tuple] = []

        def close(position: Position, price: float, when: datetime, reason: str) -> None:
            pnl = settle(position, self._fill(price, position.quantity), when, reason)
            store.update_position(position)
            trades.append(ClosedTrade.from_position(position))
            tracker.add(pnl)
            curve.append((when, tracker.cumulative))

        prices = series.prices
        timestamps = series.timestamps
        warmup = strategy.warmup(params)

        for i, (price, now) in enumerate(zip(prices, timestamps)):
            window = series.window(i + 1, warmup)

            managed = managed_by(store.open_positions(symbol), params.config_id)
            if managed:
                exits = plan_exits(
                    managed,
                    price,
                    params,
                    lambda p: strategy.exit_decision(p, window, params, now),
                )
                for planned in exits:
                    close(planned.position, price, now, planned.reason)

            if i + 1 < warmup:
                continue
            signal = strategy.analyze(window, params)
            if signal.action in (BUY, SHORT):
                self._enter(store, admission, symbol, signal, price, now, close)
            elif signal.action == SELL:
                latest = store.latest_open(symbol, LONG)
                if latest is not None:
                    close(latest, price, now, SIGNAL_SELL)

        if prices:
            final_price, final_time = prices[-1], timestamps[-1]
            for position in store.open_positions(symbol):
                close(position, final_price, final_time, self.end_reason)
            tracker.update()

        result = summarize(trades, max_drawdown=tracker.max_drawdown, equity_curve=curve)
        logger.debug(
            "Backtest %s %s: %d trades, pnl=%.4f, max_dd=%.4f",
            strategy.name, symbol, result.total_trades, result.total_pnl, result.max_drawdown,
        )
        return result

    def _enter(
        self,
        store: InMemoryStore,
        admission: AdmissionControl,
        symbol: str,
        signal: TradingSignal,
        price: float,
        now: datetime,
        close,
    ) -> Optional[Position]:
        params = self.params
        side = LONG if signal.action == BUY else SHORT_SIDE

        for position in plan_reversal(store.open_positions(symbol), side):
            close(position, price, now, REVERSAL)

        fill_price = signal.price if signal.price is not None else price
        spread = fill_price * self.spread_percent / 100
        decision = admission.evaluate(symbol, side, fill_price, spread, params, self.strategy, now)
        if not decision.admitted:
            return None
        position = open_position(
            symbol, side, signal.quantity, self._fill(fill_price, signal.quantity), now, params
        )
        return store.create_position(position)
