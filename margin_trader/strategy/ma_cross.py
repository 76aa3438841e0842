"""
Simple moving average cross strategy.

A golden cross (short MA moving from at-or-below to above the long MA)
is a buy; a dead cross (from at-or-above to below) is a sell, which
closes the most recent long rather than opening a short.  Signals are
limit orders at the current price and only fire on the tick of the
cross itself.
"""

from __future__ import annotations

from ..config.schema import StrategyParameters
from ..data.price_series import PriceSeries
from .base import BUY, SELL, Strategy, TradingSignal
from .indicators import sma


class MovingAverageCrossStrategy(Strategy):
    name = "ma_cross"

    def warmup(self, params: StrategyParameters) -> int:
        return max(params.short_period, params.long_period) + 1

    def analyze(self, series: PriceSeries, params: StrategyParameters) -> TradingSignal:
        prices = series.prices
        if len(prices) < self.warmup(params):
            return TradingSignal.hold("insufficient_data")

        short_now = sma(prices, params.short_period)
        long_now = sma(prices, params.long_period)
        short_prev = sma(prices[:-1], params.short_period)
        long_prev = sma(prices[:-1], params.long_period)
        current = prices[-1]
        indicators = {"short_ma": short_now, "long_ma": long_now}

        if short_prev <= long_prev and short_now > long_now:
            return TradingSignal(BUY, params.trade_size, current, "golden_cross", indicators)
        if short_prev >= long_prev and short_now < long_now:
            return TradingSignal(SELL, params.trade_size, current, "dead_cross", indicators)
        return TradingSignal.hold(**indicators)
