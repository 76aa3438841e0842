"""
High/low breakout strategy.

The highest and lowest prices of the last `lookback_period` samples
(excluding the current one) define the range.  A current price above
``high * (1 + threshold/100)`` is a buy signal, a price below
``low * (1 - threshold/100)`` a short signal.  Both comparisons are
strict.  Entries are market orders.
"""

from __future__ import annotations

import logging

from ..config.schema import StrategyParameters
from ..data.price_series import PriceSeries
from .base import BUY, SHORT, Strategy, TradingSignal
from .indicators import breakout_levels


logger = logging.getLogger(__name__)


class BreakoutStrategy(Strategy):
    name = "breakout"

    def warmup(self, params: StrategyParameters) -> int:
        return params.lookback_period + 1

    def analyze(self, series: PriceSeries, params: StrategyParameters) -> TradingSignal:
        prices = series.prices
        levels = breakout_levels(prices, params.lookback_period)
        if levels is None:
            logger.debug(
                "Insufficient data for breakout on %s: %d < %d",
                series.symbol, len(prices), params.lookback_period + 1,
            )
            return TradingSignal.hold("insufficient_data")

        high, low = levels
        current = prices[-1]
        buy_level = high * (1 + params.breakout_threshold / 100)
        short_level = low * (1 - params.breakout_threshold / 100)
        indicators = {"high": high, "low": low, "buy_level": buy_level, "short_level": short_level}

        if current > buy_level:
            logger.debug("High breakout on %s: %s > %s", series.symbol, current, buy_level)
            return TradingSignal(BUY, params.trade_size, None, "high_breakout", indicators)
        if current < short_level:
            logger.debug("Low breakout on %s: %s < %s", series.symbol, current, short_level)
            return TradingSignal(SHORT, params.trade_size, None, "low_breakout", indicators)
        return TradingSignal.hold(**indicators)
