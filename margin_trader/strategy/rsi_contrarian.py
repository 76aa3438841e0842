"""
RSI contrarian strategy.

Enters against extremes: RSI below `rsi_oversold` is a buy, RSI above
`rsi_overbought` a short.  Open positions are closed by the strategy
itself once RSI has recovered past the exit level
(``rsi_take_profit``) or once they have been held for
`max_hold_minutes` (``timeout``).

Losing closes of any RSI contrarian configuration suspend new RSI
contrarian entries on every symbol for `cooldown_minutes`; the gate
itself lives in admission control.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from ..config.schema import StrategyParameters
from ..data.price_series import PriceSeries
from ..execution.models import LONG, Position
from ..utils.timeutils import minutes_between
from .base import BUY, SHORT, Strategy, TradingSignal
from .indicators import rsi


logger = logging.getLogger(__name__)

RSI_TAKE_PROFIT = "rsi_take_profit"
TIMEOUT = "timeout"


class RSIContrarianStrategy(Strategy):
    name = "rsi_contrarian"
    suspends_after_loss = True

    def warmup(self, params: StrategyParameters) -> int:
        return params.rsi_period + 1

    def analyze(self, series: PriceSeries, params: StrategyParameters) -> TradingSignal:
        value = rsi(series.prices, params.rsi_period)
        if value is None:
            return TradingSignal.hold("insufficient_data")

        indicators = {"rsi": value}
        if value < params.rsi_oversold:
            logger.debug("RSI oversold on %s: %.2f < %s", series.symbol, value, params.rsi_oversold)
            return TradingSignal(BUY, params.trade_size, None, "rsi_oversold", indicators)
        if value > params.rsi_overbought:
            logger.debug("RSI overbought on %s: %.2f > %s", series.symbol, value, params.rsi_overbought)
            return TradingSignal(SHORT, params.trade_size, None, "rsi_overbought", indicators)
        return TradingSignal.hold(**indicators)

    def exit_decision(
        self,
        position: Position,
        series: PriceSeries,
        params: StrategyParameters,
        now: datetime,
    ) -> Optional[str]:
        value = rsi(series.prices, params.rsi_period)
        if value is not None:
            if position.side == LONG and value > params.rsi_exit_long:
                return RSI_TAKE_PROFIT
            if position.side != LONG and value < params.rsi_exit_short:
                return RSI_TAKE_PROFIT
        if minutes_between(position.opened_at, now) >= params.max_hold_minutes:
            return TIMEOUT
        return None
