"""
Strategy interface and trading signals.

A strategy is a stateless object: `analyze` maps a price window and
an immutable `StrategyParameters` value to a `TradingSignal`, and
`exit_decision` optionally asks for an open position to be closed.
Nothing is remembered between calls, so one instance can safely be
shared by many configurations, threads and backtest runs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from ..config.schema import StrategyParameters
from ..data.price_series import PriceSeries
from ..execution.models import Position


BUY = "buy"
SELL = "sell"
SHORT = "short"
HOLD = "hold"


@dataclass(frozen=True)
class TradingSignal:
    """Output of a strategy for one tick.

    ``price=None`` asks for a market order whose fill price is
    discovered after submission.
    """

    action: str
    quantity: float = 0.0
    price: Optional[float] = None
    reason: str = ""
    indicators: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def hold(cls, reason: str = "", **indicators: Any) -> "TradingSignal":
        return cls(action=HOLD, reason=reason, indicators=indicators)

    @property
    def is_entry(self) -> bool:
        return self.action in (BUY, SHORT)


class Strategy(ABC):
    """Base class for signal generators."""

    #: canonical registry identifier
    name: str = ""
    #: losing closes of this family suspend its new entries for a while
    suspends_after_loss: bool = False

    @abstractmethod
    def analyze(self, series: PriceSeries, params: StrategyParameters) -> TradingSignal:
        """Return the signal for the last sample of `series`."""

    def exit_decision(
        self,
        position: Position,
        series: PriceSeries,
        params: StrategyParameters,
        now: datetime,
    ) -> Optional[str]:
        """Return a close reason if the strategy wants `position` closed."""
        return None

    def warmup(self, params: StrategyParameters) -> int:
        """Number of samples `analyze` needs before it can signal."""
        return 1

