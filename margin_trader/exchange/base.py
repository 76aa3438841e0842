"""
Exchange gateway contract.

The trading core talks to an exchange only through the methods of
`ExchangeGateway`.  Order submission reports failures as an
`OrderResult` with ``success=False``; transport problems during
market-data and spread fetches raise `ExchangeError`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..data.price_series import PriceSeries


class OrderStatus(str, Enum):
    WAITING = "WAITING"
    EXECUTED = "EXECUTED"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"
    NOT_FOUND = "NOT_FOUND"
    ERROR = "ERROR"


@dataclass(frozen=True)
class OrderResult:
    """Outcome of an order submission.

    `price` and `fee` are only set by a simulated exchange that fills on
    submission.  Orders on a real exchange, market or limit, leave them
    ``None`` and the fill has to be reconciled from executions.
    """

    success: bool
    order_id: Optional[str] = None
    price: Optional[float] = None
    fee: Optional[float] = None
    message: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, message: str) -> "OrderResult":
        return cls(success=False, message=message)


@dataclass(frozen=True)
class Execution:
    price: float
    size: float
    fee: float = 0.0


class ExchangeGateway(ABC):
    """Market data and order routing for a single exchange."""

    @abstractmethod
    def get_market_data(self, symbol: str, limit: int = 100) -> PriceSeries:
        """Return recent 1-minute closing prices, oldest first."""

    @abstractmethod
    def get_spread(self, symbol: str) -> float:
        """Return the current ask minus bid, in quote currency."""

    @abstractmethod
    def buy(self, symbol: str, quantity: float, price: Optional[float] = None) -> OrderResult:
        """Submit a buy; ``price=None`` means a market order."""

    @abstractmethod
    def sell(self, symbol: str, quantity: float, price: Optional[float] = None) -> OrderResult:
        """Submit a sell; ``price=None`` means a market order."""

    @abstractmethod
    def get_order_status(self, order_id: str) -> OrderStatus:
        ...

    @abstractmethod
    def get_executions_by_order_id(self, order_id: str) -> List[Execution]:
        ...

    @abstractmethod
    def cancel_order(self, order_id: str) -> bool:
        ...
