"""
Position, fill, event and tick-result models.

These dataclasses represent the objects passed between the ledger,
the live coordinator, the backtest and the stores.  Keeping them in a
separate module improves readability and makes unit testing easier.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple, Union

from ..errors import PositionStateError


LONG = "long"
SHORT = "short"
OPEN = "open"
CLOSED = "closed"

# close reasons
STRATEGY_EXIT = "strategy_exit"
TRAILING_STOP = "trailing_stop"
STOP_LOSS = "stop_loss"
REVERSAL = "reverse_breakout"
SIGNAL_SELL = "signal_sell"
BACKTEST_END = "backtest_end"
END_OF_DATA = "end_of_data"


def opposite(side: str) -> str:
    return SHORT if side == LONG else LONG


@dataclass
class Position:
    """One open or closed directional exposure on a symbol."""

    symbol: str
    side: str  # 'long' or 'short'
    quantity: float
    entry_price: float
    opened_at: datetime
    entry_fee: float = 0.0
    trailing_stop_price: Optional[float] = None
    config_id: Optional[int] = None
    id: Optional[int] = None
    status: str = OPEN
    exit_price: Optional[float] = None
    exit_fee: Optional[float] = None
    profit_loss: Optional[float] = None
    closed_at: Optional[datetime] = None
    close_reason: Optional[str] = None

    def __post_init__(self) -> None:
        if self.side not in (LONG, SHORT):
            raise ValueError(f"Invalid side: {self.side}")
        if self.quantity <= 0:
            raise ValueError(f"Position quantity must be positive, got {self.quantity}")

    @property
    def is_open(self) -> bool:
        return self.status == OPEN

    def ratchet_to(self, stop_price: float) -> None:
        if not self.is_open:
            raise PositionStateError(f"Position {self.id} is closed; its stop is frozen")
        self.trailing_stop_price = stop_price

    def close(
        self,
        exit_price: float,
        exit_fee: float,
        closed_at: datetime,
        reason: str,
        profit_loss: float,
    ) -> None:
        if not self.is_open:
            raise PositionStateError(f"Position {self.id} is already closed")
        self.exit_price = exit_price
        self.exit_fee = exit_fee
        self.closed_at = closed_at
        self.close_reason = reason
        self.profit_loss = profit_loss
        self.status = CLOSED


@dataclass(frozen=True)
class Fill:
    """Realised execution of one order."""

    price: float
    fee: float = 0.0
    order_id: Optional[str] = None
    degraded: bool = False


@dataclass(frozen=True)
class PlannedExit:
    position: Position
    reason: str
    detail: str = ""


@dataclass
class EventRecord:
    """One append-only event log entry."""

    symbol: str
    action: str
    executed_at: datetime
    quantity: float = 0.0
    price: float = 0.0
    result: Optional[Dict[str, Any]] = None
    message: str = ""


@dataclass(frozen=True)
class Ok:
    action: str
    message: str = "OK"
    position_ids: Tuple[int, ...] = ()
    price: Optional[float] = None

    @property
    def success(self) -> bool:
        return True


@dataclass(frozen=True)
class Rejected:
    action: str
    reason: str

    @property
    def success(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return self.reason


@dataclass(frozen=True)
class Failed:
    action: str
    error: str

    @property
    def success(self) -> bool:
        return False

    @property
    def message(self) -> str:
        return self.error


TickResult = Union[Ok, Rejected, Failed]


def result_to_dict(result: TickResult) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "success": result.success,
        "action": result.action,
        "message": result.message,
    }
    if isinstance(result, Ok) and result.position_ids:
        data["position_ids"] = list(result.position_ids)
    return data


@dataclass
class ClosedTrade:
    """Flattened view of a closed position for reports."""

    symbol: str
    side: str
    quantity: float
    entry_price: float
    exit_price: float
    entry_time: datetime
    exit_time: datetime
    entry_fee: float
    exit_fee: float
    pnl: float
    reason: str
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_position(cls, position: Position) -> "ClosedTrade":
        if position.is_open:
            raise PositionStateError(f"Position {position.id} is still open")
        return cls(
            symbol=position.symbol,
            side=position.side,
            quantity=position.quantity,
            entry_price=position.entry_price,
            exit_price=float(position.exit_price),
            entry_time=position.opened_at,
            exit_time=position.closed_at,
            entry_fee=position.entry_fee,
            exit_fee=position.exit_fee or 0.0,
            pnl=float(position.profit_loss),
            reason=position.close_reason or "",
        )
