"""
Paper trading gateway.

Prices and spreads come from a real market-data gateway; orders are
filled immediately against a simulated margin account that lives in a
JSON state file.  Net holdings may go negative so that short
positions can be simulated.

The state file is read, modified and written back for every order.
A process-local lock serialises that sequence and the write itself
is an atomic file replace, so concurrent ticks in one process never
interleave their updates.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..data.price_series import PriceSeries
from ..utils.persistence import load_state, save_state
from ..utils.timeutils import isoformat, utcnow
from .base import ExchangeGateway, Execution, OrderResult, OrderStatus


logger = logging.getLogger(__name__)


class PaperExchange(ExchangeGateway):
    """Simulated account priced from a live market-data gateway.

    Parameters
    ----------
    market : ExchangeGateway
        Source of prices and spreads (normally the GMO Coin gateway).
    state_file : str
        JSON file holding cash, holdings and simulated orders.
    initial_cash : float
        Starting cash when the state file does not exist yet.
    fee_rate : float
        Taker fee charged on every fill, as a fraction of notional.
    order_history : int
        Number of most recent orders kept in the state file; older
        ones are dropped and report `NOT_FOUND`.
    """

    def __init__(
        self,
        market: ExchangeGateway,
        state_file: str,
        initial_cash: float = 10_000.0,
        fee_rate: float = 0.0005,
        order_history: int = 500,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.market = market
        self.state_file = state_file
        self.initial_cash = initial_cash
        self.fee_rate = fee_rate
        self.order_history = order_history
        self.clock = clock or utcnow
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Any]:
        state = load_state(self.state_file)
        if state is None:
            state = {"cash": self.initial_cash, "holdings": {}, "orders": {}, "next_order_id": 1}
        return state

    def balance(self) -> Dict[str, Any]:
        with self._lock:
            state = self._load()
        return {"cash": state["cash"], "holdings": dict(state["holdings"])}

    def get_market_data(self, symbol: str, limit: int = 100) -> PriceSeries:
        return self.market.get_market_data(symbol, limit)

    def get_spread(self, symbol: str) -> float:
        return self.market.get_spread(symbol)

    def _current_price(self, symbol: str) -> float:
        return self.market.get_market_data(symbol, 1).last_price

    def _fill(self, side: str, symbol: str, quantity: float, price: Optional[float]) -> OrderResult:
        if quantity <= 0:
            return OrderResult.failure(f"Invalid order quantity: {quantity}")
        execution_price = price if price is not None else self._current_price(symbol)
        notional = quantity * execution_price
        fee = notional * self.fee_rate

        with self._lock:
            state = self._load()
            holding = float(state["holdings"].get(symbol, 0.0))
            if side == "BUY":
                # buying back a short never needs fresh cash
                if holding >= 0 and state["cash"] < notional + fee:
                    return OrderResult.failure(
                        f"Insufficient paper balance: {state['cash']:.2f} < {notional + fee:.2f}"
                    )
                state["cash"] -= notional + fee
                holding += quantity
            else:
                state["cash"] += notional - fee
                holding -= quantity
            state["holdings"][symbol] = holding

            order_id = str(state["next_order_id"])
            state["next_order_id"] += 1
            state["orders"][order_id] = {
                "symbol": symbol,
                "side": side,
                "size": quantity,
                "price": execution_price,
                "fee": fee,
                "status": OrderStatus.EXECUTED.value,
                "executed_at": isoformat(self.clock()),
            }
            self._prune(state["orders"])
            save_state(self.state_file, state)

        logger.info(
            "Paper %s %s qty=%s @ %s fee=%.6f (order %s)",
            side, symbol, quantity, execution_price, fee, order_id,
        )
        return OrderResult(success=True, order_id=order_id, price=execution_price, fee=fee)

    def _prune(self, orders: Dict[str, Any]) -> None:
        excess = len(orders) - self.order_history
        if excess > 0:
            for order_id in sorted(orders, key=int)[:excess]:
                del orders[order_id]

    def buy(self, symbol: str, quantity: float, price: Optional[float] = None) -> OrderResult:
        return self._fill("BUY", symbol, quantity, price)

    def sell(self, symbol: str, quantity: float, price: Optional[float] = None) -> OrderResult:
        return self._fill("SELL", symbol, quantity, price)

    def _order(self, order_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._load()["orders"].get(str(order_id))

    def get_order_status(self, order_id: str) -> OrderStatus:
        order = self._order(order_id)
        if order is None:
            return OrderStatus.NOT_FOUND
        return OrderStatus(order["status"])

    def get_executions_by_order_id(self, order_id: str) -> List[Execution]:
        order = self._order(order_id)
        if order is None:
            return []
        return [Execution(price=order["price"], size=order["size"], fee=order["fee"])]

    def cancel_order(self, order_id: str) -> bool:
        # paper orders fill on submission; there is never anything to cancel
        return False
