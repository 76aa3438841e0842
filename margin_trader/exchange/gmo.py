"""
GMO Coin REST gateway.

Public endpoints provide 1-minute klines and the ticker; private
endpoints are signed with HMAC-SHA256 over
``timestamp + method + path + body`` and authenticated with the
``API-KEY`` / ``API-TIMESTAMP`` / ``API-SIGN`` headers.  Every
response carries a ``status`` field; anything other than ``0`` is an
API error.

See https://api.coin.z.com/docs/ for the endpoint reference.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from ..config.schema import ExchangeConfig
from ..data.price_series import PriceSeries
from ..errors import ExchangeError
from .base import ExchangeGateway, Execution, OrderResult, OrderStatus


logger = logging.getLogger(__name__)

# Kline files are cut by trading day in Japan time.
JST = timezone(timedelta(hours=9))

_STATUS_MAP = {
    "WAITING": OrderStatus.WAITING,
    "ORDERED": OrderStatus.WAITING,
    "MODIFYING": OrderStatus.WAITING,
    "CANCELLING": OrderStatus.WAITING,
    "EXECUTED": OrderStatus.EXECUTED,
    "CANCELED": OrderStatus.CANCELED,
    "EXPIRED": OrderStatus.EXPIRED,
}


def convert_symbol(symbol: str) -> str:
    """Map ``BTC/JPY`` style symbols to the exchange's base-asset symbol."""
    return symbol.split("/")[0]


class GMOCoinGateway(ExchangeGateway):
    """Exchange gateway for GMO Coin spot-margin trading.

    Parameters
    ----------
    config : ExchangeConfig
        URLs, credentials and request timeout.
    session : requests.Session, optional
        HTTP session; a new one is created when omitted.
    clock : callable, optional
        Returns the current aware datetime.  Used to pick the kline
        dates and the request timestamp.
    """

    def __init__(
        self,
        config: ExchangeConfig,
        session: Optional[requests.Session] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config
        self.session = session or requests.Session()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------
    def _check(self, payload: Dict[str, Any], what: str) -> Dict[str, Any]:
        if payload.get("status") != 0:
            raise ExchangeError(f"GMO Coin API error on {what}: {payload.get('messages')}")
        return payload

    def _public_get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.config.public_url}{path}"
        try:
            response = self.session.get(url, params=params, timeout=self.config.timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise ExchangeError(f"GET {path} failed: {exc}") from exc
        return self._check(payload, path)

    def _sign(self, timestamp: str, method: str, path: str, body: str) -> str:
        text = timestamp + method + path + body
        return hmac.new(
            self.config.api_secret.encode("utf-8"),
            text.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def _private_request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        timestamp = str(int(self.clock().timestamp() * 1000))
        body = json.dumps(data) if data else ""
        headers = {
            "API-KEY": self.config.api_key,
            "API-TIMESTAMP": timestamp,
            "API-SIGN": self._sign(timestamp, method, path, body),
            "Content-Type": "application/json",
        }
        try:
            response = self.session.request(
                method,
                f"{self.config.private_url}{path}",
                params=params,
                data=body or None,
                headers=headers,
                timeout=self.config.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise ExchangeError(f"{method} {path} failed: {exc}") from exc
        return self._check(payload, path)

    # ------------------------------------------------------------------
    # market data
    # ------------------------------------------------------------------
    def _fetch_klines(self, symbol: str, date: str) -> List[Dict[str, Any]]:
        payload = self._public_get(
            "/v1/klines", {"symbol": symbol, "interval": "1min", "date": date}
        )
        return payload.get("data") or []

    def get_market_data(self, symbol: str, limit: int = 100) -> PriceSeries:
        gmo_symbol = convert_symbol(symbol)
        now = self.clock().astimezone(JST)
        candles: List[Dict[str, Any]] = []
        for day in (now - timedelta(days=1), now):
            try:
                candles.extend(self._fetch_klines(gmo_symbol, day.strftime("%Y%m%d")))
            except ExchangeError as exc:
                logger.warning("Kline fetch for %s on %s failed: %s", symbol, day.date(), exc)
        if not candles:
            raise ExchangeError(f"No klines available for {symbol}")
        candles = candles[-limit:]
        return PriceSeries(
            symbol,
            [float(c["close"]) for c in candles],
            [int(c["openTime"]) for c in candles],
        )

    def get_spread(self, symbol: str) -> float:
        payload = self._public_get("/v1/ticker", {"symbol": convert_symbol(symbol)})
        data = payload.get("data") or []
        if not data:
            raise ExchangeError(f"Empty ticker for {symbol}")
        ticker = data[0]
        spread = float(ticker["ask"]) - float(ticker["bid"])
        logger.debug(
            "Spread check %s: bid=%s ask=%s spread=%s", symbol, ticker["bid"], ticker["ask"], spread
        )
        return spread

    # ------------------------------------------------------------------
    # orders
    # ------------------------------------------------------------------
    def _order(self, side: str, symbol: str, quantity: float, price: Optional[float]) -> OrderResult:
        order = {
            "symbol": convert_symbol(symbol),
            "side": side,
            "executionType": "MARKET" if price is None else "LIMIT",
            "size": str(quantity),
        }
        if price is not None:
            order["price"] = str(price)
        try:
            payload = self._private_request("POST", "/v1/order", data=order)
        except ExchangeError as exc:
            logger.error("%s order on %s (qty=%s) failed: %s", side, symbol, quantity, exc)
            return OrderResult.failure(str(exc))
        logger.info("%s order accepted on %s: order_id=%s", side, symbol, payload.get("data"))
        return OrderResult(
            success=True,
            order_id=str(payload.get("data")),
            raw=payload,
        )

    def buy(self, symbol: str, quantity: float, price: Optional[float] = None) -> OrderResult:
        return self._order("BUY", symbol, quantity, price)

    def sell(self, symbol: str, quantity: float, price: Optional[float] = None) -> OrderResult:
        return self._order("SELL", symbol, quantity, price)

    def get_order_status(self, order_id: str) -> OrderStatus:
        try:
            payload = self._private_request("GET", "/v1/orders", params={"orderId": order_id})
        except ExchangeError as exc:
            logger.error("Order status for %s failed: %s", order_id, exc)
            return OrderStatus.ERROR
        orders = (payload.get("data") or {}).get("list") or []
        if not orders:
            return OrderStatus.NOT_FOUND
        return _STATUS_MAP.get(str(orders[0].get("status")), OrderStatus.ERROR)

    def get_executions_by_order_id(self, order_id: str) -> List[Execution]:
        payload = self._private_request("GET", "/v1/executions", params={"orderId": order_id})
        rows = (payload.get("data") or {}).get("list") or []
        return [
            Execution(
                price=float(r["price"]),
                size=float(r["size"]),
                fee=float(r.get("fee") or 0.0),
            )
            for r in rows
        ]

    def cancel_order(self, order_id: str) -> bool:
        try:
            self._private_request("POST", "/v1/cancelOrder", data={"orderId": int(order_id)})
        except ExchangeError as exc:
            logger.error("Cancel of order %s failed: %s", order_id, exc)
            return False
        return True
