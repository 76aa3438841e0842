import hashlib
import hmac
import json
import os
import sys
from datetime import datetime, timezone
from unittest import mock

CURRENT_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, os.pardir))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import requests

from margin_trader.config.schema import ExchangeConfig
from margin_trader.errors import ExchangeError
from margin_trader.exchange.base import OrderStatus
from margin_trader.exchange.gmo import GMOCoinGateway, convert_symbol

import unittest


CLOCK = datetime(2024, 1, 2, 0, 30, tzinfo=timezone.utc)  # 09:30 JST


def response(payload):
    resp = mock.Mock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    return resp


def candle(minute, close):
    open_time = int(datetime(2024, 1, 1, 23, minute, tzinfo=timezone.utc).timestamp() * 1000)
    return {"openTime": str(open_time), "close": str(close)}


class TestGMOCoinGateway(unittest.TestCase):
    def setUp(self) -> None:
        self.session = mock.Mock()
        self.config = ExchangeConfig(api_key="key", api_secret="secret")
        self.gateway = GMOCoinGateway(self.config, session=self.session, clock=lambda: CLOCK)

    def test_symbol_conversion(self) -> None:
        self.assertEqual(convert_symbol("BTC/JPY"), "BTC")
        self.assertEqual(convert_symbol("ETH"), "ETH")

    def test_market_data_combines_both_trading_days(self) -> None:
        days = {
            "20240101": {"status": 0, "data": [candle(0, 100), candle(1, 101)]},
            "20240102": {"status": 0, "data": [candle(2, 102)]},
        }
        self.session.get.side_effect = lambda url, params, timeout: response(days[params["date"]])
        series = self.gateway.get_market_data("BTC/JPY", limit=2)
        self.assertEqual(series.prices, [101.0, 102.0])
        self.assertEqual(series.last_timestamp.minute, 2)
        requested = [c.kwargs["params"]["symbol"] for c in self.session.get.call_args_list]
        self.assertEqual(requested, ["BTC", "BTC"])

    def test_one_failed_day_is_tolerated(self) -> None:
        def fake_get(url, params, timeout):
            if params["date"] == "20240101":
                raise requests.ConnectionError("reset")
            return response({"status": 0, "data": [candle(2, 102)]})
        self.session.get.side_effect = fake_get
        self.assertEqual(self.gateway.get_market_data("BTC/JPY").prices, [102.0])

    def test_no_candles_raises(self) -> None:
        self.session.get.return_value = response({"status": 0, "data": []})
        with self.assertRaises(ExchangeError):
            self.gateway.get_market_data("BTC/JPY")

    def test_spread(self) -> None:
        self.session.get.return_value = response(
            {"status": 0, "data": [{"symbol": "BTC", "ask": "5000100", "bid": "5000000"}]}
        )
        self.assertEqual(self.gateway.get_spread("BTC/JPY"), 100.0)

    def test_spread_api_error_raises(self) -> None:
        self.session.get.return_value = response({"status": 5, "messages": [{"message_code": "ERR-5201"}]})
        with self.assertRaises(ExchangeError):
            self.gateway.get_spread("BTC/JPY")

    def test_market_order_is_signed(self) -> None:
        self.session.request.return_value = response({"status": 0, "data": "123456"})
        result = self.gateway.buy("BTC/JPY", 0.01)

        self.assertTrue(result.success)
        self.assertEqual(result.order_id, "123456")
        self.assertIsNone(result.price)
        args, kwargs = self.session.request.call_args
        self.assertEqual(args, ("POST", "https://api.coin.z.com/private/v1/order"))
        body = kwargs["data"]
        self.assertEqual(
            json.loads(body),
            {"symbol": "BTC", "side": "BUY", "executionType": "MARKET", "size": "0.01"},
        )
        timestamp = str(int(CLOCK.timestamp() * 1000))
        expected = hmac.new(b"secret", (timestamp + "POST" + "/v1/order" + body).encode(), hashlib.sha256).hexdigest()
        self.assertEqual(kwargs["headers"]["API-SIGN"], expected)
        self.assertEqual(kwargs["headers"]["API-TIMESTAMP"], timestamp)
        self.assertEqual(kwargs["headers"]["API-KEY"], "key")

    def test_limit_order_is_left_unpriced(self) -> None:
        self.session.request.return_value = response({"status": 0, "data": "7"})
        result = self.gateway.sell("BTC/JPY", 0.01, price=5000000.0)
        self.assertIsNone(result.price)
        self.assertEqual(result.order_id, "7")
        body = json.loads(self.session.request.call_args.kwargs["data"])
        self.assertEqual((body["executionType"], body["price"]), ("LIMIT", "5000000.0"))

    def test_rejected_order_is_a_failed_result(self) -> None:
        self.session.request.return_value = response({"status": 1, "messages": [{"message_code": "ERR-201"}]})
        result = self.gateway.sell("BTC/JPY", 0.01)
        self.assertFalse(result.success)
        self.assertIn("ERR-201", result.message)

    def test_order_status_and_executions(self) -> None:
        self.session.request.side_effect = [
            response({"status": 0, "data": {"list": [{"status": "ORDERED"}]}}),
            response({"status": 0, "data": {"list": []}}),
            response({"status": 0, "data": {"list": [
                {"price": "100", "size": "0.4", "fee": "1"},
                {"price": "105", "size": "0.6", "fee": "2"},
            ]}}),
        ]
        self.assertEqual(self.gateway.get_order_status("1"), OrderStatus.WAITING)
        self.assertEqual(self.gateway.get_order_status("2"), OrderStatus.NOT_FOUND)
        executions = self.gateway.get_executions_by_order_id("3")
        self.assertEqual([(e.price, e.size, e.fee) for e in executions], [(100.0, 0.4, 1.0), (105.0, 0.6, 2.0)])

    def test_cancel_order(self) -> None:
        self.session.request.return_value = response({"status": 0})
        self.assertTrue(self.gateway.cancel_order("99"))
        self.session.request.side_effect = requests.Timeout("slow")
        self.assertFalse(self.gateway.cancel_order("99"))


if __name__ == '__main__':
    unittest.main()
