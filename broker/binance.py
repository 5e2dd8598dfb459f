"""Binance REST 客户端（现货 / U 本位合约）。

- 签名请求：去掉空参数，追加 timestamp/recvWindow，按 key 排序后 HMAC-SHA256 签名；
- 所有方法都返回 ApiResponse，HTTP/网络错误不抛异常，而是 success=False + 交易所 msg；
- 调用方式非法（现货调用合约接口、止损单缺 stopPrice 等）直接抛 ExchangeError。
"""

from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import requests

from shared.errors import ExchangeConfigError, ExchangeError
from shared.utils.client_order_id import make_client_order_id
from shared.utils.logging import setup_logger
from shared.utils.precision import format_decimal

SPOT_URL = "https://api.binance.com"
FUTURES_URL = "https://fapi.binance.com"
DEFAULT_RECV_WINDOW = 60000


@dataclass(frozen=True)
class ApiResponse:
    success: bool
    data: Any = None
    error: str | None = None


def _encode_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_query(params: dict[str, Any]) -> str:
    """按 key 字母序拼接 query string（值做 URL 编码）。"""
    return "&".join(f"{k}={quote(_encode_value(params[k]), safe='')}" for k in sorted(params))


class BinanceClient:
    """Binance 现货/合约 REST 客户端。

    Parameters
    ----------
    api_key, api_secret:
        API 凭证；缺失或为空抛 ExchangeConfigError。
    mode:
        "spot" 或 "futures"，决定根地址与接口前缀。
    base_url:
        覆盖默认根地址（测试网等）。
    session:
        可注入的 HTTP 会话（需提供 request(method, url, data=..., headers=..., timeout=...)）。
    """

    def __init__(
        self,
        api_key: str | None,
        api_secret: str | None,
        mode: str = "spot",
        base_url: str | None = None,
        session: Any = None,
        recv_window: int = DEFAULT_RECV_WINDOW,
        timeout: float = 10.0,
    ):
        if not api_key or not api_secret:
            raise ExchangeConfigError(
                "Binance API configuration is missing. Please check your environment variables."
            )
        if mode not in ("spot", "futures"):
            raise ExchangeConfigError(f"Unknown Binance mode: {mode}")
        self.api_key = api_key
        self.api_secret = api_secret.encode()
        self.mode = mode
        self.base_url = (base_url or (SPOT_URL if mode == "spot" else FUTURES_URL)).rstrip("/")
        self.session = session or requests.Session()
        self.recv_window = int(recv_window)
        self.timeout = timeout
        self.logger = setup_logger("binance-client")

    # ---- 底层请求 ----

    def _sign(self, query: str) -> str:
        return hmac.new(self.api_secret, query.encode(), hashlib.sha256).hexdigest()

    def _endpoint(self, path: str) -> str:
        return f"/api/v3{path}" if self.mode == "spot" else f"/fapi/v1{path}"

    def _require_futures(self, what: str) -> None:
        if self.mode != "futures":
            raise ExchangeError(f"{what} is only available in futures mode")

    def _request(
        self,
        endpoint: str,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        signed: bool = True,
    ) -> ApiResponse:
        clean = {k: v for k, v in (params or {}).items() if v is not None}
        if signed:
            clean["timestamp"] = int(time.time() * 1000)
            clean["recvWindow"] = self.recv_window
        query = build_query(clean)
        if signed and query:
            query = f"{query}&signature={self._sign(query)}"

        headers = {"X-MBX-APIKEY": self.api_key}
        url = f"{self.base_url}{endpoint}"
        body = None
        if method in ("POST", "DELETE"):
            headers["Content-Type"] = "application/x-www-form-urlencoded"
        if method == "POST":
            body = query
        elif query:
            url = f"{url}?{query}"

        try:
            resp = self.session.request(method, url, data=body, headers=headers, timeout=self.timeout)
            try:
                payload = resp.json()
            except ValueError:
                payload = None
        except requests.RequestException as exc:
            self.logger.error("API request failed: %s %s: %s", method, endpoint, exc)
            return ApiResponse(success=False, error=str(exc))

        if not resp.ok:
            msg = payload.get("msg") if isinstance(payload, dict) else None
            error = msg or f"HTTP {resp.status_code}: Unknown error occurred"
            self.logger.error("API request failed: %s %s: %s", method, endpoint, error)
            return ApiResponse(success=False, data=payload, error=error)
        return ApiResponse(success=True, data=payload)

    # ---- 账户/行情 ----

    def account_info(self) -> ApiResponse:
        return self._request(self._endpoint("/account"))

    def open_orders(self, symbol: str | None = None) -> ApiResponse:
        return self._request(self._endpoint("/openOrders"), "GET", {"symbol": symbol})

    def get_order(self, symbol: str, order_id: int) -> ApiResponse:
        return self._request(self._endpoint("/order"), "GET", {"symbol": symbol, "orderId": order_id})

    def my_trades(self, symbol: str) -> ApiResponse:
        path = "/myTrades" if self.mode == "spot" else "/userTrades"
        return self._request(self._endpoint(path), "GET", {"symbol": symbol})

    def exchange_info(self) -> ApiResponse:
        return self._request(self._endpoint("/exchangeInfo"), "GET", signed=False)

    def ticker_price(self, symbol: str) -> ApiResponse:
        return self._request(self._endpoint("/ticker/price"), "GET", {"symbol": symbol}, signed=False)

    def book_ticker(self, symbol: str) -> ApiResponse:
        return self._request(self._endpoint("/ticker/bookTicker"), "GET", {"symbol": symbol}, signed=False)

    # ---- 合约设置 ----

    def set_leverage(self, symbol: str, leverage: int) -> ApiResponse:
        self._require_futures("Leverage")
        return self._request("/fapi/v1/leverage", "POST", {"symbol": symbol, "leverage": int(leverage)})

    def set_margin_type(self, symbol: str, margin_type: str) -> ApiResponse:
        self._require_futures("Margin type")
        return self._request("/fapi/v1/marginType", "POST", {"symbol": symbol, "marginType": margin_type})

    def position_risk(self, symbol: str | None = None) -> ApiResponse:
        self._require_futures("Position risk")
        return self._request("/fapi/v2/positionRisk", "GET", {"symbol": symbol})

    def position_mode(self) -> ApiResponse:
        self._require_futures("Position mode")
        return self._request("/fapi/v1/positionSide/dual", "GET")

    def set_position_mode(self, dual_side_position: bool) -> ApiResponse:
        self._require_futures("Position mode")
        return self._request("/fapi/v1/positionSide/dual", "POST", {"dualSidePosition": bool(dual_side_position)})

    # ---- 下单 ----

    def place_order(self, params: dict[str, Any]) -> ApiResponse:
        """提交订单。

        现货模式下强制 newOrderRespType=FULL，LIMIT 单默认 GTC；
        STOP_LOSS / TAKE_PROFIT 缺 stopPrice 抛 ExchangeError。
        未提供 newClientOrderId 时按下单意图生成确定性的 ID。
        """
        params = dict(params)
        if self.mode == "spot":
            params["newOrderRespType"] = "FULL"
            if params.get("type") == "LIMIT" and not params.get("timeInForce"):
                params["timeInForce"] = "GTC"
            if params.get("type") in ("STOP_LOSS", "TAKE_PROFIT") and not params.get("stopPrice"):
                raise ExchangeError(f"{params['type']} orders require a stop price")
        if not params.get("newClientOrderId"):
            params["newClientOrderId"] = make_client_order_id(
                symbol=params.get("symbol", ""),
                side=params.get("side", ""),
                order_type=params.get("type", ""),
                intent_ms=int(time.time() * 1000),
                params=params,
            )
        self.logger.info(
            "Placing order: %s %s %s qty=%s cid=%s",
            params.get("symbol"),
            params.get("side"),
            params.get("type"),
            params.get("quantity"),
            params["newClientOrderId"],
        )
        return self._request(self._endpoint("/order"), "POST", params)

    def cancel_order(self, symbol: str, order_id: int) -> ApiResponse:
        return self._request(self._endpoint("/order"), "DELETE", {"symbol": symbol, "orderId": order_id})

    def place_market_order(self, symbol: str, side: str, quantity: float) -> ApiResponse:
        return self.place_order(
            {
                "symbol": symbol,
                "side": side,
                "type": "MARKET",
                "quantity": format_decimal(quantity),
            }
        )

    def place_limit_order(
        self,
        symbol: str,
        side: str,
        quantity: float,
        price: float,
        time_in_force: str = "GTC",
    ) -> ApiResponse:
        return self.place_order(
            {
                "symbol": symbol,
                "side": side,
                "type": "LIMIT",
                "quantity": format_decimal(quantity),
                "price": format_decimal(price),
                "timeInForce": time_in_force,
            }
        )

    def _place_trigger_order(
        self,
        base_type: str,
        symbol: str,
        side: str,
        quantity: float,
        stop_price: float,
        price: float | None,
    ) -> ApiResponse:
        params: dict[str, Any] = {
            "symbol": symbol,
            "side": side,
            "type": f"{base_type}_LIMIT" if price else base_type,
            "quantity": format_decimal(quantity),
            "stopPrice": format_decimal(stop_price),
        }
        if price:
            params["price"] = format_decimal(price)
            params["timeInForce"] = "GTC"
        return self.place_order(params)

    def place_stop_loss_order(
        self,
        symbol: str,
        side: str,
        quantity: float,
        stop_price: float,
        price: float | None = None,
    ) -> ApiResponse:
        """止损单；给出 price 时为 STOP_LOSS_LIMIT。"""
        return self._place_trigger_order("STOP_LOSS", symbol, side, quantity, stop_price, price)

    def place_take_profit_order(
        self,
        symbol: str,
        side: str,
        quantity: float,
        stop_price: float,
        price: float | None = None,
    ) -> ApiResponse:
        """止盈单；给出 price 时为 TAKE_PROFIT_LIMIT。"""
        return self._place_trigger_order("TAKE_PROFIT", symbol, side, quantity, stop_price, price)

    def place_oco_order(
        self,
        symbol: str,
        side: str,
        quantity: float,
        price: float,
        stop_price: float,
        stop_limit_price: float | None = None,
    ) -> ApiResponse:
        if self.mode != "spot":
            raise ExchangeError("OCO orders are only available in spot trading")
        params: dict[str, Any] = {
            "symbol": symbol,
            "side": side,
            "quantity": format_decimal(quantity),
            "price": format_decimal(price),
            "stopPrice": format_decimal(stop_price),
            "stopLimitPrice": format_decimal(stop_limit_price) if stop_limit_price else None,
            "stopLimitTimeInForce": "GTC" if stop_limit_price else None,
            "newOrderRespType": "FULL",
        }
        params["listClientOrderId"] = make_client_order_id(
            symbol=symbol,
            side=side,
            order_type="OCO",
            intent_ms=int(time.time() * 1000),
            params=params,
        )
        return self._request("/api/v3/order/oco", "POST", params)
