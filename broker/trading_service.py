"""下单服务：在 BinanceClient 之上做校验、合约账户配置与止损/止盈挂单。

place_order 流程：
1. 校验 API Key（账户接口）
2. 合约模式：配置持仓模式/杠杆/保证金模式（"already" 类错误忽略）
3. 校验订单参数 → 校验交易对 → 取最新价校验止损/止盈方向
4. 主单（market / limit / strategy→market）
5. 止损、止盈单（反方向）；任一失败撤销已挂出的所有订单并返回失败

所有对外方法都返回 OrderResult，不向调用方抛异常。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Literal

from broker.binance import ApiResponse, BinanceClient
from shared.errors import ExchangeConfigError, ExchangeError
from shared.models.models import Signal, StrategyResult
from shared.utils.logging import setup_logger

Mode = Literal["spot", "futures"]

MIN_LEVERAGE = 1
MAX_LEVERAGE = 125


@dataclass(frozen=True)
class OrderDetails:
    type: str  # market / limit / strategy
    side: str  # buy / sell
    pair: str
    amount: float
    price: float | None = None
    leverage: int | None = None
    margin_type: str | None = None  # ISOLATED / CROSSED
    position_side: str | None = None  # BOTH / LONG / SHORT
    strategy: str | None = None
    stop_loss: float | None = None
    take_profit: float | None = None


@dataclass(frozen=True)
class FuturesConfig:
    leverage: int | None = None
    margin_type: str | None = None
    position_side: str | None = None


@dataclass(frozen=True)
class OrderResult:
    success: bool
    order_id: str | None = None
    executed_qty: str | None = None
    status: str | None = None
    data: Any = None
    error: str | None = None


def format_symbol(pair: str) -> str:
    return pair.replace("/", "").upper()


def _is_already(resp: ApiResponse) -> bool:
    return "already" in (resp.error or "").lower()


class TradingService:
    """面向用户下单意图的服务层。

    Parameters
    ----------
    spot_client:
        现货客户端（也用于 API Key 校验）。
    futures_client:
        合约客户端；为 None 时合约模式的调用返回失败。
    """

    def __init__(self, spot_client: BinanceClient, futures_client: BinanceClient | None = None):
        self.spot = spot_client
        self.futures = futures_client
        self.logger = setup_logger("trading-service")

    def _client(self, mode: Mode) -> BinanceClient:
        if mode == "spot":
            return self.spot
        if mode == "futures":
            if self.futures is None:
                raise ExchangeConfigError("Futures client is not configured")
            return self.futures
        raise ExchangeError(f"Unknown trading mode: {mode}")

    # ---- 校验与配置 ----

    def _validate_api_keys(self) -> None:
        if not self.spot.account_info().success:
            raise ExchangeError(
                "Invalid API keys or insufficient permissions. Please check your API configuration."
            )

    @staticmethod
    def _check_leverage(leverage: int) -> None:
        if leverage < MIN_LEVERAGE or leverage > MAX_LEVERAGE:
            raise ExchangeError(f"Leverage must be between {MIN_LEVERAGE}x and {MAX_LEVERAGE}x")

    def _set_leverage(self, client: BinanceClient, symbol: str, leverage: int) -> None:
        self._check_leverage(leverage)
        resp = client.set_leverage(symbol, leverage)
        if not resp.success:
            raise ExchangeError(f"Failed to set leverage: {resp.error}")

    def _set_margin_type(self, client: BinanceClient, symbol: str, margin_type: str) -> None:
        resp = client.set_margin_type(symbol, margin_type)
        if not resp.success and not _is_already(resp):
            raise ExchangeError(f"Failed to set margin type: {resp.error}")

    def _configure_futures_account(self, symbol: str, config: FuturesConfig | None) -> None:
        if config is None:
            return
        client = self._client("futures")
        if config.position_side:
            resp = client.set_position_mode(config.position_side != "BOTH")
            if not resp.success and not _is_already(resp):
                raise ExchangeError(f"Failed to set position mode: {resp.error}")
        if config.leverage:
            self._set_leverage(client, symbol, config.leverage)
        if config.margin_type:
            self._set_margin_type(client, symbol, config.margin_type)

    def _validate_order(self, order: OrderDetails, mode: Mode) -> None:
        if not order.pair:
            raise ExchangeError("Trading pair is required")
        if not order.amount or order.amount <= 0:
            raise ExchangeError("Invalid order amount")
        if order.type == "limit" and (not order.price or order.price <= 0):
            raise ExchangeError("Price is required for limit orders")
        if order.stop_loss is not None and order.stop_loss <= 0:
            raise ExchangeError("Invalid stop loss price")
        if order.take_profit is not None and order.take_profit <= 0:
            raise ExchangeError("Invalid take profit price")

        if mode == "futures":
            client = self._client(mode)
            symbol = format_symbol(order.pair)
            if order.leverage:
                self._set_leverage(client, symbol, order.leverage)
            if order.margin_type:
                self._set_margin_type(client, symbol, order.margin_type)

    def _validate_symbol(self, symbol: str, mode: Mode) -> None:
        resp = self._client(mode).exchange_info()
        if not resp.success:
            raise ExchangeError(resp.error or "Failed to validate trading pair")
        symbols = (resp.data or {}).get("symbols", [])
        info = next((s for s in symbols if s.get("symbol") == symbol), None)
        if info is None:
            raise ExchangeError(f"Trading pair {symbol} is not available")
        if mode == "spot" and "trading" not in str(info.get("status") or "").lower():
            raise ExchangeError(f"Spot trading is not available for {symbol}")
        if mode == "futures" and not info.get("contractType"):
            raise ExchangeError(f"Futures trading is not available for {symbol}")

    def _current_price(self, client: BinanceClient, symbol: str) -> float:
        resp = client.ticker_price(symbol)
        raw = (resp.data or {}).get("price") if resp.success and isinstance(resp.data, dict) else None
        if not raw:
            raise ExchangeError("Unable to get current market price. Please try again.")
        try:
            price = float(raw)
        except (TypeError, ValueError) as exc:
            raise ExchangeError("Invalid market price received") from exc
        if math.isnan(price):
            raise ExchangeError("Invalid market price received")
        return price

    @staticmethod
    def _check_protective_prices(order: OrderDetails, side: str, current: float) -> None:
        if order.stop_loss:
            if (side == "BUY" and order.stop_loss >= current) or (side == "SELL" and order.stop_loss <= current):
                raise ExchangeError(
                    "Stop loss price must be below current price for buy orders and above for sell orders"
                )
        if order.take_profit:
            if (side == "BUY" and order.take_profit <= current) or (side == "SELL" and order.take_profit >= current):
                raise ExchangeError(
                    "Take profit price must be above current price for buy orders and below for sell orders"
                )

    # ---- 下单 ----

    def _place_main(self, client: BinanceClient, order: OrderDetails, symbol: str, side: str) -> ApiResponse:
        if order.type == "market":
            return client.place_market_order(symbol, side, order.amount)
        if order.type == "limit":
            return client.place_limit_order(symbol, side, order.amount, order.price)
        if order.type == "strategy":
            if not order.strategy:
                raise ExchangeError("Strategy is required for strategy orders")
            return client.place_market_order(symbol, side, order.amount)
        raise ExchangeError(f"Unsupported order type: {order.type}")

    def _rollback(self, client: BinanceClient, symbol: str, order_ids: list[Any]) -> None:
        for oid in reversed(order_ids):
            resp = client.cancel_order(symbol, int(oid))
            if not resp.success:
                self.logger.error("Failed to cancel order %s during rollback: %s", oid, resp.error)

    def place_order(
        self,
        order: OrderDetails,
        mode: Mode,
        futures_config: FuturesConfig | None = None,
    ) -> OrderResult:
        """按下单意图提交主单及可选的止损/止盈单。

        Returns
        -------
        OrderResult
            成功时带主单 orderId/executedQty/status；失败时 error 为可读原因。
        """
        try:
            self._validate_api_keys()
            symbol = format_symbol(order.pair)
            if mode == "futures" and futures_config is not None:
                self._configure_futures_account(symbol, futures_config)
            self._validate_order(order, mode)

            client = self._client(mode)
            self._validate_symbol(symbol, mode)

            side = order.side.upper()
            if side not in ("BUY", "SELL"):
                raise ExchangeError(f"Invalid order side: {order.side}")
            current = self._current_price(client, symbol)
            self._check_protective_prices(order, side, current)

            main_resp = self._place_main(client, order, symbol, side)
            if not main_resp.success:
                raise ExchangeError(
                    main_resp.error
                    or "Order placement failed. Please check your account balance and try again."
                )
            main = main_resp.data if isinstance(main_resp.data, dict) else {}
            if not main.get("orderId"):
                raise ExchangeError("Invalid order response received from exchange")

            placed: list[Any] = [main["orderId"]]
            exit_side = "SELL" if side == "BUY" else "BUY"
            if order.stop_loss:
                sl = client.place_stop_loss_order(symbol, exit_side, order.amount, order.stop_loss)
                if not sl.success:
                    self._rollback(client, symbol, placed)
                    raise ExchangeError("Failed to place stop loss order. Main order has been cancelled.")
                if isinstance(sl.data, dict) and sl.data.get("orderId"):
                    placed.append(sl.data["orderId"])
            if order.take_profit:
                tp = client.place_take_profit_order(symbol, exit_side, order.amount, order.take_profit)
                if not tp.success:
                    self._rollback(client, symbol, placed)
                    raise ExchangeError("Failed to place take profit order. Main order has been cancelled.")

            self.logger.info("Order placed: %s %s %s orderId=%s", symbol, side, order.amount, main["orderId"])
            return OrderResult(
                success=True,
                order_id=str(main["orderId"]),
                executed_qty=main.get("executedQty"),
                status=main.get("status"),
                data=main,
            )
        except ExchangeError as exc:
            self.logger.error("Order placement failed: %s", exc)
            return OrderResult(success=False, error=str(exc))

    def order_from_recommendation(
        self,
        result: StrategyResult,
        pair: str,
        amount: float,
        strategy_name: str = "weighted",
    ) -> OrderDetails | None:
        """把策略建议转成 strategy 类型的市价单；neutral 返回 None。"""
        if result.recommendation is Signal.NEUTRAL:
            return None
        return OrderDetails(
            type="strategy",
            side=result.recommendation.value,
            pair=pair,
            amount=amount,
            strategy=strategy_name,
        )

    # ---- 查询/撤单 ----

    def _wrap(self, call, fallback: str) -> OrderResult:
        try:
            resp = call()
        except ExchangeError as exc:
            self.logger.error("%s: %s", fallback, exc)
            return OrderResult(success=False, error=str(exc))
        if not resp.success:
            self.logger.error("%s: %s", fallback, resp.error)
            return OrderResult(success=False, error=resp.error or fallback)
        return OrderResult(success=True, data=resp.data)

    def open_orders(self, mode: Mode, pair: str | None = None) -> OrderResult:
        symbol = format_symbol(pair) if pair else None
        return self._wrap(lambda: self._client(mode).open_orders(symbol), "Unable to fetch open orders")

    def cancel_order(self, mode: Mode, pair: str, order_id: int) -> OrderResult:
        return self._wrap(
            lambda: self._client(mode).cancel_order(format_symbol(pair), order_id),
            "Unable to cancel order",
        )

    def account_info(self, mode: Mode) -> OrderResult:
        return self._wrap(lambda: self._client(mode).account_info(), "Unable to fetch account information")

    def recent_trades(self, mode: Mode, pair: str) -> OrderResult:
        return self._wrap(
            lambda: self._client(mode).my_trades(format_symbol(pair)),
            "Unable to fetch recent trades",
        )

    def place_oco_order(
        self,
        pair: str,
        side: str,
        quantity: float,
        price: float,
        stop_price: float,
        stop_limit_price: float | None = None,
    ) -> OrderResult:
        symbol = format_symbol(pair)
        try:
            self._validate_symbol(symbol, "spot")
        except ExchangeError as exc:
            self.logger.error("Failed to place OCO order: %s", exc)
            return OrderResult(success=False, error=str(exc))
        return self._wrap(
            lambda: self.spot.place_oco_order(symbol, side.upper(), quantity, price, stop_price, stop_limit_price),
            "Failed to place OCO order",
        )
