from dataclasses import replace

from broker.binance import ApiResponse
from broker.trading_service import FuturesConfig, OrderDetails, TradingService, format_symbol
from shared.models.models import IndicatorResult, Signal, StrategyResult

OK = ApiResponse(success=True, data={})


class _FakeClient:
    """记录调用并返回预设响应的 BinanceClient 替身。"""

    def __init__(self, mode="spot", price="50000", symbols=None):
        self.mode = mode
        self.calls = []
        self.price = price
        self.symbols = symbols or [
            {"symbol": "BTCUSDT", "status": "TRADING", "contractType": "PERPETUAL" if mode == "futures" else None}
        ]
        self.fail = {}
        self._next_id = 100

    def _record(self, name, *args):
        self.calls.append((name, args))
        if name in self.fail:
            return ApiResponse(success=False, error=self.fail[name])
        return None

    def _order(self, name, *args):
        failed = self._record(name, *args)
        if failed:
            return failed
        self._next_id += 1
        return ApiResponse(success=True, data={"orderId": self._next_id, "executedQty": "0.1", "status": "FILLED"})

    def account_info(self):
        return self._record("account_info") or ApiResponse(success=True, data={"canTrade": True})

    def exchange_info(self):
        return self._record("exchange_info") or ApiResponse(success=True, data={"symbols": self.symbols})

    def ticker_price(self, symbol):
        return self._record("ticker_price", symbol) or ApiResponse(success=True, data={"price": self.price})

    def set_leverage(self, symbol, leverage):
        return self._record("set_leverage", symbol, leverage) or OK

    def set_margin_type(self, symbol, margin_type):
        return self._record("set_margin_type", symbol, margin_type) or OK

    def set_position_mode(self, dual):
        return self._record("set_position_mode", dual) or OK

    def place_market_order(self, symbol, side, qty):
        return self._order("market", symbol, side, qty)

    def place_limit_order(self, symbol, side, qty, price):
        return self._order("limit", symbol, side, qty, price)

    def place_stop_loss_order(self, symbol, side, qty, stop):
        return self._order("stop_loss", symbol, side, qty, stop)

    def place_take_profit_order(self, symbol, side, qty, stop):
        return self._order("take_profit", symbol, side, qty, stop)

    def cancel_order(self, symbol, order_id):
        return self._record("cancel", symbol, order_id) or OK

    def open_orders(self, symbol=None):
        return self._record("open_orders", symbol) or ApiResponse(success=True, data=[])

    def my_trades(self, symbol):
        return self._record("my_trades", symbol) or ApiResponse(success=True, data=[{"id": 1}])

    def place_oco_order(self, symbol, side, qty, price, stop, stop_limit=None):
        return self._order("oco", symbol, side, qty, price, stop, stop_limit)

    def names(self):
        return [name for name, _ in self.calls]


BUY = OrderDetails(type="market", side="buy", pair="btc/usdt", amount=0.1)


def test_market_buy_with_protective_legs():
    spot = _FakeClient()
    result = TradingService(spot).place_order(replace(BUY, stop_loss=45000, take_profit=55000), "spot")

    assert result.success
    assert result.order_id == "101"
    assert result.status == "FILLED"
    assert spot.names() == ["account_info", "exchange_info", "ticker_price", "market", "stop_loss", "take_profit"]
    assert spot.calls[3][1] == ("BTCUSDT", "BUY", 0.1)
    # 止损/止盈为反方向
    assert spot.calls[4][1] == ("BTCUSDT", "SELL", 0.1, 45000)
    assert spot.calls[5][1] == ("BTCUSDT", "SELL", 0.1, 55000)


def test_protective_prices_validated_against_ticker():
    spot = _FakeClient()
    svc = TradingService(spot)
    bad_sl = svc.place_order(replace(BUY, stop_loss=51000), "spot")
    assert not bad_sl.success
    assert "Stop loss price must be below" in bad_sl.error

    sell = replace(BUY, side="sell", take_profit=52000)
    bad_tp = svc.place_order(sell, "spot")
    assert not bad_tp.success
    assert "Take profit price must be above" in bad_tp.error
    assert "market" not in spot.names()


def test_failed_leg_cancels_placed_orders():
    spot = _FakeClient()
    spot.fail["take_profit"] = "Order would immediately trigger."
    result = TradingService(spot).place_order(replace(BUY, stop_loss=45000, take_profit=55000), "spot")

    assert not result.success
    assert result.error == "Failed to place take profit order. Main order has been cancelled."
    cancels = [args for name, args in spot.calls if name == "cancel"]
    assert cancels == [("BTCUSDT", 102), ("BTCUSDT", 101)]


def test_failed_stop_loss_cancels_main_order():
    spot = _FakeClient()
    spot.fail["stop_loss"] = "rejected"
    result = TradingService(spot).place_order(replace(BUY, stop_loss=45000), "spot")
    assert not result.success
    assert [args for name, args in spot.calls if name == "cancel"] == [("BTCUSDT", 101)]


def test_order_validation_errors():
    svc = TradingService(_FakeClient())
    assert svc.place_order(replace(BUY, amount=0), "spot").error == "Invalid order amount"
    assert svc.place_order(replace(BUY, pair=""), "spot").error == "Trading pair is required"
    assert (
        svc.place_order(replace(BUY, type="limit"), "spot").error == "Price is required for limit orders"
    )
    assert svc.place_order(replace(BUY, stop_loss=-1), "spot").error == "Invalid stop loss price"
    assert (
        svc.place_order(replace(BUY, type="strategy"), "spot").error == "Strategy is required for strategy orders"
    )


def test_invalid_api_keys_and_unknown_symbol():
    spot = _FakeClient()
    spot.fail["account_info"] = "Invalid API-key"
    res = TradingService(spot).place_order(BUY, "spot")
    assert not res.success
    assert "Invalid API keys" in res.error

    res = TradingService(_FakeClient()).place_order(replace(BUY, pair="DOGE/USDT"), "spot")
    assert res.error == "Trading pair DOGEUSDT is not available"

    halted = _FakeClient(symbols=[{"symbol": "BTCUSDT", "status": "BREAK"}])
    assert TradingService(halted).place_order(BUY, "spot").error == "Spot trading is not available for BTCUSDT"


def test_futures_configuration_tolerates_already_set():
    spot = _FakeClient()
    fut = _FakeClient(mode="futures")
    fut.fail["set_margin_type"] = "No need to change margin type, already ISOLATED"
    svc = TradingService(spot, fut)

    cfg = FuturesConfig(leverage=10, margin_type="ISOLATED", position_side="BOTH")
    res = svc.place_order(replace(BUY, type="limit", price=49000), "futures", cfg)

    assert res.success
    assert fut.names()[:3] == ["set_position_mode", "set_leverage", "set_margin_type"]
    assert fut.calls[0][1] == (False,)
    assert "limit" in fut.names()


def test_futures_leverage_bounds_and_missing_client():
    svc = TradingService(_FakeClient(), _FakeClient(mode="futures"))
    res = svc.place_order(replace(BUY, leverage=200), "futures")
    assert res.error == "Leverage must be between 1x and 125x"

    res = TradingService(_FakeClient()).place_order(BUY, "futures", FuturesConfig(leverage=5))
    assert not res.success
    assert "Futures client is not configured" in res.error


def _strategy_result(rec: Signal) -> StrategyResult:
    ind = IndicatorResult(value=0.0, signal=Signal.NEUTRAL, weight=0.25)
    return StrategyResult(total_signal=0.0, recommendation=rec, rsi=ind, macd=ind, bollinger=ind, volume=ind)


def test_order_from_recommendation():
    svc = TradingService(_FakeClient())
    assert svc.order_from_recommendation(_strategy_result(Signal.NEUTRAL), "BTC/USDT", 1) is None

    order = svc.order_from_recommendation(_strategy_result(Signal.SELL), "BTC/USDT", 1)
    assert order.type == "strategy"
    assert order.side == "sell"
    assert order.strategy == "weighted"


def test_queries_wrap_failures():
    spot = _FakeClient()
    svc = TradingService(spot)
    assert svc.open_orders("spot", "btc/usdt").success
    assert spot.calls[-1] == ("open_orders", ("BTCUSDT",))
    assert svc.recent_trades("spot", "BTCUSDT").data == [{"id": 1}]
    assert svc.cancel_order("spot", "BTCUSDT", 7).success
    assert svc.account_info("spot").success

    spot.fail["open_orders"] = "Too many requests"
    res = svc.open_orders("spot")
    assert not res.success
    assert res.error == "Too many requests"

    assert not svc.account_info("futures").success


def test_oco_order_validates_symbol():
    spot = _FakeClient()
    svc = TradingService(spot)
    res = svc.place_oco_order("BTC/USDT", "sell", 0.1, 55000, 45000, 44900)
    assert res.success
    assert spot.calls[-1] == ("oco", ("BTCUSDT", "SELL", 0.1, 55000, 45000, 44900))

    assert not svc.place_oco_order("XYZ/USDT", "sell", 0.1, 1, 1).success


def test_format_symbol():
    assert format_symbol("eth/usdt") == "ETHUSDT"
