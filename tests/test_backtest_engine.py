import asyncio
import math

import pytest

from algo.strategy.weighted import WeightedStrategy
from conftest import make_candles, v_shape_closes
from engine.backtest_engine import BacktestEngine, run_backtest
from engine.position import apply_signal
from shared.config.schema import BacktestConfig, IndicatorWeights
from shared.errors import BacktestCancelled, InvalidInputError
from shared.models.models import FLAT, Candle, PositionSide, TradeSide

RSI_ONLY = IndicatorWeights(rsi=1.0, macd=0.0, bollinger=0.0, volume=0.0)
RULE = WeightedStrategy(signal_threshold=0.6)


def _rsi_only_engine(**cfg) -> BacktestEngine:
    return BacktestEngine(WeightedStrategy(signal_threshold=0.5, weights=RSI_ONLY), BacktestConfig(**cfg))


# ---- 单步状态机 ----


def test_apply_signal_enter_and_exit():
    entered = apply_signal(FLAT, 1000.0, price=100.0, timestamp=1, total_signal=0.7, rule=RULE)
    assert entered.trade.type is TradeSide.BUY
    assert entered.position.side is PositionSide.LONG
    assert entered.position.size == pytest.approx(9.5)
    assert entered.capital == 1000.0

    exited = apply_signal(
        entered.position, entered.capital, price=110.0, timestamp=2, total_signal=-0.7, rule=RULE
    )
    assert exited.trade.type is TradeSide.SELL
    assert exited.trade.profit == pytest.approx(95.0)
    assert exited.position == FLAT
    assert exited.capital == pytest.approx(1095.0)


def test_apply_signal_no_pyramiding_no_shorting():
    long_pos = apply_signal(FLAT, 1000.0, price=100.0, timestamp=1, total_signal=0.9, rule=RULE).position
    again = apply_signal(long_pos, 1000.0, price=90.0, timestamp=2, total_signal=0.9, rule=RULE)
    assert again.trade is None
    assert again.position == long_pos

    flat = apply_signal(FLAT, 1000.0, price=100.0, timestamp=1, total_signal=-0.9, rule=RULE)
    assert flat.trade is None
    assert flat.position == FLAT
    # 恰好等于阈值不触发
    edge = apply_signal(FLAT, 1000.0, price=100.0, timestamp=1, total_signal=0.6, rule=RULE)
    assert edge.trade is None


# ---- 引擎 ----


def test_rising_series_has_no_trades(rising_candles):
    progress = []
    result = BacktestEngine(WeightedStrategy()).run_sync(rising_candles, 10000, progress.append)

    assert result.total_trades == 0
    assert result.trades == ()
    assert result.profit == 0.0
    assert result.win_rate == 0.0
    assert result.max_drawdown == 0.0
    assert result.sharpe_ratio == 0.0
    # 预热 26 根，之后 74 步各追加一个权益点
    assert len(result.equity) == 75
    assert [p.current_candle for p in progress] == [50]
    assert progress[0].total_candles == 100
    assert progress[0].is_paused is False
    assert progress[0].last_analysis is not None


def test_v_shape_round_trip(v_shape_candles):
    result = _rsi_only_engine().run_sync(v_shape_candles, 1000)

    buy, sell = result.trades
    assert buy.type is TradeSide.BUY
    assert buy.price == 74.0
    assert buy.timestamp == v_shape_candles[26].timestamp
    assert buy.size == pytest.approx(950.0 / 74.0)
    assert buy.indicators.rsi == 0.0

    assert sell.type is TradeSide.SELL
    assert sell.price == 77.0
    assert sell.timestamp == v_shape_candles[47].timestamp
    assert sell.profit == pytest.approx(3 * 950.0 / 74.0)
    assert sell.indicators.rsi > 70

    assert result.total_trades == 1
    assert result.winning_trades == 1
    assert result.losing_trades == 0
    assert result.win_rate == 100.0
    assert result.profit == pytest.approx(3 * 950.0 / 74.0)
    assert result.final_capital == pytest.approx(1000 + 3 * 950.0 / 74.0)
    assert result.open_position == FLAT
    assert result.unrealized_profit == 0.0
    # 权益只在平仓时变化
    assert set(result.equity) == {1000.0, result.final_capital}


def test_open_position_reported_as_unrealized():
    candles = make_candles([100.0 - k for k in range(40)])
    result = _rsi_only_engine().run_sync(candles, 1000)

    assert len(result.trades) == 1
    assert result.total_trades == 0
    assert result.profit == 0.0
    assert result.open_position.side is PositionSide.LONG
    assert result.open_position.entry_price == 74.0
    assert result.unrealized_profit == pytest.approx((61.0 - 74.0) * 950.0 / 74.0)


def test_progress_emitted_every_step_after_first_trade(v_shape_candles):
    seen = []
    _rsi_only_engine().run_sync(v_shape_candles, 1000, lambda p: seen.append(p.current_candle))
    assert seen == list(range(26, 80))


def test_failing_progress_callback_does_not_stop_run(v_shape_candles):
    baseline = _rsi_only_engine().run_sync(v_shape_candles, 1000)
    calls = []

    def on_progress(p):
        calls.append(p.current_candle)
        if len(calls) == 1:
            raise RuntimeError("observer failed")

    result = _rsi_only_engine().run_sync(v_shape_candles, 1000, on_progress)
    assert result == baseline
    assert result.total_trades == 1
    assert result.skipped_candles == ()
    assert calls == list(range(26, 80))


def test_async_progress_callback_is_awaited(rising_candles):
    seen = []

    async def on_progress(p):
        await asyncio.sleep(0)
        seen.append(p.current_candle)

    asyncio.run(BacktestEngine(WeightedStrategy()).run(rising_candles, 10000, on_progress))
    assert seen == [50]


def test_invalid_inputs_rejected_before_any_step(rising_candles):
    engine = BacktestEngine(WeightedStrategy())
    for bad in ([], None, "candles", {"a": 1}):
        with pytest.raises(InvalidInputError):
            engine.run_sync(bad, 1000)
    for capital in (0, -5, float("nan"), "abc"):
        with pytest.raises(InvalidInputError):
            engine.run_sync(rising_candles, capital)


def test_series_shorter_than_warmup_returns_empty_result():
    result = BacktestEngine(WeightedStrategy()).run_sync(make_candles([100.0] * 10), 500)
    assert result.equity == (500.0,)
    assert result.total_trades == 0
    assert result.sharpe_ratio == 0.0


def test_malformed_candle_is_skipped(rising_candles):
    candles = list(rising_candles)
    bad = candles[30]
    candles[30] = Candle(bad.timestamp, bad.open, bad.high, bad.low, "abc", bad.volume)

    result = BacktestEngine(WeightedStrategy()).run_sync(candles, 10000)
    assert result.skipped_candles == (30,)
    assert len(result.equity) == 74
    assert all(math.isfinite(e) for e in result.equity)


def test_pause_then_resume_matches_uninterrupted_run(v_shape_candles):
    baseline = _rsi_only_engine().run_sync(v_shape_candles, 1000)

    engine = _rsi_only_engine(pause_poll_interval=0.001)
    paused_snapshots = []

    def on_progress(p):
        if p.is_paused:
            paused_snapshots.append(p)
            if len(paused_snapshots) >= 3:
                engine.resume()

    engine.pause()
    result = engine.run_sync(v_shape_candles, 1000, on_progress)

    assert len(paused_snapshots) == 3
    assert all(p.current_candle == 26 and p.last_analysis is None for p in paused_snapshots)
    assert paused_snapshots[0].equity == (1000.0,)
    assert engine.is_paused is False
    assert result == baseline


def test_cancel_raises_with_partial_result(rising_candles):
    engine = BacktestEngine(WeightedStrategy())

    def on_progress(p):
        if p.current_candle == 50:
            engine.cancel()

    with pytest.raises(BacktestCancelled) as exc:
        engine.run_sync(rising_candles, 10000, on_progress)
    partial = exc.value.partial
    # 第 26..50 根已处理
    assert len(partial.equity) == 26
    assert partial.total_trades == 0
    assert not engine.is_cancelled


def test_engine_reusable_after_cancel(rising_candles):
    engine = BacktestEngine(WeightedStrategy())

    def on_progress(p):
        if p.current_candle == 50:
            engine.cancel()

    with pytest.raises(BacktestCancelled):
        engine.run_sync(rising_candles, 1000, on_progress)

    result = engine.run_sync(rising_candles, 1000)
    assert len(result.equity) == 75
    assert result.final_capital == 1000.0


def test_cancel_before_run_applies_once(rising_candles):
    engine = BacktestEngine(WeightedStrategy())
    engine.cancel()
    with pytest.raises(BacktestCancelled) as exc:
        engine.run_sync(rising_candles, 1000)
    assert exc.value.partial.equity == (1000.0,)
    assert len(engine.run_sync(rising_candles, 1000).equity) == 75


def test_cancel_while_paused(rising_candles):
    engine = BacktestEngine(WeightedStrategy(), BacktestConfig(pause_poll_interval=0.001))

    def on_progress(p):
        if p.is_paused:
            engine.cancel()

    engine.pause()
    with pytest.raises(BacktestCancelled) as exc:
        engine.run_sync(rising_candles, 10000, on_progress)
    assert exc.value.partial.equity == (10000.0,)
    assert not engine.is_paused


def test_concurrent_engines_share_candles(v_shape_candles, rising_candles):
    async def _run_both():
        a = _rsi_only_engine()
        b = BacktestEngine(WeightedStrategy())
        return await asyncio.gather(a.run(v_shape_candles, 1000), b.run(rising_candles, 10000))

    res_a, res_b = asyncio.run(_run_both())
    assert res_a.total_trades == 1
    assert res_b.total_trades == 0


def test_run_backtest_helper(v_shape_candles):
    result = run_backtest(v_shape_candles, 1000, WeightedStrategy(signal_threshold=0.5, weights=RSI_ONLY))
    assert result.winning_trades == 1
