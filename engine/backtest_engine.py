"""逐 K 线回测引擎（BacktestEngine）。

流程：输入校验 → 预热跳过 → 逐根 K 线【取消/暂停检查 → 前缀窗口 → 策略合成信号
→ 持仓状态机 → 记权益 → 上报进度】→ 汇总指标。

并发模型：单个回测是一个协作式协程，只在步与步之间让出控制权：
- 暂停/取消都是在每步开始前检查的标志位，不会打断进行中的一步；
- 暂停期间按固定间隔上报 is_paused=True 的快照，便于观察者确认引擎仍然存活；
- 每 yield_every 步主动 `await asyncio.sleep(0)`，避免饿死同一事件循环上的其他任务。
"""

from __future__ import annotations

import asyncio
import inspect
import math
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Sequence, Union

import numpy as np
import pandas as pd

from algo.strategy.base import MarketWindow, Strategy
from engine.position import StepOutcome, apply_signal
from shared.config.schema import BacktestConfig
from shared.errors import BacktestCancelled, CandleError, InvalidInputError
from shared.models.models import (
    FLAT,
    BacktestProgress,
    BacktestResult,
    Candle,
    IndicatorSnapshot,
    PositionState,
    Trade,
    TradeSide,
)
from shared.utils.logging import setup_logger
from utils.metrics import summarize

ProgressCallback = Callable[[BacktestProgress], Union[None, Awaitable[None]]]

logger = setup_logger("backtest")


def _validate_inputs(candles: Any, initial_capital: Any) -> None:
    if (
        candles is None
        or isinstance(candles, (str, bytes, Mapping))
        or not isinstance(candles, Sequence)
        or len(candles) == 0
    ):
        raise InvalidInputError("Invalid historical data: expected a non-empty sequence of candles")
    try:
        capital = float(initial_capital)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"Invalid initial capital: {initial_capital!r}") from exc
    if not math.isfinite(capital) or capital <= 0:
        raise InvalidInputError(f"Initial capital must be a positive number, got {initial_capital!r}")


def _column(candles: Sequence[Candle], field: str) -> np.ndarray:
    """抽取一列并转为 float；无法解析的值记为 NaN，由对应步骤自行处理。"""
    raw = [getattr(c, field, None) for c in candles]
    return pd.to_numeric(pd.Series(raw, dtype=object), errors="coerce").to_numpy(dtype=float)


class BacktestEngine:
    """单次回测引擎。

    同一个实例同一时刻只跑一个回测；不同实例之间不共享任何可变状态，
    可以在同一事件循环上并发运行（K 线序列只读，可共享）。

    Parameters
    ----------
    strategy:
        提供 `analyze(window)` 与 signal_threshold/warmup 的策略。
    config:
        回测配置；为 None 时使用默认值。
    """

    def __init__(self, strategy: Strategy, config: BacktestConfig | None = None):
        self.strategy = strategy
        self.config = config or BacktestConfig()
        self._paused = False
        self._cancelled = False
        self._resumed = asyncio.Event()
        self._resumed.set()

    # ---- 控制接口 ----

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def pause(self) -> None:
        self._paused = True
        self._resumed.clear()

    def resume(self) -> None:
        self._paused = False
        self._resumed.set()

    def cancel(self) -> None:
        self._cancelled = True
        # 让暂停中的循环立即醒来并看到取消标志
        self._resumed.set()

    @property
    def warmup(self) -> int:
        return max(int(self.strategy.warmup), int(self.config.min_warmup))

    # ---- 运行 ----

    def run_sync(
        self,
        candles: Sequence[Candle],
        initial_capital: float,
        on_progress: ProgressCallback | None = None,
    ) -> BacktestResult:
        return asyncio.run(self.run(candles, initial_capital, on_progress))

    async def run(
        self,
        candles: Sequence[Candle],
        initial_capital: float,
        on_progress: ProgressCallback | None = None,
    ) -> BacktestResult:
        """运行回测。

        Parameters
        ----------
        candles:
            按时间升序的 K 线序列（只读）。
        initial_capital:
            初始资金（> 0）。
        on_progress:
            可选的进度回调；可以是普通函数或协程函数。

        Returns
        -------
        BacktestResult
            回测汇总。

        Raises
        ------
        InvalidInputError
            K 线为空/非序列或初始资金非法（在任何一步之前）。
        BacktestCancelled
            调用了 cancel()；异常的 partial 为已处理部分的汇总。
        """
        _validate_inputs(candles, initial_capital)
        initial_capital = float(initial_capital)
        # Event 绑定到当前事件循环；run_sync 每次都会新建循环
        self._resumed = asyncio.Event()
        if not self._paused:
            self._resumed.set()
        cfg = self.config
        total = len(candles)
        warmup = self.warmup

        logger.info(
            "Starting backtest: strategy=%s candles=%d initial_capital=%.2f",
            getattr(self.strategy, "describe", lambda: type(self.strategy).__name__)(),
            total,
            initial_capital,
        )
        logger.info("Requiring minimum %d candles for indicators", warmup)

        closes = _column(candles, "close")
        volumes = _column(candles, "volume")

        trades: list[Trade] = []
        equity: list[float] = [initial_capital]
        skipped: list[int] = []
        position: PositionState = FLAT
        capital = initial_capital
        last_price: float | None = None

        for i in range(warmup, total):
            if self._cancelled:
                raise self._cancelled_error(trades, equity, initial_capital, position, last_price, skipped, i)
            if self._paused:
                await self._wait_while_paused(i, total, trades, equity, initial_capital, capital, on_progress)
                if self._cancelled:
                    raise self._cancelled_error(trades, equity, initial_capital, position, last_price, skipped, i)

            try:
                outcome, snapshot = self._step(candles, closes, volumes, i, position, capital)
            except Exception as exc:
                logger.error("Error processing candle %d: %s", i, exc)
                skipped.append(i)
                continue

            position = outcome.position
            capital = outcome.capital
            last_price = float(closes[i])
            if outcome.trade is not None:
                trades.append(outcome.trade)
                self._log_trade(outcome.trade)
            equity.append(capital)

            if i % cfg.progress_every == 0 or trades:
                await self._emit(
                    on_progress,
                    BacktestProgress(
                        current_candle=i,
                        total_candles=total,
                        trades=tuple(trades),
                        equity=tuple(equity),
                        initial_capital=initial_capital,
                        current_capital=capital,
                        is_paused=False,
                        last_analysis=snapshot,
                    ),
                )

            if i % cfg.yield_every == 0:
                await asyncio.sleep(0)

        result = summarize(
            trades,
            equity,
            initial_capital,
            open_position=position,
            last_price=last_price,
            skipped=skipped,
            periods=cfg.annualization,
        )
        logger.info(
            "Backtest completed: trades=%d win_rate=%.2f profit=%.2f max_drawdown=%.2f%% sharpe=%.4f",
            result.total_trades,
            result.win_rate,
            result.profit,
            result.max_drawdown,
            result.sharpe_ratio,
        )
        return result

    def _step(
        self,
        candles: Sequence[Candle],
        closes: np.ndarray,
        volumes: np.ndarray,
        i: int,
        position: PositionState,
        capital: float,
    ) -> tuple[StepOutcome, IndicatorSnapshot]:
        price = float(closes[i])
        if not math.isfinite(price) or price <= 0:
            raise CandleError(f"invalid close price at index {i}: {getattr(candles[i], 'close', None)!r}")
        timestamp = int(candles[i].timestamp)

        window = MarketWindow(prices=closes[: i + 1], volumes=volumes[: i + 1], timestamp=timestamp)
        result = self.strategy.analyze(window)
        snapshot = result.snapshot()
        outcome = apply_signal(
            position,
            capital,
            price=price,
            timestamp=timestamp,
            total_signal=result.total_signal,
            rule=self.strategy,
            snapshot=snapshot,
            size_pct=self.config.position_size_pct,
        )
        return outcome, snapshot

    async def _wait_while_paused(
        self,
        i: int,
        total: int,
        trades: list[Trade],
        equity: list[float],
        initial_capital: float,
        capital: float,
        on_progress: ProgressCallback | None,
    ) -> None:
        logger.info("Backtest paused at candle %d", i)
        while self._paused and not self._cancelled:
            try:
                await asyncio.wait_for(self._resumed.wait(), timeout=self.config.pause_poll_interval)
            except asyncio.TimeoutError:
                pass
            if not self._paused or self._cancelled:
                break
            await self._emit(
                on_progress,
                BacktestProgress(
                    current_candle=i,
                    total_candles=total,
                    trades=tuple(trades),
                    equity=tuple(equity),
                    initial_capital=initial_capital,
                    current_capital=capital,
                    is_paused=True,
                    last_analysis=None,
                ),
            )
        logger.info("Backtest resumed at candle %d", i)

    @staticmethod
    async def _emit(on_progress: ProgressCallback | None, progress: BacktestProgress) -> None:
        """投递进度快照；观察者抛出的异常只记日志，不影响回测。"""
        if on_progress is None:
            return
        try:
            ret = on_progress(progress)
            if inspect.isawaitable(ret):
                await ret
        except Exception as exc:
            logger.error("Progress callback failed at candle %d: %s", progress.current_candle, exc)

    def _cancelled_error(
        self,
        trades: list[Trade],
        equity: list[float],
        initial_capital: float,
        position: PositionState,
        last_price: float | None,
        skipped: list[int],
        i: int,
    ) -> BacktestCancelled:
        logger.warning("Backtest cancelled at candle %d", i)
        # 取消只作用于本次运行，实例可再次 run
        self._cancelled = False
        self._paused = False
        self._resumed.set()
        partial = summarize(
            trades,
            equity,
            initial_capital,
            open_position=position,
            last_price=last_price,
            skipped=skipped,
            periods=self.config.annualization,
        )
        return BacktestCancelled(f"backtest cancelled at candle {i}", partial=partial)

    @staticmethod
    def _log_trade(trade: Trade) -> None:
        if trade.type is TradeSide.BUY:
            logger.info("[%d] Buy signal: price=%.4f size=%.6f %s", trade.timestamp, trade.price, trade.size, trade.indicators)
        else:
            logger.info(
                "[%d] Sell signal: price=%.4f size=%.6f profit=%.4f %s",
                trade.timestamp,
                trade.price,
                trade.size,
                trade.profit or 0.0,
                trade.indicators,
            )


def run_backtest(
    candles: Sequence[Candle],
    initial_capital: float,
    strategy: Strategy,
    *,
    config: BacktestConfig | None = None,
    on_progress: ProgressCallback | None = None,
) -> BacktestResult:
    """同步便捷入口。"""
    return BacktestEngine(strategy, config).run_sync(candles, initial_capital, on_progress)
