"""核心数据结构：Candle / 指标结果 / 交易记录 / 回测进度与结果。

约定：
- Candle、Trade、BacktestResult 一经创建不可变（frozen dataclass）；
- 时间戳统一为毫秒级整数（与交易所 K 线 open time 一致）。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping


class Signal(str, Enum):
    """指标/策略给出的方向信号。"""

    BUY = "buy"
    SELL = "sell"
    NEUTRAL = "neutral"

    @property
    def direction(self) -> int:
        """buy -> +1, sell -> -1, neutral -> 0。"""
        if self is Signal.BUY:
            return 1
        if self is Signal.SELL:
            return -1
        return 0


class TradeSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class PositionSide(str, Enum):
    """持仓状态：只允许空仓或单一多头（不加仓、不做空）。"""

    NONE = "none"
    LONG = "long"


@dataclass(frozen=True)
class Candle:
    """K 线数据（OHLCV）。"""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any]) -> "Candle":
        return cls(
            timestamp=int(row["timestamp"]),
            open=float(row["open"]),
            high=float(row["high"]),
            low=float(row["low"]),
            close=float(row["close"]),
            volume=float(row["volume"]),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
        }


@dataclass(frozen=True)
class IndicatorResult:
    """单个指标的输出。"""

    value: float
    signal: Signal
    weight: float


@dataclass(frozen=True)
class StrategyResult:
    """加权合成后的策略结果。"""

    total_signal: float
    recommendation: Signal
    rsi: IndicatorResult
    macd: IndicatorResult
    bollinger: IndicatorResult
    volume: IndicatorResult

    @property
    def indicators(self) -> dict[str, IndicatorResult]:
        return {
            "rsi": self.rsi,
            "macd": self.macd,
            "bollinger": self.bollinger,
            "volume": self.volume,
        }

    def snapshot(self) -> "IndicatorSnapshot":
        return IndicatorSnapshot(
            rsi=self.rsi.value,
            macd=self.macd.value,
            bollinger_position=self.bollinger.value,
            volume_signal=self.volume.value,
            total_signal=self.total_signal,
        )


@dataclass(frozen=True)
class IndicatorSnapshot:
    """触发交易/上报进度时的指标数值快照。"""

    rsi: float
    macd: float
    bollinger_position: float
    volume_signal: float
    total_signal: float


@dataclass(frozen=True)
class Trade:
    """成交记录（append-only）。profit 仅在平仓记录上存在。"""

    timestamp: int
    type: TradeSide
    price: float
    size: float
    profit: float | None = None
    indicators: IndicatorSnapshot | None = None


@dataclass(frozen=True)
class PositionState:
    """引擎持仓状态；entry_price/size 仅在 LONG 时有效。"""

    side: PositionSide = PositionSide.NONE
    entry_price: float = 0.0
    size: float = 0.0

    @property
    def is_long(self) -> bool:
        return self.side is PositionSide.LONG

    def unrealized(self, price: float) -> float:
        if not self.is_long or not math.isfinite(price):
            return 0.0
        return (price - self.entry_price) * self.size


FLAT = PositionState()


@dataclass(frozen=True)
class BacktestProgress:
    """回测进度快照（发给观察者后引擎不再持有）。"""

    current_candle: int
    total_candles: int
    trades: tuple[Trade, ...]
    equity: tuple[float, ...]
    initial_capital: float
    current_capital: float
    is_paused: bool
    last_analysis: IndicatorSnapshot | None = None


@dataclass(frozen=True)
class BacktestResult:
    """回测终态汇总。

    open_position / unrealized_profit 仅用于展示期末未平仓头寸，
    不计入 profit/win_rate 等已实现统计。
    """

    total_trades: int
    winning_trades: int
    losing_trades: int
    win_rate: float
    profit: float
    max_drawdown: float
    sharpe_ratio: float
    trades: tuple[Trade, ...]
    equity: tuple[float, ...]
    open_position: PositionState = FLAT
    unrealized_profit: float = 0.0
    skipped_candles: tuple[int, ...] = ()

    @property
    def final_capital(self) -> float:
        return self.equity[-1] if self.equity else 0.0
