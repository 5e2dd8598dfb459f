from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from shared.models.models import Candle, StrategyResult


@dataclass(frozen=True)
class MarketWindow:
    """截至当前 K 线（含）的前缀窗口：收盘价与成交量两条平行序列。"""

    prices: np.ndarray
    volumes: np.ndarray
    timestamp: int

    @classmethod
    def from_candles(cls, candles: Sequence[Candle], end: int | None = None) -> "MarketWindow":
        end = len(candles) - 1 if end is None else end
        window = candles[: end + 1]
        return cls(
            prices=np.asarray([float(c.close) for c in window], dtype=float),
            volumes=np.asarray([float(c.volume) for c in window], dtype=float),
            timestamp=int(window[-1].timestamp),
        )

    @property
    def current_price(self) -> float:
        return float(self.prices[-1])


class Strategy(ABC):
    signal_threshold: float
    warmup: int

    @abstractmethod
    def analyze(self, window: MarketWindow) -> StrategyResult:
        """
        输入一个市场窗口，输出合成信号与各指标结果。
        """
        ...

    def is_buy(self, total_signal: float) -> bool:
        return total_signal > self.signal_threshold

    def is_sell(self, total_signal: float) -> bool:
        return total_signal < -self.signal_threshold
