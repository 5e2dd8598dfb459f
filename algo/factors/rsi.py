"""RSI 指标。"""

from __future__ import annotations

from typing import Iterable

import numpy as np

from algo.factors.base import as_array, average, threshold_signal
from shared.models.models import IndicatorResult

RSI_WEIGHT = 0.30
RSI_OVERBOUGHT = 70.0
RSI_OVERSOLD = 30.0


def rsi_value(prices: Iterable[float], period: int = 14) -> float:
    """相对强弱指数（RSI，简单均值版本）。

    先对整段价格逐步计算涨跌幅（差值 >= 0 记为上涨），再只取最后 `period`
    个涨跌做平均。平均跌幅恰为 0 时返回 100。
    """
    if period <= 0:
        raise ValueError("RSI period must be > 0")
    arr = as_array(prices)
    delta = np.diff(arr)
    rising = delta >= 0
    gains = np.where(rising, delta, 0.0)
    losses = np.where(rising, 0.0, np.abs(delta))

    avg_gain = average(gains[-period:])
    avg_loss = average(losses[-period:])
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return float(100.0 - (100.0 / (1.0 + rs)))


def calculate_rsi(prices: Iterable[float], period: int = 14) -> IndicatorResult:
    value = rsi_value(prices, period)
    return IndicatorResult(
        value=value,
        signal=threshold_signal(value, sell_above=RSI_OVERBOUGHT, buy_below=RSI_OVERSOLD),
        weight=RSI_WEIGHT,
    )
