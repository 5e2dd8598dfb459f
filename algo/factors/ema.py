"""EMA 与 MACD 指标。"""

from __future__ import annotations

from typing import Iterable

from algo.factors.base import as_array, average, threshold_signal
from shared.models.models import IndicatorResult

MACD_WEIGHT = 0.25
MACD_FAST = 12
MACD_SLOW = 26


def ema(prices: Iterable[float], period: int) -> float:
    """指数移动平均（EMA）的最后一个值。

    初值取前 `period` 个价格的简单均值，之后按 k = 2/(period+1) 递推。
    """
    if period <= 0:
        raise ValueError("EMA period must be > 0")
    arr = as_array(prices)
    multiplier = 2.0 / (period + 1)
    value = average(arr[:period])
    for price in arr[period:]:
        value = (float(price) - value) * multiplier + value
    return value


def macd_value(prices: Iterable[float]) -> float:
    arr = as_array(prices)
    return ema(arr, MACD_FAST) - ema(arr, MACD_SLOW)


def calculate_macd(prices: Iterable[float]) -> IndicatorResult:
    """MACD = EMA(12) - EMA(26)；>0 买，<0 卖，恰为 0 中性。"""
    value = macd_value(prices)
    return IndicatorResult(
        value=value,
        signal=threshold_signal(value, buy_above=0.0, sell_below=0.0),
        weight=MACD_WEIGHT,
    )
