"""布林带指标。"""

from __future__ import annotations

from typing import Iterable, NamedTuple

import numpy as np

from algo.factors.base import as_array, average
from shared.models.models import IndicatorResult, Signal

BOLLINGER_WEIGHT = 0.25
BOLLINGER_PERIOD = 20
BOLLINGER_STDDEV = 2.0


class BollingerBands(NamedTuple):
    upper: float
    middle: float
    lower: float


def bollinger_bands(
    prices: Iterable[float],
    period: int = BOLLINGER_PERIOD,
    num_std: float = BOLLINGER_STDDEV,
) -> BollingerBands:
    """最后 `period` 个价格的 SMA ± num_std 倍总体标准差（ddof=0）。"""
    window = as_array(prices)[-period:]
    middle = average(window)
    std = float(np.sqrt(average((window - middle) ** 2)))
    return BollingerBands(upper=middle + num_std * std, middle=middle, lower=middle - num_std * std)


def calculate_bollinger(prices: Iterable[float]) -> IndicatorResult:
    """当前价格（最后一个）与上下轨比较：突破上轨卖，跌破下轨买。"""
    arr = as_array(prices)
    bands = bollinger_bands(arr)
    current = float(arr[-1]) if arr.size else float("nan")
    if current > bands.upper:
        signal = Signal.SELL
    elif current < bands.lower:
        signal = Signal.BUY
    else:
        signal = Signal.NEUTRAL
    return IndicatorResult(value=current, signal=signal, weight=BOLLINGER_WEIGHT)
