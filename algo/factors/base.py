"""指标（Indicators）公共协议与工具函数。

约定：指标层是“纯计算”，输入数值序列，输出一个 IndicatorResult；
不持有状态，同样输入必然得到同样输出。
"""

from __future__ import annotations

from typing import Iterable

import numpy as np

from shared.models.models import Signal


def as_array(values: Iterable[float]) -> np.ndarray:
    """转为 float64 一维数组（不做清洗，NaN 原样保留）。"""
    if isinstance(values, np.ndarray):
        return values.astype(float, copy=False)
    return np.asarray(list(values), dtype=float)


def average(arr: np.ndarray) -> float:
    """算术平均；空数组返回 NaN（不抛错、不告警）。"""
    if arr.size == 0:
        return float("nan")
    return float(arr.sum() / arr.size)


def threshold_signal(value: float, *, buy_above: float | None = None, sell_below: float | None = None,
                     buy_below: float | None = None, sell_above: float | None = None) -> Signal:
    """按阈值把数值映射为方向信号；NaN 一律视为 neutral。"""
    if np.isnan(value):
        return Signal.NEUTRAL
    if sell_above is not None and value > sell_above:
        return Signal.SELL
    if buy_above is not None and value > buy_above:
        return Signal.BUY
    if buy_below is not None and value < buy_below:
        return Signal.BUY
    if sell_below is not None and value < sell_below:
        return Signal.SELL
    return Signal.NEUTRAL
