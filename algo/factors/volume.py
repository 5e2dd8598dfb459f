"""成交量放大/萎缩信号。"""

from __future__ import annotations

from typing import Iterable

import numpy as np

from algo.factors.base import as_array, average, threshold_signal
from shared.models.models import IndicatorResult

VOLUME_WEIGHT = 0.20
VOLUME_RECENT = 5
VOLUME_HISTORY = 20
VOLUME_SURGE = 1.5
VOLUME_DRY_UP = 0.5


def volume_ratio(volumes: Iterable[float]) -> float:
    """最近 5 根均量 / 之前 15 根（[-20, -5)）均量。

    历史均量为 0 时按 IEEE 语义：近期量 > 0 得 inf，两者都为 0 得 nan。
    """
    arr = as_array(volumes)
    recent = average(arr[-VOLUME_RECENT:])
    historical = average(arr[-VOLUME_HISTORY:-VOLUME_RECENT])
    with np.errstate(divide="ignore", invalid="ignore"):
        return float(np.float64(recent) / np.float64(historical))


def calculate_volume_signal(volumes: Iterable[float]) -> IndicatorResult:
    value = volume_ratio(volumes)
    return IndicatorResult(
        value=value,
        signal=threshold_signal(value, buy_above=VOLUME_SURGE, sell_below=VOLUME_DRY_UP),
        weight=VOLUME_WEIGHT,
    )
