"""指标注册表：名称 -> 指标实现与默认权重。"""

from __future__ import annotations

from typing import Callable

from algo.factors.bollinger import BOLLINGER_WEIGHT, calculate_bollinger
from algo.factors.ema import MACD_WEIGHT, calculate_macd
from algo.factors.rsi import RSI_WEIGHT, calculate_rsi
from algo.factors.volume import VOLUME_WEIGHT, calculate_volume_signal
from shared.models.models import IndicatorResult

# 合成信号的固定顺序，同时也是求和顺序
INDICATOR_ORDER: tuple[str, ...] = ("rsi", "macd", "bollinger", "volume")

DEFAULT_WEIGHTS: dict[str, float] = {
    "rsi": RSI_WEIGHT,
    "macd": MACD_WEIGHT,
    "bollinger": BOLLINGER_WEIGHT,
    "volume": VOLUME_WEIGHT,
}

_REGISTRY: dict[str, Callable[..., IndicatorResult]] = {
    "rsi": calculate_rsi,
    "macd": calculate_macd,
    "bollinger": calculate_bollinger,
    "volume": calculate_volume_signal,
}


def get_indicator(name: str) -> Callable[..., IndicatorResult]:
    if name not in _REGISTRY:
        raise ValueError(f"Unknown indicator: {name}")
    return _REGISTRY[name]


def list_indicators() -> list[str]:
    return list(INDICATOR_ORDER)
