"""策略注册表：字符串 -> Strategy 实现，以及可供前端/CLI 展示的参数元信息。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Mapping

from algo.strategy.base import Strategy
from algo.strategy.weighted import WeightedStrategy
from shared.config.schema import StrategyConfig


@dataclass(frozen=True)
class ParameterSpec:
    """单个可调参数的描述。"""
    default: float
    min: float
    max: float
    step: float
    description: str


@dataclass(frozen=True)
class StrategySpec:
    name: str
    type: str
    description: str
    parameters: dict[str, ParameterSpec]


_REGISTRY: dict[str, tuple[StrategySpec, Callable[[StrategyConfig], Strategy]]] = {}


def register_strategy(spec: StrategySpec, factory: Callable[[StrategyConfig], Strategy]) -> None:
    _REGISTRY[spec.type] = (spec, factory)


def available_strategies() -> list[StrategySpec]:
    return [spec for spec, _ in _REGISTRY.values()]


def build_strategy(cfg: StrategyConfig | Mapping[str, Any] | None) -> Strategy:
    """从配置构建策略实例。

    支持：
    - StrategyConfig（来自 shared.config.schema）
    - dict（含 type + 参数字段，会走一遍 schema 校验）
    - None（使用默认 weighted 策略）
    """
    if cfg is None:
        cfg = StrategyConfig()
    elif isinstance(cfg, Mapping):
        cfg = StrategyConfig.model_validate(dict(cfg))
    elif not isinstance(cfg, StrategyConfig):
        raise ValueError("strategy cfg must be StrategyConfig or dict")

    if cfg.type not in _REGISTRY:
        raise ValueError(f"Unknown strategy: {cfg.type}")
    _, factory = _REGISTRY[cfg.type]
    return factory(cfg)


def _build_weighted(cfg: StrategyConfig) -> Strategy:
    return WeightedStrategy(
        rsi_period=cfg.rsi_period,
        signal_threshold=cfg.signal_threshold,
        weights=cfg.weights,
    )


WEIGHTED_SPEC = StrategySpec(
    name="Weighted Multi-Indicator",
    type="weighted",
    description="Combines RSI, MACD, Bollinger Bands and volume analysis with customizable weights",
    parameters={
        "rsi_period": ParameterSpec(14, 2, 30, 1, "RSI calculation period"),
        "signal_threshold": ParameterSpec(0.6, 0.1, 1, 0.1, "Signal strength threshold for trade execution"),
        "rsi_weight": ParameterSpec(0.3, 0, 1, 0.05, "Weight of RSI signal"),
        "macd_weight": ParameterSpec(0.25, 0, 1, 0.05, "Weight of MACD signal"),
        "bollinger_weight": ParameterSpec(0.25, 0, 1, 0.05, "Weight of Bollinger Bands signal"),
        "volume_weight": ParameterSpec(0.2, 0, 1, 0.05, "Weight of volume signal"),
    },
)

# 默认注册
register_strategy(WEIGHTED_SPEC, _build_weighted)
