"""配置架构定义（Pydantic Schema）。

目标：
- 让配置成为“强类型 + 可演进”的边界协议；
- 启动阶段尽早失败，避免 typo/类型错误在长回测或实盘下单时“隐蔽爆炸”；
- 策略权重等不变量（四个权重之和为 1）在这里统一校验。
"""

from __future__ import annotations

import math
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

WEIGHT_SUM_TOLERANCE = 1e-9


class ExchangeConfig(BaseModel):
    """交易所配置。"""
    name: str = "binance"
    mode: Literal["spot", "futures"] = "spot"
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    api_secret: Optional[str] = None
    recv_window: int = Field(default=60000, gt=0)

    model_config = ConfigDict(extra="forbid")


class IndicatorWeights(BaseModel):
    """四个指标的权重。默认值与指标库内置权重一致。"""
    rsi: float = Field(default=0.30, ge=0.0, le=1.0)
    macd: float = Field(default=0.25, ge=0.0, le=1.0)
    bollinger: float = Field(default=0.25, ge=0.0, le=1.0)
    volume: float = Field(default=0.20, ge=0.0, le=1.0)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def _check_sum(self) -> "IndicatorWeights":
        total = self.rsi + self.macd + self.bollinger + self.volume
        if not math.isclose(total, 1.0, rel_tol=0.0, abs_tol=WEIGHT_SUM_TOLERANCE):
            raise ValueError(f"indicator weights must sum to 1.0, got {total}")
        return self

    def as_dict(self) -> dict[str, float]:
        return {"rsi": self.rsi, "macd": self.macd, "bollinger": self.bollinger, "volume": self.volume}


class StrategyConfig(BaseModel):
    """策略配置。

    说明：
    - 同一个 signal_threshold 同时决定建议（recommendation）与回测实际开平仓；
    - YAML 中允许使用原始驼峰写法（rsiPeriod/signalThreshold），在此统一转成蛇形。
    """
    type: str = "weighted"
    rsi_period: int = Field(default=14, ge=2)
    signal_threshold: float = Field(default=0.6, gt=0.0, le=1.0)
    weights: IndicatorWeights = Field(default_factory=IndicatorWeights)

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _accept_camel_case(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        aliases = {"rsiPeriod": "rsi_period", "signalThreshold": "signal_threshold"}
        out = dict(data)
        for src, dst in aliases.items():
            if src in out and dst not in out:
                out[dst] = out.pop(src)
        return out


class BacktestConfig(BaseModel):
    """回测引擎配置。"""
    initial_capital: float = Field(default=10000.0, gt=0.0)
    position_size_pct: float = Field(default=0.95, gt=0.0, le=1.0)
    min_warmup: int = Field(default=26, ge=1)
    progress_every: int = Field(default=50, ge=1)
    yield_every: int = Field(default=100, ge=1)
    pause_poll_interval: float = Field(default=0.1, gt=0.0)
    annualization: int = Field(default=252, ge=1)

    model_config = ConfigDict(extra="forbid")


class DataConfig(BaseModel):
    """数据获取与数据集存储配置。"""
    db_path: str = "dataset/datasets.sqlite3"
    binance_base_url: str = "https://api.binance.com"
    batch_limit: int = Field(default=1000, ge=1, le=1000)
    batch_pause_secs: float = Field(default=0.1, ge=0.0)
    request_timeout: float = Field(default=10.0, gt=0.0)

    model_config = ConfigDict(extra="forbid")


class AppConfig(BaseModel):
    """应用总配置。"""
    symbol: str = "BTCUSDT"
    timeframe: str = "5m"

    exchange: ExchangeConfig = Field(default_factory=ExchangeConfig)
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)
    backtest: BacktestConfig = Field(default_factory=BacktestConfig)
    data: DataConfig = Field(default_factory=DataConfig)

    model_config = ConfigDict(extra="forbid", validate_assignment=True)
