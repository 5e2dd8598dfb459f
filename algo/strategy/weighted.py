"""加权多指标策略（RSI + MACD + 布林带 + 成交量）。"""

from __future__ import annotations

from dataclasses import replace

from algo.factors.bollinger import calculate_bollinger
from algo.factors.ema import MACD_SLOW, calculate_macd
from algo.factors.registry import INDICATOR_ORDER
from algo.factors.rsi import calculate_rsi
from algo.factors.volume import calculate_volume_signal
from algo.strategy.base import MarketWindow, Strategy
from shared.config.schema import IndicatorWeights
from shared.models.models import IndicatorResult, Signal, StrategyResult


class WeightedStrategy(Strategy):
    """四指标加权合成策略。

    每个指标方向映射为 +1/0/-1 后乘以权重再求和得到 total_signal（∈ [-1, 1]）；
    total_signal 超过 signal_threshold 为买入建议，低于 -signal_threshold 为卖出建议。

    Parameters
    ----------
    rsi_period:
        RSI 周期（>= 2）。
    signal_threshold:
        开平仓阈值（(0, 1]），建议与回测执行共用这一份。
    weights:
        可选的自定义权重；四项之和必须为 1。为 None 时使用各指标内置权重。
    """

    def __init__(
        self,
        rsi_period: int = 14,
        signal_threshold: float = 0.6,
        weights: IndicatorWeights | None = None,
    ):
        if int(rsi_period) < 2:
            raise ValueError("rsi_period must be >= 2")
        if not 0.0 < float(signal_threshold) <= 1.0:
            raise ValueError("signal_threshold must be in (0, 1]")
        self.rsi_period = int(rsi_period)
        self.signal_threshold = float(signal_threshold)
        self.weights = weights
        # MACD 需要 26 根，RSI 需要 period + 1 根
        self.warmup = max(self.rsi_period + 1, MACD_SLOW)

    def _weighted(self, name: str, result: IndicatorResult) -> IndicatorResult:
        if self.weights is None:
            return result
        return replace(result, weight=getattr(self.weights, name))

    def analyze(self, window: MarketWindow) -> StrategyResult:
        rsi = self._weighted("rsi", calculate_rsi(window.prices, self.rsi_period))
        macd = self._weighted("macd", calculate_macd(window.prices))
        bollinger = self._weighted("bollinger", calculate_bollinger(window.prices))
        volume = self._weighted("volume", calculate_volume_signal(window.volumes))

        results = {"rsi": rsi, "macd": macd, "bollinger": bollinger, "volume": volume}
        total_signal = 0.0
        for name in INDICATOR_ORDER:
            total_signal += results[name].signal.direction * results[name].weight

        if self.is_buy(total_signal):
            recommendation = Signal.BUY
        elif self.is_sell(total_signal):
            recommendation = Signal.SELL
        else:
            recommendation = Signal.NEUTRAL

        return StrategyResult(
            total_signal=total_signal,
            recommendation=recommendation,
            rsi=rsi,
            macd=macd,
            bollinger=bollinger,
            volume=volume,
        )

    def describe(self) -> dict:
        return {
            "type": "weighted",
            "rsi_period": self.rsi_period,
            "signal_threshold": self.signal_threshold,
            "weights": self.weights.as_dict() if self.weights else None,
        }
