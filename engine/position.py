"""单步持仓状态机（纯函数）。

FLAT --(rule.is_buy(total_signal))--> LONG：按当前资金的 size_pct 计算仓位并记一笔 buy；
LONG --(rule.is_sell(total_signal))--> FLAT：按收盘价平仓，实现盈亏计入资金并记一笔 sell。
其余情况状态与资金原样返回。
"""

from __future__ import annotations

from dataclasses import dataclass

from algo.strategy.base import Strategy
from shared.models.models import (
    FLAT,
    IndicatorSnapshot,
    PositionSide,
    PositionState,
    Trade,
    TradeSide,
)

DEFAULT_SIZE_PCT = 0.95


@dataclass(frozen=True)
class StepOutcome:
    position: PositionState
    capital: float
    trade: Trade | None = None


def apply_signal(
    position: PositionState,
    capital: float,
    *,
    price: float,
    timestamp: int,
    total_signal: float,
    rule: Strategy,
    snapshot: IndicatorSnapshot | None = None,
    size_pct: float = DEFAULT_SIZE_PCT,
) -> StepOutcome:
    """根据合成信号推进一步。

    Parameters
    ----------
    position:
        当前持仓状态。
    capital:
        当前（已实现）资金。
    price:
        当前 K 线收盘价，用作成交价。
    total_signal:
        合成信号。
    rule:
        提供 is_buy/is_sell 的策略；开平仓与策略建议共用同一组比较。
    size_pct:
        开仓使用的资金比例；剩余部分只作手续费缓冲，不实际扣除。

    Returns
    -------
    StepOutcome
        新的持仓、资金，以及本步产生的交易（没有则为 None）。
    """
    if position.side is PositionSide.NONE:
        if rule.is_buy(total_signal):
            size = (capital * size_pct) / price
            trade = Trade(
                timestamp=timestamp,
                type=TradeSide.BUY,
                price=price,
                size=size,
                indicators=snapshot,
            )
            return StepOutcome(
                position=PositionState(side=PositionSide.LONG, entry_price=price, size=size),
                capital=capital,
                trade=trade,
            )
        return StepOutcome(position=position, capital=capital)

    if rule.is_sell(total_signal):
        profit = (price - position.entry_price) * position.size
        trade = Trade(
            timestamp=timestamp,
            type=TradeSide.SELL,
            price=price,
            size=position.size,
            profit=profit,
            indicators=snapshot,
        )
        return StepOutcome(position=FLAT, capital=capital + profit, trade=trade)
    return StepOutcome(position=position, capital=capital)
