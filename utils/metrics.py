"""回测绩效指标计算（纯函数，可对完成态或中途快照重复调用）。"""

from __future__ import annotations

import math
from dataclasses import asdict
from statistics import mean, pstdev
from typing import Any, Iterable, Sequence

from shared.models.models import FLAT, BacktestResult, PositionState, Trade, TradeSide

TRADING_DAYS = 252


def compute_drawdown(equity: Sequence[float]) -> float:
    """最大回撤（峰值到谷值的比例，0~1）。"""
    if not equity:
        return 0.0
    peak = equity[0]
    max_dd = 0.0
    for eq in equity:
        peak = max(peak, eq)
        dd = (peak - eq) / peak if peak else 0.0
        max_dd = max(max_dd, dd)
    return max_dd


def step_returns(equity: Sequence[float]) -> list[float]:
    """逐步收益率；首项固定为 0，与权益曲线等长。"""
    returns: list[float] = []
    for i, eq in enumerate(equity):
        if i == 0:
            returns.append(0.0)
            continue
        prev = equity[i - 1]
        returns.append((eq - prev) / prev if prev else 0.0)
    return returns


def compute_sharpe(equity: Sequence[float], periods: int = TRADING_DAYS) -> float:
    """年化 Sharpe：mean / 总体标准差 × sqrt(periods)；标准差为 0 时返回 0。"""
    returns = step_returns(equity)
    if not returns:
        return 0.0
    mu = mean(returns)
    sigma = pstdev(returns)
    if sigma == 0:
        return 0.0
    return (mu / sigma) * math.sqrt(periods)


def compute_trade_metrics(trades: Iterable[Trade]) -> dict:
    """按平仓记录统计胜负（profit > 0 为盈，其余为亏）。"""
    winning = 0
    losing = 0
    for t in trades:
        if t.type is not TradeSide.SELL:
            continue
        if (t.profit or 0.0) > 0:
            winning += 1
        else:
            losing += 1
    total = winning + losing
    win_rate = (winning / total) * 100 if total else 0.0
    return {
        "total_trades": total,
        "winning_trades": winning,
        "losing_trades": losing,
        "win_rate": win_rate,
    }


def summarize(
    trades: Sequence[Trade],
    equity: Sequence[float],
    initial_capital: float,
    *,
    open_position: PositionState = FLAT,
    last_price: float | None = None,
    skipped: Iterable[int] = (),
    periods: int = TRADING_DAYS,
) -> BacktestResult:
    """由成交记录与权益曲线生成 BacktestResult。

    Parameters
    ----------
    trades:
        append-only 的成交记录。
    equity:
        权益曲线，首项为初始资金。
    initial_capital:
        初始资金。
    open_position:
        期末仍未平仓的头寸，只用于计算 unrealized_profit。
    last_price:
        最后一根已处理 K 线的收盘价。
    skipped:
        处理失败而被跳过的 K 线下标。
    """
    equity = tuple(float(e) for e in equity) or (float(initial_capital),)
    trade_metrics = compute_trade_metrics(trades)
    unrealized = open_position.unrealized(last_price) if last_price is not None else 0.0
    return BacktestResult(
        total_trades=trade_metrics["total_trades"],
        winning_trades=trade_metrics["winning_trades"],
        losing_trades=trade_metrics["losing_trades"],
        win_rate=trade_metrics["win_rate"],
        profit=equity[-1] - initial_capital,
        max_drawdown=compute_drawdown(equity) * 100,
        sharpe_ratio=compute_sharpe(equity, periods),
        trades=tuple(trades),
        equity=equity,
        open_position=open_position,
        unrealized_profit=unrealized,
        skipped_candles=tuple(skipped),
    )


def result_to_dict(result: BacktestResult, *, include_series: bool = False) -> dict[str, Any]:
    """转成可 JSON 序列化的 dict（枚举转字符串）。"""
    out: dict[str, Any] = {
        "total_trades": result.total_trades,
        "winning_trades": result.winning_trades,
        "losing_trades": result.losing_trades,
        "win_rate": result.win_rate,
        "profit": result.profit,
        "final_capital": result.final_capital,
        "max_drawdown": result.max_drawdown,
        "sharpe_ratio": result.sharpe_ratio,
        "open_position": {
            "side": result.open_position.side.value,
            "entry_price": result.open_position.entry_price,
            "size": result.open_position.size,
        },
        "unrealized_profit": result.unrealized_profit,
        "skipped_candles": list(result.skipped_candles),
    }
    if include_series:
        trades = []
        for t in result.trades:
            row = asdict(t)
            row["type"] = t.type.value
            trades.append(row)
        out["trades"] = trades
        out["equity"] = list(result.equity)
    return out
