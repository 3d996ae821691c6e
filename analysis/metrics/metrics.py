"""回测绩效指标计算。

口径：
- 胜负按 `net_pnl`（扣除手续费与滑点后）判定：> 0 为盈利，<= 0 为亏损；
- 无亏损交易且至少一笔盈利时，profit factor 取哨兵值 `PROFIT_FACTOR_SENTINEL`；无交易时为 0；
- Sharpe / Sortino 基于逐 bar 权益收益率，按 `sqrt(periods_per_year(timeframe))` 年化，
  周期无法解析时按权益曲线时间间隔的中位数估计；波动为 0 时取 0；
- 年化收益按 bar 数线性折算：`total_return * periods_per_year / bar 数`；Calmar = 年化收益 / 最大回撤，
  回撤为 0 时取 0；
- 月度收益按 UTC 月份分桶：月末权益相对上月末（首月相对初始资金）的变化。
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from statistics import mean, median, pstdev
from typing import Any, Sequence

from analysis.metrics.metrics_canon import canonicalize_metrics
from shared.models.models import EquityPoint, Trade
from shared.utils.timeframe import periods_per_year

PROFIT_FACTOR_SENTINEL = 999.0
DEFAULT_TRADING_DAYS = 252.0


def _estimated_periods_per_year(timestamps: Sequence[datetime]) -> float:
    """根据时间戳间隔的中位数估计每年 bar 数（按 365 天）。"""
    deltas = []
    for i in range(1, len(timestamps)):
        dt = (timestamps[i] - timestamps[i - 1]).total_seconds()
        if dt > 0:
            deltas.append(dt)
    if not deltas:
        return 365.0
    med = median(deltas)
    return 365.0 * 86400.0 / med if med > 0 else 365.0


def _resolve_periods_per_year(
    timeframe: str | None,
    equity_curve: Sequence[EquityPoint],
    trading_days_per_year: float,
) -> float:
    ppy = periods_per_year(timeframe or "", trading_days_per_year=trading_days_per_year)
    if ppy is None:
        ppy = _estimated_periods_per_year([p.timestamp for p in equity_curve])
    return ppy


def annualization_factor(
    timeframe: str | None,
    equity_curve: Sequence[EquityPoint],
    *,
    trading_days_per_year: float = DEFAULT_TRADING_DAYS,
) -> float:
    return math.sqrt(_resolve_periods_per_year(timeframe, equity_curve, trading_days_per_year))


def _bar_returns(equity_curve: Sequence[EquityPoint]) -> list[float]:
    returns = []
    for i in range(1, len(equity_curve)):
        prev = equity_curve[i - 1].equity
        curr = equity_curve[i].equity
        if prev > 0:
            returns.append(curr / prev - 1)
    return returns


def compute_equity_metrics(
    equity_curve: Sequence[EquityPoint],
    *,
    initial_capital: float,
    timeframe: str | None = None,
    trading_days_per_year: float = DEFAULT_TRADING_DAYS,
) -> dict[str, float]:
    """计算权益曲线指标（总收益、年化收益、最大回撤、Sharpe、Sortino、Calmar、持仓暴露）。"""
    if not equity_curve:
        return {
            "total_return": 0.0,
            "annualized_return": 0.0,
            "max_drawdown": 0.0,
            "sharpe": 0.0,
            "sortino": 0.0,
            "calmar": 0.0,
            "exposure": 0.0,
        }

    final_equity = equity_curve[-1].equity
    total_return = (final_equity / initial_capital - 1) if initial_capital else 0.0
    max_dd = max(p.drawdown for p in equity_curve)
    exposure = sum(1 for p in equity_curve if p.position != "none") / len(equity_curve)
    ppy = _resolve_periods_per_year(timeframe, equity_curve, trading_days_per_year)
    annualized = total_return * ppy / len(equity_curve)
    calmar = annualized / max_dd if max_dd > 0 else 0.0

    returns = _bar_returns(equity_curve)
    sharpe = 0.0
    sortino = 0.0
    if len(returns) > 1:
        factor = math.sqrt(ppy)
        mu = mean(returns)
        sigma = pstdev(returns)
        sharpe = (mu / sigma) * factor if sigma > 0 else 0.0
        downside = math.sqrt(mean(min(r, 0.0) ** 2 for r in returns))
        sortino = (mu / downside) * factor if downside > 0 else 0.0

    return {
        "total_return": total_return,
        "annualized_return": annualized,
        "max_drawdown": max_dd,
        "sharpe": sharpe,
        "sortino": sortino,
        "calmar": calmar,
        "exposure": exposure,
    }


def monthly_returns(equity_curve: Sequence[EquityPoint], *, initial_capital: float) -> dict[str, float]:
    """
    按月（UTC，"YYYY-MM"）汇总收益率。

    每月取最后一个权益点，相对上个月末权益计算；第一个月以 `initial_capital` 为基准。
    基准权益 <= 0 时该月记 0。
    """
    month_end: dict[str, float] = {}
    for p in equity_curve:
        ts = p.timestamp
        if ts.tzinfo is not None:
            ts = ts.astimezone(timezone.utc)
        month_end[ts.strftime("%Y-%m")] = p.equity

    out: dict[str, float] = {}
    prev = float(initial_capital)
    for month, equity in month_end.items():
        out[month] = equity / prev - 1 if prev > 0 else 0.0
        prev = equity
    return out


def _max_streak(flags: Sequence[bool], target: bool) -> int:
    best = run = 0
    for f in flags:
        run = run + 1 if f == target else 0
        best = max(best, run)
    return best


def compute_trade_metrics(
    trades: Sequence[Trade],
    *,
    profit_factor_sentinel: float = PROFIT_FACTOR_SENTINEL,
) -> dict[str, Any]:
    """计算交易维度指标（胜率、盈亏因子、平均盈亏、持仓时长等）。"""
    pnls = [t.net_pnl for t in trades]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p <= 0]
    total = len(pnls)

    gross_profit = sum(wins)
    gross_loss = abs(sum(losses))
    if gross_loss > 0:
        profit_factor = gross_profit / gross_loss
    elif wins:
        profit_factor = float(profit_factor_sentinel)
    else:
        profit_factor = 0.0

    flags = [p > 0 for p in pnls]
    return {
        "total_trades": total,
        "winning_trades": len(wins),
        "losing_trades": len(losses),
        "win_rate": len(wins) / total if total else 0.0,
        "total_pnl": sum(pnls),
        "gross_profit": gross_profit,
        "gross_loss": gross_loss,
        "profit_factor": profit_factor,
        "average_win": mean(wins) if wins else 0.0,
        "average_loss": mean(losses) if losses else 0.0,
        "largest_win": max(wins) if wins else 0.0,
        "largest_loss": min(losses) if losses else 0.0,
        "average_holding_time": mean(t.holding_time.total_seconds() for t in trades) if trades else 0.0,
        "expectancy": mean(pnls) if pnls else 0.0,
        "total_commission": sum(t.commission for t in trades),
        "total_slippage": sum(t.slippage for t in trades),
        "max_consecutive_wins": _max_streak(flags, True),
        "max_consecutive_losses": _max_streak(flags, False),
    }


def compute_metrics(
    trades: Sequence[Trade],
    equity_curve: Sequence[EquityPoint],
    *,
    initial_capital: float,
    timeframe: str | None = None,
    config: Any = None,
) -> dict[str, Any]:
    """
    合并权益与交易指标，输出 canonical key 集合。

    Parameters
    ----------
    trades:
        已平仓交易。
    equity_curve:
        每个已处理 K 线一个 EquityPoint。
    initial_capital:
        初始资金（总收益基准）。
    timeframe:
        K 线周期，用于 Sharpe/Sortino 年化。
    config:
        可选 EngineConfig（取 profit_factor_sentinel / trading_days_per_year）。
    """
    sentinel = float(getattr(config, "profit_factor_sentinel", PROFIT_FACTOR_SENTINEL))
    tdpy = float(getattr(config, "trading_days_per_year", DEFAULT_TRADING_DAYS))
    out: dict[str, Any] = {}
    out.update(compute_trade_metrics(trades, profit_factor_sentinel=sentinel))
    out.update(
        compute_equity_metrics(
            equity_curve,
            initial_capital=initial_capital,
            timeframe=timeframe,
            trading_days_per_year=tdpy,
        )
    )
    return canonicalize_metrics(out)
