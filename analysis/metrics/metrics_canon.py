from __future__ import annotations

from typing import Any

CANONICAL_METRIC_KEYS: list[str] = [
    "total_trades",
    "winning_trades",
    "losing_trades",
    "win_rate",
    "total_pnl",
    "total_return",
    "annualized_return",
    "gross_profit",
    "gross_loss",
    "profit_factor",
    "max_drawdown",
    "sharpe",
    "sortino",
    "calmar",
    "average_win",
    "average_loss",
    "largest_win",
    "largest_loss",
    "average_holding_time",
    "expectancy",
    "total_commission",
    "total_slippage",
    "max_consecutive_wins",
    "max_consecutive_losses",
    "exposure",
]

_INT_KEYS = {"total_trades", "winning_trades", "losing_trades", "max_consecutive_wins", "max_consecutive_losses"}


def canonicalize_metrics(metrics: dict[str, Any] | None) -> dict[str, Any]:
    """将 metrics 规范化为固定 key 集合（缺失补默认值）。"""
    m = metrics or {}
    out: dict[str, Any] = {}
    for k in CANONICAL_METRIC_KEYS:
        v = m.get(k)
        if v is None:
            v = 0 if k in _INT_KEYS else 0.0
        out[k] = v
    return out


def validate_metrics_schema(metrics: dict[str, Any]) -> None:
    """最小 schema 校验：确保 canonical keys 齐全。"""
    missing = [k for k in CANONICAL_METRIC_KEYS if k not in metrics]
    if missing:
        raise ValueError(f"metrics missing keys: {missing}")
