"""K 线周期解析（"1m" / "4h" / "1d" / "1w" -> 秒）。"""

from __future__ import annotations

import re

_UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
    "w": 7 * 86400,
    "M": 30 * 86400,
}

_TF_RE = re.compile(r"^\s*(\d+)\s*([smhdwM])\s*$")

SUPPORTED_TIMEFRAMES = ("1m", "5m", "15m", "30m", "1h", "4h", "1d", "1w")


def timeframe_to_seconds(timeframe: str) -> int | None:
    """解析周期字符串；无法识别时返回 None（调用方自行降级）。"""
    if not isinstance(timeframe, str):
        return None
    m = _TF_RE.match(timeframe)
    if not m:
        return None
    qty = int(m.group(1))
    if qty <= 0:
        return None
    return qty * _UNIT_SECONDS[m.group(2)]


def periods_per_year(timeframe: str, *, trading_days_per_year: float = 252.0) -> float | None:
    """
    每年的 bar 数量（Sharpe 年化用）。

    - 日内及日线：按交易日折算，`trading_days_per_year * 86400 / bar_seconds`；
    - 周线及以上：按自然年折算，`365 * 86400 / bar_seconds`。
    """
    seconds = timeframe_to_seconds(timeframe)
    if seconds is None:
        return None
    if seconds <= 86400:
        return float(trading_days_per_year) * 86400.0 / seconds
    return 365.0 * 86400.0 / seconds
