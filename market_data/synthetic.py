"""确定性的合成 K 线（演示与测试用）。"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List

import numpy as np

from market_data.models import Candle
from shared.utils.timeframe import timeframe_to_seconds

DEFAULT_START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def sine_candles(
    n: int = 200,
    *,
    symbol: str = "BTC/USDT",
    timeframe: str = "1h",
    base: float = 100.0,
    amplitude: float = 10.0,
    cycle: int = 40,
    start: datetime = DEFAULT_START,
    volume: float = 1000.0,
) -> List[Candle]:
    """
    正弦收盘价序列：`close[i] = base + amplitude * sin(2π i / cycle)`。

    open 取上一根收盘价，high/low 在 open/close 外侧各留 `amplitude * 1%` 的影线；
    同样的参数总是生成同样的序列。
    """
    seconds = timeframe_to_seconds(timeframe)
    if seconds is None:
        raise ValueError(f"Unsupported timeframe: {timeframe}")
    step = timedelta(seconds=seconds)
    idx = np.arange(n, dtype=float)
    closes = base + amplitude * np.sin(2 * np.pi * idx / cycle)
    opens = np.concatenate(([closes[0]], closes[:-1]))
    wick = abs(amplitude) * 0.01

    candles: list[Candle] = []
    for i in range(n):
        o, c = float(opens[i]), float(closes[i])
        candles.append(
            Candle(
                symbol=symbol,
                timeframe=timeframe,
                timestamp=start + i * step,
                open=o,
                high=max(o, c) + wick,
                low=min(o, c) - wick,
                close=c,
                volume=volume,
            )
        )
    return candles


def candles_from_closes(
    closes: list[float],
    *,
    symbol: str = "TEST",
    timeframe: str = "1h",
    start: datetime = DEFAULT_START,
    volume: float = 1000.0,
) -> List[Candle]:
    """用收盘价直接构造 K 线（open = high = low = close）。"""
    seconds = timeframe_to_seconds(timeframe) or 3600
    step = timedelta(seconds=seconds)
    return [
        Candle(
            symbol=symbol,
            timeframe=timeframe,
            timestamp=start + i * step,
            open=float(c),
            high=float(c),
            low=float(c),
            close=float(c),
            volume=volume,
        )
        for i, c in enumerate(closes)
    ]
