"""ATR 指标（SMA 版本）。"""

from __future__ import annotations

import numpy as np

from algo.indicators.base import Indicator, empty, sma


class ATRIndicator(Indicator):
    """平均真实波幅。

    真实波幅从第二根 bar 开始计算：
    `tr = max(high - low, |high - prev_close|, |low - prev_close|)`，再取 period 期 SMA。
    只有收盘价时 high = low = close，退化为 `|close - prev_close|`。
    """

    name = "ATR"
    default_period = 14
    max_period = 50
    uses_ohlc = True

    def min_length(self, period: int, **options) -> int:
        return period + 1

    def _compute_ohlc(self, close, high, low, period, settings) -> dict[str, np.ndarray]:
        if len(close) < period + 1:
            return {"value": empty()}
        prev_close = close[:-1]
        tr = np.maximum.reduce(
            [
                high[1:] - low[1:],
                np.abs(high[1:] - prev_close),
                np.abs(low[1:] - prev_close),
            ]
        )
        return {"value": sma(tr, period)}
