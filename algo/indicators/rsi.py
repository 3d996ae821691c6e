"""RSI 指标（Wilder 平滑）。"""

from __future__ import annotations

import numpy as np

from algo.indicators.base import SingleSeriesIndicator, empty, seeded_ewm

# 平均跌幅为 0 时 rs = inf：有涨幅取 100，完全无波动取中性 50
RSI_NO_LOSS_VALUE = 100.0
RSI_FLAT_VALUE = 50.0


class RSIIndicator(SingleSeriesIndicator):
    """相对强弱指数。

    先用前 period 个涨跌幅的均值作为种子，之后按
    `avg = (avg * (period - 1) + new) / period` 平滑；输出长度 `len - period`。
    """

    name = "RSI"
    default_period = 14
    max_period = 50

    def min_length(self, period: int, **options) -> int:
        return period + 1

    def transform(self, values: np.ndarray, period: int) -> np.ndarray:
        if len(values) < period + 1:
            return empty()
        deltas = np.diff(values)
        gains = np.clip(deltas, 0.0, None)
        losses = np.clip(-deltas, 0.0, None)

        avg_gain = seeded_ewm(gains, period, alpha=1.0 / period)
        avg_loss = seeded_ewm(losses, period, alpha=1.0 / period)

        out = np.full(len(avg_gain), RSI_NO_LOSS_VALUE)
        has_loss = avg_loss > 0
        rs = avg_gain[has_loss] / avg_loss[has_loss]
        out[has_loss] = 100.0 - 100.0 / (1.0 + rs)
        out[(~has_loss) & (avg_gain == 0)] = RSI_FLAT_VALUE
        return out
