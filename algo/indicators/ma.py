"""均线类指标：SMA / EMA。"""

from __future__ import annotations

import numpy as np

from algo.indicators.base import SingleSeriesIndicator, seeded_ewm, sma


class SMAIndicator(SingleSeriesIndicator):
    """简单移动平均（SMA）。"""

    name = "SMA"
    default_period = 20
    max_period = 200

    def transform(self, values: np.ndarray, period: int) -> np.ndarray:
        return sma(values, period)


class EMAIndicator(SingleSeriesIndicator):
    """指数移动平均（EMA），以前 period 个值的 SMA 作为种子，k = 2/(period+1)。"""

    name = "EMA"
    default_period = 12
    max_period = 200

    def transform(self, values: np.ndarray, period: int) -> np.ndarray:
        return ema(values, period)


def ema(values: np.ndarray, period: int) -> np.ndarray:
    return seeded_ewm(values, period, alpha=2.0 / (period + 1))
