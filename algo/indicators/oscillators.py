"""区间震荡类指标：随机指标 %K/%D、威廉指标 %R、CCI。

三者都基于滚动窗口的 high/low：
- 传入 candles 的 high/low 时使用真实高低价（CCI 使用典型价格 (h+l+c)/3）；
- 只有单一序列时 high = low = close，退化为收盘价版本。
"""

from __future__ import annotations

import numpy as np
import pandas as pd
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from algo.indicators.base import Indicator, empty, rolling_max, rolling_min, sma

# 窗口内 high == low（无波动）时的取值
STOCH_FLAT_VALUE = 50.0
WILLR_FLAT_VALUE = -50.0
CCI_FLAT_VALUE = 0.0
CCI_CONSTANT = 0.015


class StochasticSettings(BaseModel):
    d_period: int = Field(3, gt=0, validation_alias=AliasChoices("d_period", "dPeriod", "signal_period"))
    model_config = ConfigDict(extra="forbid")


class StochasticIndicator(Indicator):
    """随机指标：k = (close - lowest) / (highest - lowest) * 100，d = SMA(k, d_period)。"""

    name = "STOCH"
    outputs = ("k", "d")
    default_period = 14
    max_period = 50
    uses_ohlc = True
    settings_model = StochasticSettings

    def min_length(self, period: int, **options) -> int:
        return period + self.parse_settings(options).d_period - 1  # type: ignore[attr-defined]

    def _compute_ohlc(self, close, high, low, period, settings: StochasticSettings) -> dict[str, np.ndarray]:  # type: ignore[override]
        if len(close) < period:
            return {"k": empty(), "d": empty()}
        highest = rolling_max(high, period)
        lowest = rolling_min(low, period)
        current = close[period - 1:]
        span = highest - lowest
        k = np.full(len(current), STOCH_FLAT_VALUE)
        moving = span > 0
        k[moving] = (current[moving] - lowest[moving]) / span[moving] * 100.0
        return {"k": k, "d": sma(k, settings.d_period)}


class WilliamsRIndicator(Indicator):
    """威廉指标：(highest - close) / (highest - lowest) * -100，取值 [-100, 0]。"""

    name = "WILLR"
    default_period = 14
    max_period = 50
    uses_ohlc = True

    def _compute_ohlc(self, close, high, low, period, settings) -> dict[str, np.ndarray]:
        if len(close) < period:
            return {"value": empty()}
        highest = rolling_max(high, period)
        lowest = rolling_min(low, period)
        current = close[period - 1:]
        span = highest - lowest
        out = np.full(len(current), WILLR_FLAT_VALUE)
        moving = span > 0
        out[moving] = (highest[moving] - current[moving]) / span[moving] * -100.0
        return {"value": out}


class CCIIndicator(Indicator):
    """商品通道指数：(tp - SMA(tp)) / (0.015 * 平均绝对偏差)。"""

    name = "CCI"
    default_period = 20
    max_period = 50
    uses_ohlc = True

    def _compute_ohlc(self, close, high, low, period, settings) -> dict[str, np.ndarray]:
        if len(close) < period:
            return {"value": empty()}
        typical = (high + low + close) / 3.0
        rolling = pd.Series(typical).rolling(period)
        mean = rolling.mean().to_numpy()[period - 1:]
        mean_dev = rolling.apply(lambda w: np.mean(np.abs(w - w.mean())), raw=True).to_numpy()[period - 1:]
        current = typical[period - 1:]
        out = np.full(len(current), CCI_FLAT_VALUE)
        moving = mean_dev > 0
        out[moving] = (current[moving] - mean[moving]) / (CCI_CONSTANT * mean_dev[moving])
        return {"value": out}
