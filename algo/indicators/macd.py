"""MACD 指标：macd 线 / signal 线 / histogram 三个具名输出。"""

from __future__ import annotations

import numpy as np
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from algo.indicators.base import Indicator, empty
from algo.indicators.ma import ema


class MACDSettings(BaseModel):
    """MACD 参数。slow_period 缺省时取 DSL 的 period。"""
    fast_period: int = Field(12, gt=0, validation_alias=AliasChoices("fast_period", "fastPeriod", "fast"))
    slow_period: int | None = Field(None, gt=0, validation_alias=AliasChoices("slow_period", "slowPeriod", "slow"))
    signal_period: int = Field(9, gt=0, validation_alias=AliasChoices("signal_period", "signalPeriod", "signal"))

    model_config = ConfigDict(extra="forbid")


class MACDIndicator(Indicator):
    """移动平均收敛发散。

    - macd = EMA(fast) - EMA(slow)，按较短的 slow 序列右对齐；
    - signal = EMA(macd, signal_period)；
    - histogram = macd - signal（对齐到 signal 长度）。
    主输出为 macd 线。
    """

    name = "MACD"
    outputs = ("macd", "signal", "histogram")
    default_period = 26
    max_period = 50
    settings_model = MACDSettings

    @staticmethod
    def _periods(period: int, settings: MACDSettings) -> tuple[int, int, int]:
        slow = settings.slow_period or period
        return settings.fast_period, slow, settings.signal_period

    def _validate_settings(self, period: int, settings: MACDSettings) -> bool:  # type: ignore[override]
        fast, slow, signal = self._periods(period, settings)
        return fast < slow and slow <= self.max_period and signal <= self.max_period

    def min_length(self, period: int, **options) -> int:
        fast, slow, signal = self._periods(period, self.parse_settings(options))  # type: ignore[arg-type]
        return slow + signal - 1

    def _compute(self, values: np.ndarray, period: int, settings: MACDSettings) -> dict[str, np.ndarray]:  # type: ignore[override]
        fast, slow, signal_p = self._periods(period, settings)
        if len(values) < slow:
            return {"macd": empty(), "signal": empty(), "histogram": empty()}

        ema_fast = ema(values, fast)
        ema_slow = ema(values, slow)
        line = ema_fast[len(ema_fast) - len(ema_slow):] - ema_slow

        signal = ema(line, signal_p)
        histogram = line[len(line) - len(signal):] - signal if len(signal) else empty()
        return {"macd": line, "signal": signal, "histogram": histogram}
