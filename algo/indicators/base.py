"""指标（Indicators）抽象基类与公共数值工具。

约定：
- 输入为一维价格/成交量序列，输出为右对齐的 numpy 数组：最后一个值对应最后一根输入 bar；
- 输入长度不足时返回空数组（不抛异常、不填充 NaN）；
- 多输出指标（MACD / 布林带 / 随机指标）通过 `compute()` 返回具名序列，
  `calculate()` 只返回主输出（`outputs[0]`）。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Mapping, Sequence

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict, ValidationError

ArrayLike = Sequence[float] | np.ndarray | pd.Series


class NoSettings(BaseModel):
    """无额外参数的指标。"""
    model_config = ConfigDict(extra="forbid")


def as_array(series: ArrayLike | None) -> np.ndarray:
    if series is None:
        return np.empty(0, dtype=float)
    return np.asarray(series, dtype=float).reshape(-1)


def empty() -> np.ndarray:
    return np.empty(0, dtype=float)


def sma(values: np.ndarray, period: int) -> np.ndarray:
    """简单移动平均，输出长度 `len - period + 1`。"""
    if period <= 0 or len(values) < period:
        return empty()
    return pd.Series(values).rolling(period).mean().to_numpy()[period - 1:]


def seeded_ewm(values: np.ndarray, period: int, alpha: float) -> np.ndarray:
    """
    以前 `period` 个值的简单均值为种子的指数平滑。

    递推：`y[i] = (x[i] - y[i-1]) * alpha + y[i-1]`，输出长度 `len - period + 1`。
    EMA 取 `alpha = 2/(period+1)`，Wilder 平滑（RSI）取 `alpha = 1/period`。
    """
    if period <= 0 or len(values) < period:
        return empty()
    seed = float(np.mean(values[:period]))
    tail = np.concatenate(([seed], values[period:]))
    return pd.Series(tail).ewm(alpha=alpha, adjust=False).mean().to_numpy()


def rolling_max(values: np.ndarray, period: int) -> np.ndarray:
    if len(values) < period:
        return empty()
    return pd.Series(values).rolling(period).max().to_numpy()[period - 1:]


def rolling_min(values: np.ndarray, period: int) -> np.ndarray:
    if len(values) < period:
        return empty()
    return pd.Series(values).rolling(period).min().to_numpy()[period - 1:]


class Indicator(ABC):
    """技术指标协议：`calculate(series, period, **options) -> np.ndarray`。"""

    name: ClassVar[str] = ""
    outputs: ClassVar[tuple[str, ...]] = ("value",)
    default_period: ClassVar[int] = 14
    max_period: ClassVar[int] = 50
    # 需要 high/low 的指标：有 OHLC 时用真实高低价，否则退化为收盘价版本
    uses_ohlc: ClassVar[bool] = False
    settings_model: ClassVar[type[BaseModel]] = NoSettings

    def parse_settings(self, options: Mapping[str, Any] | None = None) -> BaseModel:
        """把 options 解析为该指标的 settings 模型（未知字段直接拒绝）。"""
        return self.settings_model.model_validate(dict(options or {}))

    def validate(self, period: int, **options: Any) -> bool:
        if isinstance(period, bool) or not isinstance(period, int):
            return False
        if period <= 0 or period > self.max_period:
            return False
        try:
            settings = self.parse_settings(options)
        except ValidationError:
            return False
        return self._validate_settings(period, settings)

    def _validate_settings(self, period: int, settings: BaseModel) -> bool:
        return True

    def min_length(self, period: int, **options: Any) -> int:
        """所有输出都至少有一个值所需的输入长度。"""
        return period

    def calculate(self, series: ArrayLike, period: int, **options: Any) -> np.ndarray:
        """主输出序列。"""
        return self.compute(series, period, **options)[self.outputs[0]]

    def compute(
        self,
        series: ArrayLike,
        period: int,
        *,
        high: ArrayLike | None = None,
        low: ArrayLike | None = None,
        **options: Any,
    ) -> dict[str, np.ndarray]:
        """全部具名输出。`high`/`low` 只对 `uses_ohlc` 的指标有意义。"""
        values = as_array(series)
        settings = self.parse_settings(options)
        if self.uses_ohlc:
            hi = as_array(high) if high is not None else values
            lo = as_array(low) if low is not None else values
            if len(hi) != len(values) or len(lo) != len(values):
                raise ValueError(f"{self.name}: high/low length must match series length")
            return self._compute_ohlc(values, hi, lo, period, settings)
        return self._compute(values, period, settings)

    def _compute(self, values: np.ndarray, period: int, settings: Any) -> dict[str, np.ndarray]:
        raise NotImplementedError

    def _compute_ohlc(
        self,
        close: np.ndarray,
        high: np.ndarray,
        low: np.ndarray,
        period: int,
        settings: Any,
    ) -> dict[str, np.ndarray]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class SingleSeriesIndicator(Indicator):
    """单序列、单输出指标的便捷基类。"""

    def _compute(self, values: np.ndarray, period: int, settings: Any) -> dict[str, np.ndarray]:
        return {self.outputs[0]: self.transform(values, period)}

    @abstractmethod
    def transform(self, values: np.ndarray, period: int) -> np.ndarray:
        ...
