"""指标注册表：名称 -> 指标实现，以及按 DSL 批量计算指标。

与旧版模块级 `_REGISTRY` 不同，注册表是显式构造的实例，由调用方注入到引擎/校验器，
测试之间、并行回测之间互不影响。
"""

from __future__ import annotations

import difflib
from typing import Iterable, Mapping, Sequence

import numpy as np

from algo.dsl.schema import IndicatorSpec
from algo.indicators.atr import ATRIndicator
from algo.indicators.base import Indicator
from algo.indicators.bollinger import BollingerBandsIndicator
from algo.indicators.cache import IndicatorCache, candles_fingerprint
from algo.indicators.ma import EMAIndicator, SMAIndicator
from algo.indicators.macd import MACDIndicator
from algo.indicators.oscillators import CCIIndicator, StochasticIndicator, WilliamsRIndicator
from algo.indicators.rsi import RSIIndicator
from shared.models.models import Candle
from shared.utils.logging import setup_logger

logger = setup_logger("indicators")

IndicatorValues = dict[str, dict[str, np.ndarray]]

BUILTIN_INDICATORS: tuple[type[Indicator], ...] = (
    SMAIndicator,
    EMAIndicator,
    RSIIndicator,
    MACDIndicator,
    BollingerBandsIndicator,
    StochasticIndicator,
    ATRIndicator,
    WilliamsRIndicator,
    CCIIndicator,
)


class IndicatorRegistry:
    """指标注册表（名称大小写不敏感）。"""

    def __init__(self, indicators: Iterable[Indicator] | None = None) -> None:
        self._items: dict[str, Indicator] = {}
        for ind in indicators or ():
            self.register(ind.name, ind)

    @classmethod
    def default(cls) -> "IndicatorRegistry":
        """新建一个包含全部内置指标的注册表。"""
        return cls(ind_cls() for ind_cls in BUILTIN_INDICATORS)

    def register(self, name: str, indicator: Indicator) -> None:
        key = str(name).strip().upper()
        if not key:
            raise ValueError("indicator name must not be empty")
        self._items[key] = indicator

    def get(self, name: str) -> Indicator:
        key = str(name).strip().upper()
        if key not in self._items:
            raise ValueError(f"Unknown indicator: {name}")
        return self._items[key]

    def list(self) -> list[str]:
        return sorted(self._items)

    def suggest(self, name: str) -> str | None:
        matches = difflib.get_close_matches(str(name).upper(), self.list(), n=1, cutoff=0.5)
        return matches[0] if matches else None

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip().upper() in self._items

    def __len__(self) -> int:
        return len(self._items)


def resolve_period(spec: IndicatorSpec, indicator: Indicator) -> int:
    return spec.period if spec.period is not None else indicator.default_period


def normalize_spec(spec: IndicatorSpec, indicator: Indicator) -> dict:
    """补全默认值后的规范形态（缓存 key 与 warm-up 计算都基于它）。"""
    settings = indicator.parse_settings(spec.settings).model_dump()
    return {
        "type": spec.type,
        "period": resolve_period(spec, indicator),
        "source": spec.source,
        "settings": settings,
    }


def required_history(spec: IndicatorSpec, registry: IndicatorRegistry) -> int:
    """第一个完整输出值出现前需要的 K 线数量。"""
    indicator = registry.get(spec.type)
    return indicator.min_length(resolve_period(spec, indicator), **spec.settings)


def _series(candles: Sequence[Candle], source: str) -> np.ndarray:
    return np.fromiter((getattr(c, source) for c in candles), dtype=float, count=len(candles))


def compute_indicator(spec: IndicatorSpec, candles: Sequence[Candle], registry: IndicatorRegistry) -> dict[str, np.ndarray]:
    indicator = registry.get(spec.type)
    period = resolve_period(spec, indicator)
    values = _series(candles, spec.source)
    if indicator.uses_ohlc:
        return indicator.compute(
            values,
            period,
            high=_series(candles, "high"),
            low=_series(candles, "low"),
            **spec.settings,
        )
    return indicator.compute(values, period, **spec.settings)


def calculate_indicators(
    specs: Mapping[str, IndicatorSpec],
    candles: Sequence[Candle],
    registry: IndicatorRegistry,
    cache: IndicatorCache | None = None,
) -> IndicatorValues:
    """
    按 DSL 的指标声明批量计算。

    Parameters
    ----------
    specs:
        alias -> IndicatorSpec。
    candles:
        按时间升序的 K 线；所有输出与其右对齐。
    registry:
        指标注册表。
    cache:
        可选共享缓存；命中时直接返回只读数组。

    Returns
    -------
    dict
        alias -> {output -> np.ndarray}。未知指标或计算失败的 alias 会被记录并跳过，
        条件评估时按“数据缺失”处理（结果为 False）。
    """
    out: IndicatorValues = {}
    if not candles:
        return out
    first = candles[0]
    fingerprint = candles_fingerprint(candles) if cache is not None else ""

    for alias, spec in specs.items():
        try:
            indicator = registry.get(spec.type)
        except ValueError:
            logger.warning("Skip indicator %s: unknown type %s", alias, spec.type)
            continue
        try:
            normalized = normalize_spec(spec, indicator)
            if cache is not None:
                key = cache.make_key(first.symbol, first.timeframe, normalized, fingerprint)
                hit = cache.get(key)
                if hit is None:
                    hit = cache.put(key, compute_indicator(spec, candles, registry))
                out[alias] = hit
            else:
                out[alias] = compute_indicator(spec, candles, registry)
        except Exception as exc:
            logger.warning("Skip indicator %s (%s): %s", alias, spec.type, exc)
            continue
    return out
