"""技术指标库与注册表。"""

from algo.indicators.base import Indicator
from algo.indicators.cache import IndicatorCache
from algo.indicators.registry import (
    IndicatorRegistry,
    calculate_indicators,
    normalize_spec,
    required_history,
)

__all__ = [
    "Indicator",
    "IndicatorCache",
    "IndicatorRegistry",
    "calculate_indicators",
    "normalize_spec",
    "required_history",
]
