"""布林带：middle / upper / lower。"""

from __future__ import annotations

import numpy as np
import pandas as pd
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from algo.indicators.base import Indicator, empty


class BollingerSettings(BaseModel):
    std_dev: float = Field(2.0, gt=0, validation_alias=AliasChoices("std_dev", "stdDev", "multiplier"))
    model_config = ConfigDict(extra="forbid")


class BollingerBandsIndicator(Indicator):
    """middle = SMA(period)，upper/lower = middle ± std_dev * σ（总体标准差）。"""

    name = "BB"
    outputs = ("middle", "upper", "lower")
    default_period = 20
    max_period = 50
    settings_model = BollingerSettings

    def _compute(self, values: np.ndarray, period: int, settings: BollingerSettings) -> dict[str, np.ndarray]:  # type: ignore[override]
        if len(values) < period:
            return {"middle": empty(), "upper": empty(), "lower": empty()}
        rolling = pd.Series(values).rolling(period)
        middle = rolling.mean().to_numpy()[period - 1:]
        sigma = rolling.std(ddof=0).to_numpy()[period - 1:]
        width = settings.std_dev * sigma
        return {"middle": middle, "upper": middle + width, "lower": middle - width}
