"""配置架构定义（Pydantic Schema）。

目标：
- 让配置成为“强类型 + 可演进”的边界协议；
- 启动阶段尽早失败，避免 typo/类型错误在长回测中“隐蔽爆炸”；
- 引擎参数集中在 `EngineConfig`，策略本身由 DSL（`algo.dsl.schema.StrategyDSL`）描述。
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from algo.dsl.schema import StrategyDSL


class EngineConfig(BaseModel):
    """回测/流式引擎参数。"""
    initial_capital: float = Field(100_000.0, gt=0)
    # exact: 按各指标最小历史长度精确预热；legacy: max(50, 指标数 * 20)
    warmup: Literal["exact", "legacy"] = "exact"
    warmup_bars: Optional[int] = Field(None, ge=0)
    signal_strength: float = Field(0.8, ge=0, le=1)
    profit_factor_sentinel: float = 999.0
    trading_days_per_year: float = Field(252.0, gt=0)
    cache_indicators: bool = True
    # K 线内触及止损/止盈即按该价位离场（默认关闭：只按出场条件在收盘价离场）
    enforce_stops: bool = False
    flatten_on_end: bool = False
    qty_step: Optional[float] = 1.0
    max_history: int = Field(1000, ge=2)

    model_config = ConfigDict(extra="forbid")


class DataConfig(BaseModel):
    """K 线数据来源（CSV 目录或合成序列）。"""
    source: Literal["csv", "synthetic"] = "csv"
    data_dir: str = "dataset/history"
    start: Optional[str] = None
    end: Optional[str] = None
    # synthetic
    n_candles: int = Field(200, gt=0)
    base_price: float = 100.0
    amplitude: float = 10.0
    cycle: int = Field(40, gt=1)

    model_config = ConfigDict(extra="forbid")


class SweepObjectiveConfig(BaseModel):
    """扫参目标权重。"""
    total_return_weight: float = 1.0
    sharpe_weight: float = 0.0
    max_drawdown_weight: float = 0.0
    model_config = ConfigDict(extra="forbid")


class SweepConfig(BaseModel):
    """扫参配置（grid/random）。params 的 key 为 DSL 的点路径，例如 `indicators.rsi.period`。"""
    mode: Literal["grid", "random"] = "grid"
    params: Dict[str, List[Any]] = Field(default_factory=dict)
    objective: SweepObjectiveConfig = Field(default_factory=SweepObjectiveConfig)
    min_trades: Optional[int] = None
    max_drawdown: Optional[float] = None
    min_sharpe: Optional[float] = None
    n_random: int = Field(20, gt=0)
    max_workers: Optional[int] = None
    seed: Optional[int] = None
    model_config = ConfigDict(extra="forbid")


class AppConfig(BaseModel):
    """应用总配置。"""
    strategy: StrategyDSL
    engine: EngineConfig = Field(default_factory=EngineConfig)
    data: DataConfig = Field(default_factory=DataConfig)
    sweep: Optional[SweepConfig] = None

    model_config = ConfigDict(extra="forbid", validate_assignment=True)
