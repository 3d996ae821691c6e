"""单根 K 线的执行上下文（ExecutionContext）构建。

指标序列与 K 线右对齐：长度为 m 的输出、n 根 K 线时，第 j 个值属于第 `n - m + j` 根 K 线。
在第 i 根 K 线上只暴露 `<= i` 的部分（numpy 视图，不复制）。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import numpy as np

from algo.dsl.schema import StrategyDSL
from shared.models.models import Candle, Position

_EMPTY = np.empty(0, dtype=float)


@dataclass(frozen=True)
class RunningMetrics:
    """运行中的累计统计（供条件/日志参考）。"""
    total_trades: int = 0
    win_rate: float = 0.0
    current_drawdown: float = 0.0
    realized_pnl: float = 0.0


@dataclass
class ExecutionContext:
    strategy_id: str
    symbol: str
    timeframe: str
    dsl: StrategyDSL
    candle: Candle
    index: int
    candles: Sequence[Candle]
    indicators: dict[str, np.ndarray]
    position: Position
    metrics: RunningMetrics = field(default_factory=RunningMetrics)
    snapshot_refs: tuple[str, ...] = ()

    @property
    def history(self) -> Sequence[Candle]:
        """截至当前 K 线（含）的历史。"""
        return self.candles[: self.index + 1]

    def series(self, ref: str) -> np.ndarray:
        return self.indicators.get(ref, _EMPTY)

    def snapshot(self) -> dict[str, float]:
        """每个指标引用的最新值（用于信号/交易记录）。"""
        refs = self.snapshot_refs or tuple(self.indicators)
        out: dict[str, float] = {}
        for ref in refs:
            values = self.indicators.get(ref, _EMPTY)
            if len(values):
                out[ref] = float(values[-1])
        return out


class ContextBuilder:
    """为同一次运行中的每根 K 线构建 ExecutionContext。"""

    def __init__(
        self,
        dsl: StrategyDSL,
        candles: Sequence[Candle],
        indicator_values: Mapping[str, Mapping[str, np.ndarray]],
        *,
        strategy_id: str | None = None,
    ) -> None:
        self.dsl = dsl
        self.candles = candles
        self.strategy_id = strategy_id or dsl.name
        n = len(candles)
        # ref -> (完整序列, 对齐偏移)
        self._series: dict[str, tuple[np.ndarray, int]] = {}
        # 主输出用 alias，其余输出用 alias.output
        snapshot_refs: list[str] = []
        for alias, outputs in indicator_values.items():
            for i, (output, values) in enumerate(outputs.items()):
                arr = np.asarray(values, dtype=float)
                item = (arr, n - len(arr))
                self._series[f"{alias}.{output}"] = item
                if i == 0:
                    self._series[alias] = item
                    snapshot_refs.append(alias)
                else:
                    snapshot_refs.append(f"{alias}.{output}")
        self._snapshot_refs = tuple(snapshot_refs)

    def visible(self, ref: str, index: int) -> np.ndarray:
        item = self._series.get(ref)
        if item is None:
            return _EMPTY
        arr, offset = item
        stop = index - offset + 1
        if stop <= 0:
            return _EMPTY
        return arr[:stop]

    def build(self, index: int, position: Position, metrics: RunningMetrics | None = None) -> ExecutionContext:
        candle = self.candles[index]
        indicators: dict[str, Any] = {ref: self.visible(ref, index) for ref in self._series}
        return ExecutionContext(
            strategy_id=self.strategy_id,
            symbol=self.dsl.symbol or candle.symbol,
            timeframe=self.dsl.timeframe or candle.timeframe,
            dsl=self.dsl,
            candle=candle,
            index=index,
            candles=self.candles,
            indicators=indicators,
            position=position,
            metrics=metrics or RunningMetrics(),
            snapshot_refs=self._snapshot_refs,
        )
