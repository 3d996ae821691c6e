"""流式引擎（StreamingEngine）：逐根推送 K 线，复用回测的逐 bar 逻辑。

- 历史窗口有上限（`EngineConfig.max_history`），超出部分从头部丢弃；
- 每根 K 线的处理是同步、有界的：取消 = 不再调用 `on_candle()`。
"""

from __future__ import annotations

import time
from typing import Mapping

from algo.dsl.schema import StrategyDSL
from algo.indicators.registry import calculate_indicators
from engine.base_engine import BaseEngine, check_candle_sequence
from engine.context import ContextBuilder
from shared.models.models import Candle, EquityPoint, Position, Signal, StrategyExecutionResult, Trade


class StreamingEngine(BaseEngine):
    logger_name = "stream"

    def __init__(self, dsl: StrategyDSL | Mapping, **kwargs) -> None:
        super().__init__(**kwargs)
        self.dsl = self.validate(dsl)
        self.state = self.new_state(self.dsl)
        self.warmup = self.warmup_bars(self.dsl)
        self.history: list[Candle] = []
        self.candles_seen = 0
        self._started = time.perf_counter()

    def on_candle(self, candle: Candle) -> list[Signal]:
        """处理一根新 K 线，返回本根 K 线实际执行的信号。"""
        check_candle_sequence([candle], previous=self.history[-1] if self.history else None)
        self.history.append(candle)
        if len(self.history) > self.config.max_history:
            del self.history[: len(self.history) - self.config.max_history]
        self.candles_seen += 1

        if self.candles_seen <= self.warmup:
            return []

        values = calculate_indicators(self.dsl.indicators, self.history, self.registry)
        builder = ContextBuilder(self.dsl, self.history, values)
        return self.step(self.state, builder, len(self.history) - 1)

    @property
    def position(self) -> Position:
        return self.state.book.position

    @property
    def trades(self) -> list[Trade]:
        return self.state.book.trades

    @property
    def equity_curve(self) -> list[EquityPoint]:
        return self.state.equity_curve

    def result(self) -> StrategyExecutionResult:
        return self.build_result(
            self.dsl,
            self.state,
            candles_processed=self.state.bars_processed,
            warmup=self.warmup,
            execution_time=time.perf_counter() - self._started,
        )
