"""单次回测引擎（BacktestEngine）。

目标是“一眼能看懂”：DSL 校验 → K 线检查 → 指标（一次性计算）→ 逐 bar 信号/撮合 → 指标汇总。
"""

from __future__ import annotations

import time
from typing import Mapping, Sequence

from algo.dsl.schema import StrategyDSL
from algo.indicators.registry import calculate_indicators
from engine.base_engine import BaseEngine, check_candle_sequence
from engine.context import ContextBuilder
from shared.models.models import Candle, StrategyExecutionResult


class BacktestEngine(BaseEngine):
    """单次回测引擎。

    Notes
    -----
    - 每次 `run()` 都新建账本与评估器，同一个引擎实例可以重复、并发调用；
    - 只有 `IndicatorCache`（可选）在运行之间共享；
    - CLI 统一由仓库根目录 `main.py` 承担。
    """

    logger_name = "backtest"

    def run(self, dsl: StrategyDSL | Mapping, candles: Sequence[Candle]) -> StrategyExecutionResult:
        started = time.perf_counter()
        dsl = self.validate(dsl)
        check_candle_sequence(candles)

        state = self.new_state(dsl)
        warmup = self.warmup_bars(dsl)
        n = len(candles)
        self._check_symbol(dsl, candles, state.warnings)

        if n == 0 or warmup >= n:
            msg = f"Not enough candles: got {n}, warm-up needs {warmup + 1}"
            self.logger.warning(msg)
            state.warnings.append(msg)
            return self.build_result(
                dsl,
                state,
                candles_processed=0,
                warmup=warmup,
                execution_time=time.perf_counter() - started,
            )

        cache = self.cache if self.config.cache_indicators else None
        values = calculate_indicators(dsl.indicators, candles, self.registry, cache=cache)
        missing = sorted(set(dsl.indicators) - set(values))
        if missing:
            state.warnings.append(f"Indicators unavailable: {', '.join(missing)}")
        builder = ContextBuilder(dsl, candles, values)

        for i in range(warmup, n):
            self.step(state, builder, i)

        if self.config.flatten_on_end:
            self.flatten(state, builder, n - 1)

        result = self.build_result(
            dsl,
            state,
            candles_processed=state.bars_processed,
            warmup=warmup,
            execution_time=time.perf_counter() - started,
        )
        self.logger.info(
            "Backtest %s done: bars=%d trades=%d total_return=%.4f",
            dsl.name,
            result.candles_processed,
            len(result.trades),
            result.metrics.get("total_return", 0.0),
        )
        return result

    def _check_symbol(self, dsl: StrategyDSL, candles: Sequence[Candle], warnings: list[str]) -> None:
        if not candles:
            return
        symbols = {c.symbol for c in candles}
        if len(symbols) > 1:
            msg = f"Candles contain several symbols: {sorted(symbols)}"
            self.logger.warning(msg)
            warnings.append(msg)
        elif dsl.symbol and candles[0].symbol and candles[0].symbol != dsl.symbol:
            msg = f"DSL symbol {dsl.symbol} differs from candle symbol {candles[0].symbol}"
            self.logger.warning(msg)
            warnings.append(msg)
