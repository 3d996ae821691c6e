"""执行引擎基类（模板模式）。

目标：
- 把“数据推进”（一次性回放 / 逐根推送）与“每根 K 线的处理”解耦；
- 让 backtest / streaming 在同一套逐 bar 逻辑上演进，避免逻辑漂移。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Mapping, Sequence

from algo.dsl.schema import StrategyDSL
from algo.dsl.validator import DSLValidator
from algo.indicators.cache import IndicatorCache
from algo.indicators.registry import IndicatorRegistry, required_history
from analysis.metrics.metrics import compute_metrics, monthly_returns
from engine.condition_evaluator import ConditionEvaluator
from engine.context import ContextBuilder, RunningMetrics
from engine.errors import CandleSequenceError, DSLValidationError
from engine.portfolio import PositionBook
from engine.signal_pipeline import apply_signals, exit_signal, generate_signals
from shared.config.schema import EngineConfig
from shared.models.models import Candle, EquityPoint, Signal, StrategyExecutionResult, Trade
from shared.utils.logging import setup_logger

SignalCallback = Callable[[Signal], None]
TradeCallback = Callable[[Trade], None]

LEGACY_MIN_WARMUP = 50
LEGACY_BARS_PER_INDICATOR = 20


@dataclass
class RunState:
    """一次运行独占的可变状态（不在运行之间共享）。"""
    book: PositionBook
    evaluator: ConditionEvaluator
    signals: list[Signal] = field(default_factory=list)
    equity_curve: list[EquityPoint] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    bars_processed: int = 0

    def running_metrics(self) -> RunningMetrics:
        dd = self.equity_curve[-1].drawdown if self.equity_curve else 0.0
        return RunningMetrics(
            total_trades=len(self.book.trades),
            win_rate=self.book.win_rate(),
            current_drawdown=dd,
            realized_pnl=self.book.realized_pnl,
        )


def check_candle_sequence(candles: Sequence[Candle], *, previous: Candle | None = None) -> None:
    """时间戳必须严格递增。"""
    last = previous
    for i, c in enumerate(candles):
        if last is not None and c.timestamp <= last.timestamp:
            raise CandleSequenceError(
                f"Candle timestamps must be strictly increasing: index {i} has {c.timestamp} after {last.timestamp}"
            )
        last = c


class BaseEngine:
    """引擎基类：校验、预热、逐 bar 处理与结果汇总。"""

    logger_name = "engine"

    def __init__(
        self,
        *,
        registry: IndicatorRegistry | None = None,
        config: EngineConfig | None = None,
        cache: IndicatorCache | None = None,
        on_signal: SignalCallback | None = None,
        on_trade: TradeCallback | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.registry = registry or IndicatorRegistry.default()
        self.config = config or EngineConfig()
        self.cache = cache
        self.on_signal = on_signal
        self.on_trade = on_trade
        self.logger = logger or setup_logger(self.logger_name)
        self.validator = DSLValidator(self.registry)

    def validate(self, dsl: StrategyDSL | Mapping) -> StrategyDSL:
        """校验 DSL；不通过时抛出 DSLValidationError（在处理任何 K 线之前）。"""
        result = self.validator.validate(dsl)
        if not result.is_valid or result.dsl is None:
            raise DSLValidationError(result.errors)
        for w in result.warnings:
            self.logger.info("DSL warning %s@%s: %s", w.code, w.field, w.message)
        return result.dsl

    def warmup_bars(self, dsl: StrategyDSL) -> int:
        """第一根参与信号计算的 K 线下标。"""
        if self.config.warmup_bars is not None:
            return int(self.config.warmup_bars)
        if self.config.warmup == "legacy":
            return max(LEGACY_MIN_WARMUP, len(dsl.indicators) * LEGACY_BARS_PER_INDICATOR)
        needs = [required_history(spec, self.registry) for spec in dsl.indicators.values()]
        return max(needs) - 1 if needs else 0

    def new_state(self, dsl: StrategyDSL) -> RunState:
        book = PositionBook(
            self.config.initial_capital,
            commission=dsl.execution.commission,
            slippage=dsl.execution.slippage,
            qty_step=self.config.qty_step,
            symbol=dsl.symbol,
        )
        evaluator = ConditionEvaluator(strength=self.config.signal_strength)
        return RunState(book=book, evaluator=evaluator)

    def step(self, state: RunState, builder: ContextBuilder, index: int) -> list[Signal]:
        """处理一根 K 线：止损止盈 → 信号 → 记账 → 标记 → 权益点。返回实际执行的信号。"""
        book = state.book
        context = builder.build(index, book.position, state.running_metrics())
        candle = context.candle

        acted: list[Signal] = []
        new_trades: list[Trade] = []
        stop = book.stop_hit(candle) if self.config.enforce_stops else None
        if stop is not None:
            exit_type, level = stop
            sig = exit_signal(context, reason=f"{exit_type}: price touched {level:.6g}", exit_type=exit_type, price=level)
            acted, new_trades = apply_signals([sig], book=book, context=context, logger=self.logger)
        else:
            sizer = book.size_for
            signals = generate_signals(context, state.evaluator, sizer=sizer)
            if signals:
                acted, new_trades = apply_signals(signals, book=book, context=context, logger=self.logger)

        book.mark(candle)
        state.equity_curve.append(book.equity_point(candle.timestamp))
        state.bars_processed += 1
        state.signals.extend(acted)
        self._emit(acted, new_trades)
        return acted

    def flatten(self, state: RunState, builder: ContextBuilder, index: int) -> None:
        """数据结束时按最后收盘价平掉剩余持仓（替换最后一个权益点）。"""
        book = state.book
        if not book.position.is_open:
            return
        context = builder.build(index, book.position, state.running_metrics())
        sig = exit_signal(context, reason="end_of_data: flatten on end", exit_type="end_of_data")
        acted, trades = apply_signals([sig], book=book, context=context, logger=self.logger)
        state.signals.extend(acted)
        if state.equity_curve:
            state.equity_curve[-1] = book.equity_point(context.candle.timestamp)
        self._emit(acted, trades)

    def _emit(self, signals: list[Signal], trades: list[Trade]) -> None:
        if self.on_signal:
            for s in signals:
                self.on_signal(s)
        if self.on_trade:
            for t in trades:
                self.on_trade(t)

    def build_result(
        self,
        dsl: StrategyDSL,
        state: RunState,
        *,
        candles_processed: int,
        warmup: int,
        execution_time: float,
    ) -> StrategyExecutionResult:
        metrics = compute_metrics(
            state.book.trades,
            state.equity_curve,
            initial_capital=self.config.initial_capital,
            timeframe=dsl.timeframe,
            config=self.config,
        )
        return StrategyExecutionResult(
            strategy_name=dsl.name,
            symbol=dsl.symbol,
            timeframe=dsl.timeframe,
            trades=list(state.book.trades),
            signals=list(state.signals),
            equity_curve=list(state.equity_curve),
            metrics=metrics,
            candles_processed=candles_processed,
            warmup_bars=warmup,
            execution_time=execution_time,
            warnings=list(state.warnings),
            final_position=state.book.position,
            monthly_returns=monthly_returns(state.equity_curve, initial_capital=self.config.initial_capital),
        )
