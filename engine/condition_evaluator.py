"""条件评估器：对条件树求值（比较 / 穿越 / 趋势）。

失败即关闭：指标数据缺失或求值出错时条件视为 False，只记录 warning，不中断主循环。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from algo.dsl.schema import Condition, ConditionGroup, ExitConditionGroup
from engine.context import ExecutionContext
from shared.utils.logging import setup_logger

EQ_TOLERANCE = 1e-4
DEFAULT_SIGNAL_STRENGTH = 0.8


@dataclass(frozen=True)
class ConditionResult:
    result: bool
    value: float | None = None


@dataclass(frozen=True)
class CheckResult:
    triggered: bool
    strength: float = 0.0
    reason: str = ""
    triggered_by: str = ""
    exit_type: str | None = None


NOT_TRIGGERED = CheckResult(triggered=False)


def _describe(cond: Condition) -> str:
    value = f"{cond.value:g}"
    return f"{cond.indicator or cond.type} {cond.operator} {value}"


class ConditionEvaluator:
    """
    Parameters
    ----------
    strength:
        条件组成立时信号的固定强度（可调常数，不是计算出来的评分）。
    tolerance:
        `eq` 运算符的绝对容差。
    """

    def __init__(
        self,
        *,
        strength: float = DEFAULT_SIGNAL_STRENGTH,
        tolerance: float = EQ_TOLERANCE,
        logger: logging.Logger | None = None,
    ) -> None:
        self.strength = float(strength)
        self.tolerance = float(tolerance)
        self.logger = logger or setup_logger("condition-evaluator")
        self._warned_missing: set[str] = set()

    def evaluate(self, condition: Condition, context: ExecutionContext) -> ConditionResult:
        try:
            return self._evaluate(condition, context)
        except Exception as exc:
            self.logger.warning("Condition %s failed, treated as false: %s", _describe(condition), exc)
            return ConditionResult(False)

    def _evaluate(self, cond: Condition, context: ExecutionContext) -> ConditionResult:
        if cond.type == "price":
            return ConditionResult(self._compare(cond, context.candle.close), context.candle.close)
        if cond.type == "volume":
            return ConditionResult(self._compare(cond, context.candle.volume), context.candle.volume)

        ref = str(cond.indicator)
        values = context.series(ref)
        if len(values) == 0:
            self._warn_missing(ref, context)
            return ConditionResult(False)
        current = float(values[-1])
        if not np.isfinite(current):
            self._warn_missing(ref, context)
            return ConditionResult(False)

        if cond.operator in ("crossover", "crossunder"):
            return ConditionResult(self._crossed(values, cond.value, above=cond.operator == "crossover"), current)
        if cond.operator in ("rising", "falling"):
            return ConditionResult(self._trend(values, cond.lookback, rising=cond.operator == "rising"), current)
        return ConditionResult(self._compare(cond, current), current)

    def _compare(self, cond: Condition, current: float) -> bool:
        target = cond.value
        op = cond.operator
        if op == "gt":
            return current > target
        if op == "lt":
            return current < target
        if op == "gte":
            return current >= target
        if op == "lte":
            return current <= target
        if op == "eq":
            return abs(current - target) < self.tolerance
        return False

    @staticmethod
    def _crossed(values: np.ndarray, target: float, *, above: bool) -> bool:
        if len(values) < 2:
            return False
        prev, curr = float(values[-2]), float(values[-1])
        if above:
            return prev <= target and curr > target
        return prev >= target and curr < target

    @staticmethod
    def _trend(values: np.ndarray, lookback: int, *, rising: bool) -> bool:
        if len(values) < lookback:
            return False
        steps = np.diff(values[-lookback:])
        return bool(np.all(steps > 0)) if rising else bool(np.all(steps < 0))

    def _warn_missing(self, ref: str, context: ExecutionContext) -> None:
        alias = ref.partition(".")[0]
        if alias in self._warned_missing:
            return
        self._warned_missing.add(alias)
        self.logger.warning(
            "Indicator data missing for '%s' at bar %d (%s), condition treated as false",
            ref,
            context.index,
            context.candle.timestamp,
        )

    def check_conditions(self, groups: Sequence[ConditionGroup], context: ExecutionContext) -> CheckResult:
        """
        组内按 and/or 组合，组之间取 or：任一组成立即触发。

        reason 只记录成立的条件（`"rsi lt 30; "` 形式拼接），triggered_by 取第一个整体成立的组中最后一个成立条件的来源，
        部分成立的组不参与归因。
        """
        triggered = False
        reasons: list[str] = []
        triggered_by = ""
        for group in groups:
            results = [(cond, self.evaluate(cond, context).result) for cond in group.conditions]
            if not results:
                continue
            passed = [cond for cond, ok in results if ok]
            if group.operator == "and":
                group_ok = len(passed) == len(results)
            else:
                group_ok = bool(passed)
            if group_ok:
                if not triggered:
                    triggered_by = passed[-1].indicator or passed[-1].type
                triggered = True
                reasons.extend(_describe(c) for c in passed)
        if not triggered:
            return NOT_TRIGGERED
        return CheckResult(
            triggered=True,
            strength=self.strength,
            reason="; ".join(reasons),
            triggered_by=triggered_by,
        )

    def check_exit_conditions(self, groups: Sequence[ExitConditionGroup], context: ExecutionContext) -> CheckResult:
        """按 priority 从高到低评估，第一个成立的组胜出（低优先级的组不再评估）。"""
        ordered = sorted(groups, key=lambda g: g.priority, reverse=True)
        for group in ordered:
            res = self.check_conditions([group], context)
            if res.triggered:
                return CheckResult(
                    triggered=True,
                    strength=res.strength,
                    reason=f"{group.exit_type}: {res.reason}",
                    triggered_by=res.triggered_by,
                    exit_type=group.exit_type,
                )
        return NOT_TRIGGERED
