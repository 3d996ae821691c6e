"""策略 DSL schema。校验器见 `algo.dsl.validator`（依赖指标注册表）。"""

from algo.dsl.schema import (
    Condition,
    ConditionGroup,
    EntryRules,
    Execution,
    ExitConditionGroup,
    ExitRules,
    IndicatorSpec,
    Risk,
    StrategyDSL,
    parse_indicator_ref,
)

__all__ = [
    "Condition",
    "ConditionGroup",
    "EntryRules",
    "Execution",
    "ExitConditionGroup",
    "ExitRules",
    "IndicatorSpec",
    "Risk",
    "StrategyDSL",
    "parse_indicator_ref",
]
