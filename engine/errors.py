"""引擎异常层级。"""

from __future__ import annotations

from typing import Sequence


class StrategyEngineError(Exception):
    """策略执行引擎的基础异常。"""


class DSLValidationError(StrategyEngineError, ValueError):
    """DSL 校验未通过：在处理任何 K 线之前拒绝执行。"""

    def __init__(self, errors: Sequence, message: str | None = None) -> None:
        self.errors = list(errors)
        if message is None:
            parts = [f"{getattr(e, 'code', '?')}@{getattr(e, 'field', '?')}: {getattr(e, 'message', e)}" for e in self.errors]
            message = "Invalid DSL: " + "; ".join(parts)
        super().__init__(message)


class CandleSequenceError(StrategyEngineError, ValueError):
    """K 线时间戳非严格递增（或与 DSL 的 symbol 不一致）。"""
