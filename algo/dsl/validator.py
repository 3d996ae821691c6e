"""DSL 校验器：结构 + 业务规则检查。

- errors：阻断执行（回测在处理第一根 K 线前就拒绝运行）；
- warnings / suggestions：仅提示，不影响 `is_valid`。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

from pydantic import ValidationError

from algo.dsl.schema import StrategyDSL, parse_indicator_ref
from algo.indicators.registry import IndicatorRegistry, resolve_period
from shared.utils.logging import setup_logger
from shared.utils.timeframe import SUPPORTED_TIMEFRAMES

logger = setup_logger("dsl-validator")

HIGH_STOP_LOSS_THRESHOLD = 0.1
MAX_CONDITIONS_HINT = 10


@dataclass(frozen=True)
class ValidationIssue:
    field: str
    code: str
    message: str
    severity: Literal["error", "warning"] = "error"

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "code": self.code, "message": self.message, "severity": self.severity}


@dataclass
class ValidationResult:
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    dsl: StrategyDSL | None = None

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "suggestions": list(self.suggestions),
        }


class DSLValidator:
    def __init__(self, registry: IndicatorRegistry | None = None) -> None:
        self.registry = registry or IndicatorRegistry.default()

    def validate(self, dsl: StrategyDSL | Mapping[str, Any]) -> ValidationResult:
        result = ValidationResult()
        if not isinstance(dsl, StrategyDSL):
            try:
                dsl = StrategyDSL.model_validate(dict(dsl))
            except ValidationError as exc:
                for err in exc.errors():
                    loc = ".".join(str(p) for p in err.get("loc", ())) or "dsl"
                    result.errors.append(ValidationIssue(loc, "SCHEMA_VALIDATION", err.get("msg", "invalid value")))
                logger.info("DSL schema validation failed: %d error(s)", len(result.errors))
                return result
        result.dsl = dsl

        self._check_required(dsl, result)
        self._check_risk(dsl, result)
        self._check_execution(dsl, result)
        self._check_indicators(dsl, result)
        self._check_references(dsl, result)
        self._check_rules(dsl, result)

        if result.errors:
            logger.info("DSL %r rejected: %s", dsl.name, ", ".join(e.code for e in result.errors))
        return result

    @staticmethod
    def _check_required(dsl: StrategyDSL, result: ValidationResult) -> None:
        if not dsl.name.strip():
            result.errors.append(ValidationIssue("name", "MISSING_NAME", "Strategy name is required"))
        if not dsl.symbol.strip():
            result.errors.append(ValidationIssue("symbol", "MISSING_SYMBOL", "Symbol is required"))
        if not dsl.timeframe.strip():
            result.errors.append(ValidationIssue("timeframe", "MISSING_TIMEFRAME", "Timeframe is required"))
        elif dsl.timeframe not in SUPPORTED_TIMEFRAMES:
            result.warnings.append(
                ValidationIssue(
                    "timeframe",
                    "UNSUPPORTED_TIMEFRAME",
                    f"Timeframe {dsl.timeframe} is not one of: {', '.join(SUPPORTED_TIMEFRAMES)}",
                    "warning",
                )
            )

    @staticmethod
    def _check_risk(dsl: StrategyDSL, result: ValidationResult) -> None:
        risk = dsl.risk
        if risk.stop_loss is not None:
            if not 0 < risk.stop_loss < 1:
                result.errors.append(
                    ValidationIssue("risk.stop_loss", "INVALID_STOP_LOSS", "Stop loss must be between 0 and 1")
                )
            elif risk.stop_loss > HIGH_STOP_LOSS_THRESHOLD:
                result.warnings.append(
                    ValidationIssue(
                        "risk.stop_loss",
                        "HIGH_STOP_LOSS",
                        "Stop loss above 10% is considered high risk",
                        "warning",
                    )
                )
        if risk.take_profit is not None and not 0 < risk.take_profit < 1:
            result.errors.append(
                ValidationIssue("risk.take_profit", "INVALID_TAKE_PROFIT", "Take profit must be between 0 and 1")
            )
        if not 0 < risk.max_position_size <= 1:
            result.errors.append(
                ValidationIssue(
                    "risk.max_position_size",
                    "INVALID_POSITION_SIZE",
                    "Max position size must be in (0, 1]",
                )
            )
        if (
            risk.stop_loss is not None
            and risk.take_profit is not None
            and risk.take_profit < risk.stop_loss
        ):
            result.suggestions.append(
                "Take profit should generally be higher than stop loss for better risk-reward ratio"
            )

    @staticmethod
    def _check_execution(dsl: StrategyDSL, result: ValidationResult) -> None:
        if dsl.execution.commission < 0:
            result.errors.append(
                ValidationIssue("execution.commission", "INVALID_COMMISSION", "Commission must be >= 0")
            )
        if dsl.execution.slippage < 0:
            result.errors.append(
                ValidationIssue("execution.slippage", "INVALID_SLIPPAGE", "Slippage must be >= 0")
            )

    def _check_indicators(self, dsl: StrategyDSL, result: ValidationResult) -> None:
        for alias, spec in dsl.indicators.items():
            field_name = f"indicators.{alias}"
            if spec.type not in self.registry:
                hint = self.registry.suggest(spec.type)
                msg = f"Unknown indicator: {spec.type}"
                if hint:
                    msg += f" (did you mean '{hint}'?)"
                result.errors.append(ValidationIssue(field_name, "UNKNOWN_INDICATOR", msg))
                continue
            indicator = self.registry.get(spec.type)
            period = resolve_period(spec, indicator)
            if not indicator.validate(period, **spec.settings):
                result.errors.append(
                    ValidationIssue(
                        field_name,
                        "INVALID_INDICATOR",
                        f"Invalid parameters for {spec.type}: period={period}, settings={spec.settings}",
                    )
                )

    def _check_references(self, dsl: StrategyDSL, result: ValidationResult) -> None:
        for path, cond in dsl.iter_conditions():
            if cond.type != "indicator" or not cond.indicator:
                continue
            alias, output = parse_indicator_ref(cond.indicator)
            spec = dsl.indicators.get(alias)
            if spec is None:
                result.errors.append(
                    ValidationIssue(
                        f"{path}.indicator",
                        "UNKNOWN_INDICATOR_REF",
                        f"Condition references undefined indicator alias '{alias}'",
                    )
                )
                continue
            if output is None or spec.type not in self.registry:
                continue
            outputs = self.registry.get(spec.type).outputs
            if output not in outputs:
                result.errors.append(
                    ValidationIssue(
                        f"{path}.indicator",
                        "UNKNOWN_INDICATOR_REF",
                        f"{spec.type} has no output '{output}' (available: {', '.join(outputs)})",
                    )
                )

    @staticmethod
    def _check_rules(dsl: StrategyDSL, result: ValidationResult) -> None:
        if not dsl.entry.long and not dsl.entry.short:
            result.warnings.append(
                ValidationIssue("entry", "NO_ENTRY_CONDITIONS", "Strategy has no entry conditions", "warning")
            )
        if not dsl.exit.long and not dsl.exit.short:
            result.warnings.append(
                ValidationIssue(
                    "exit",
                    "NO_EXIT_CONDITIONS",
                    "Strategy has no exit conditions; positions close only on stops or end of data",
                    "warning",
                )
            )
        used = dsl.referenced_aliases()
        for alias in dsl.indicators:
            if alias not in used:
                result.warnings.append(
                    ValidationIssue(
                        f"indicators.{alias}",
                        "UNUSED_INDICATOR",
                        f"Indicator '{alias}' is not referenced by any condition",
                        "warning",
                    )
                )
        n_conditions = sum(1 for _ in dsl.iter_conditions())
        if n_conditions > MAX_CONDITIONS_HINT:
            result.suggestions.append(
                f"Strategy has {n_conditions} conditions; consider simplifying to reduce overfitting"
            )
