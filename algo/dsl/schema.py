"""策略 DSL 架构定义（Pydantic Schema）。

DSL 是策略的声明式描述：指标（alias -> IndicatorSpec）、入场/出场条件组、风控与执行参数。

约定：
- 字段同时接受 snake_case 与 camelCase（`stopLoss`、`maxPositionSize`、`exitType` ...），
  `strategy_name` 是 `name` 的别名；
- 结构错误（类型不对、未知字段、条件组合非法）在构造时直接失败；
- 业务规则（止损区间、指标周期、引用的 alias 是否存在）由 `algo.dsl.validator` 负责，
  这样校验器可以一次性给出全部问题，而不是在第一个错误处中断。
"""

from __future__ import annotations

from typing import Any, Iterator, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

PriceSource = Literal["open", "high", "low", "close", "volume"]
ConditionType = Literal["indicator", "price", "volume"]
Operator = Literal["gt", "lt", "gte", "lte", "eq", "crossover", "crossunder", "rising", "falling"]

# 需要指标历史序列的运算符
SERIES_OPERATORS = frozenset({"crossover", "crossunder", "rising", "falling"})


def parse_indicator_ref(ref: str) -> tuple[str, str | None]:
    """`"macd.signal"` -> `("macd", "signal")`；`"rsi"` -> `("rsi", None)`（主输出）。"""
    alias, sep, output = ref.partition(".")
    return alias, (output if sep else None)


class IndicatorSpec(BaseModel):
    """单个指标的声明。

    说明：
    - `type` 统一转为大写（`rsi` -> `RSI`）；
    - `period` 缺省时使用该指标的默认周期；
    - 指标特有参数放在 `settings`；写在顶层的未知字段会被挪进 `settings`
      （与配置层 strategy params 的处理方式一致），随后由各指标的 settings 模型严格校验。
    """
    type: str
    period: int | None = None
    source: PriceSource = "close"
    settings: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("settings", "params", "parameters"),
    )

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="before")
    @classmethod
    def _pack_flat_settings(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        known = {"type", "period", "source", "settings", "params", "parameters"}
        extra = {k: v for k, v in data.items() if k not in known}
        if not extra:
            return data
        packed = {k: v for k, v in data.items() if k in known}
        existing = packed.pop("settings", None) or packed.pop("params", None) or packed.pop("parameters", None)
        settings = dict(extra)
        if isinstance(existing, dict):
            settings.update(existing)
        packed["settings"] = settings
        return packed

    @field_validator("type")
    @classmethod
    def _upper_type(cls, v: str) -> str:
        v = str(v).strip().upper()
        if not v:
            raise ValueError("indicator type must not be empty")
        return v


class Condition(BaseModel):
    """单个条件：左值（指标 / 价格 / 成交量）与字面量 `value` 比较。"""
    type: ConditionType = "indicator"
    indicator: str | None = None
    operator: Operator
    value: float = 0.0
    lookback: int = 3

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_shape(self) -> "Condition":
        if self.type == "indicator" and not self.indicator:
            raise ValueError("indicator condition requires 'indicator'")
        if self.operator in SERIES_OPERATORS and self.type != "indicator":
            raise ValueError(f"operator '{self.operator}' requires type='indicator'")
        if self.lookback < 2:
            raise ValueError("lookback must be >= 2")
        return self

    @property
    def ref(self) -> tuple[str, str | None] | None:
        if self.type != "indicator" or not self.indicator:
            return None
        return parse_indicator_ref(self.indicator)


class ConditionGroup(BaseModel):
    """条件组：and = 全部成立，or = 任一成立。"""
    operator: Literal["and", "or"] = "and"
    conditions: list[Condition] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid")

    @field_validator("operator", mode="before")
    @classmethod
    def _lower_operator(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v


class ExitConditionGroup(ConditionGroup):
    """出场条件组：priority 越大越先评估，第一个成立的组胜出。"""
    exit_type: str = Field("signal", validation_alias=AliasChoices("exit_type", "exitType"))
    priority: int = 0


class EntryRules(BaseModel):
    long: list[ConditionGroup] = Field(default_factory=list)
    short: list[ConditionGroup] = Field(default_factory=list)
    model_config = ConfigDict(extra="forbid")


class ExitRules(BaseModel):
    long: list[ExitConditionGroup] = Field(default_factory=list)
    short: list[ExitConditionGroup] = Field(default_factory=list)
    model_config = ConfigDict(extra="forbid")


class Risk(BaseModel):
    """风控参数（比例形式：0.02 = 2%）。区间检查由校验器完成。"""
    stop_loss: float | None = Field(None, validation_alias=AliasChoices("stop_loss", "stopLoss"))
    take_profit: float | None = Field(None, validation_alias=AliasChoices("take_profit", "takeProfit"))
    max_position_size: float = Field(
        0.1, validation_alias=AliasChoices("max_position_size", "maxPositionSize", "position_size")
    )
    model_config = ConfigDict(extra="forbid")


class Execution(BaseModel):
    """执行参数：下单类型与费率（commission / slippage 均为名义价值比例）。"""
    order_type: Literal["market", "limit", "stop"] = Field(
        "market", validation_alias=AliasChoices("order_type", "orderType")
    )
    commission: float = 0.0
    slippage: float = 0.0
    model_config = ConfigDict(extra="forbid")


class StrategyDSL(BaseModel):
    """策略 DSL 顶层结构。"""
    name: str = Field("", validation_alias=AliasChoices("name", "strategy_name"))
    symbol: str = ""
    timeframe: str = ""
    description: str | None = None
    indicators: dict[str, IndicatorSpec] = Field(default_factory=dict)
    entry: EntryRules = Field(default_factory=EntryRules)
    exit: ExitRules = Field(default_factory=ExitRules)
    risk: Risk = Field(default_factory=Risk)
    execution: Execution = Field(default_factory=Execution)
    params: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="forbid")

    def iter_conditions(self) -> Iterator[tuple[str, Condition]]:
        """遍历所有条件，附带其字段路径（用于校验报错定位）。"""
        sections: list[tuple[str, list[ConditionGroup]]] = [
            ("entry.long", list(self.entry.long)),
            ("entry.short", list(self.entry.short)),
            ("exit.long", list(self.exit.long)),
            ("exit.short", list(self.exit.short)),
        ]
        for prefix, groups in sections:
            for gi, group in enumerate(groups):
                for ci, cond in enumerate(group.conditions):
                    yield f"{prefix}[{gi}].conditions[{ci}]", cond

    def referenced_aliases(self) -> set[str]:
        out: set[str] = set()
        for _, cond in self.iter_conditions():
            ref = cond.ref
            if ref is not None:
                out.add(ref[0])
        return out
