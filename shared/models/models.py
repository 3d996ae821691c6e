"""核心数据结构：Candle / Position / Signal / Trade / EquityPoint / StrategyExecutionResult。

约定：
- Candle、Signal、Trade、EquityPoint 一经产生即不可变（frozen dataclass）；
- Position 只由一次引擎运行持有并原地更新，不在运行之间共享；
- `to_dict()` 输出 JSON 友好的结构，供外部持久化/推送使用，引擎本身不落盘。
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Literal

PositionSide = Literal["none", "long", "short"]
SignalType = Literal["entry", "exit"]
SignalDirection = Literal["long", "short", "close"]


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, timedelta):
        return value.total_seconds()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


@dataclass(frozen=True)
class Candle:
    """K 线（OHLCV）。timestamp 为 bar 的时间戳（UTC，序列内严格递增）。"""
    symbol: str
    timeframe: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass
class Position:
    """持仓快照（单仓位：side=none 表示空仓）。"""
    side: PositionSide = "none"
    size: float = 0.0
    entry_price: float = 0.0
    entry_time: datetime | None = None
    unrealized_pnl: float = 0.0
    stop_loss: float | None = None
    take_profit: float | None = None
    entry_reason: str = ""
    entry_index: int | None = None
    max_favorable_excursion: float = 0.0
    max_adverse_excursion: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.side != "none"

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class Signal:
    """策略输出的信号（只追加，不修改）。"""
    type: SignalType
    direction: SignalDirection
    strength: float
    reason: str
    timestamp: datetime
    price: float
    order_type: str = "market"
    quantity: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None
    triggered_by: str = ""
    exit_type: str | None = None
    indicator_snapshot: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class Trade:
    """一笔完整交易（开仓 -> 平仓），仅在平仓时生成。"""
    id: str
    symbol: str
    side: Literal["long", "short"]
    entry_time: datetime
    entry_price: float
    exit_time: datetime
    exit_price: float
    quantity: float
    pnl: float            # 毛盈亏：方向性价差 * 数量
    net_pnl: float        # pnl - commission - slippage
    pnl_percentage: float
    commission: float
    slippage: float
    holding_time: timedelta
    entry_reason: str = ""
    exit_reason: str = ""
    exit_type: str | None = None
    entry_candle: Candle | None = None
    exit_candle: Candle | None = None
    indicator_snapshot: dict[str, float] = field(default_factory=dict)
    max_favorable_excursion: float = 0.0
    max_adverse_excursion: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class EquityPoint:
    """权益曲线上的一个点（每个已处理的 K 线一个）。"""
    timestamp: datetime
    equity: float
    drawdown: float       # 相对历史峰值的回撤比例，[0, 1]
    position: PositionSide
    cash: float

    def to_dict(self) -> dict[str, Any]:
        return _jsonable(asdict(self))


@dataclass
class StrategyExecutionResult:
    """一次完整运行的聚合结果（纯数据，无副作用）。"""
    strategy_name: str
    symbol: str
    timeframe: str
    trades: list[Trade]
    signals: list[Signal]
    equity_curve: list[EquityPoint]
    metrics: dict[str, Any]
    candles_processed: int = 0
    warmup_bars: int = 0
    execution_time: float = 0.0
    warnings: list[str] = field(default_factory=list)
    final_position: Position | None = None
    monthly_returns: dict[str, float] = field(default_factory=dict)

    def to_dict(self, *, include_curve: bool = True) -> dict[str, Any]:
        out: dict[str, Any] = {
            "strategy_name": self.strategy_name,
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "metrics": dict(self.metrics),
            "candles_processed": self.candles_processed,
            "warmup_bars": self.warmup_bars,
            "execution_time": self.execution_time,
            "warnings": list(self.warnings),
            "trades": [t.to_dict() for t in self.trades],
            "signals": [s.to_dict() for s in self.signals],
            "final_position": self.final_position.to_dict() if self.final_position else None,
            "monthly_returns": dict(self.monthly_returns),
        }
        if include_curve:
            out["equity_curve"] = [p.to_dict() for p in self.equity_curve]
        return out
