"""单仓位账本（PositionBook）：现金、持仓、成交记录与权益。

状态机：none -> long -> none / none -> short -> none，持仓期间忽略新的入场信号（不加仓、不反手）。

记账口径：
- 开仓不动用现金，平仓时 `cash += pnl - commission - slippage`；
- commission / slippage 按平仓名义价值 `qty * exit_price * rate` 计算；
- 权益 = cash + 未实现盈亏。
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from shared.models.models import Candle, EquityPoint, Position, Trade
from shared.utils.precision import floor_to_step


def directional_pnl(side: str, entry_price: float, exit_price: float, qty: float) -> float:
    if side == "long":
        return (exit_price - entry_price) * qty
    if side == "short":
        return (entry_price - exit_price) * qty
    return 0.0


class PositionBook:
    def __init__(
        self,
        initial_capital: float,
        *,
        commission: float = 0.0,
        slippage: float = 0.0,
        qty_step: float | None = 1.0,
        symbol: str = "",
    ) -> None:
        self.initial_capital = float(initial_capital)
        self.cash = float(initial_capital)
        self.commission = float(commission)
        self.slippage = float(slippage)
        self.qty_step = qty_step
        self.symbol = symbol

        self.position = Position()
        self.trades: list[Trade] = []
        self.peak_equity = float(initial_capital)
        self.realized_pnl = 0.0
        self._entry_candle: Candle | None = None
        self._seq = 0

    @property
    def equity(self) -> float:
        return self.cash + self.position.unrealized_pnl

    def size_for(self, price: float, max_position_size: float) -> float:
        """`floor_to_step(cash * max_position_size / price, qty_step)`。"""
        if price <= 0:
            return 0.0
        raw = self.cash * float(max_position_size) / float(price)
        return max(floor_to_step(raw, self.qty_step), 0.0)

    def open(
        self,
        side: Literal["long", "short"],
        candle: Candle,
        *,
        quantity: float,
        stop_loss_pct: float | None = None,
        take_profit_pct: float | None = None,
        reason: str = "",
        index: int | None = None,
    ) -> Position:
        if self.position.is_open:
            raise RuntimeError("position already open")
        price = float(candle.close)
        stop = take = None
        if stop_loss_pct is not None:
            stop = price * (1 - stop_loss_pct) if side == "long" else price * (1 + stop_loss_pct)
        if take_profit_pct is not None:
            take = price * (1 + take_profit_pct) if side == "long" else price * (1 - take_profit_pct)
        self.position = Position(
            side=side,
            size=float(quantity),
            entry_price=price,
            entry_time=candle.timestamp,
            stop_loss=stop,
            take_profit=take,
            entry_reason=reason,
            entry_index=index,
        )
        self._entry_candle = candle
        return self.position

    def close(
        self,
        candle: Candle,
        *,
        price: float | None = None,
        reason: str = "",
        exit_type: str | None = None,
        indicator_snapshot: dict[str, float] | None = None,
    ) -> Trade:
        pos = self.position
        if not pos.is_open:
            raise RuntimeError("no open position")
        exit_price = float(candle.close if price is None else price)
        self._track_excursion(pos, exit_price, exit_price)

        qty = pos.size
        pnl = directional_pnl(pos.side, pos.entry_price, exit_price, qty)
        notional = qty * exit_price
        commission = notional * self.commission
        slippage = notional * self.slippage
        net = pnl - commission - slippage
        cost = pos.entry_price * qty
        self._seq += 1

        trade = Trade(
            id=f"{self.symbol or candle.symbol}-{self._seq}",
            symbol=self.symbol or candle.symbol,
            side=pos.side,  # type: ignore[arg-type]
            entry_time=pos.entry_time or candle.timestamp,
            entry_price=pos.entry_price,
            exit_time=candle.timestamp,
            exit_price=exit_price,
            quantity=qty,
            pnl=pnl,
            net_pnl=net,
            pnl_percentage=(pnl / cost * 100.0) if cost > 0 else 0.0,
            commission=commission,
            slippage=slippage,
            holding_time=candle.timestamp - (pos.entry_time or candle.timestamp),
            entry_reason=pos.entry_reason,
            exit_reason=reason,
            exit_type=exit_type,
            entry_candle=self._entry_candle,
            exit_candle=candle,
            indicator_snapshot=dict(indicator_snapshot or {}),
            max_favorable_excursion=pos.max_favorable_excursion,
            max_adverse_excursion=pos.max_adverse_excursion,
        )
        self.trades.append(trade)
        self.cash += net
        self.realized_pnl += net
        self.position = Position()
        self._entry_candle = None
        return trade

    def mark(self, candle: Candle) -> None:
        """按收盘价更新未实现盈亏，并用 high/low 更新 MFE/MAE。"""
        pos = self.position
        if not pos.is_open:
            return
        self._track_excursion(pos, float(candle.high), float(candle.low))
        pos.unrealized_pnl = directional_pnl(pos.side, pos.entry_price, float(candle.close), pos.size)

    @staticmethod
    def _track_excursion(pos: Position, high: float, low: float) -> None:
        best = high if pos.side == "long" else low
        worst = low if pos.side == "long" else high
        favorable = directional_pnl(pos.side, pos.entry_price, best, pos.size)
        adverse = directional_pnl(pos.side, pos.entry_price, worst, pos.size)
        pos.max_favorable_excursion = max(pos.max_favorable_excursion, favorable)
        pos.max_adverse_excursion = min(pos.max_adverse_excursion, adverse)

    def stop_hit(self, candle: Candle) -> tuple[str, float] | None:
        """
        K 线内是否触及止损/止盈，返回 `(exit_type, 成交价)`。

        同一根 K 线同时触及两者时按止损处理（保守假设）。
        """
        pos = self.position
        if not pos.is_open:
            return None
        if pos.side == "long":
            if pos.stop_loss is not None and candle.low <= pos.stop_loss:
                return "stop_loss", pos.stop_loss
            if pos.take_profit is not None and candle.high >= pos.take_profit:
                return "take_profit", pos.take_profit
        else:
            if pos.stop_loss is not None and candle.high >= pos.stop_loss:
                return "stop_loss", pos.stop_loss
            if pos.take_profit is not None and candle.low <= pos.take_profit:
                return "take_profit", pos.take_profit
        return None

    def equity_point(self, timestamp: datetime) -> EquityPoint:
        equity = self.equity
        if equity > self.peak_equity:
            self.peak_equity = equity
        drawdown = 0.0
        if self.peak_equity > 0:
            drawdown = max(0.0, (self.peak_equity - equity) / self.peak_equity)
        return EquityPoint(
            timestamp=timestamp,
            equity=equity,
            drawdown=min(drawdown, 1.0),
            position=self.position.side,
            cash=self.cash,
        )

    def win_rate(self) -> float:
        if not self.trades:
            return 0.0
        return sum(1 for t in self.trades if t.net_pnl > 0) / len(self.trades)
