"""信号管线（Context → Evaluator → Signal → PositionBook）。

回测引擎与流式引擎共用这一段逻辑，避免两处实现漂移。
"""

from __future__ import annotations

import logging
from typing import Callable

from engine.condition_evaluator import CheckResult, ConditionEvaluator
from engine.context import ExecutionContext
from engine.portfolio import PositionBook
from shared.models.models import Signal, Trade

Sizer = Callable[[float, float], float]


def _entry_signal(direction: str, check: CheckResult, context: ExecutionContext, quantity: float | None) -> Signal:
    price = float(context.candle.close)
    risk = context.dsl.risk
    sign = 1.0 if direction == "long" else -1.0
    stop = price * (1 - sign * risk.stop_loss) if risk.stop_loss is not None else None
    take = price * (1 + sign * risk.take_profit) if risk.take_profit is not None else None
    return Signal(
        type="entry",
        direction=direction,  # type: ignore[arg-type]
        strength=check.strength,
        reason=check.reason,
        timestamp=context.candle.timestamp,
        price=price,
        order_type=context.dsl.execution.order_type,
        quantity=quantity,
        stop_loss=stop,
        take_profit=take,
        triggered_by=check.triggered_by,
        indicator_snapshot=context.snapshot(),
    )


def exit_signal(
    context: ExecutionContext,
    *,
    reason: str,
    exit_type: str | None,
    price: float | None = None,
    strength: float = 1.0,
    triggered_by: str = "",
) -> Signal:
    return Signal(
        type="exit",
        direction="close",
        strength=strength,
        reason=reason,
        timestamp=context.candle.timestamp,
        price=float(context.candle.close if price is None else price),
        order_type="market",
        triggered_by=triggered_by,
        exit_type=exit_type,
        indicator_snapshot=context.snapshot(),
    )


def generate_signals(
    context: ExecutionContext,
    evaluator: ConditionEvaluator,
    *,
    sizer: Sizer | None = None,
) -> list[Signal]:
    """
    生成当前 K 线的信号。

    - 空仓：先评估多头入场，未触发再评估空头入场（同时成立时多头优先）；
    - 持仓：只评估该方向的出场条件组。
    """
    dsl = context.dsl
    position = context.position
    if not position.is_open:
        for direction, groups in (("long", dsl.entry.long), ("short", dsl.entry.short)):
            if not groups:
                continue
            check = evaluator.check_conditions(groups, context)
            if check.triggered:
                price = float(context.candle.close)
                qty = sizer(price, dsl.risk.max_position_size) if sizer else None
                return [_entry_signal(direction, check, context, qty)]
        return []

    groups = dsl.exit.long if position.side == "long" else dsl.exit.short
    if not groups:
        return []
    check = evaluator.check_exit_conditions(groups, context)
    if not check.triggered:
        return []
    return [
        exit_signal(
            context,
            reason=check.reason,
            exit_type=check.exit_type,
            strength=check.strength,
            triggered_by=check.triggered_by,
        )
    ]


def apply_signals(
    signals: list[Signal],
    *,
    book: PositionBook,
    context: ExecutionContext,
    logger: logging.Logger,
) -> tuple[list[Signal], list[Trade]]:
    """
    把信号落到账本上，返回 (实际执行的信号, 新产生的交易)。

    数量为 0 的入场信号（资金不足一个交易步进）被跳过并记录 warning。
    """
    acted: list[Signal] = []
    trades: list[Trade] = []
    candle = context.candle
    for sig in signals:
        if sig.type == "entry":
            if book.position.is_open:
                continue
            qty = float(sig.quantity or 0.0)
            if qty <= 0:
                logger.warning(
                    "Skip %s entry at %s: position size rounds to zero (cash=%.2f, price=%.4f)",
                    sig.direction,
                    candle.timestamp,
                    book.cash,
                    sig.price,
                )
                continue
            risk = context.dsl.risk
            book.open(
                sig.direction,  # type: ignore[arg-type]
                candle,
                quantity=qty,
                stop_loss_pct=risk.stop_loss,
                take_profit_pct=risk.take_profit,
                reason=sig.reason,
                index=context.index,
            )
            acted.append(sig)
            logger.debug("Position opened: %s qty=%s price=%s", sig.direction, qty, sig.price)
        elif sig.type == "exit":
            if not book.position.is_open:
                continue
            trade = book.close(
                candle,
                price=sig.price,
                reason=sig.reason,
                exit_type=sig.exit_type,
                indicator_snapshot=sig.indicator_snapshot,
            )
            acted.append(sig)
            trades.append(trade)
            logger.debug("Position closed: pnl=%.4f reason=%s", trade.pnl, sig.reason)
    return acted, trades
