from __future__ import annotations

import pytest

from engine.portfolio import PositionBook, directional_pnl
from market_data.synthetic import candles_from_closes
from shared.utils.precision import floor_to_step


def test_directional_pnl():
    assert directional_pnl("long", 100, 110, 2) == 20
    assert directional_pnl("short", 100, 110, 2) == -20
    assert directional_pnl("none", 100, 110, 2) == 0


def test_floor_to_step():
    assert floor_to_step(3.7, 1.0) == 3.0
    assert floor_to_step(0.30000000000000004, 0.1) == 0.3
    assert floor_to_step(0.123456, 0.001) == 0.123
    assert floor_to_step(3.7, None) == 3.7


def test_size_for_clips_by_step():
    book = PositionBook(1000, qty_step=1.0)
    assert book.size_for(30, 0.1) == 3.0
    assert PositionBook(1000, qty_step=0.01).size_for(30, 0.1) == pytest.approx(3.33)
    assert book.size_for(0, 0.1) == 0.0


def test_cash_moves_only_on_close():
    c = candles_from_closes([100, 110, 120])
    book = PositionBook(10_000, commission=0.001, symbol="TEST")
    book.open("long", c[0], quantity=10)
    assert book.cash == 10_000

    book.mark(c[1])
    assert book.position.unrealized_pnl == 100
    assert book.equity == 10_100

    trade = book.close(c[2])
    assert trade.pnl == 200
    assert trade.commission == pytest.approx(10 * 120 * 0.001)
    assert book.cash == pytest.approx(10_000 + 200 - 1.2)
    assert not book.position.is_open
    assert trade.max_favorable_excursion == 200


def test_single_position_only():
    c = candles_from_closes([100, 101])
    book = PositionBook(10_000)
    book.open("short", c[0], quantity=1)
    with pytest.raises(RuntimeError):
        book.open("long", c[1], quantity=1)
    book.close(c[1])
    with pytest.raises(RuntimeError):
        book.close(c[1])


def test_short_stop_levels():
    c = candles_from_closes([100])
    book = PositionBook(10_000)
    pos = book.open("short", c[0], quantity=1, stop_loss_pct=0.05, take_profit_pct=0.1)
    assert pos.stop_loss == pytest.approx(105)
    assert pos.take_profit == pytest.approx(90)


def test_drawdown_tracks_peak():
    c = candles_from_closes([100, 120, 90])
    book = PositionBook(1000)
    book.open("long", c[0], quantity=10)
    book.mark(c[1])
    assert book.equity_point(c[1].timestamp).drawdown == 0.0
    book.mark(c[2])
    point = book.equity_point(c[2].timestamp)
    assert point.equity == 900
    assert point.drawdown == pytest.approx((1200 - 900) / 1200)
    assert point.position == "long"
