from __future__ import annotations

from dataclasses import replace

import pytest

from engine.backtest_engine import BacktestEngine
from engine.errors import CandleSequenceError, DSLValidationError
from engine.stream_engine import StreamingEngine
from market_data.synthetic import sine_candles
from shared.config.schema import EngineConfig

DSL = {
    "name": "rsi_stream",
    "symbol": "BTC/USDT",
    "timeframe": "1h",
    "indicators": {"rsi": {"type": "RSI", "period": 14}},
    "entry": {"long": [{"conditions": [{"indicator": "rsi", "operator": "lt", "value": 30}]}]},
    "exit": {"long": [{"conditions": [{"indicator": "rsi", "operator": "gt", "value": 70}]}]},
    "risk": {"max_position_size": 0.5},
}


def _key(t):
    return (t.side, t.entry_time, t.exit_time, round(t.entry_price, 9), round(t.exit_price, 9), t.quantity)


def test_streaming_matches_backtest():
    candles = sine_candles(200)
    batch = BacktestEngine().run(DSL, candles)

    stream = StreamingEngine(DSL)
    for c in candles:
        stream.on_candle(c)
    res = stream.result()

    assert len(batch.trades) >= 1
    assert [_key(t) for t in res.trades] == [_key(t) for t in batch.trades]
    assert len(res.equity_curve) == len(batch.equity_curve)
    assert res.equity_curve[-1].equity == pytest.approx(batch.equity_curve[-1].equity)
    assert res.warmup_bars == batch.warmup_bars


def test_streaming_warmup_returns_no_signals():
    stream = StreamingEngine(DSL)
    for c in sine_candles(14):
        assert stream.on_candle(c) == []
    assert stream.equity_curve == []
    assert not stream.position.is_open


def test_streaming_history_is_bounded():
    stream = StreamingEngine(DSL, config=EngineConfig(max_history=30))
    for c in sine_candles(100):
        stream.on_candle(c)
    assert len(stream.history) == 30
    assert stream.candles_seen == 100
    assert len(stream.equity_curve) == 100 - 14


def test_streaming_rejects_out_of_order_candles():
    candles = sine_candles(3)
    stream = StreamingEngine(DSL)
    stream.on_candle(candles[1])
    with pytest.raises(CandleSequenceError):
        stream.on_candle(candles[0])
    with pytest.raises(CandleSequenceError):
        stream.on_candle(replace(candles[2], timestamp=candles[1].timestamp))


def test_streaming_validates_dsl_up_front():
    bad = dict(DSL, timeframe="")
    with pytest.raises(DSLValidationError):
        StreamingEngine(bad)


def test_streaming_callbacks():
    trades = []
    stream = StreamingEngine(DSL, on_trade=trades.append)
    for c in sine_candles(200):
        stream.on_candle(c)
    assert trades == stream.trades
