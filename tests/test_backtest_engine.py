from __future__ import annotations

from dataclasses import replace

import pytest

from algo.indicators.cache import IndicatorCache
from analysis.metrics.metrics_canon import validate_metrics_schema
from engine.backtest_engine import BacktestEngine
from engine.errors import CandleSequenceError, DSLValidationError
from market_data.synthetic import candles_from_closes, sine_candles
from shared.config.schema import EngineConfig


def _price_dsl(*, long_entry=None, long_exit=None, short_entry=None, short_exit=None, risk=None, execution=None) -> dict:
    def groups(cond):
        return [{"conditions": [cond]}] if cond else []

    return {
        "name": "price_rules",
        "symbol": "TEST",
        "timeframe": "1h",
        "entry": {"long": groups(long_entry), "short": groups(short_entry)},
        "exit": {"long": groups(long_exit), "short": groups(short_exit)},
        "risk": risk or {"max_position_size": 0.1},
        "execution": execution or {},
    }


def _rsi_dsl(symbol: str = "BTC/USDT") -> dict:
    return {
        "name": "rsi_reversion",
        "symbol": symbol,
        "timeframe": "1h",
        "indicators": {"rsi": {"type": "RSI", "period": 14}},
        "entry": {
            "long": [{"conditions": [{"indicator": "rsi", "operator": "lt", "value": 30}]}],
            "short": [{"conditions": [{"indicator": "rsi", "operator": "gt", "value": 70}]}],
        },
        "exit": {
            "long": [{"conditions": [{"indicator": "rsi", "operator": "gt", "value": 70}]}],
            "short": [{"conditions": [{"indicator": "rsi", "operator": "lt", "value": 30}]}],
        },
        "risk": {"max_position_size": 0.5},
        "execution": {"commission": 0.001, "slippage": 0.0005},
    }


def test_long_trade_pnl_and_costs():
    dsl = _price_dsl(
        long_entry={"type": "price", "operator": "gte", "value": 105},
        long_exit={"type": "price", "operator": "lt", "value": 105},
        execution={"commission": 0.001, "slippage": 0.0005},
    )
    candles = candles_from_closes([100, 101, 105, 110, 108, 103])
    res = BacktestEngine().run(dsl, candles)

    assert len(res.trades) == 1
    t = res.trades[0]
    assert t.side == "long"
    assert t.entry_price == 105 and t.exit_price == 103
    assert t.quantity == 95  # floor(100000 * 0.1 / 105)
    assert t.pnl == pytest.approx((103 - 105) * 95)
    assert t.commission == pytest.approx(95 * 103 * 0.001)
    assert t.slippage == pytest.approx(95 * 103 * 0.0005)
    assert t.net_pnl == pytest.approx(t.pnl - t.commission - t.slippage)
    assert t.pnl_percentage == pytest.approx(-190 / (105 * 95) * 100)
    assert t.entry_reason == "price gte 105"
    assert t.exit_reason == "signal: price lt 105"
    assert t.exit_type == "signal"
    assert t.holding_time.total_seconds() == 3 * 3600
    assert t.id == "TEST-1"

    assert res.equity_curve[-1].equity == pytest.approx(100_000 + t.net_pnl)
    assert res.equity_curve[-1].position == "none"
    assert [s.type for s in res.signals] == ["entry", "exit"]


def test_short_trade_pnl():
    dsl = _price_dsl(
        short_entry={"type": "price", "operator": "lte", "value": 95},
        short_exit={"type": "price", "operator": "gt", "value": 91},
    )
    res = BacktestEngine().run(dsl, candles_from_closes([100, 95, 90, 85, 92]))
    assert len(res.trades) == 1
    t = res.trades[0]
    assert t.side == "short"
    assert t.quantity == 105
    assert t.pnl == pytest.approx((95 - 92) * 105)
    assert res.metrics["win_rate"] == 1.0
    assert res.metrics["profit_factor"] == 999.0


def test_long_entry_wins_ties():
    dsl = _price_dsl(
        long_entry={"type": "price", "operator": "gt", "value": 0},
        short_entry={"type": "price", "operator": "gt", "value": 0},
    )
    res = BacktestEngine().run(dsl, candles_from_closes([100, 101]))
    assert res.signals[0].direction == "long"
    assert res.final_position is not None and res.final_position.side == "long"


def test_equity_curve_invariants_and_single_position():
    candles = sine_candles(200)
    res = BacktestEngine().run(_rsi_dsl(), candles)

    assert res.warmup_bars == 14
    assert res.candles_processed == 200 - 14
    assert len(res.equity_curve) == res.candles_processed
    assert all(0.0 <= p.drawdown <= 1.0 for p in res.equity_curve)
    assert len(res.trades) >= 1
    validate_metrics_schema(res.metrics)

    sides = [p.position for p in res.equity_curve]
    for prev, curr in zip(sides, sides[1:]):
        assert not (prev != "none" and curr != "none" and prev != curr)


def test_backtest_is_deterministic():
    candles = sine_candles(200)
    a = BacktestEngine().run(_rsi_dsl(), candles)
    b = BacktestEngine().run(_rsi_dsl(), candles)
    assert [t.to_dict() for t in a.trades] == [t.to_dict() for t in b.trades]
    assert a.metrics == b.metrics
    assert [p.equity for p in a.equity_curve] == [p.equity for p in b.equity_curve]


def test_invalid_dsl_rejected_before_processing():
    dsl = _rsi_dsl()
    dsl["symbol"] = ""
    dsl["indicators"]["rsi"]["type"] = "RSII"
    with pytest.raises(DSLValidationError) as exc:
        BacktestEngine().run(dsl, sine_candles(50))
    codes = {e.code for e in exc.value.errors}
    assert {"MISSING_SYMBOL", "UNKNOWN_INDICATOR"} <= codes
    assert isinstance(exc.value, ValueError)


def test_non_increasing_timestamps_rejected():
    candles = candles_from_closes([1, 2, 3])
    candles[2] = replace(candles[2], timestamp=candles[1].timestamp)
    with pytest.raises(CandleSequenceError):
        BacktestEngine().run(_price_dsl(), candles)


def test_not_enough_candles_returns_empty_result():
    res = BacktestEngine().run(_rsi_dsl(), sine_candles(10))
    assert res.candles_processed == 0
    assert res.trades == [] and res.equity_curve == []
    assert any("Not enough candles" in w for w in res.warnings)


def test_warmup_policies():
    dsl = BacktestEngine().validate(_rsi_dsl())
    assert BacktestEngine().warmup_bars(dsl) == 14
    assert BacktestEngine(config=EngineConfig(warmup="legacy")).warmup_bars(dsl) == 50
    assert BacktestEngine(config=EngineConfig(warmup_bars=5)).warmup_bars(dsl) == 5

    with_macd = _rsi_dsl()
    with_macd["indicators"]["macd"] = {"type": "MACD"}
    with_macd["entry"]["long"][0]["conditions"].append({"indicator": "macd.histogram", "operator": "gt", "value": 0})
    assert BacktestEngine().warmup_bars(BacktestEngine().validate(with_macd)) == 33


def test_intrabar_stop_loss_and_take_profit():
    dsl = _price_dsl(
        long_entry={"type": "price", "operator": "eq", "value": 100},
        risk={"stop_loss": 0.05, "take_profit": 0.1, "max_position_size": 0.1},
    )
    engine = BacktestEngine(config=EngineConfig(enforce_stops=True))

    base = candles_from_closes([100, 99])
    stop_bar = replace(base[1], high=101, low=94)
    res = engine.run(dsl, [base[0], stop_bar])
    t = res.trades[0]
    assert t.exit_type == "stop_loss"
    assert t.exit_price == pytest.approx(95)
    assert t.pnl == pytest.approx(-5 * 100)

    take_bar = replace(base[1], high=111, low=99)
    assert engine.run(dsl, [base[0], take_bar]).trades[0].exit_type == "take_profit"

    # 同一根 K 线两者都触及时按止损处理
    both_bar = replace(base[1], high=111, low=94)
    assert engine.run(dsl, [base[0], both_bar]).trades[0].exit_type == "stop_loss"


def test_stops_ignored_unless_enforced():
    dsl = _price_dsl(
        long_entry={"type": "price", "operator": "eq", "value": 100},
        risk={"stop_loss": 0.05, "max_position_size": 0.1},
    )
    base = candles_from_closes([100, 99])
    res = BacktestEngine().run(dsl, [base[0], replace(base[1], low=90)])
    assert res.trades == []
    assert res.signals[0].stop_loss == pytest.approx(95)


def test_flatten_on_end_closes_open_position():
    dsl = _price_dsl(long_entry={"type": "price", "operator": "gte", "value": 100})
    candles = candles_from_closes([100, 101, 102])

    res = BacktestEngine(config=EngineConfig(flatten_on_end=True)).run(dsl, candles)
    assert len(res.trades) == 1
    assert res.trades[0].exit_type == "end_of_data"
    assert res.trades[0].pnl == pytest.approx(2 * 100)
    assert res.final_position is not None and not res.final_position.is_open
    assert res.equity_curve[-1].equity == pytest.approx(100_200)
    assert len(res.equity_curve) == 3

    open_res = BacktestEngine().run(dsl, candles)
    assert open_res.trades == []
    assert open_res.final_position is not None and open_res.final_position.side == "long"
    assert open_res.equity_curve[-1].equity == pytest.approx(100_200)


def test_zero_quantity_entry_is_skipped():
    dsl = _price_dsl(
        long_entry={"type": "price", "operator": "gt", "value": 0},
        risk={"max_position_size": 1.0},
    )
    res = BacktestEngine(config=EngineConfig(initial_capital=50)).run(dsl, candles_from_closes([100, 100, 100]))
    assert res.trades == [] and res.signals == []
    assert res.equity_curve[-1].equity == 50


def test_callbacks_receive_signals_and_trades():
    seen_signals, seen_trades = [], []
    dsl = _price_dsl(
        long_entry={"type": "price", "operator": "gte", "value": 105},
        long_exit={"type": "price", "operator": "lt", "value": 105},
    )
    engine = BacktestEngine(on_signal=seen_signals.append, on_trade=seen_trades.append)
    res = engine.run(dsl, candles_from_closes([100, 105, 103]))
    assert seen_signals == res.signals
    assert seen_trades == res.trades
    assert len(seen_trades) == 1


def test_shared_cache_is_reused_between_runs():
    cache = IndicatorCache()
    engine = BacktestEngine(cache=cache)
    candles = sine_candles(120)
    a = engine.run(_rsi_dsl(), candles)
    b = engine.run(_rsi_dsl(), candles)
    assert cache.hits >= 1
    assert [t.to_dict() for t in a.trades] == [t.to_dict() for t in b.trades]


def test_symbol_mismatch_is_a_warning():
    res = BacktestEngine().run(_rsi_dsl(symbol="ETH/USDT"), sine_candles(60))
    assert any("differs" in w for w in res.warnings)


def test_result_to_dict_is_json_friendly():
    res = BacktestEngine().run(_rsi_dsl(), sine_candles(120))
    out = res.to_dict(include_curve=False)
    assert "equity_curve" not in out
    assert out["candles_processed"] == res.candles_processed
    assert list(out["monthly_returns"]) == ["2024-01"]
    assert out["monthly_returns"]["2024-01"] == pytest.approx(res.metrics["total_return"])
    if out["trades"]:
        assert isinstance(out["trades"][0]["entry_time"], str)
        assert isinstance(out["trades"][0]["holding_time"], float)
