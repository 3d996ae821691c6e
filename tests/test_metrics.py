from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import pytest

from analysis.metrics.metrics import annualization_factor, compute_metrics, compute_trade_metrics, monthly_returns
from analysis.metrics.metrics_canon import CANONICAL_METRIC_KEYS, canonicalize_metrics, validate_metrics_schema
from shared.config.schema import EngineConfig
from shared.models.models import EquityPoint, Trade

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _trade(net: float, *, hours: int = 2, commission: float = 0.0) -> Trade:
    return Trade(
        id="t",
        symbol="TEST",
        side="long",
        entry_time=T0,
        entry_price=100.0,
        exit_time=T0 + timedelta(hours=hours),
        exit_price=100.0,
        quantity=1.0,
        pnl=net + commission,
        net_pnl=net,
        pnl_percentage=0.0,
        commission=commission,
        slippage=0.0,
        holding_time=timedelta(hours=hours),
    )


def _curve(equities: list[float], step: timedelta = timedelta(hours=1)) -> list[EquityPoint]:
    out = []
    peak = equities[0]
    for i, eq in enumerate(equities):
        peak = max(peak, eq)
        out.append(EquityPoint(timestamp=T0 + i * step, equity=eq, drawdown=(peak - eq) / peak, position="none", cash=eq))
    return out


def test_trade_metrics_basic():
    m = compute_trade_metrics([_trade(100), _trade(50), _trade(-50), _trade(-10), _trade(30)])
    assert m["total_trades"] == 5
    assert m["winning_trades"] == 3
    assert m["losing_trades"] == 2
    assert m["win_rate"] == pytest.approx(0.6)
    assert m["profit_factor"] == pytest.approx(180 / 60)
    assert m["largest_win"] == 100 and m["largest_loss"] == -50
    assert m["average_loss"] == pytest.approx(-30)
    assert m["max_consecutive_wins"] == 2
    assert m["max_consecutive_losses"] == 2
    assert m["average_holding_time"] == 7200


def test_wins_judged_on_net_pnl():
    # 毛利为正但扣费后为负：算亏损
    m = compute_trade_metrics([_trade(-1.0, commission=5.0)])
    assert m["winning_trades"] == 0
    assert m["losing_trades"] == 1
    assert m["total_commission"] == 5.0


def test_profit_factor_sentinel_and_empty():
    assert compute_trade_metrics([_trade(10), _trade(20)])["profit_factor"] == 999.0
    assert compute_trade_metrics([_trade(10)], profit_factor_sentinel=1e6)["profit_factor"] == 1e6
    empty = compute_trade_metrics([])
    assert empty["profit_factor"] == 0.0
    assert empty["win_rate"] == 0.0


def test_equity_metrics_and_canonical_keys():
    curve = _curve([1000, 1100, 990, 1050])
    m = compute_metrics([], curve, initial_capital=1000, timeframe="1h")
    validate_metrics_schema(m)
    assert list(m) == CANONICAL_METRIC_KEYS
    assert m["total_return"] == pytest.approx(0.05)
    assert m["max_drawdown"] == pytest.approx(0.1)
    assert m["sharpe"] != 0.0


def test_flat_equity_has_zero_sharpe():
    m = compute_metrics([], _curve([1000] * 10), initial_capital=1000, timeframe="1h")
    assert m["sharpe"] == 0.0
    assert m["sortino"] == 0.0
    assert m["total_return"] == 0.0


def test_sharpe_annualization_follows_timeframe():
    equities = [1000, 1010, 1005, 1020, 1015, 1030]
    hourly = compute_metrics([], _curve(equities), initial_capital=1000, timeframe="1h")
    daily = compute_metrics([], _curve(equities, timedelta(days=1)), initial_capital=1000, timeframe="1d")
    assert hourly["sharpe"] / daily["sharpe"] == pytest.approx(math.sqrt(24))


def test_annualization_fallback_uses_bar_spacing():
    curve = _curve([1, 2, 3], timedelta(hours=1))
    assert annualization_factor("1h", curve) == pytest.approx(math.sqrt(252 * 24))
    assert annualization_factor("weird", curve) == pytest.approx(math.sqrt(365 * 24))


def test_calmar_uses_linear_annualized_return():
    m = compute_metrics([], _curve([1000, 1100, 990, 1050], timedelta(days=1)), initial_capital=1000, timeframe="1d")
    # 0.05 * 252 / 4 bars
    assert m["annualized_return"] == pytest.approx(3.15)
    assert m["max_drawdown"] == pytest.approx(0.1)
    assert m["calmar"] == pytest.approx(31.5)


def test_calmar_zero_without_drawdown():
    m = compute_metrics([], _curve([1000, 1010, 1020, 1030]), initial_capital=1000, timeframe="1h")
    assert m["max_drawdown"] == 0.0
    assert m["annualized_return"] > 0
    assert m["calmar"] == 0.0


def test_monthly_returns_chain_month_end_equity():
    curve = _curve([1000, 1100, 1050], timedelta(days=20))
    out = monthly_returns(curve, initial_capital=1000)
    assert list(out) == ["2024-01", "2024-02"]
    assert out["2024-01"] == pytest.approx(0.1)
    assert out["2024-02"] == pytest.approx(1050 / 1100 - 1)
    assert monthly_returns([], initial_capital=1000) == {}


def test_config_overrides():
    cfg = EngineConfig(profit_factor_sentinel=100.0, trading_days_per_year=365)
    m = compute_metrics([_trade(5)], _curve([1000, 1005]), initial_capital=1000, timeframe="1d", config=cfg)
    assert m["profit_factor"] == 100.0


def test_canonicalize_fills_defaults():
    m = canonicalize_metrics({"sharpe": 1.5})
    assert m["sharpe"] == 1.5
    assert m["total_trades"] == 0
    assert m["total_return"] == 0.0
    with pytest.raises(ValueError):
        validate_metrics_schema({"sharpe": 1.0})
