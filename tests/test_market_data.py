from __future__ import annotations

from datetime import datetime, timezone

import pandas as pd
import pytest

from market_data.loader import CsvMarketDataProvider, frame_to_candles
from market_data.synthetic import candles_from_closes, sine_candles


def test_sine_candles_are_deterministic_and_well_formed():
    a = sine_candles(50, cycle=10)
    b = sine_candles(50, cycle=10)
    assert a == b
    assert len(a) == 50
    assert all(c.low <= min(c.open, c.close) and c.high >= max(c.open, c.close) for c in a)
    assert all(x.timestamp < y.timestamp for x, y in zip(a, a[1:]))
    assert a[0].close == pytest.approx(100.0)


def test_candles_from_closes_timeframe_step():
    candles = candles_from_closes([1, 2, 3], timeframe="4h")
    assert (candles[1].timestamp - candles[0].timestamp).total_seconds() == 4 * 3600
    assert candles[2].high == candles[2].low == 3.0


def test_csv_round_trip_and_range_filter(tmp_path):
    provider = CsvMarketDataProvider(tmp_path)
    candles = sine_candles(24, symbol="BTC/USDT")
    path = provider.write(candles)
    assert path.name == "BTCUSDT_1h.csv"

    loaded = provider.fetch_historical("BTC/USDT", "1h")
    assert len(loaded) == 24
    assert loaded[0].timestamp == candles[0].timestamp
    assert loaded[5].close == pytest.approx(candles[5].close)

    window = provider.fetch_historical("BTC/USDT", "1h", "2024-01-01T02:00:00Z", "2024-01-01T05:00:00Z")
    assert [c.timestamp.hour for c in window] == [2, 3, 4, 5]


def test_missing_csv_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        CsvMarketDataProvider(tmp_path).fetch_historical("ETH/USDT", "1h")


def test_frame_to_candles_epoch_millis_and_sorting():
    t0 = int(datetime(2024, 1, 1, tzinfo=timezone.utc).timestamp() * 1000)
    df = pd.DataFrame(
        {
            "open_time": [t0 + 3_600_000, t0],
            "open": [2, 1],
            "high": [2, 1],
            "low": [2, 1],
            "close": [2, 1],
        }
    )
    candles = frame_to_candles(df, symbol="X", timeframe="1h")
    assert [c.close for c in candles] == [1.0, 2.0]
    assert candles[0].timestamp == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert candles[0].symbol == "X" and candles[0].volume == 0.0


def test_frame_to_candles_requires_price_columns():
    with pytest.raises(ValueError):
        frame_to_candles(pd.DataFrame({"timestamp": ["2024-01-01"], "close": [1.0]}), symbol="X", timeframe="1h")
