"""历史 K 线加载。

引擎本身从不拉取数据：调用方通过 `MarketDataProvider` 取得内存中的 K 线列表后再交给引擎。
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Protocol

import pandas as pd

from market_data.models import Candle

PRICE_COLS = ("open", "high", "low", "close")
TS_COLS = ("timestamp", "ts", "end_ts", "open_time")


def _parse_dt(val: str | datetime) -> datetime:
    if isinstance(val, datetime):
        return val if val.tzinfo else val.replace(tzinfo=timezone.utc)
    try:
        if val.isdigit():
            ts_int = int(val)
            if ts_int > 1e12:
                return datetime.fromtimestamp(ts_int / 1000, tz=timezone.utc)
            return datetime.fromtimestamp(ts_int, tz=timezone.utc)
        return datetime.fromisoformat(val.replace("Z", "+00:00")).astimezone(timezone.utc)
    except Exception as exc:
        raise ValueError(f"Invalid datetime value: {val}") from exc


class MarketDataProvider(Protocol):
    """行情数据提供方协议。"""

    def fetch_historical(
        self,
        symbol: str,
        timeframe: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> List[Candle]:
        ...


def candles_to_frame(candles: Iterable[Candle]) -> pd.DataFrame:
    rows = [
        {
            "timestamp": c.timestamp,
            "symbol": c.symbol,
            "open": c.open,
            "high": c.high,
            "low": c.low,
            "close": c.close,
            "volume": c.volume,
        }
        for c in candles
    ]
    df = pd.DataFrame(rows)
    if df.empty:
        return df
    return df.sort_values("timestamp").reset_index(drop=True)


def frame_to_candles(df: pd.DataFrame, *, symbol: str, timeframe: str) -> List[Candle]:
    """DataFrame -> Candle 列表；时间列按 timestamp / ts / end_ts / open_time 顺序查找。"""
    if df.empty:
        return []
    ts_col = next((c for c in TS_COLS if c in df.columns), None)
    if ts_col is None:
        raise ValueError(f"Candle data needs one of the columns: {', '.join(TS_COLS)}")
    missing = [c for c in PRICE_COLS if c not in df.columns]
    if missing:
        raise ValueError(f"Candle data missing columns: {missing}")

    ts = df[ts_col]
    if pd.api.types.is_numeric_dtype(ts):
        unit = "ms" if float(ts.max()) > 1e12 else "s"
        ts = pd.to_datetime(ts, unit=unit, utc=True)
    else:
        ts = pd.to_datetime(ts, utc=True)
    df = df.assign(parsed_ts=ts).sort_values("parsed_ts")

    has_volume = "volume" in df.columns
    has_symbol = "symbol" in df.columns
    candles: list[Candle] = []
    for row in df.itertuples(index=False):
        candles.append(
            Candle(
                symbol=str(getattr(row, "symbol")) if has_symbol else symbol,
                timeframe=timeframe,
                timestamp=row.parsed_ts.to_pydatetime(),
                open=float(row.open),
                high=float(row.high),
                low=float(row.low),
                close=float(row.close),
                volume=float(getattr(row, "volume")) if has_volume else 0.0,
            )
        )
    return candles


class CsvMarketDataProvider:
    """从 `{data_dir}/{symbol}_{timeframe}.csv` 读取 K 线（symbol 中的 `/` 会被去掉）。"""

    def __init__(self, data_dir: str | Path = "dataset/history"):
        self.data_dir = Path(data_dir)

    def path_for(self, symbol: str, timeframe: str) -> Path:
        return self.data_dir / f"{symbol.replace('/', '')}_{timeframe}.csv"

    def fetch_historical(
        self,
        symbol: str,
        timeframe: str,
        start: datetime | str | None = None,
        end: datetime | str | None = None,
    ) -> List[Candle]:
        path = self.path_for(symbol, timeframe)
        if not path.exists():
            raise FileNotFoundError(f"Candle file not found: {path}")
        candles = frame_to_candles(pd.read_csv(path), symbol=symbol, timeframe=timeframe)
        lo = _parse_dt(start) if start is not None else None
        hi = _parse_dt(end) if end is not None else None
        return [c for c in candles if (lo is None or c.timestamp >= lo) and (hi is None or c.timestamp <= hi)]

    def write(self, candles: List[Candle], symbol: str | None = None, timeframe: str | None = None) -> Path:
        """把 K 线写成 CSV（合成数据落盘、测试用）。"""
        if not candles:
            raise ValueError("No candles to write")
        path = self.path_for(symbol or candles[0].symbol, timeframe or candles[0].timeframe)
        path.parent.mkdir(parents=True, exist_ok=True)
        df = candles_to_frame(candles)
        df["timestamp"] = df["timestamp"].map(lambda t: t.isoformat())
        df.to_csv(path, index=False)
        return path
