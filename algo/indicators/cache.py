"""指标计算缓存（跨回测共享，只读）。

key = (symbol, timeframe, 规范化指标声明的结构哈希, K 线数据指纹)。
读写及命中计数均在锁内；并发下重复计算同一 key 只会得到相同结果，后写覆盖即可。
"""

from __future__ import annotations

import threading
from typing import Any, Sequence

import numpy as np

from shared.models.models import Candle
from shared.utils.hashing import sha256_bytes, structural_hash

CacheKey = tuple[str, str, str, str]


def candles_fingerprint(candles: Sequence[Candle]) -> str:
    """K 线序列的内容指纹（时间戳 + OHLCV）。"""
    arr = np.array(
        [(c.timestamp.timestamp(), c.open, c.high, c.low, c.close, c.volume) for c in candles],
        dtype=float,
    )
    return sha256_bytes(arr.tobytes())


class IndicatorCache:
    def __init__(self) -> None:
        self._data: dict[CacheKey, dict[str, np.ndarray]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(symbol: str, timeframe: str, normalized_spec: dict[str, Any], fingerprint: str) -> CacheKey:
        return (symbol, timeframe, structural_hash(normalized_spec), fingerprint)

    def get(self, key: CacheKey) -> dict[str, np.ndarray] | None:
        with self._lock:
            value = self._data.get(key)
            if value is None:
                self.misses += 1
            else:
                self.hits += 1
        return value

    def put(self, key: CacheKey, outputs: dict[str, np.ndarray]) -> dict[str, np.ndarray]:
        frozen: dict[str, np.ndarray] = {}
        for name, arr in outputs.items():
            a = np.array(arr, dtype=float, copy=True)
            a.flags.writeable = False
            frozen[name] = a
        with self._lock:
            self._data[key] = frozen
        return frozen

    def clear(self) -> None:
        with self._lock:
            self._data.clear()

    def __len__(self) -> int:
        return len(self._data)
