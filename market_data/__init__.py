"""行情数据模块（market_data）。

该包聚合：
- 行情数据提供方协议与 CSV 实现（见 `market_data/loader.py`）
- 确定性的合成序列（见 `market_data/synthetic.py`）
- 数据模型的稳定导出入口（见 `market_data/models.py`）
"""

from market_data.loader import CsvMarketDataProvider, MarketDataProvider
from market_data.synthetic import sine_candles

__all__ = [
    "CsvMarketDataProvider",
    "MarketDataProvider",
    "sine_candles",
]
