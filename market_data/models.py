"""对外导出数据模型（稳定入口）。

模型定义位于 `shared/models/models.py`；这里提供一个稳定导出路径，
让上层代码统一使用 `market_data.models` 导入 Candle 等结构。
"""

from shared.models.models import Candle, EquityPoint, Position, Signal, Trade

__all__ = ["Candle", "EquityPoint", "Position", "Signal", "Trade"]
