"""执行引擎层（engine）。

统一入口：`BacktestEngine.run(dsl, candles)` 一次性回放历史 K 线，
`StreamingEngine.on_candle(candle)` 逐根推进；两者共用 `BaseEngine.step()` 的逐 bar 逻辑。
命令行入口由仓库根目录 `main.py` 统一承载。
"""
