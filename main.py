"""策略执行引擎统一命令行入口。

该模块提供单一入口 `main.py`，通过子命令驱动不同任务：

- `backtest`：单次回测。按配置加载 K 线，运行 DSL 策略并输出结果 JSON。
- `validate`：只校验策略 DSL，输出 errors / warnings / suggestions。
- `sweep`：参数搜索/批量回测。按 `sweep.params` 的点路径网格寻找最优参数。
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import dataclass
from typing import Any

from algo.dsl.validator import DSLValidator
from algo.indicators.cache import IndicatorCache
from engine.backtest_engine import BacktestEngine
from engine.batch_backtest import run_parameter_sweep
from market_data.loader import CsvMarketDataProvider
from market_data.synthetic import sine_candles
from shared.config.config_loader import load_config, load_strategy_raw
from shared.config.schema import AppConfig
from shared.models.models import Candle


@dataclass
class CliArgs:
    """命令行参数结构。

    config: 配置文件路径
    task: 要运行的任务类型 (backtest/validate/sweep)
    """
    config: str
    task: str
    top_n: int = 5                # sweep 模式下输出前多少组参数
    include_curve: bool = False   # backtest 输出是否包含权益曲线
    output: str | None = None     # 结果 JSON 写入文件（默认打印到 stdout）


def build_parser() -> argparse.ArgumentParser:
    """构建 CLI 参数解析器。"""
    parser = argparse.ArgumentParser(prog="strategy-engine", description="DSL 策略执行引擎")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument(
            "--config",
            default=default,
            help="配置文件路径 (默认: config/rsi_strategy.yml)",
        )

    # 允许 `python main.py --config ... backtest`（全局）与 `python main.py backtest --config ...`（子命令）
    _add_config_arg(parser, default="config/rsi_strategy.yml")
    parser.add_argument("--output", default=None, help="把结果 JSON 写入该文件")

    sub = parser.add_subparsers(dest="task")

    p_backtest = sub.add_parser("backtest", help="单次回测")
    _add_config_arg(p_backtest, default=argparse.SUPPRESS)
    p_backtest.add_argument("--include-curve", action="store_true", help="输出中包含权益曲线")

    p_validate = sub.add_parser("validate", help="校验策略 DSL")
    _add_config_arg(p_validate, default=argparse.SUPPRESS)

    p_sweep = sub.add_parser("sweep", help="参数搜索/批量回测")
    _add_config_arg(p_sweep, default=argparse.SUPPRESS)
    p_sweep.add_argument("--top-n", type=int, default=5, help="输出前 N 组")

    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    parser = build_parser()
    ns = parser.parse_args(argv)
    task = ns.task or "backtest"
    return CliArgs(
        config=str(getattr(ns, "config", "config/rsi_strategy.yml")),
        task=task,
        top_n=int(getattr(ns, "top_n", 5)),
        include_curve=bool(getattr(ns, "include_curve", False)),
        output=getattr(ns, "output", None),
    )


def load_candles(cfg: AppConfig) -> list[Candle]:
    """按 `data:` 配置加载 K 线（CSV 目录或合成正弦序列）。"""
    dsl = cfg.strategy
    data = cfg.data
    if data.source == "synthetic":
        return sine_candles(
            data.n_candles,
            symbol=dsl.symbol,
            timeframe=dsl.timeframe,
            base=data.base_price,
            amplitude=data.amplitude,
            cycle=data.cycle,
        )
    provider = CsvMarketDataProvider(data.data_dir)
    return provider.fetch_historical(dsl.symbol, dsl.timeframe, data.start, data.end)


def run_backtest(cfg: AppConfig, *, include_curve: bool = False) -> dict[str, Any]:
    engine = BacktestEngine(config=cfg.engine, cache=IndicatorCache() if cfg.engine.cache_indicators else None)
    result = engine.run(cfg.strategy, load_candles(cfg))
    return result.to_dict(include_curve=include_curve)


def run_validate(path: str) -> dict[str, Any]:
    return DSLValidator().validate(load_strategy_raw(path)).to_dict()


def run_sweep(cfg: AppConfig, *, top_n: int = 5) -> dict[str, Any]:
    sweep = cfg.sweep
    if sweep is None or not sweep.params:
        raise ValueError("sweep config not found (config.sweep.params)")
    weights = {
        "total_return": sweep.objective.total_return_weight,
        "sharpe": sweep.objective.sharpe_weight,
        "max_drawdown": sweep.objective.max_drawdown_weight,
    }
    filters = {"min_trades": sweep.min_trades, "max_drawdown": sweep.max_drawdown, "min_sharpe": sweep.min_sharpe}
    results = run_parameter_sweep(
        cfg.strategy,
        load_candles(cfg),
        sweep.params,
        mode=sweep.mode,
        n_random=sweep.n_random,
        max_workers=sweep.max_workers,
        weights=weights,
        filters=filters,
        seed=sweep.seed,
        config=cfg.engine,
    )
    return {
        "strategy_name": cfg.strategy.name,
        "n_combos": len(results),
        "top": [r.to_dict() for r in results[:top_n]],
    }


def _emit(payload: dict[str, Any], output: str | None) -> None:
    text = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(text)
    else:
        sys.stdout.write(text + "\n")


def main(argv: list[str] | None = None) -> Any:
    """程序主入口。

    Parameters
    ----------
    argv:
        可选的参数列表；为 None 时读取 sys.argv。

    Returns
    -------
    Any
        对应子命令的结果 dict（同时以 JSON 输出）。
    """
    args = parse_args(argv)

    if args.task == "validate":
        payload = run_validate(args.config)
    elif args.task == "backtest":
        payload = run_backtest(load_config(args.config), include_curve=args.include_curve)
    elif args.task == "sweep":
        payload = run_sweep(load_config(args.config), top_n=args.top_n)
    else:
        raise ValueError(f"Unknown task: {args.task}")

    _emit(payload, args.output)
    return payload


if __name__ == "__main__":
    main()
