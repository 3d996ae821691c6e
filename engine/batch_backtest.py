"""批量回测与参数搜索（Grid/Random Search）。

每组参数覆盖 DSL 的若干点路径（`indicators.rsi.period`、`risk.stop_loss` ...），
在线程池中各自跑一次独立的回测：账本、评估器、信号列表都属于单次运行，
只有 IndicatorCache 在运行之间共享（只读 + 幂等写入）。
"""

from __future__ import annotations

import itertools
import random
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Sequence

from algo.dsl.schema import StrategyDSL
from algo.indicators.cache import IndicatorCache
from algo.indicators.registry import IndicatorRegistry
from engine.backtest_engine import BacktestEngine
from engine.errors import StrategyEngineError
from shared.config.schema import EngineConfig
from shared.models.models import Candle
from shared.utils.logging import setup_logger

logger = setup_logger("sweep")


@dataclass
class SweepResult:
    """一次参数组合回测的结果。"""
    params: dict
    metrics: dict
    score: float
    passed: bool = True
    filter_reason: str | None = None
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "params": dict(self.params),
            "metrics": dict(self.metrics),
            "score": self.score,
            "passed": self.passed,
            "filter_reason": self.filter_reason,
            "errors": list(self.errors),
        }


def _product_dict(param_grid: Dict[str, List[Any]]) -> List[Dict[str, Any]]:
    keys = list(param_grid.keys())
    values = [param_grid[k] for k in keys]
    return [dict(zip(keys, vals)) for vals in itertools.product(*values)]


def _calc_score(metrics: dict, weights: dict | None) -> float:
    """
    支持两种权重键名：
    - w_ret / w_sharpe / w_dd （内部默认）
    - total_return / sharpe / max_drawdown （来自 yml objective）
    """
    if not weights:
        weights = {"w_ret": 1.0, "w_sharpe": 0.5, "w_dd": -0.5}
    ret_w = weights.get("w_ret", weights.get("total_return", 0.0))
    sh_w = weights.get("w_sharpe", weights.get("sharpe", 0.0))
    dd_w = weights.get("w_dd", weights.get("max_drawdown", 0.0))
    return (
        ret_w * metrics.get("total_return", 0.0)
        + sh_w * metrics.get("sharpe", 0.0)
        + dd_w * metrics.get("max_drawdown", 0.0)
    )


def _filter_reason(metrics: dict, filters: dict | None) -> str | None:
    if not filters:
        return None
    min_trades = filters.get("min_trades")
    if min_trades is not None and (metrics.get("total_trades", 0) or 0) < min_trades:
        return "min_trades"
    max_dd = filters.get("max_drawdown")
    if max_dd is not None and metrics.get("max_drawdown", 0) > max_dd:
        return "max_drawdown"
    min_sharpe = filters.get("min_sharpe")
    if min_sharpe is not None and metrics.get("sharpe", 0) < min_sharpe:
        return "min_sharpe"
    return None


def apply_overrides(dsl: StrategyDSL, overrides: Mapping[str, Any]) -> StrategyDSL:
    """
    按点路径覆盖 DSL 字段并重新走一遍 schema 校验。

    路径按 DSL 的 JSON 形态解析（`indicators.macd.settings.fast_period`），
    中间节点不存在时报 KeyError。
    """
    data = dsl.model_dump()
    for path, value in overrides.items():
        parts = path.split(".")
        node: Any = data
        for part in parts[:-1]:
            if not isinstance(node, dict) or part not in node:
                raise KeyError(f"Unknown DSL path: {path}")
            node = node[part]
        if not isinstance(node, dict):
            raise KeyError(f"Unknown DSL path: {path}")
        node[parts[-1]] = value
    return StrategyDSL.model_validate(data)


def _run_single_combo(
    engine: BacktestEngine,
    dsl: StrategyDSL,
    candles: Sequence[Candle],
    combo: dict,
    weights: dict | None,
    filters: dict | None,
) -> SweepResult:
    try:
        result = engine.run(apply_overrides(dsl, combo), candles)
    except (StrategyEngineError, KeyError, ValueError) as exc:
        logger.warning("Sweep combo %s rejected: %s", combo, exc)
        return SweepResult(params=combo, metrics={}, score=float("-inf"), passed=False, filter_reason="invalid", errors=[str(exc)])
    metrics = result.metrics
    reason = _filter_reason(metrics, filters)
    return SweepResult(
        params=combo,
        metrics=metrics,
        score=_calc_score(metrics, weights),
        passed=reason is None,
        filter_reason=reason,
    )


def run_parameter_sweep(
    dsl: StrategyDSL | Mapping,
    candles: Sequence[Candle],
    param_grid: Dict[str, List[Any]],
    *,
    mode: str = "grid",
    n_random: int = 20,
    max_workers: int | None = None,
    weights: dict | None = None,
    filters: dict | None = None,
    seed: int | None = None,
    registry: IndicatorRegistry | None = None,
    config: EngineConfig | None = None,
    cache: IndicatorCache | None = None,
) -> List[SweepResult]:
    """参数搜索。

    Parameters
    ----------
    dsl:
        基础 DSL。
    candles:
        所有组合共用的 K 线。
    param_grid:
        点路径 -> 候选值列表，如 {"indicators.rsi.period": [7, 14], "risk.stop_loss": [0.02, 0.05]}。
    mode:
        grid（全组合）或 random（从全组合中抽 n_random 组）。
    max_workers:
        线程池大小；None 使用 ThreadPoolExecutor 默认值。
    weights:
        评分权重（w_ret/w_sharpe/w_dd 或 total_return/sharpe/max_drawdown）。
    filters:
        过滤条件（min_trades/max_drawdown/min_sharpe）。
    seed:
        random 模式的随机种子。

    Returns
    -------
    list[SweepResult]
        按 score 从高到低排序；未通过过滤的组合排在通过的之后。
    """
    if mode not in ("grid", "random"):
        raise ValueError(f"Unknown sweep mode: {mode}")
    base = dsl if isinstance(dsl, StrategyDSL) else StrategyDSL.model_validate(dict(dsl))

    combos = _product_dict(param_grid)
    if mode == "random" and n_random < len(combos):
        combos = random.Random(seed).sample(combos, n_random)

    engine = BacktestEngine(
        registry=registry,
        config=config,
        cache=cache if cache is not None else IndicatorCache(),
    )
    logger.info("Sweep %s: %d combo(s), mode=%s", base.name, len(combos), mode)

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [pool.submit(_run_single_combo, engine, base, candles, combo, weights, filters) for combo in combos]
        results = [f.result() for f in futures]

    results.sort(key=lambda r: (r.passed, r.score), reverse=True)
    passed = sum(1 for r in results if r.passed)
    logger.info("Sweep %s finished: %d/%d passed filters", base.name, passed, len(results))
    return results
