"""原始配置 dict 的前置校验（在 pydantic 解析之前）。

目的：对顶层/引擎块的拼写错误给出 "did you mean" 提示，
pydantic 的 extra="forbid" 报错只会说 "Extra inputs are not permitted"。
"""

from __future__ import annotations

import difflib
from typing import Any, Iterable

from shared.config.schema import DataConfig, EngineConfig

TOP_LEVEL_KEYS = {"strategy", "engine", "data", "sweep"}


def _suggest_key(key: str, allowed: Iterable[str]) -> str | None:
    matches = difflib.get_close_matches(key, list(allowed), n=1, cutoff=0.75)
    return matches[0] if matches else None


def _ensure_allowed_keys(block: dict[str, Any], *, allowed: Iterable[str], ctx: str) -> None:
    allowed = set(allowed)
    unknown = [k for k in block.keys() if k not in allowed]
    if not unknown:
        return
    parts = []
    for k in sorted(unknown):
        suggestion = _suggest_key(k, allowed)
        if suggestion:
            parts.append(f"{k} (did you mean '{suggestion}'?)")
        else:
            parts.append(k)
    raise ValueError(f"{ctx} contains unknown keys: {', '.join(parts)}")


def _expect_dict(val: Any, *, ctx: str) -> dict[str, Any]:
    if not isinstance(val, dict):
        raise ValueError(f"{ctx} must be a dict")
    return val


def validate_raw_config(cfg: dict[str, Any]) -> None:
    """校验 raw config dict（来自 YAML + env 展开后）。"""
    if not isinstance(cfg, dict):
        raise ValueError("Config root must be a dict")
    _ensure_allowed_keys(cfg, allowed=TOP_LEVEL_KEYS, ctx="config")
    if "strategy" not in cfg:
        raise ValueError("Missing required config key: config.strategy")
    _expect_dict(cfg["strategy"], ctx="config.strategy")

    engine = cfg.get("engine")
    if engine is not None:
        _ensure_allowed_keys(_expect_dict(engine, ctx="config.engine"), allowed=EngineConfig.model_fields, ctx="config.engine")
    data = cfg.get("data")
    if data is not None:
        _ensure_allowed_keys(_expect_dict(data, ctx="config.data"), allowed=DataConfig.model_fields, ctx="config.data")
