"""配置加载。

支持 YAML 配置、环境变量占位符 `${VAR}` 展开，以及 .env/.env.local 自动加载。
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any

import yaml

from algo.dsl.schema import StrategyDSL
from shared.config.schema import AppConfig
from shared.config.validation import validate_raw_config

_ENV_RE = re.compile(r"\$\{([^}]+)\}")


def _load_env_file(env_path: Path) -> None:
    if not env_path.exists():
        return
    for line in env_path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _load_envs(cfg_path: Path) -> None:
    """加载配置文件目录与其上一级目录下的 .env/.env.local（不覆盖已有环境变量）。"""
    candidates = [
        cfg_path.parent / ".env",
        cfg_path.parent / ".env.local",
        cfg_path.parent.parent / ".env",
        cfg_path.parent.parent / ".env.local",
    ]
    for env_file in candidates:
        _load_env_file(env_file)


def expand_env(value: Any) -> Any:
    """递归展开 `${VAR}`；变量未设置时报错，避免静默替换为空。"""
    if isinstance(value, str):
        def replacer(match: re.Match) -> str:
            var_name = match.group(1)
            if var_name not in os.environ:
                raise ValueError(f"Missing environment variable: {var_name}")
            return os.environ[var_name]

        return _ENV_RE.sub(replacer, value)
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


def _read_document(cfg_path: Path) -> Any:
    with cfg_path.open("r", encoding="utf-8") as f:
        if cfg_path.suffix.lower() == ".json":
            return json.load(f)
        return yaml.safe_load(f) or {}


def load_raw(path: str | Path, *, load_env: bool = True, expand: bool = True) -> dict[str, Any]:
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")
    if load_env:
        _load_envs(cfg_path)
    raw = _read_document(cfg_path)
    if not isinstance(raw, dict):
        raise ValueError(f"Config root must be a dict: {cfg_path}")
    return expand_env(raw) if expand else raw


def load_config(path: str | Path, load_env: bool = True, expand_env: bool = True) -> AppConfig:
    """从 YAML（或 JSON）读取并解析配置。

    Parameters
    ----------
    path:
        配置文件路径。
    load_env:
        是否自动加载 .env/.env.local。
    expand_env:
        是否展开 `${VAR}` 占位符。

    Returns
    -------
    AppConfig
        解析后的配置对象。

    Raises
    ------
    FileNotFoundError
        配置文件不存在。
    ValueError
        缺少必填字段、未知字段或缺失环境变量（pydantic ValidationError 也是 ValueError）。
    """
    raw = load_raw(path, load_env=load_env, expand=expand_env)
    validate_raw_config(raw)
    return AppConfig.model_validate(raw)


def load_strategy_raw(path: str | Path, *, load_env: bool = True, expand_env: bool = True) -> dict[str, Any]:
    """
    读取策略 DSL 的原始 dict（不做 schema 解析，交给 DSLValidator 汇总报错）。

    文件可以是完整的应用配置（取 `strategy:` 块），也可以直接是 DSL 本身。
    """
    raw = load_raw(path, load_env=load_env, expand=expand_env)
    if isinstance(raw.get("strategy"), dict) and not raw.get("indicators"):
        return raw["strategy"]
    return raw


def load_strategy(path: str | Path, *, load_env: bool = True, expand_env: bool = True) -> StrategyDSL:
    """只读取策略 DSL 并解析为 StrategyDSL。"""
    return StrategyDSL.model_validate(load_strategy_raw(path, load_env=load_env, expand_env=expand_env))
