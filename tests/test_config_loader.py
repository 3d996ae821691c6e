import json
from pathlib import Path

import pytest
import yaml

from shared.config.config_loader import AppConfig, load_config, load_strategy


def _write(path: Path, data: dict) -> Path:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def _strategy(symbol: str = "BTC/USDT") -> dict:
    return {
        "name": "cfg_test",
        "symbol": symbol,
        "timeframe": "1h",
        "indicators": {"rsi": {"type": "RSI", "period": 14}},
        "entry": {"long": [{"conditions": [{"indicator": "rsi", "operator": "lt", "value": 30}]}]},
    }


def test_example_config_loads():
    cfg_path = Path("config/rsi_strategy.yml")
    assert cfg_path.exists(), "示例配置缺失"

    cfg = load_config(str(cfg_path), load_env=False)
    assert isinstance(cfg, AppConfig)
    assert cfg.strategy.name == "rsi_mean_reversion"
    assert cfg.strategy.risk.stop_loss == 0.03
    assert [g.priority for g in cfg.strategy.exit.long] == [10, 5]
    assert cfg.engine.flatten_on_end is True
    assert cfg.data.source == "synthetic"
    assert cfg.sweep is not None and "indicators.rsi.period" in cfg.sweep.params


def test_load_config_expands_env(tmp_path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("STRATEGY_SYMBOL", "ETH/USDT")
    path = _write(tmp_path / "cfg.yml", {"strategy": _strategy("${STRATEGY_SYMBOL}")})
    cfg = load_config(path, load_env=False)
    assert cfg.strategy.symbol == "ETH/USDT"


def test_load_config_missing_env_raises(tmp_path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("STRATEGY_SYMBOL", raising=False)
    path = _write(tmp_path / "cfg.yml", {"strategy": _strategy("${STRATEGY_SYMBOL}")})
    with pytest.raises(ValueError) as exc:
        load_config(path, load_env=False)
    assert "Missing environment variable" in str(exc.value)


def test_dotenv_file_is_loaded(tmp_path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("STRATEGY_SYMBOL", raising=False)
    (tmp_path / ".env").write_text("STRATEGY_SYMBOL=SOL/USDT\n", encoding="utf-8")
    path = _write(tmp_path / "cfg.yml", {"strategy": _strategy("${STRATEGY_SYMBOL}")})
    cfg = load_config(path)
    assert cfg.strategy.symbol == "SOL/USDT"


def test_unknown_engine_key_suggests_fix(tmp_path):
    path = _write(tmp_path / "cfg.yml", {"strategy": _strategy(), "engine": {"initial_captal": 1000}})
    with pytest.raises(ValueError) as exc:
        load_config(path, load_env=False)
    assert "did you mean 'initial_capital'" in str(exc.value)


def test_unknown_top_level_key_rejected(tmp_path):
    path = _write(tmp_path / "cfg.yml", {"strategy": _strategy(), "exchange": {}})
    with pytest.raises(ValueError):
        load_config(path, load_env=False)


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yml", load_env=False)


def test_load_strategy_accepts_bare_dsl_and_json(tmp_path):
    bare = _write(tmp_path / "dsl.yml", _strategy())
    assert load_strategy(bare, load_env=False).name == "cfg_test"

    wrapped = _write(tmp_path / "app.yml", {"strategy": _strategy("ETH/USDT")})
    assert load_strategy(wrapped, load_env=False).symbol == "ETH/USDT"

    js = tmp_path / "dsl.json"
    js.write_text(json.dumps(_strategy()), encoding="utf-8")
    assert load_strategy(js, load_env=False).timeframe == "1h"
