from __future__ import annotations

from pathlib import Path

import pytest

from meridian.common.config.config_loader import load_config, load_raw_config
from meridian.common.config.schema import EnhancedRunConfig, MeridianConfig, RunConfig
from meridian.common.errors import ConfigError
from meridian.optimization.overrides import derive_config, resolve_parameter
from meridian.strategies import default_registry

CONFIG_YAML = """
run:
  symbol: ${MERIDIAN_SYMBOL}
  timeframe: 1h
  initial_capital: 5000
  strategy:
    type: ma_cross
    fast: 5
    slow: 20
optimization:
  objective: multi_objective
  parameters:
    - name: fast
      values: [3, 5]
    - name: position_size_percent
      min: 10
      max: 30
      step: 10
  constraints:
    min_trades: 2
portfolio:
  assets:
    - {symbol: A, asset_class: equity, target_allocation_percent: 60}
    - {symbol: B, asset_class: bond, target_allocation_percent: 40}
parallel:
  max_workers: 2
"""


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "meridian.yml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_config_expands_env_and_validates(tmp_path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("MERIDIAN_SYMBOL", "BTCUSDT")
    cfg = load_config(_write(tmp_path, CONFIG_YAML))

    assert isinstance(cfg, MeridianConfig)
    assert cfg.run.symbol == "BTCUSDT"
    assert cfg.run.initial_capital == 5000
    assert cfg.run.strategy.type == "ma_cross"
    assert cfg.run.strategy.params == {"fast": 5, "slow": 20}
    assert cfg.optimization.objective == "multi_objective"
    assert cfg.optimization.constraints.min_trades == 2
    assert [a.symbol for a in cfg.portfolio.assets] == ["A", "B"]
    assert cfg.parallel.max_workers == 2
    assert cfg.enhanced is None


def test_load_config_missing_env_raises(tmp_path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("MERIDIAN_SYMBOL", raising=False)
    with pytest.raises(ValueError) as exc:
        load_config(_write(tmp_path, CONFIG_YAML))
    assert "Missing environment variable" in str(exc.value)

    raw = load_raw_config(_write(tmp_path, CONFIG_YAML), expand=False)
    assert raw["run"]["symbol"] == "${MERIDIAN_SYMBOL}"


def test_unknown_keys_are_rejected(tmp_path):
    with pytest.raises(ValueError):
        load_config(_write(tmp_path, "run:\n  symbol: X\n  stop_los_percent: 1\n"))
    with pytest.raises(ValueError):
        load_config(_write(tmp_path, "runs:\n  symbol: X\n"))


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yml")


def test_bad_portfolio_weights_fail_at_load(tmp_path):
    text = "portfolio:\n  assets:\n    - {symbol: A, target_allocation_percent: 60}\n    - {symbol: B, target_allocation_percent: 39}\n"
    with pytest.raises(ValueError, match="sum to 100"):
        load_config(_write(tmp_path, text))


def test_enhanced_config_validation():
    with pytest.raises(ValueError):
        EnhancedRunConfig(symbol="X", session_start_hour=9)
    with pytest.raises(ValueError):
        EnhancedRunConfig(symbol="X", excluded_weekdays=[7])
    with pytest.raises(ValueError):
        EnhancedRunConfig(
            symbol="X",
            partial_take_profits=[{"gain_percent": 5, "close_fraction": 0.5}, {"gain_percent": 2, "close_fraction": 0.5}],
        )
    with pytest.raises(ValueError):
        EnhancedRunConfig(symbol="X", commission={"type": "tiered"})


def test_derive_config_applies_explicit_overrides():
    registry = default_registry()
    base = RunConfig(symbol="X", strategy={"type": "ma_cross", "fast": 5, "slow": 20})
    derived = derive_config(base, {"position_size_percent": 25, "strategy.fast": 3}, registry)

    assert derived.position_size_percent == 25
    assert derived.strategy.params == {"fast": 3, "slow": 20}
    assert base.position_size_percent == 10
    assert base.strategy.params == {"fast": 5, "slow": 20}

    with pytest.raises(ValueError):
        derive_config(base, {"position_size_percent": 250}, registry)


def test_resolve_parameter_names():
    registry = default_registry()
    base = RunConfig(symbol="X", strategy={"type": "ma_cross"})

    assert resolve_parameter("slow", base, registry) == ("strategy", "slow")
    assert resolve_parameter("strategy.fast", base, registry) == ("strategy", "fast")
    assert resolve_parameter("leverage", base, registry) == ("run", "leverage")
    with pytest.raises(ConfigError, match="did you mean 'slow'"):
        resolve_parameter("strategy.slw", base, registry)
    with pytest.raises(ConfigError):
        resolve_parameter("symbol", base, registry)
    with pytest.raises(ConfigError):
        resolve_parameter("trailing_stop_percent", base, registry)

    enhanced = EnhancedRunConfig(symbol="X", strategy={"type": "ma_cross"})
    assert resolve_parameter("trailing_stop_percent", enhanced, registry) == ("run", "trailing_stop_percent")
    derived = derive_config(enhanced, {"trailing_stop_percent": 3.0}, registry)
    assert isinstance(derived, EnhancedRunConfig)
    assert derived.trailing_stop_percent == 3.0
