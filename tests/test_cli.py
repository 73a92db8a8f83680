from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest

from meridian.cli import main, parse_args
from meridian.common.errors import ConfigError
from meridian.core.results import RunResult
from meridian.optimization.schemas import OptimizationResult

CONFIG = """
data:
  data_dir: {data_dir}
run:
  symbol: BTC
  timeframe: 1d
  allow_short: true
  strategy:
    type: ma_cross
    fast: 3
    slow: 8
optimization:
  objective: return
  parameters:
    - name: fast
      values: [2, 3]
monte_carlo:
  simulations: 50
  seed: 1
portfolio:
  total_capital: 20000
  assets:
    - {{symbol: BTC, target_allocation_percent: 50}}
    - {{symbol: ETH, target_allocation_percent: 50}}
  rebalance:
    frequency: none
parallel:
  max_workers: 1
"""


def _write_history(path, symbol, drift):
    ts0 = datetime(2024, 1, 1, tzinfo=timezone.utc)
    price = 100.0
    rows = []
    for i in range(120):
        price *= 1.0 + (drift if (i // 6) % 2 == 0 else -drift * 0.8)
        rows.append(
            {
                "start_ts": (ts0 + timedelta(days=i)).isoformat(),
                "open": price,
                "high": price * 1.01,
                "low": price * 0.99,
                "close": price,
                "volume": 10.0,
            }
        )
    pd.DataFrame(rows).to_csv(path / f"{symbol}_1d.csv", index=False)


@pytest.fixture
def config_path(tmp_path):
    _write_history(tmp_path, "BTC", 0.02)
    _write_history(tmp_path, "ETH", 0.015)
    path = tmp_path / "meridian.yml"
    path.write_text(CONFIG.format(data_dir=tmp_path.as_posix()), encoding="utf-8")
    return str(path)


def test_parse_args_defaults():
    args = parse_args(["sweep"])
    assert args.config == "config/meridian.yml"
    assert args.task == "sweep"
    assert args.output is None
    assert args.top_n == 5

    args = parse_args(["genetic", "--config", "x.yml", "--top-n", "3"])
    assert (args.config, args.top_n) == ("x.yml", 3)


def test_backtest_writes_json(config_path, tmp_path):
    out = tmp_path / "out" / "run.json"
    result = main(["--config", config_path, "backtest", "--output", str(out)])

    assert isinstance(result, RunResult)
    assert len(result.equity_curve) > 0
    doc = json.loads(out.read_text(encoding="utf-8"))
    assert doc["symbol"] == "BTC"


def test_sweep_returns_ranked_candidates(config_path):
    result = main(["sweep", "--config", config_path])

    assert isinstance(result, OptimizationResult)
    assert result.method == "grid"
    assert result.filter_stats["total"] == 2


def test_montecarlo_and_portfolio_tasks(config_path):
    mc = main(["--config", config_path, "montecarlo"])
    assert sum(bucket.count for bucket in mc.distribution) == 50

    portfolio = main(["--config", config_path, "portfolio"])
    assert set(portfolio.per_asset) == {"BTC", "ETH"}
    assert portfolio.per_asset["BTC"].initial_capital == pytest.approx(10_000)


def test_sensitivity_requires_its_block(config_path):
    with pytest.raises(ConfigError):
        main(["--config", config_path, "sensitivity"])
