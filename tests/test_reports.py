from __future__ import annotations

import json

import pandas as pd

from meridian.analysis.reports import equity_frame, trades_frame, write_json, write_run_csv
from meridian.common.config.schema import RunConfig
from meridian.core.backtest_engine import SimulationEngine


def _run(make_bars, closes):
    cfg = RunConfig(symbol="ETH", commission_percent=0.0, slippage_percent=0.0)
    return SimulationEngine().run(cfg, make_bars(closes))


def test_run_csv_export(tmp_path, make_bars):
    result = _run(make_bars, [100, 101, 105, 103, 99, 98, 100, 104])
    paths = write_run_csv(result, tmp_path / "out")

    trades = pd.read_csv(paths["trades"])
    equity = pd.read_csv(paths["equity"])
    assert len(trades) == result.trade_count > 0
    assert list(trades.columns)[:3] == ["trade_id", "symbol", "direction"]
    assert set(trades["direction"]) == {"long"}
    assert len(equity) == len(result.equity_curve)


def test_frames_without_trades(make_bars):
    result = SimulationEngine().run(RunConfig(symbol="ETH"), [])

    assert trades_frame(result).empty
    assert list(equity_frame(result).columns) == ["timestamp", "equity"]


def test_write_json_is_standard_json(tmp_path, make_bars):
    result = _run(make_bars, [100 + i for i in range(10)])
    path = write_json(result, tmp_path / "nested" / "run.json")

    doc = json.loads(path.read_text(encoding="utf-8"))
    assert doc["symbol"] == "ETH"
    assert doc["statistics"]["total_trades"] == result.trade_count
    assert "Infinity" not in path.read_text(encoding="utf-8")
