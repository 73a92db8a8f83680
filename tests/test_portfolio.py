from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import numpy as np
import pandas as pd
import pytest

from meridian.common.config.schema import MeanVarianceConfig, PortfolioConfig
from meridian.common.config.validation import check_allocations
from meridian.common.errors import ConfigError
from meridian.common.models import Bar
from meridian.core.parallel import CancellationToken
from meridian.portfolio.covariance import (
    annualized_volatility,
    correlation_matrix,
    diversification_ratio,
    portfolio_volatility,
)
from meridian.portfolio.diversification import analyze_diversification
from meridian.portfolio.engine import run_portfolio
from meridian.portfolio.mean_variance import optimize_mean_variance
from meridian.portfolio.rebalance import simulate_rebalancing


T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)

RETURNS = [0.01, -0.02, 0.015, -0.005, 0.03, -0.01, 0.02, -0.015]

FRICTIONLESS = {
    "symbol": "PORTFOLIO",
    "commission_percent": 0.0,
    "slippage_percent": 0.0,
    "stop_loss_percent": None,
    "take_profit_percent": None,
    "position_size_percent": 100,
}


def _prices(returns, start=100.0):
    out = [start]
    for r in returns:
        out.append(out[-1] * (1 + r))
    return out


def _portfolio(**kwargs) -> PortfolioConfig:
    data = dict(
        total_capital=100_000,
        assets=[
            {"symbol": "A", "asset_class": "equity", "target_allocation_percent": 50},
            {"symbol": "B", "asset_class": "bond", "target_allocation_percent": 50},
        ],
        base=FRICTIONLESS,
        rebalance={"frequency": "none"},
    )
    data.update(kwargs)
    return PortfolioConfig(**data)


def test_allocations_must_sum_to_hundred():
    check_allocations([50, 50.005])
    with pytest.raises(ConfigError):
        check_allocations([50, 49.5])
    with pytest.raises(ConfigError):
        check_allocations([110, -10])
    with pytest.raises(ConfigError):
        check_allocations([])

    with pytest.raises(ValueError):
        _portfolio(
            assets=[
                {"symbol": "A", "target_allocation_percent": 50},
                {"symbol": "B", "target_allocation_percent": 49.5},
            ]
        )
    with pytest.raises(ValueError, match="duplicate"):
        _portfolio(
            assets=[
                {"symbol": "A", "target_allocation_percent": 50},
                {"symbol": "A", "target_allocation_percent": 50},
            ]
        )


def test_anti_correlated_pair_has_zero_volatility():
    r = np.asarray(RETURNS)
    frame = pd.DataFrame({"A": r, "B": -r})
    corr = correlation_matrix(frame)
    vols = annualized_volatility(frame, 252)
    port_vol = portfolio_volatility([0.5, 0.5], vols, corr.as_array())

    assert corr.get("A", "B") == pytest.approx(-1.0)
    assert vols[0] == pytest.approx(vols[1])
    assert port_vol == 0.0
    assert math.isinf(diversification_ratio([0.5, 0.5], vols, port_vol))


def test_correlation_matrix_invariants():
    rng = np.random.default_rng(0)
    frame = pd.DataFrame(
        {
            "A": rng.normal(0, 0.01, 50),
            "B": rng.normal(0, 0.02, 50),
            "C": np.zeros(50),
        }
    )
    corr = correlation_matrix(frame)
    m = corr.as_array()

    assert np.allclose(m, m.T)
    assert np.allclose(np.diag(m), 1.0)
    assert np.all(m >= -1.0) and np.all(m <= 1.0)
    assert corr.get("A", "C") == 0.0
    assert corr.to_frame().loc["B", "A"] == corr.get("A", "B")


def test_portfolio_of_anti_correlated_prices(make_bars):
    bars = {
        "A": make_bars(_prices(RETURNS)),
        "B": make_bars(_prices([-x for x in RETURNS])),
    }
    result = run_portfolio(_portfolio(correlation_source="price", periods_per_year=252), bars)

    assert result.correlation.get("A", "B") == pytest.approx(-1.0)
    assert result.metrics.volatility_percent == 0.0
    assert math.isinf(result.metrics.diversification_ratio)
    assert result.per_asset["A"].initial_capital == pytest.approx(50_000)


def test_portfolio_aggregates_per_asset_runs(make_bars):
    closes_a = [100 + i for i in range(90)]
    closes_b = [100 - 0.2 * i for i in range(90)]
    config = _portfolio(
        assets=[
            {"symbol": "A", "asset_class": "equity", "target_allocation_percent": 60},
            {"symbol": "B", "asset_class": "equity", "target_allocation_percent": 40},
        ],
        rebalance={"frequency": "monthly", "cost_percent": 0.1},
    )
    result = run_portfolio(config, {"A": make_bars(closes_a), "B": make_bars(closes_b)})
    m = result.metrics

    assert result.per_asset["A"].initial_capital == pytest.approx(60_000)
    assert result.combined_equity_curve[0].equity == pytest.approx(100_000)
    assert m.rebalance_count == len(result.rebalance_events) > 0
    assert all(e.reason == "scheduled" for e in result.rebalance_events)
    assert m.total_rebalance_cost == pytest.approx(sum(e.transaction_cost for e in result.rebalance_events))
    assert m.max_drawdown_percent == pytest.approx(max(r.max_drawdown_percent for r in result.per_asset.values()))
    assert m.final_equity == pytest.approx(result.combined_equity_curve[-1].equity)
    assert result.diversification.effective_sectors == pytest.approx(1.0)
    assert result.to_dict()["per_asset"]["B"]["total_trades"] == 1


def test_missing_asset_data_yields_zero_trades(make_bars):
    result = run_portfolio(_portfolio(), {"A": make_bars([100 + i for i in range(10)])})

    assert result.per_asset["B"].trade_count == 0
    assert result.per_asset["B"].final_capital == pytest.approx(50_000)


def test_cancelled_portfolio_run(make_bars):
    token = CancellationToken()
    token.cancel()
    result = run_portfolio(_portfolio(), {"A": make_bars([1, 2, 3])}, cancel=token)

    assert result.cancelled is True
    assert result.per_asset == {}


def test_diversification_report():
    div = analyze_diversification(_portfolio().assets)

    assert div.herfindahl_index == pytest.approx(0.5)
    assert div.effective_assets == pytest.approx(2.0)
    assert [s.asset_class for s in div.sectors] == ["bond", "equity"]


def _daily_returns(a, b):
    index = pd.DatetimeIndex([T0 + timedelta(days=i + 1) for i in range(len(a))])
    return pd.DataFrame({"A": a, "B": b}, index=index)


def test_scheduled_rebalance_fires_on_calendar():
    returns = _daily_returns([0.01] * 10, [0.0] * 10)
    curve, events = simulate_rebalancing(returns, T0, 10_000, {"A": 50, "B": 50}, frequency="weekly")

    assert len(curve) == 11
    assert [e.reason for e in events] == ["scheduled"]
    assert events[0].timestamp == returns.index[6].to_pydatetime()
    pre = 5_000 * 1.01**7 + 5_000
    assert events[0].transaction_cost == pytest.approx(pre * 0.001 * 2)
    assert events[0].equity_after == pytest.approx(curve[7].equity)
    assert curve[7].equity == pytest.approx(pre - events[0].transaction_cost)


def test_drift_rebalance_fires_past_threshold():
    returns = _daily_returns([0.01] * 10, [0.0] * 10)
    _, events = simulate_rebalancing(
        returns, T0, 10_000, {"A": 50, "B": 50}, frequency="none", drift_thresholds={"A": 2.0, "B": 2.0}
    )

    assert [e.reason for e in events] == ["drift"]
    assert events[0].timestamp == returns.index[8].to_pydatetime()
    assert events[0].new_weights == {"A": 0.5, "B": 0.5}
    assert events[0].transaction_cost == pytest.approx(events[0].equity_after / (1 - 0.002) * 0.002)

    _, none = simulate_rebalancing(returns, T0, 10_000, {"A": 50, "B": 50}, frequency="none")
    assert none == []


def test_mean_variance_equal_weight_without_target():
    history = {"A": [0.01, 0.02, -0.01, 0.015], "B": [0.002, 0.001, 0.003, 0.0]}
    result = optimize_mean_variance(history)

    assert result.method == "equal_weight"
    assert result.optimal.weights == {"A": 0.5, "B": 0.5}
    assert len(result.covariance) == 2


def test_mean_variance_sampled_frontier_hits_target():
    history = {"A": [0.01, 0.02, -0.01, 0.015, 0.005], "B": [0.002, 0.001, 0.003, 0.0, 0.001]}
    settings = MeanVarianceConfig(target_return_percent=100.0, n_samples=2000, seed=3)
    a = optimize_mean_variance(history, settings)
    b = optimize_mean_variance(history, settings)

    assert a == b
    assert a.method == "sampled"
    assert sum(a.optimal.weights.values()) == pytest.approx(1.0)
    rets = [p.expected_return_percent for p in a.frontier]
    vols = [p.volatility_percent for p in a.frontier]
    assert rets == sorted(rets) and vols == sorted(vols)
    lo, hi = min(a.expected_returns_percent.values()), max(a.expected_returns_percent.values())
    assert lo <= a.optimal.expected_return_percent <= hi
    assert abs(a.optimal.expected_return_percent - 100.0) < 10.0


def test_mean_variance_rejects_short_or_ragged_history():
    with pytest.raises(ConfigError):
        optimize_mean_variance({"A": [0.01]})
    with pytest.raises(ConfigError):
        optimize_mean_variance({"A": [0.01, 0.02], "B": [0.01]})


def test_naive_and_aware_timestamps_are_aligned_as_utc(make_bars):
    aware = make_bars([100 + i for i in range(10)])
    naive = [
        Bar(b.timestamp.replace(tzinfo=None), b.open, b.high, b.low, b.close, b.volume)
        for b in make_bars([100 - 0.5 * i for i in range(10)])
    ]
    result = run_portfolio(_portfolio(), {"A": aware, "B": naive})

    assert len(result.combined_equity_curve) == 10
    assert result.combined_equity_curve[-1].timestamp == aware[-1].timestamp
    assert result.per_asset["B"].trade_count == 1
