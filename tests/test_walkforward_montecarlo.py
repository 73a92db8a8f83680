from __future__ import annotations

from datetime import datetime, timezone

import pytest

from meridian.analysis.monte_carlo import run_monte_carlo, trade_returns
from meridian.common.config.schema import (
    MonteCarloConfig,
    OptimizationConfig,
    ParameterSpec,
    RunConfig,
    WalkForwardConfig,
)
from meridian.common.errors import ConfigError
from meridian.core.backtest_engine import SimulationEngine
from meridian.core.parallel import CancellationToken
from meridian.optimization.walkforward import WalkForwardSegment, split_segments, summarize, walk_forward


def _zigzag(n: int) -> list[float]:
    prices = []
    p = 100.0
    for i in range(n):
        p *= 1.0 + (0.02 if (i // 5) % 2 == 0 else -0.015)
        prices.append(round(p, 6))
    return prices


BASE = RunConfig(symbol="TEST", allow_short=True, strategy={"type": "ma_cross"})
SETTINGS = OptimizationConfig(
    objective="return",
    parameters=[ParameterSpec(name="fast", values=[2, 3]), ParameterSpec(name="slow", values=[8, 12])],
)


def test_split_segments_are_contiguous():
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    end = datetime(2024, 1, 31, tzinfo=timezone.utc)
    plan = split_segments(start, end, n_segments=3, train_ratio=0.5)

    assert len(plan) == 3
    assert plan[0][0][0] == start
    assert plan[-1][1][1] == end
    for (train, test), (next_train, _) in zip(plan, plan[1:]):
        assert train[1] == test[0]
        assert test[1] == next_train[0]


def test_walk_forward_runs_every_segment(make_bars):
    bars = make_bars(_zigzag(240), spread=0.01)
    result = walk_forward(BASE, bars, SETTINGS, WalkForwardConfig(n_segments=3, train_ratio=0.7))

    assert len(result.segments) == 3
    for seg in result.segments:
        assert seg.train[1] == seg.test[0]
        if seg.params is not None:
            assert seg.params["fast"] in (2, 3)
            assert "total_trades" in seg.test_metrics
    assert result.accepted == (result.reasons == ())
    payload = result.to_dict()
    assert len(payload["segments"]) == 3


def test_walk_forward_needs_bars(make_bars):
    with pytest.raises(ConfigError):
        walk_forward(BASE, make_bars([100]), SETTINGS)


def test_walk_forward_cancelled(make_bars):
    token = CancellationToken()
    token.cancel()
    result = walk_forward(BASE, make_bars(_zigzag(60)), SETTINGS, cancel=token)

    assert result.cancelled is True
    assert result.accepted is False


def _segment(idx, is_ret, oos_ret, trades=3):
    window = (datetime(2024, 1, idx, tzinfo=timezone.utc),) * 2
    return WalkForwardSegment(idx, window, window, {"fast": 2}, is_ret, oos_ret, {"total_trades": trades})


def test_summarize_accepts_efficient_profitable_segments():
    result = summarize([_segment(1, 10.0, 6.0), _segment(2, 10.0, 4.0)], WalkForwardConfig(min_efficiency=0.5))

    assert result.efficiency == pytest.approx(0.5)
    assert result.profitable_segments_ratio == 1.0
    assert result.accepted is True


def test_summarize_rejects_with_reasons():
    segments = [
        _segment(1, 10.0, -2.0),
        _segment(2, 10.0, -1.0, trades=0),
        WalkForwardSegment(3, (None, None), (None, None), None, None, None, {}),
    ]
    result = summarize(segments, WalkForwardConfig(min_efficiency=0.5, min_test_trades=1))

    assert result.accepted is False
    assert set(result.reasons) == {
        "segments_without_valid_params",
        "low_efficiency",
        "few_profitable_segments",
        "min_test_trades",
    }


def _run(make_bars):
    cfg = RunConfig(symbol="TEST", allow_short=True, strategy={"type": "ma_cross", "fast": 3, "slow": 8})
    return SimulationEngine().run(cfg, make_bars(_zigzag(200), spread=0.01))


def test_monte_carlo_is_reproducible_with_seed(make_bars):
    run = _run(make_bars)
    settings = MonteCarloConfig(simulations=300, seed=5)
    a = run_monte_carlo(run, settings)
    b = run_monte_carlo(run, settings)

    assert run.trade_count > 2
    assert a == b
    assert sum(bucket.count for bucket in a.distribution) == 300
    lo, hi = a.confidence_interval
    assert lo <= hi
    assert a.conditional_var_percent >= a.value_at_risk_percent
    for p in (a.probability_of_profit, a.probability_of_doubling, a.probability_of_ruin):
        assert 0.0 <= p <= 1.0


def test_shuffle_keeps_final_capital(make_bars):
    run = _run(make_bars)
    result = run_monte_carlo(run, MonteCarloConfig(simulations=50, method="shuffle", seed=1))

    assert result.mean_final_capital == pytest.approx(run.final_capital, rel=1e-9)
    assert result.std_return_percent == pytest.approx(0.0, abs=1e-6)


def test_trade_returns_compound_to_final_capital(make_bars):
    run = _run(make_bars)
    growth = 1.0
    for r in trade_returns(run.trades, run.initial_capital):
        growth *= 1.0 + r
    assert run.initial_capital * growth == pytest.approx(run.final_capital, rel=1e-9)


def test_monte_carlo_without_trades_is_degenerate(make_bars):
    run = SimulationEngine().run(RunConfig(symbol="TEST"), [])
    result = run_monte_carlo(run, MonteCarloConfig(simulations=20, seed=0))

    assert result.mean_final_capital == run.initial_capital
    assert result.probability_of_profit == 0.0
    assert len(result.distribution) == 1
    assert result.distribution[0].count == 20
