from __future__ import annotations

import pytest

from meridian.common.config.schema import OptimizationConfig, ParallelConfig, ParameterSpec, RunConfig
from meridian.common.errors import ConfigError
from meridian.core.parallel import CancellationToken
from meridian.optimization.grid_search import grid_search
from meridian.optimization.param_space import axis_values, grid_combinations
from meridian.optimization.scoring import dominates, multi_objective_score


def _base(**kwargs) -> RunConfig:
    base = dict(
        symbol="TEST",
        commission_percent=0.0,
        slippage_percent=0.0,
        stop_loss_percent=None,
        take_profit_percent=None,
    )
    base.update(kwargs)
    return RunConfig(**base)


def _zigzag(n: int = 150) -> list[float]:
    prices = []
    p = 100.0
    for i in range(n):
        p *= 1.0 + (0.03 if (i // 6) % 2 == 0 else -0.02)
        prices.append(round(p, 6))
    return prices


def test_axis_values_include_both_ends():
    assert axis_values(ParameterSpec(name="x", min=10, max=50, step=10)) == [10.0, 20.0, 30.0, 40.0, 50.0]
    assert axis_values(ParameterSpec(name="x", min=0.1, max=0.3, step=0.1)) == [0.1, 0.2, 0.3]
    assert axis_values(ParameterSpec(name="n", min=2, max=4, step=1, integer=True)) == [2, 3, 4]
    assert axis_values(ParameterSpec(name="v", values=["a", "b"])) == ["a", "b"]
    assert len(grid_combinations([ParameterSpec(name="a", values=[1, 2]), ParameterSpec(name="b", values=[3, 4, 5])])) == 6


def test_single_axis_candidates_ranked_strictly_descending(make_bars):
    bars = make_bars([100 + i for i in range(30)])
    settings = OptimizationConfig(
        objective="return",
        parameters=[ParameterSpec(name="position_size_percent", min=10, max=50, step=10)],
    )
    result = grid_search(_base(), bars, settings)

    assert len(result.candidates) == 5
    values = [c.objective_value for c in result.candidates]
    assert all(a > b for a, b in zip(values, values[1:]))
    assert [c.rank for c in result.candidates] == [1, 2, 3, 4, 5]
    assert result.best.params == {"position_size_percent": 50.0}
    assert result.filter_stats["passed"] == 5


def test_pareto_frontier_is_non_dominated(make_bars):
    bars = make_bars(_zigzag(), spread=0.01)
    settings = OptimizationConfig(
        objective="multi_objective",
        parameters=[
            ParameterSpec(name="fast", values=[2, 3, 4]),
            ParameterSpec(name="slow", values=[8, 10, 12]),
            ParameterSpec(name="position_size_percent", values=[20, 60]),
        ],
    )
    result = grid_search(_base(allow_short=True, strategy={"type": "ma_cross"}), bars, settings)

    runs = [c.result for c in result.candidates]
    assert result.pareto_frontier
    for cand in result.candidates:
        dominated = any(dominates(other, cand.result) for other in runs if other is not cand.result)
        assert cand.on_pareto_frontier == (not dominated)
    for cand in result.candidates:
        assert cand.objective_value == pytest.approx(multi_objective_score(cand.result, settings.weights))


def test_constraints_and_invalid_configs_are_counted(make_bars):
    bars = make_bars(_zigzag(), spread=0.01)
    settings = OptimizationConfig(
        objective="sharpe",
        parameters=[ParameterSpec(name="strategy.fast", values=[3, 5, 20])],
        constraints={"min_trades": 10_000},
    )
    result = grid_search(_base(strategy={"type": "ma_cross", "slow": 10}), bars, settings)

    assert result.candidates == ()
    assert result.best is None
    assert result.filter_stats["invalid_config"] == 1
    assert result.filter_stats["min_trades"] == 2
    assert result.filter_stats["evaluated"] == 3


def test_unknown_parameter_name_is_rejected_with_suggestion(make_bars):
    settings = OptimizationConfig(parameters=[ParameterSpec(name="postion_size_percent", values=[10])])
    with pytest.raises(ConfigError, match="did you mean 'position_size_percent'"):
        grid_search(_base(), make_bars([1, 2, 3]), settings)


def test_duplicate_parameter_is_rejected(make_bars):
    settings = OptimizationConfig(
        parameters=[ParameterSpec(name="fast", values=[2]), ParameterSpec(name="strategy.fast", values=[3])]
    )
    with pytest.raises(ConfigError, match="twice"):
        grid_search(_base(strategy={"type": "ma_cross"}), make_bars([1, 2, 3]), settings)


def test_range_without_step_is_rejected(make_bars):
    settings = OptimizationConfig(parameters=[ParameterSpec(name="position_size_percent", min=10, max=20)])
    with pytest.raises(ConfigError, match="step"):
        grid_search(_base(), make_bars([1, 2, 3]), settings)


def test_cancelled_search_returns_partial_result(make_bars):
    token = CancellationToken()
    token.cancel()
    settings = OptimizationConfig(parameters=[ParameterSpec(name="position_size_percent", values=[10, 20])])
    result = grid_search(_base(), make_bars([1, 2, 3]), settings, cancel=token)

    assert result.cancelled is True
    assert result.candidates == ()
    assert result.filter_stats["evaluated"] == 0


def test_parallel_matches_sequential_and_reports_progress(make_bars):
    bars = make_bars(_zigzag(), spread=0.01)
    settings = OptimizationConfig(
        objective="return",
        parameters=[ParameterSpec(name="fast", values=[2, 3, 4]), ParameterSpec(name="slow", values=[8, 12])],
    )
    base = _base(allow_short=True, strategy={"type": "ma_cross"})
    events = []

    seq = grid_search(base, bars, settings)
    par = grid_search(base, bars, settings, parallel=ParallelConfig(max_workers=3, max_in_flight=2), progress=events.append)

    assert [dict(c.params) for c in par.candidates] == [dict(c.params) for c in seq.candidates]
    assert [c.objective_value for c in par.candidates] == [c.objective_value for c in seq.candidates]
    assert len(events) == 6
    assert events[-1].completed == events[-1].total == 6


def test_result_serializes_to_plain_dict(make_bars):
    bars = make_bars([100 + i for i in range(10)])
    settings = OptimizationConfig(
        objective="profit_factor",
        parameters=[ParameterSpec(name="position_size_percent", values=[10])],
    )
    payload = grid_search(_base(), bars, settings).to_dict()

    assert payload["method"] == "grid"
    assert payload["best"]["objective_value"] == "inf"
    assert payload["candidates"][0]["params"] == {"position_size_percent": 10}
