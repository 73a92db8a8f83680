"""目标函数、硬约束与 Pareto 前沿。"""

from __future__ import annotations

from typing import Sequence

from meridian.common.config.schema import ObjectiveWeights, SearchConstraints
from meridian.core.results import RunResult

FILTER_REASONS = ("min_trades", "max_drawdown", "min_win_rate", "invalid_config")


def filter_reason(result: RunResult, constraints: SearchConstraints | None) -> str | None:
    """返回第一个不满足的约束名；全部满足返回 None。"""
    if constraints is None:
        return None
    s = result.statistics
    if constraints.min_trades is not None and s.total_trades < constraints.min_trades:
        return "min_trades"
    if constraints.max_drawdown_percent is not None and s.max_drawdown_percent > constraints.max_drawdown_percent:
        return "max_drawdown"
    if constraints.min_win_rate is not None and s.win_rate < constraints.min_win_rate:
        return "min_win_rate"
    return None


def multi_objective_score(result: RunResult, weights: ObjectiveWeights) -> float:
    """
    加权归一化得分：
    w_ret × (收益% / 100) + w_sharpe × (Sharpe / 3) + w_dd × (1 − 回撤% / 100) + w_win × 胜率
    """
    s = result.statistics
    return (
        weights.total_return * (s.total_return_percent / 100.0)
        + weights.sharpe * (s.sharpe_ratio / 3.0)
        + weights.drawdown * (1.0 - s.max_drawdown_percent / 100.0)
        + weights.win_rate * s.win_rate
    )


def objective_value(result: RunResult, objective: str, weights: ObjectiveWeights | None = None) -> float:
    s = result.statistics
    if objective == "return":
        return s.total_return_percent
    if objective == "sharpe":
        return s.sharpe_ratio
    if objective == "calmar":
        return s.calmar_ratio
    if objective == "profit_factor":
        return s.profit_factor
    if objective == "multi_objective":
        return multi_objective_score(result, weights or ObjectiveWeights())
    raise ValueError(f"Unknown objective: {objective}")


def dominates(a: RunResult, b: RunResult) -> bool:
    """a 是否支配 b：收益、Sharpe 不低，回撤不高，且至少一项严格更优。"""
    sa, sb = a.statistics, b.statistics
    no_worse = (
        sa.total_return_percent >= sb.total_return_percent
        and sa.sharpe_ratio >= sb.sharpe_ratio
        and sa.max_drawdown_percent <= sb.max_drawdown_percent
    )
    strictly = (
        sa.total_return_percent > sb.total_return_percent
        or sa.sharpe_ratio > sb.sharpe_ratio
        or sa.max_drawdown_percent < sb.max_drawdown_percent
    )
    return no_worse and strictly


def pareto_mask(results: Sequence[RunResult]) -> list[bool]:
    """O(n²) 非支配判定。"""
    return [
        not any(dominates(other, r) for j, other in enumerate(results) if j != i)
        for i, r in enumerate(results)
    ]
