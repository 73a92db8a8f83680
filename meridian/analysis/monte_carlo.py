"""Monte Carlo 交易重采样。

把每笔交易换算成“相对开仓前权益的收益率”，再对这些收益率做
有放回抽样（bootstrap）或打乱顺序（shuffle）并复利，得到终值与回撤的分布。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from meridian.common.config.schema import MonteCarloConfig
from meridian.common.models import Trade
from meridian.common.utils.json_sanitize import sanitize_for_json
from meridian.core.results import RunResult


@dataclass(frozen=True)
class DistributionBucket:
    low: float
    high: float
    count: int


@dataclass(frozen=True)
class MonteCarloResult:
    simulations: int
    method: str
    mean_final_capital: float
    median_final_capital: float
    percentile_5: float
    percentile_95: float
    mean_return_percent: float
    std_return_percent: float
    confidence_interval: tuple[float, float]
    probability_of_profit: float
    probability_of_doubling: float
    probability_of_ruin: float
    value_at_risk_percent: float
    conditional_var_percent: float
    expected_max_drawdown_percent: float
    distribution: tuple[DistributionBucket, ...]

    def to_dict(self) -> dict:
        return sanitize_for_json(self)


def trade_returns(trades: Sequence[Trade], initial_capital: float) -> np.ndarray:
    """每笔交易 pnl / 开仓前已实现权益。"""
    equity = initial_capital
    out = []
    for t in trades:
        out.append(t.pnl / equity if equity > 0 else 0.0)
        equity += t.pnl
    return np.asarray(out, dtype=float)


def _paths(returns: np.ndarray, n: int, method: str, rng: np.random.Generator) -> np.ndarray:
    if method == "shuffle":
        return np.stack([rng.permutation(returns) for _ in range(n)])
    return rng.choice(returns, size=(n, len(returns)), replace=True)


def run_monte_carlo(
    result: RunResult,
    settings: MonteCarloConfig | None = None,
    rng: np.random.Generator | None = None,
) -> MonteCarloResult:
    """
    对一次回测的交易序列做 Monte Carlo 重采样。

    Parameters
    ----------
    result:
        单次回测结果（只用到 trades 与 initial_capital）。
    rng:
        可选随机源；缺省由 settings.seed 构造。

    Notes
    -----
    没有交易时所有路径都等于初始资金，分布退化为单点。
    """
    settings = settings or MonteCarloConfig()
    rng = rng if rng is not None else np.random.default_rng(settings.seed)
    initial = result.initial_capital
    n = settings.simulations
    rets = trade_returns(result.trades, initial)

    if rets.size == 0:
        finals = np.full(n, initial, dtype=float)
        max_dds = np.zeros(n, dtype=float)
    else:
        growth = np.cumprod(1.0 + _paths(rets, n, settings.method, rng), axis=1)
        curves = np.concatenate([np.ones((n, 1)), growth], axis=1) * initial
        finals = curves[:, -1]
        peaks = np.maximum.accumulate(curves, axis=1)
        with np.errstate(divide="ignore", invalid="ignore"):
            dd = np.where(peaks > 0, (peaks - curves) / peaks * 100.0, 0.0)
        max_dds = dd.max(axis=1)

    returns_pct = (finals / initial - 1.0) * 100.0
    alpha = 1.0 - settings.confidence_level
    sorted_ret = np.sort(returns_pct)
    var_idx = int(np.floor(n * alpha))
    tail = sorted_ret[:var_idx]

    lo, hi = float(finals.min()), float(finals.max())
    if hi > lo:
        counts, edges = np.histogram(finals, bins=10, range=(lo, hi))
        buckets = tuple(DistributionBucket(float(edges[i]), float(edges[i + 1]), int(counts[i])) for i in range(10))
    else:
        buckets = (DistributionBucket(lo, hi, n),)

    return MonteCarloResult(
        simulations=n,
        method=settings.method,
        mean_final_capital=float(finals.mean()),
        median_final_capital=float(np.median(finals)),
        percentile_5=float(np.percentile(finals, 5)),
        percentile_95=float(np.percentile(finals, 95)),
        mean_return_percent=float(returns_pct.mean()),
        std_return_percent=float(returns_pct.std()),
        confidence_interval=(
            float(np.percentile(returns_pct, alpha / 2 * 100)),
            float(np.percentile(returns_pct, (1 - alpha / 2) * 100)),
        ),
        probability_of_profit=float((finals > initial).mean()),
        probability_of_doubling=float((finals >= 2 * initial).mean()),
        probability_of_ruin=float((finals <= initial * (1 - settings.ruin_threshold_percent / 100.0)).mean()),
        value_at_risk_percent=float(-sorted_ret[min(var_idx, n - 1)]),
        conditional_var_percent=float(-tail.mean()) if tail.size else 0.0,
        expected_max_drawdown_percent=float(max_dds.mean()),
        distribution=buckets,
    )
