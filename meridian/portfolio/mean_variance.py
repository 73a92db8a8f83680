"""均值-方差组合优化（随机采样近似）。

- 期望收益：样本均值；协方差：样本协方差（n-1 自由度），二者按年化周期放大；
- 不给目标收益时返回等权组合；
- 给定目标收益时随机采样权重（独立均匀数归一化），取采样有效前沿上收益最接近目标的点。

这是随机近似而非精确二次规划；用 QP/SLSQP 求解器替换可以得到更精确的前沿，
但会改变文档化的行为与测试基线。
"""

from __future__ import annotations

import math
from typing import Mapping, Sequence

import numpy as np
import pandas as pd

from meridian.common.config.schema import MeanVarianceConfig
from meridian.common.errors import ConfigError
from meridian.portfolio.schemas import FrontierPoint, MeanVarianceResult


def _as_frame(history: pd.DataFrame | Mapping[str, Sequence[float]]) -> pd.DataFrame:
    if isinstance(history, pd.DataFrame):
        return history.astype(float)
    lengths = {len(v) for v in history.values()}
    if len(lengths) > 1:
        raise ConfigError("mean-variance: return histories must have equal length")
    return pd.DataFrame({k: list(v) for k, v in history.items()}, dtype=float)


def _point(symbols, w, mu, cov, rf) -> FrontierPoint:
    ret = float(w @ mu) * 100.0
    vol = math.sqrt(max(0.0, float(w @ cov @ w))) * 100.0
    sharpe = (ret - rf) / vol if vol > 0 else 0.0
    return FrontierPoint({s: float(x) for s, x in zip(symbols, w)}, ret, vol, sharpe)


def efficient_subset(points: Sequence[FrontierPoint]) -> list[FrontierPoint]:
    """按波动率升序，只保留收益严格高于所有更低波动点的样本（采样前沿的上包络）。"""
    out: list[FrontierPoint] = []
    best = -math.inf
    for p in sorted(points, key=lambda p: (p.volatility_percent, -p.expected_return_percent)):
        if p.expected_return_percent > best:
            out.append(p)
            best = p.expected_return_percent
    return out


def optimize_mean_variance(
    history: pd.DataFrame | Mapping[str, Sequence[float]],
    settings: MeanVarianceConfig | None = None,
    rng: np.random.Generator | None = None,
) -> MeanVarianceResult:
    """
    Parameters
    ----------
    history:
        各资产逐期收益率（小数），列/键为 symbol。
    settings:
        目标收益（年化 %）、采样数、无风险利率、年化周期数、seed。
    rng:
        可选随机源；缺省由 settings.seed 构造。

    Raises
    ------
    ConfigError
        资产为空或样本少于两期。
    """
    settings = settings or MeanVarianceConfig()
    df = _as_frame(history)
    symbols = tuple(str(c) for c in df.columns)
    if not symbols:
        raise ConfigError("mean-variance: at least one asset is required")
    if len(df) < 2:
        raise ConfigError("mean-variance: at least two return observations are required")

    ppy = settings.periods_per_year
    mu = df.mean().to_numpy(dtype=float) * ppy
    cov = np.atleast_2d(np.cov(df.to_numpy(dtype=float), rowvar=False, ddof=1)) * ppy
    rf = settings.risk_free_rate_percent
    expected = {s: float(m) * 100.0 for s, m in zip(symbols, mu)}
    cov_tuple = tuple(tuple(float(v) for v in row) for row in cov)

    if settings.target_return_percent is None:
        w = np.full(len(symbols), 1.0 / len(symbols))
        return MeanVarianceResult(
            method="equal_weight",
            symbols=symbols,
            expected_returns_percent=expected,
            covariance=cov_tuple,
            optimal=_point(symbols, w, mu, cov, rf),
        )

    rng = rng if rng is not None else np.random.default_rng(settings.seed)
    raw = rng.random((settings.n_samples, len(symbols)))
    weights = raw / raw.sum(axis=1, keepdims=True)
    samples = [_point(symbols, w, mu, cov, rf) for w in weights]
    frontier = efficient_subset(samples)
    target = settings.target_return_percent
    optimal = min(frontier, key=lambda p: (abs(p.expected_return_percent - target), p.volatility_percent))
    return MeanVarianceResult(
        method="sampled",
        symbols=symbols,
        expected_returns_percent=expected,
        covariance=cov_tuple,
        optimal=optimal,
        frontier=tuple(frontier),
        target_return_percent=target,
    )
