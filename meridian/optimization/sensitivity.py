"""单参数敏感性分析。

其余参数固定在基准配置，只扫描一个维度；用 OLS 拟合 “收益% ~ 参数值” 的斜率：
- sensitivity = 斜率；
- robustness = 1 / |斜率|，斜率恰为 0（或无法拟合）时为 None。
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from meridian.common.config.schema import ParallelConfig, RunConfig, SensitivityConfig
from meridian.common.models import Bar
from meridian.common.utils.progress import ProgressCallback, ProgressEvent, emit
from meridian.core.backtest_engine import SimulationEngine
from meridian.core.parallel import CancellationToken, run_parallel
from meridian.optimization.evaluator import CandidateEvaluator
from meridian.optimization.overrides import check_parameter_names
from meridian.optimization.param_space import linspace_values
from meridian.optimization.schemas import Evaluation, SensitivityPoint, SensitivityResult


def ols_slope(xs: Sequence[float], ys: Sequence[float]) -> Optional[float]:
    """最小二乘斜率；少于两个不同的 x 时返回 None。"""
    if len(xs) < 2:
        return None
    x = np.asarray(xs, dtype=float)
    y = np.asarray(ys, dtype=float)
    dx = x - x.mean()
    denom = float(np.dot(dx, dx))
    if denom == 0.0:
        return None
    return float(np.dot(dx, y - y.mean()) / denom)


def _point(value, ev: Evaluation) -> SensitivityPoint:
    if ev.result is None:
        return SensitivityPoint(value, None, None, None, error=ev.error or ev.filter_reason)
    s = ev.result.statistics
    return SensitivityPoint(value, s.total_return_percent, s.sharpe_ratio, s.max_drawdown_percent)


def sensitivity_analysis(
    base_config: RunConfig,
    bars: Sequence[Bar],
    settings: SensitivityConfig,
    engine: SimulationEngine | None = None,
    parallel: ParallelConfig | None = None,
    cancel: CancellationToken | None = None,
    progress: ProgressCallback | None = None,
) -> SensitivityResult:
    """
    扫描 settings.parameter 的 num_steps 个均匀取值并拟合斜率。

    Notes
    -----
    非法取值（例如 fast >= slow）记为带 error 的点，不参与拟合。
    """
    engine = engine or SimulationEngine()
    spec = settings.parameter
    check_parameter_names([spec], base_config, engine.registry)
    values = linspace_values(spec, settings.num_steps)
    evaluator = CandidateEvaluator(engine, base_config, bars, objective="return")
    total = len(values)

    finished: list[int] = []

    def _on_result(idx: int, ev: Evaluation) -> None:
        finished.append(idx)
        emit(progress, ProgressEvent("sensitivity", len(finished), total, message=f"{spec.name}={values[idx]}"))

    outcome = run_parallel(
        evaluator,
        [{spec.name: v} for v in values],
        parallel=parallel,
        cancel=cancel,
        on_result=_on_result,
    )
    points = tuple(_point(values[idx], ev) for idx, ev in outcome.results)
    valid = [p for p in points if p.valid]
    try:
        xs = [float(p.value) for p in valid]
    except (TypeError, ValueError):
        xs = []
    slope = ols_slope(xs, [p.total_return_percent for p in valid]) if xs else None
    robustness = 1.0 / abs(slope) if slope else None
    return SensitivityResult(
        parameter=spec.name,
        points=points,
        sensitivity=slope,
        robustness=robustness,
        cancelled=outcome.cancelled,
    )
