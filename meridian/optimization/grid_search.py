"""网格搜索（笛卡尔积全枚举）。"""

from __future__ import annotations

from typing import Sequence

from meridian.common.config.schema import OptimizationConfig, ParallelConfig, RunConfig
from meridian.common.models import Bar
from meridian.common.utils.logging import setup_logger
from meridian.common.utils.progress import ProgressCallback, ProgressEvent, emit
from meridian.core.backtest_engine import SimulationEngine
from meridian.core.parallel import CancellationToken, run_parallel
from meridian.optimization.evaluator import CandidateEvaluator
from meridian.optimization.overrides import check_parameter_names
from meridian.optimization.param_space import grid_combinations
from meridian.optimization.schemas import Evaluation, OptimizationCandidate, OptimizationResult
from meridian.optimization.scoring import FILTER_REASONS, pareto_mask

logger = setup_logger("meridian.search")


def filter_stats(evaluations: Sequence[Evaluation], total: int) -> dict[str, int]:
    stats = {"total": total, "evaluated": len(evaluations), "passed": 0}
    stats.update({reason: 0 for reason in FILTER_REASONS})
    for ev in evaluations:
        if ev.passed:
            stats["passed"] += 1
        elif ev.filter_reason:
            stats[ev.filter_reason] += 1
    return stats


def rank_evaluations(
    evaluations: Sequence[Evaluation],
    objective: str,
) -> tuple[tuple[OptimizationCandidate, ...], tuple[OptimizationCandidate, ...]]:
    """
    按目标值降序排名（并列时保持评估顺序），multi_objective 时附加 Pareto 前沿。

    Returns
    -------
    (ranked, frontier)
    """
    order = sorted(
        (i for i, ev in enumerate(evaluations) if ev.passed),
        key=lambda i: (-evaluations[i].score, i),
    )
    survivors = [evaluations[i] for i in order]
    mask = pareto_mask([ev.result for ev in survivors]) if objective == "multi_objective" else [False] * len(survivors)
    ranked = tuple(
        OptimizationCandidate(
            params=dict(ev.params),
            metrics=ev.result.metrics(),
            objective_value=ev.score,
            rank=rank,
            on_pareto_frontier=on_front,
            result=ev.result,
        )
        for rank, (ev, on_front) in enumerate(zip(survivors, mask), 1)
    )
    frontier = tuple(c for c in ranked if c.on_pareto_frontier)
    return ranked, frontier


def grid_search(
    base_config: RunConfig,
    bars: Sequence[Bar],
    settings: OptimizationConfig,
    engine: SimulationEngine | None = None,
    parallel: ParallelConfig | None = None,
    cancel: CancellationToken | None = None,
    progress: ProgressCallback | None = None,
) -> OptimizationResult:
    """
    网格搜索：枚举全部组合，逐个回测、过滤、打分、排名。

    Parameters
    ----------
    base_config:
        基准配置；每个组合通过显式 overlay 派生新配置。
    settings:
        目标、参数空间、约束与多目标权重。
    cancel:
        协作式取消；取消后返回已完成部分并标记 cancelled=True。

    Raises
    ------
    ConfigError
        参数名未知/重复，或区间缺少 step。
    """
    engine = engine or SimulationEngine()
    check_parameter_names(settings.parameters, base_config, engine.registry)
    combos = grid_combinations(settings.parameters)
    evaluator = CandidateEvaluator(
        engine,
        base_config,
        bars,
        objective=settings.objective,
        constraints=settings.constraints,
        weights=settings.weights,
    )
    logger.info("grid search: %d combinations, objective=%s", len(combos), settings.objective)

    tally = {"done": 0, "best": None}

    def _on_result(idx: int, ev: Evaluation) -> None:
        tally["done"] += 1
        if ev.passed and (tally["best"] is None or ev.score > tally["best"]):
            tally["best"] = ev.score
        emit(progress, ProgressEvent("grid", tally["done"], len(combos), best=tally["best"]))

    outcome = run_parallel(evaluator, combos, parallel=parallel, cancel=cancel, on_result=_on_result)
    evaluations = [ev for _, ev in outcome.results]
    ranked, frontier = rank_evaluations(evaluations, settings.objective)
    stats = filter_stats(evaluations, len(combos))
    if outcome.cancelled:
        logger.warning("grid search cancelled after %d/%d combinations", outcome.completed, len(combos))
    logger.info("grid search done: passed=%d/%d", stats["passed"], stats["evaluated"])
    return OptimizationResult(
        method="grid",
        objective=settings.objective,
        candidates=ranked,
        best=ranked[0] if ranked else None,
        pareto_frontier=frontier,
        filter_stats=stats,
        cancelled=outcome.cancelled,
    )
