"""搜索结果结构（frozen dataclass，序列一律用 tuple）。"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from meridian.common.utils.json_sanitize import sanitize_for_json
from meridian.core.results import RunResult


@dataclass(frozen=True)
class Evaluation:
    """单个参数赋值的评估结果；score 为 None 表示被约束或配置校验剔除。"""
    params: Mapping[str, Any]
    result: Optional[RunResult]
    score: Optional[float]
    filter_reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def passed(self) -> bool:
        return self.score is not None


@dataclass(frozen=True)
class OptimizationCandidate:
    params: Mapping[str, Any]
    metrics: Mapping[str, Any]
    objective_value: float
    rank: int
    on_pareto_frontier: bool = False
    result: Optional[RunResult] = None


@dataclass(frozen=True)
class GenerationStats:
    generation: int
    best_fitness: Optional[float]
    average_fitness: Optional[float]
    valid_individuals: int
    population_size: int


@dataclass(frozen=True)
class OptimizationResult:
    method: str
    objective: str
    candidates: tuple[OptimizationCandidate, ...]
    best: Optional[OptimizationCandidate]
    pareto_frontier: tuple[OptimizationCandidate, ...] = ()
    filter_stats: Mapping[str, int] = field(default_factory=dict)
    generations: tuple[GenerationStats, ...] = ()
    cancelled: bool = False

    def to_dict(self, include_runs: bool = False) -> dict[str, Any]:
        def _cand(c: OptimizationCandidate) -> dict[str, Any]:
            out = {
                "params": dict(c.params),
                "metrics": dict(c.metrics),
                "objective_value": c.objective_value,
                "rank": c.rank,
                "on_pareto_frontier": c.on_pareto_frontier,
            }
            if include_runs and c.result is not None:
                out["result"] = c.result
            return out

        return sanitize_for_json(
            {
                "method": self.method,
                "objective": self.objective,
                "best": _cand(self.best) if self.best else None,
                "candidates": [_cand(c) for c in self.candidates],
                "pareto_frontier": [_cand(c) for c in self.pareto_frontier],
                "filter_stats": dict(self.filter_stats),
                "generations": list(self.generations),
                "cancelled": self.cancelled,
            }
        )


@dataclass(frozen=True)
class SensitivityPoint:
    value: float
    total_return_percent: Optional[float]
    sharpe_ratio: Optional[float]
    max_drawdown_percent: Optional[float]
    error: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class SensitivityResult:
    parameter: str
    points: tuple[SensitivityPoint, ...]
    sensitivity: Optional[float]
    robustness: Optional[float]
    cancelled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return sanitize_for_json(self)
