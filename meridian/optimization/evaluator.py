"""候选评估：参数赋值 -> 派生配置 -> 回测 -> 约束 -> 目标值。

Evaluator 只持有不可变输入（基准配置、bar 序列、引擎），可以被多个线程
同时调用；process 模式下整体被 pickle 到子进程。
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from meridian.common.config.schema import ObjectiveWeights, RunConfig, SearchConstraints
from meridian.common.models import Bar
from meridian.core.backtest_engine import SimulationEngine
from meridian.optimization.overrides import derive_config
from meridian.optimization.schemas import Evaluation
from meridian.optimization.scoring import filter_reason, objective_value


class CandidateEvaluator:
    def __init__(
        self,
        engine: SimulationEngine,
        base_config: RunConfig,
        bars: Sequence[Bar],
        objective: str = "sharpe",
        constraints: SearchConstraints | None = None,
        weights: ObjectiveWeights | None = None,
    ) -> None:
        self.engine = engine
        self.base_config = base_config
        self.bars = tuple(bars)
        self.objective = objective
        self.constraints = constraints
        self.weights = weights or ObjectiveWeights()

    def derive(self, params: Mapping[str, Any]) -> RunConfig:
        """派生配置并预构建策略，非法组合在这里以 ValueError 暴露。"""
        cfg = derive_config(self.base_config, params, self.engine.registry)
        self.engine.registry.build(cfg.strategy)
        return cfg

    def __call__(self, params: Mapping[str, Any]) -> Evaluation:
        params = dict(params)
        try:
            cfg = self.derive(params)
        except ValueError as exc:
            return Evaluation(params, None, None, "invalid_config", str(exc))
        result = self.engine.run(cfg, self.bars)
        reason = filter_reason(result, self.constraints)
        if reason is not None:
            return Evaluation(params, result, None, reason)
        return Evaluation(params, result, objective_value(result, self.objective, self.weights))
