"""遗传算法参数搜索。

每代：评估适应度（与网格搜索相同的目标/约束，违规个体适应度为 None）
-> 精英保留 -> 锦标赛选择父代池 -> 均匀交叉 -> 高斯变异（夹回边界）。
随机源为注入的 numpy Generator（或由 seed 构造），同一 seed 结果可复现。
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from meridian.common.config.schema import GeneticConfig, OptimizationConfig, ParallelConfig, RunConfig
from meridian.common.errors import ConfigError
from meridian.common.models import Bar
from meridian.common.utils.logging import setup_logger
from meridian.common.utils.progress import ProgressCallback, ProgressEvent, emit
from meridian.core.backtest_engine import SimulationEngine
from meridian.core.parallel import CancellationToken, run_parallel
from meridian.optimization.evaluator import CandidateEvaluator
from meridian.optimization.grid_search import filter_stats, rank_evaluations
from meridian.optimization.overrides import check_parameter_names
from meridian.optimization.param_space import mutate_value, params_key, random_value
from meridian.optimization.schemas import Evaluation, GenerationStats, OptimizationCandidate, OptimizationResult

logger = setup_logger("meridian.search")

Genome = Dict[str, Any]


def _fitness(ev: Evaluation) -> float:
    return ev.score if ev.score is not None else -math.inf


class GeneticOptimizer:
    """
    Parameters
    ----------
    base_config / bars:
        与网格搜索相同的基准输入。
    settings:
        目标、参数空间（数值轴需要 min/max，step 可省略）与约束。
    genetic:
        种群规模、代数、交叉/变异/精英比例、锦标赛规模与 seed。
    rng:
        可选的随机源；提供时忽略 genetic.seed。
    """

    def __init__(
        self,
        base_config: RunConfig,
        bars: Sequence[Bar],
        settings: OptimizationConfig,
        genetic: GeneticConfig | None = None,
        engine: SimulationEngine | None = None,
        parallel: ParallelConfig | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        if not settings.parameters:
            raise ConfigError("genetic search requires at least one parameter")
        self.engine = engine or SimulationEngine()
        check_parameter_names(settings.parameters, base_config, self.engine.registry)
        self.specs = list(settings.parameters)
        self.settings = settings
        self.genetic = genetic or GeneticConfig()
        self.parallel = parallel
        self.rng = rng if rng is not None else np.random.default_rng(self.genetic.seed)
        self.evaluator = CandidateEvaluator(
            self.engine,
            base_config,
            bars,
            objective=settings.objective,
            constraints=settings.constraints,
            weights=settings.weights,
        )
        self._cache: dict[tuple, Evaluation] = {}

    # ---- 遗传算子 ----

    def random_genome(self) -> Genome:
        return {s.name: random_value(s, self.rng) for s in self.specs}

    def tournament(self, population: List[Genome], fitness: List[float]) -> Genome:
        k = self.genetic.tournament_size
        idx = self.rng.integers(len(population), size=k)
        winner = max(idx, key=lambda i: (fitness[i], -i))
        return dict(population[int(winner)])

    def crossover(self, a: Genome, b: Genome) -> tuple[Genome, Genome]:
        """均匀交叉：每个维度 50/50 决定来自哪一方。"""
        if self.rng.random() >= self.genetic.crossover_rate:
            return dict(a), dict(b)
        c1, c2 = {}, {}
        for s in self.specs:
            if self.rng.random() < 0.5:
                c1[s.name], c2[s.name] = a[s.name], b[s.name]
            else:
                c1[s.name], c2[s.name] = b[s.name], a[s.name]
        return c1, c2

    def mutate(self, genome: Genome) -> Genome:
        out = dict(genome)
        for s in self.specs:
            if self.rng.random() < self.genetic.mutation_rate:
                out[s.name] = mutate_value(s, out[s.name], self.rng)
        return out

    # ---- 评估 ----

    def _evaluate(self, population: List[Genome], cancel: CancellationToken | None) -> tuple[List[Evaluation], bool]:
        """评估种群；相同参数只回测一次。"""
        pending: dict[tuple, Genome] = {}
        for g in population:
            key = params_key(g)
            if key not in self._cache and key not in pending:
                pending[key] = g
        keys = list(pending)
        outcome = run_parallel(self.evaluator, [pending[k] for k in keys], parallel=self.parallel, cancel=cancel)
        for idx, ev in outcome.results:
            self._cache[keys[idx]] = ev
        if outcome.cancelled:
            return [], True
        return [self._cache[params_key(g)] for g in population], False

    def _breed(self, population: List[Genome], fitness: List[float]) -> List[Genome]:
        size = self.genetic.population_size
        n_elite = min(size, int(math.floor(size * self.genetic.elitism_rate)))
        order = sorted(range(len(population)), key=lambda i: (-fitness[i], i))
        nxt = [dict(population[i]) for i in order[:n_elite]]
        parents = [self.tournament(population, fitness) for _ in range(size)]
        i = 0
        while len(nxt) < size:
            a = parents[i % size]
            b = parents[(i + 1) % size]
            i += 2
            for child in self.crossover(a, b):
                if len(nxt) < size:
                    nxt.append(self.mutate(child))
        return nxt

    @staticmethod
    def _generation_stats(gen: int, evals: List[Evaluation]) -> GenerationStats:
        valid = [ev.score for ev in evals if ev.score is not None]
        return GenerationStats(
            generation=gen,
            best_fitness=max(valid) if valid else None,
            average_fitness=sum(valid) / len(valid) if valid else None,
            valid_individuals=len(valid),
            population_size=len(evals),
        )

    def run(
        self,
        cancel: CancellationToken | None = None,
        progress: ProgressCallback | None = None,
    ) -> OptimizationResult:
        """
        运行 GA。generations=0 时只评估初始种群。

        Returns
        -------
        OptimizationResult
            best 为历代最优个体重新回测一次得到的干净结果；
            candidates 为全部不重复有效个体的排名；generations 为逐代收敛记录。
        """
        gens = self.genetic.generations
        population = [self.random_genome() for _ in range(self.genetic.population_size)]
        history: list[GenerationStats] = []
        best_ev: Optional[Evaluation] = None
        cancelled = False

        for gen in range(gens + 1):
            if gen > 0:
                fitness = [_fitness(self._cache[params_key(g)]) for g in population]
                population = self._breed(population, fitness)
            if cancel is not None and cancel.cancelled:
                cancelled = True
                break
            evals, cancelled = self._evaluate(population, cancel)
            if cancelled:
                break
            stats = self._generation_stats(gen, evals)
            history.append(stats)
            for ev in evals:
                if ev.passed and (best_ev is None or ev.score > best_ev.score):
                    best_ev = ev
            emit(
                progress,
                ProgressEvent("genetic", gen, gens, best=best_ev.score if best_ev else None),
            )
            logger.info(
                "generation %d/%d: best=%s avg=%s valid=%d",
                gen,
                gens,
                stats.best_fitness,
                stats.average_fitness,
                stats.valid_individuals,
            )

        all_evals = list(self._cache.values())
        ranked, frontier = rank_evaluations(all_evals, self.settings.objective)
        best: Optional[OptimizationCandidate] = None
        if best_ev is not None:
            clean = self.evaluator(best_ev.params)
            best = OptimizationCandidate(
                params=dict(clean.params),
                metrics=clean.result.metrics(),
                objective_value=clean.score if clean.score is not None else best_ev.score,
                rank=1,
                on_pareto_frontier=any(c.on_pareto_frontier and dict(c.params) == dict(clean.params) for c in frontier),
                result=clean.result,
            )
        return OptimizationResult(
            method="genetic",
            objective=self.settings.objective,
            candidates=ranked,
            best=best,
            pareto_frontier=frontier,
            filter_stats=filter_stats(all_evals, len(all_evals)),
            generations=tuple(history),
            cancelled=cancelled,
        )


def genetic_search(
    base_config: RunConfig,
    bars: Sequence[Bar],
    settings: OptimizationConfig,
    genetic: GeneticConfig | None = None,
    engine: SimulationEngine | None = None,
    parallel: ParallelConfig | None = None,
    rng: np.random.Generator | None = None,
    cancel: CancellationToken | None = None,
    progress: ProgressCallback | None = None,
) -> OptimizationResult:
    optimizer = GeneticOptimizer(base_config, bars, settings, genetic, engine, parallel, rng)
    return optimizer.run(cancel=cancel, progress=progress)
