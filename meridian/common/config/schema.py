"""配置架构定义（Pydantic Schema）。

目标：
- 让配置成为“强类型 + 可演进”的边界协议；
- 启动阶段尽早失败（extra="forbid"），避免 typo 在长时间搜索中途才暴露；
- RunConfig 一旦构造即不可变（frozen），搜索时通过显式 overlay 生成新实例。
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from meridian.common.config.validation import check_allocations, run_config_problems

Objective = Literal["return", "sharpe", "calmar", "profit_factor", "multi_objective"]
RebalanceFrequency = Literal["none", "daily", "weekly", "monthly", "quarterly"]


class StrategyConfig(BaseModel):
    """策略配置（type + params）。

    `strategy:` 下的扁平字段会被自动挪到 `params`，写 YAML 时更顺手。
    """
    type: str = "always_long"
    params: Dict[str, Any] = Field(default_factory=dict)
    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="before")
    @classmethod
    def _pack_flat_params(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if set(data.keys()) <= {"type", "params"}:
            return data
        strat_type = data.get("type", "always_long")
        params = {k: v for k, v in data.items() if k not in {"type", "params"}}
        existing = data.get("params")
        if isinstance(existing, dict):
            params = {**params, **existing}
        return {"type": strat_type, "params": params}


class RunConfig(BaseModel):
    """单品种回测配置。百分比字段一律使用 0-100 的数值。"""
    symbol: str
    timeframe: str = "1d"
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    initial_capital: float = 10_000.0
    position_size_percent: float = 10.0
    max_drawdown_percent: float = 100.0
    commission_percent: float = 0.1
    slippage_percent: float = 0.05
    leverage: float = 1.0
    stop_loss_percent: Optional[float] = None
    take_profit_percent: Optional[float] = None
    allow_short: bool = False
    periods_per_year: Optional[float] = None
    strategy: StrategyConfig = Field(default_factory=StrategyConfig)

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def _check_ranges(self) -> "RunConfig":
        problems = run_config_problems(self)
        if problems:
            raise ValueError("; ".join(problems))
        return self


class CommissionTier(BaseModel):
    """阶梯佣金：成交额 >= min_notional 时适用 percent。"""
    min_notional: float = Field(ge=0)
    percent: float = Field(ge=0)
    model_config = ConfigDict(extra="forbid", frozen=True)


class CommissionConfig(BaseModel):
    type: Literal["percent", "fixed", "tiered"] = "percent"
    fixed_fee: float = Field(default=0.0, ge=0)
    tiers: List[CommissionTier] = Field(default_factory=list)
    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def _check_tiers(self) -> "CommissionConfig":
        if self.type == "tiered" and not self.tiers:
            raise ValueError("tiered commission requires at least one tier")
        return self


class PartialTakeProfit(BaseModel):
    """浮盈达到 gain_percent 时平掉 close_fraction 比例的剩余仓位。"""
    gain_percent: float = Field(gt=0)
    close_fraction: float = Field(gt=0, le=1)
    model_config = ConfigDict(extra="forbid", frozen=True)


class EnhancedRunConfig(RunConfig):
    """增强回测：交易时段、星期过滤、多周期趋势过滤、阶梯佣金、追踪止损、分批止盈。"""
    session_start_hour: Optional[int] = Field(default=None, ge=0, le=23)
    session_end_hour: Optional[int] = Field(default=None, ge=0, le=23)
    excluded_weekdays: List[int] = Field(default_factory=list)
    higher_timeframe: Optional[str] = None
    trend_ma_period: int = Field(default=20, ge=1)
    commission: CommissionConfig = Field(default_factory=CommissionConfig)
    trailing_stop_percent: Optional[float] = Field(default=None, gt=0)
    partial_take_profits: List[PartialTakeProfit] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_enhanced(self) -> "EnhancedRunConfig":
        bad = [d for d in self.excluded_weekdays if d < 0 or d > 6]
        if bad:
            raise ValueError(f"excluded_weekdays must be in 0..6 (Mon..Sun), got {bad}")
        if (self.session_start_hour is None) != (self.session_end_hour is None):
            raise ValueError("session_start_hour and session_end_hour must be set together")
        gains = [p.gain_percent for p in self.partial_take_profits]
        if gains != sorted(gains):
            raise ValueError("partial_take_profits must be ordered by gain_percent")
        return self


class ParameterSpec(BaseModel):
    """搜索空间的一个维度：离散取值 values，或数值区间 min/max(/step)。

    name 可以是 RunConfig 字段（如 position_size_percent），也可以是策略参数
    （`strategy.fast` 或直接写 `fast`）。
    """
    name: str
    min: Optional[float] = None
    max: Optional[float] = None
    step: Optional[float] = None
    values: Optional[List[Any]] = None
    integer: bool = False
    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def _check_axis(self) -> "ParameterSpec":
        if self.values is not None:
            if not self.values:
                raise ValueError(f"parameter '{self.name}': values must not be empty")
            return self
        if self.min is None or self.max is None:
            raise ValueError(f"parameter '{self.name}': provide either values or min/max")
        if self.max < self.min:
            raise ValueError(f"parameter '{self.name}': max must be >= min")
        if self.step is not None and self.step <= 0:
            raise ValueError(f"parameter '{self.name}': step must be > 0")
        return self

    @property
    def is_discrete(self) -> bool:
        return self.values is not None


class ObjectiveWeights(BaseModel):
    """多目标加权（默认 0.4/0.3/0.2/0.1）。"""
    total_return: float = 0.4
    sharpe: float = 0.3
    drawdown: float = 0.2
    win_rate: float = 0.1
    model_config = ConfigDict(extra="forbid", frozen=True)


class SearchConstraints(BaseModel):
    """硬约束：不满足的候选直接剔除，不参与排名。"""
    min_trades: Optional[int] = None
    max_drawdown_percent: Optional[float] = None
    min_win_rate: Optional[float] = Field(default=None, ge=0, le=1)
    model_config = ConfigDict(extra="forbid", frozen=True)


class ParallelConfig(BaseModel):
    """并行度配置。max_workers<=1 时顺序执行。"""
    max_workers: int = Field(default=4, ge=1)
    executor: Literal["thread", "process"] = "thread"
    max_in_flight: Optional[int] = Field(default=None, ge=1)
    model_config = ConfigDict(extra="forbid", frozen=True)


class OptimizationConfig(BaseModel):
    objective: Objective = "sharpe"
    parameters: List[ParameterSpec] = Field(default_factory=list)
    constraints: SearchConstraints = Field(default_factory=SearchConstraints)
    weights: ObjectiveWeights = Field(default_factory=ObjectiveWeights)
    model_config = ConfigDict(extra="forbid", frozen=True)


class GeneticConfig(BaseModel):
    population_size: int = Field(default=20, ge=2)
    generations: int = Field(default=10, ge=0)
    crossover_rate: float = Field(default=0.7, ge=0, le=1)
    mutation_rate: float = Field(default=0.1, ge=0, le=1)
    elitism_rate: float = Field(default=0.1, ge=0, le=1)
    tournament_size: int = Field(default=3, ge=1)
    seed: Optional[int] = None
    model_config = ConfigDict(extra="forbid", frozen=True)


class SensitivityConfig(BaseModel):
    parameter: ParameterSpec
    num_steps: int = Field(default=10, ge=2)
    model_config = ConfigDict(extra="forbid", frozen=True)


class WalkForwardConfig(BaseModel):
    n_segments: int = Field(default=3, ge=1)
    train_ratio: float = Field(default=0.7, gt=0, lt=1)
    min_test_trades: int = Field(default=1, ge=0)
    min_efficiency: float = 0.5
    model_config = ConfigDict(extra="forbid", frozen=True)


class MonteCarloConfig(BaseModel):
    """交易序列重采样。shuffle 只改变路径（终值不变），bootstrap 为有放回抽样。"""
    simulations: int = Field(default=1000, ge=1)
    method: Literal["bootstrap", "shuffle"] = "bootstrap"
    confidence_level: float = Field(default=0.95, gt=0, lt=1)
    ruin_threshold_percent: float = Field(default=50.0, gt=0, le=100)
    seed: Optional[int] = None
    model_config = ConfigDict(extra="forbid", frozen=True)


class AssetConfig(BaseModel):
    symbol: str
    asset_class: str = "unclassified"
    target_allocation_percent: float
    rebalance_drift_threshold_percent: Optional[float] = None
    strategy: Optional[StrategyConfig] = None
    model_config = ConfigDict(extra="forbid", frozen=True)


class RebalanceConfig(BaseModel):
    frequency: RebalanceFrequency = "monthly"
    cost_percent: float = Field(default=0.1, ge=0)
    model_config = ConfigDict(extra="forbid", frozen=True)


class PortfolioConfig(BaseModel):
    """多资产组合配置。

    base 为每个资产共享的回测模板，资产自身的 strategy 可覆盖模板策略；
    每个资产的 initial_capital = total_capital × 目标权重。
    """
    total_capital: float = Field(default=100_000.0, gt=0)
    assets: List[AssetConfig]
    base: RunConfig = Field(default_factory=lambda: RunConfig(symbol="PORTFOLIO"))
    rebalance: RebalanceConfig = Field(default_factory=RebalanceConfig)
    correlation_source: Literal["equity", "price"] = "equity"
    periods_per_year: Optional[float] = Field(default=None, gt=0)
    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def _check_assets(self) -> "PortfolioConfig":
        check_allocations([a.target_allocation_percent for a in self.assets])
        symbols = [a.symbol for a in self.assets]
        if len(set(symbols)) != len(symbols):
            raise ValueError("portfolio: duplicate asset symbols")
        return self


class MeanVarianceConfig(BaseModel):
    target_return_percent: Optional[float] = None
    n_samples: int = Field(default=5000, ge=1)
    risk_free_rate_percent: float = 0.0
    periods_per_year: float = Field(default=252.0, gt=0)
    seed: Optional[int] = None
    model_config = ConfigDict(extra="forbid", frozen=True)


class DataConfig(BaseModel):
    data_dir: str = "data/history"
    cache_entries: int = Field(default=32, ge=1)
    gap_tolerance: float = Field(default=0.1, ge=0)
    model_config = ConfigDict(extra="forbid", frozen=True)


class MeridianConfig(BaseModel):
    """YAML 根配置。各块都可缺省，CLI 子命令按需读取。"""
    run: Optional[RunConfig] = None
    enhanced: Optional[EnhancedRunConfig] = None
    data: DataConfig = Field(default_factory=DataConfig)
    optimization: OptimizationConfig = Field(default_factory=OptimizationConfig)
    genetic: GeneticConfig = Field(default_factory=GeneticConfig)
    sensitivity: Optional[SensitivityConfig] = None
    walkforward: WalkForwardConfig = Field(default_factory=WalkForwardConfig)
    monte_carlo: MonteCarloConfig = Field(default_factory=MonteCarloConfig)
    portfolio: Optional[PortfolioConfig] = None
    mean_variance: MeanVarianceConfig = Field(default_factory=MeanVarianceConfig)
    parallel: ParallelConfig = Field(default_factory=ParallelConfig)
    model_config = ConfigDict(extra="forbid")
