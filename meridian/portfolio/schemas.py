"""组合层结果结构。"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from meridian.common.models import EquityPoint
from meridian.common.utils.json_sanitize import sanitize_for_json
from meridian.core.results import RunResult
from meridian.portfolio.covariance import CorrelationMatrix


@dataclass(frozen=True)
class RebalanceEvent:
    timestamp: datetime
    reason: str  # "scheduled" | "drift"
    old_weights: Mapping[str, float]
    new_weights: Mapping[str, float]
    transaction_cost: float
    equity_after: float


@dataclass(frozen=True)
class PortfolioMetrics:
    initial_capital: float
    final_equity: float
    total_return: float
    total_return_percent: float
    annualized_return_percent: float
    volatility_percent: float
    weighted_average_volatility_percent: float
    diversification_ratio: float
    sharpe_ratio: float
    sortino_ratio: float
    max_drawdown_percent: float
    blended_max_drawdown_percent: float
    rebalance_count: int
    total_rebalance_cost: float
    asset_volatility_percent: Mapping[str, float]


@dataclass(frozen=True)
class SectorAllocation:
    asset_class: str
    allocation_percent: float
    symbols: tuple[str, ...]


@dataclass(frozen=True)
class DiversificationReport:
    sectors: tuple[SectorAllocation, ...]
    herfindahl_index: float
    effective_assets: float
    sector_herfindahl_index: float
    effective_sectors: float


@dataclass(frozen=True)
class PortfolioResult:
    per_asset: Mapping[str, RunResult]
    correlation: CorrelationMatrix
    metrics: PortfolioMetrics
    rebalance_events: tuple[RebalanceEvent, ...]
    combined_equity_curve: tuple[EquityPoint, ...]
    diversification: Optional[DiversificationReport] = None
    cancelled: bool = False

    def to_dict(self, include_runs: bool = False) -> dict[str, Any]:
        payload = {
            "correlation": {"symbols": list(self.correlation.symbols), "values": self.correlation.values},
            "metrics": self.metrics,
            "rebalance_events": self.rebalance_events,
            "combined_equity_curve": self.combined_equity_curve,
            "diversification": self.diversification,
            "cancelled": self.cancelled,
            "per_asset": {
                s: (r if include_runs else r.metrics()) for s, r in self.per_asset.items()
            },
        }
        return sanitize_for_json(payload)


@dataclass(frozen=True)
class FrontierPoint:
    weights: Mapping[str, float]
    expected_return_percent: float
    volatility_percent: float
    sharpe_ratio: float


@dataclass(frozen=True)
class MeanVarianceResult:
    """均值-方差结果。method 为 "equal_weight" 或 "sampled"（随机采样近似，非精确 QP）。"""
    method: str
    symbols: tuple[str, ...]
    expected_returns_percent: Mapping[str, float]
    covariance: tuple[tuple[float, ...], ...]
    optimal: FrontierPoint
    frontier: tuple[FrontierPoint, ...] = ()
    target_return_percent: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return sanitize_for_json(self)
