"""回测结果结构（下游唯一契约，构造后不可变）。"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from meridian.analysis.enhanced_metrics import EnhancedStatistics
from meridian.analysis.metrics import RunStatistics
from meridian.common.models import EquityPoint, Trade
from meridian.common.utils.json_sanitize import sanitize_for_json


@dataclass(frozen=True)
class RunResult:
    symbol: str
    start: Optional[datetime]
    end: Optional[datetime]
    initial_capital: float
    final_capital: float
    trades: tuple[Trade, ...]
    equity_curve: tuple[EquityPoint, ...]
    statistics: RunStatistics
    halted: bool = False
    skipped_bars: int = 0
    enhanced: Optional[EnhancedStatistics] = None

    @property
    def total_return(self) -> float:
        return self.statistics.total_return

    @property
    def total_return_percent(self) -> float:
        return self.statistics.total_return_percent

    @property
    def max_drawdown_percent(self) -> float:
        return self.statistics.max_drawdown_percent

    @property
    def trade_count(self) -> int:
        return self.statistics.total_trades

    def metrics(self) -> dict[str, Any]:
        """扁平指标字典（排名、约束过滤、CSV 导出共用）。"""
        s = self.statistics
        return {
            "total_return": s.total_return,
            "total_return_percent": s.total_return_percent,
            "annualized_return_percent": s.annualized_return_percent,
            "sharpe": s.sharpe_ratio,
            "sortino": s.sortino_ratio,
            "calmar": s.calmar_ratio,
            "profit_factor": s.profit_factor,
            "max_drawdown": s.max_drawdown,
            "max_drawdown_percent": s.max_drawdown_percent,
            "win_rate": s.win_rate,
            "total_trades": s.total_trades,
            "final_capital": self.final_capital,
        }

    def to_dict(self) -> dict[str, Any]:
        return sanitize_for_json(self)
