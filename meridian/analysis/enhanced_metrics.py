"""增强回测的分桶统计与补充风险指标。

全部基于同一份 Trade 序列与权益曲线计算，不影响核心统计。
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from meridian.analysis.metrics import drawdown_curve
from meridian.common.models import EquityPoint, Trade

WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
DURATION_BUCKETS = ("<1h", "1-4h", "4-24h", "1-3d", ">3d")


@dataclass(frozen=True)
class BucketStats:
    trades: int = 0
    total_pnl: float = 0.0
    win_rate: float = 0.0


@dataclass(frozen=True)
class EnhancedStatistics:
    monthly_returns: dict[str, float] = field(default_factory=dict)
    duration_histogram: dict[str, BucketStats] = field(default_factory=dict)
    weekday_distribution: dict[str, BucketStats] = field(default_factory=dict)
    hour_distribution: dict[int, BucketStats] = field(default_factory=dict)
    ulcer_index: float = 0.0
    recovery_factor: float = 0.0
    payoff_ratio: float = 0.0
    tail_ratio: float = 0.0
    common_sense_ratio: float = 0.0


def monthly_returns(equity_curve: Sequence[EquityPoint], initial_capital: float) -> dict[str, float]:
    """按自然月的收益率（%）：月末权益相对上月末（首月相对初始资金）。"""
    month_end: dict[str, float] = {}
    for p in equity_curve:
        month_end[f"{p.timestamp.year:04d}-{p.timestamp.month:02d}"] = p.equity
    out: dict[str, float] = {}
    prev = initial_capital
    for key, eq in month_end.items():
        out[key] = (eq / prev - 1.0) * 100.0 if prev > 0 else 0.0
        prev = eq
    return out


def _duration_bucket(hours: float) -> str:
    if hours < 1:
        return "<1h"
    if hours < 4:
        return "1-4h"
    if hours < 24:
        return "4-24h"
    if hours < 72:
        return "1-3d"
    return ">3d"


def _bucketize(groups: dict, trades_by_key: dict) -> dict:
    out = {}
    for key in groups:
        items = trades_by_key.get(key, [])
        n = len(items)
        out[key] = BucketStats(
            trades=n,
            total_pnl=sum(t.pnl for t in items),
            win_rate=(sum(1 for t in items if t.pnl > 0) / n) if n else 0.0,
        )
    return out


def distribution(trades: Sequence[Trade]) -> tuple[dict, dict, dict]:
    """(持仓时长直方图, 按开仓星期分布, 按开仓小时分布)。"""
    by_duration: dict[str, list[Trade]] = {}
    by_weekday: dict[str, list[Trade]] = {}
    by_hour: dict[int, list[Trade]] = {}
    for t in trades:
        by_duration.setdefault(_duration_bucket(t.holding_hours), []).append(t)
        by_weekday.setdefault(WEEKDAYS[t.entry_time.weekday()], []).append(t)
        by_hour.setdefault(t.entry_time.hour, []).append(t)
    return (
        _bucketize(DURATION_BUCKETS, by_duration),
        _bucketize(WEEKDAYS, by_weekday),
        _bucketize(sorted(by_hour), by_hour),
    )


def ulcer_index(values: Sequence[float]) -> float:
    dd = drawdown_curve(values)
    if not dd:
        return 0.0
    return math.sqrt(sum(d * d for d in dd) / len(dd))


def _safe_ratio(num: float, den: float) -> float:
    if den > 0:
        return num / den
    return math.inf if num > 0 else 0.0


def tail_ratio(trade_returns: Sequence[float]) -> float:
    """|95 分位| / |5 分位|。"""
    if len(trade_returns) < 2:
        return 0.0
    arr = np.asarray(trade_returns, dtype=float)
    return _safe_ratio(abs(float(np.percentile(arr, 95))), abs(float(np.percentile(arr, 5))))


def compute_enhanced_statistics(
    initial_capital: float,
    equity_curve: Sequence[EquityPoint],
    trades: Sequence[Trade],
    max_drawdown: float,
    profit_factor: float,
) -> EnhancedStatistics:
    values = [p.equity for p in equity_curve]
    wins = [t.pnl for t in trades if t.pnl > 0]
    losses = [-t.pnl for t in trades if t.pnl < 0]
    avg_win = sum(wins) / len(wins) if wins else 0.0
    avg_loss = sum(losses) / len(losses) if losses else 0.0
    net = sum(t.pnl for t in trades)
    tail = tail_ratio([t.pnl_percent for t in trades])
    if profit_factor == 0 or tail == 0:
        common_sense = 0.0
    else:
        common_sense = profit_factor * tail
    durations, weekdays, hours = distribution(trades)
    return EnhancedStatistics(
        monthly_returns=monthly_returns(equity_curve, initial_capital),
        duration_histogram=durations,
        weekday_distribution=weekdays,
        hour_distribution=hours,
        ulcer_index=ulcer_index(values),
        recovery_factor=_safe_ratio(net, max_drawdown),
        payoff_ratio=_safe_ratio(avg_win, avg_loss),
        tail_ratio=tail,
        common_sense_ratio=common_sense,
    )
