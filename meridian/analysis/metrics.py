"""回测绩效指标计算。

约定：
- 百分比字段使用 0-100 数值；比率（Sharpe/Sortino/Calmar/PF）为无量纲浮点；
- 数值退化（零方差、无亏损、零回撤）映射为确定的哨兵值（0 / inf），不产生 NaN。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from statistics import mean, median, pstdev
from typing import Sequence

from meridian.common.models import EquityPoint, Trade

SECONDS_PER_YEAR = 365 * 86400
DEFAULT_PERIODS_PER_YEAR = 365.0
_EPS = 1e-12


class DrawdownTracker:
    """单遍维护运行峰值与最大回撤（首个点即初始峰值）。"""

    def __init__(self) -> None:
        self.peak: float | None = None
        self.max_drawdown = 0.0
        self.max_drawdown_percent = 0.0

    def drawdown_percent(self, equity: float) -> float:
        """若把 equity 追加到曲线上，此刻的回撤百分比（不修改状态）。"""
        peak = equity if self.peak is None else max(self.peak, equity)
        if peak <= 0:
            return 0.0 if equity >= peak else 100.0
        return (peak - equity) / peak * 100.0

    def update(self, equity: float) -> float:
        dd_pct = self.drawdown_percent(equity)
        self.peak = equity if self.peak is None else max(self.peak, equity)
        self.max_drawdown = max(self.max_drawdown, self.peak - equity)
        self.max_drawdown_percent = max(self.max_drawdown_percent, dd_pct)
        return dd_pct


def max_drawdown(values: Sequence[float]) -> tuple[float, float]:
    """返回 (最大回撤金额, 最大回撤百分比)。"""
    tracker = DrawdownTracker()
    for v in values:
        tracker.update(v)
    return tracker.max_drawdown, tracker.max_drawdown_percent


def drawdown_curve(values: Sequence[float]) -> list[float]:
    """逐点回撤百分比。"""
    tracker = DrawdownTracker()
    return [tracker.update(v) for v in values]


def periodic_returns(values: Sequence[float]) -> list[float]:
    out = []
    for prev, curr in zip(values, values[1:]):
        if prev > 0:
            out.append(curr / prev - 1.0)
    return out


def infer_periods_per_year(timestamps: Sequence[datetime]) -> float:
    """根据时间戳中位间隔估计年化周期数（全年 365 天）。"""
    deltas = []
    for prev, curr in zip(timestamps, timestamps[1:]):
        dt = (curr - prev).total_seconds()
        if dt > 0:
            deltas.append(dt)
    if not deltas:
        return DEFAULT_PERIODS_PER_YEAR
    return SECONDS_PER_YEAR / median(deltas)


def sharpe_ratio(returns: Sequence[float], periods_per_year: float) -> float:
    if len(returns) < 2:
        return 0.0
    sigma = pstdev(returns)
    if sigma <= _EPS:
        return 0.0
    return mean(returns) / sigma * math.sqrt(periods_per_year)


def sortino_ratio(returns: Sequence[float], periods_per_year: float) -> float:
    """分母为负收益样本的标准差；没有足够的下行样本时返回 0。"""
    if len(returns) < 2:
        return 0.0
    downside = [r for r in returns if r < 0]
    if len(downside) < 2:
        return 0.0
    sigma = pstdev(downside)
    if sigma <= _EPS:
        return 0.0
    return mean(returns) / sigma * math.sqrt(periods_per_year)


def profit_factor(trades: Sequence[Trade]) -> float:
    gross_win = sum(t.pnl for t in trades if t.pnl > 0)
    gross_loss = abs(sum(t.pnl for t in trades if t.pnl < 0))
    if gross_loss > 0:
        return gross_win / gross_loss
    return math.inf if gross_win > 0 else 0.0


def annualized_return_percent(total_return_percent: float, start: datetime | None, end: datetime | None) -> float:
    """简单年化：总收益% × 365 / 天数；区间长度为 0 时返回总收益%。"""
    if start is None or end is None:
        return total_return_percent
    days = (end - start).total_seconds() / 86400.0
    if days <= 0:
        return total_return_percent
    return total_return_percent * 365.0 / days


def _streaks(trades: Sequence[Trade]) -> tuple[int, int]:
    best_win = best_loss = cur_win = cur_loss = 0
    for t in trades:
        if t.pnl > 0:
            cur_win += 1
            cur_loss = 0
        elif t.pnl < 0:
            cur_loss += 1
            cur_win = 0
        else:
            cur_win = cur_loss = 0
        best_win = max(best_win, cur_win)
        best_loss = max(best_loss, cur_loss)
    return best_win, best_loss


@dataclass(frozen=True)
class RunStatistics:
    total_return: float = 0.0
    total_return_percent: float = 0.0
    annualized_return_percent: float = 0.0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    average_win: float = 0.0
    average_loss: float = 0.0
    largest_win: float = 0.0
    largest_loss: float = 0.0
    expectancy: float = 0.0
    average_trade_return_percent: float = 0.0
    average_holding_hours: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    break_even_trades: int = 0
    max_consecutive_wins: int = 0
    max_consecutive_losses: int = 0
    total_commission: float = 0.0
    total_slippage: float = 0.0
    periods_per_year: float = DEFAULT_PERIODS_PER_YEAR


def compute_run_statistics(
    initial_capital: float,
    final_capital: float,
    equity_curve: Sequence[EquityPoint],
    trades: Sequence[Trade],
    periods_per_year: float | None = None,
    drawdown: tuple[float, float] | None = None,
) -> RunStatistics:
    """
    由一次回测的交易序列与权益曲线计算全部派生统计。

    Parameters
    ----------
    drawdown:
        引擎在推进过程中已维护的 (最大回撤金额, 百分比)；缺省时重新扫描曲线。
    periods_per_year:
        年化周期数；缺省时由权益曲线时间戳推断。

    Notes
    -----
    平均亏损 `average_loss` 以正数表示亏损幅度。
    """
    values = [p.equity for p in equity_curve]
    stamps = [p.timestamp for p in equity_curve]
    ppy = periods_per_year or infer_periods_per_year(stamps)
    returns = periodic_returns(values)
    dd_abs, dd_pct = drawdown if drawdown is not None else max_drawdown(values)

    total_return = final_capital - initial_capital
    total_return_pct = total_return / initial_capital * 100.0 if initial_capital else 0.0
    annual_pct = annualized_return_percent(
        total_return_pct,
        stamps[0] if stamps else None,
        stamps[-1] if stamps else None,
    )

    wins = [t.pnl for t in trades if t.pnl > 0]
    losses = [t.pnl for t in trades if t.pnl < 0]
    n = len(trades)
    max_wins, max_losses = _streaks(trades)

    return RunStatistics(
        total_return=total_return,
        total_return_percent=total_return_pct,
        annualized_return_percent=annual_pct,
        win_rate=len(wins) / n if n else 0.0,
        profit_factor=profit_factor(trades),
        sharpe_ratio=sharpe_ratio(returns, ppy),
        sortino_ratio=sortino_ratio(returns, ppy),
        calmar_ratio=annual_pct / dd_pct if dd_pct > 0 else 0.0,
        max_drawdown=dd_abs,
        max_drawdown_percent=dd_pct,
        average_win=mean(wins) if wins else 0.0,
        average_loss=-mean(losses) if losses else 0.0,
        largest_win=max(wins) if wins else 0.0,
        largest_loss=min(losses) if losses else 0.0,
        expectancy=mean(t.pnl for t in trades) if n else 0.0,
        average_trade_return_percent=mean(t.pnl_percent for t in trades) if n else 0.0,
        average_holding_hours=mean(t.holding_hours for t in trades) if n else 0.0,
        total_trades=n,
        winning_trades=len(wins),
        losing_trades=len(losses),
        break_even_trades=n - len(wins) - len(losses),
        max_consecutive_wins=max_wins,
        max_consecutive_losses=max_losses,
        total_commission=sum(t.commission for t in trades),
        total_slippage=sum(t.slippage_cost for t in trades),
        periods_per_year=ppy,
    )
