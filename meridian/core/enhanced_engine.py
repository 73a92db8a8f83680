"""增强回测引擎。

在主引擎的单遍循环上追加：
- 入场过滤：交易时段（UTC 小时）、排除星期、高周期趋势方向；
- 出场：追踪止损、分批止盈；
- 手续费：固定 / 百分比 / 阶梯；
- 额外统计：月度收益、持仓时长直方图、星期/小时分布、Ulcer 等。

核心不变量（确定性、单遍、权益点一 bar 一个）保持不变。
"""

from __future__ import annotations

from bisect import bisect_right
from statistics import mean
from typing import Sequence

from meridian.analysis.enhanced_metrics import EnhancedStatistics, compute_enhanced_statistics
from meridian.common.config.schema import EnhancedRunConfig, RunConfig
from meridian.common.errors import ConfigError
from meridian.common.models import Bar, Direction, ExitReason
from meridian.core.backtest_engine import RunState, SimulationEngine, stop_target_hit
from meridian.core.base_engine import BarInput
from meridian.core.results import RunResult
from meridian.data.quality import aggregate_bars, infer_interval, parse_timeframe


class TrendFilter:
    """高周期收盘价相对其均线的方向，只使用已经收盘的高周期 bar。"""

    def __init__(self, bars: Sequence[Bar], timeframe: str, ma_period: int) -> None:
        htf = parse_timeframe(timeframe)
        base = infer_interval(bars)
        self._base_step = base.total_seconds() if base else 0.0
        higher = aggregate_bars(bars, htf)
        closes: list[float] = []
        self._close_times: list[float] = []
        self._trend: list[int] = []
        for hb in higher:
            closes.append(hb.close)
            if len(closes) >= ma_period:
                ma = mean(closes[-ma_period:])
                trend = 1 if hb.close > ma else (-1 if hb.close < ma else 0)
            else:
                trend = 0
            self._close_times.append((hb.timestamp + htf).timestamp())
            self._trend.append(trend)

    def direction_at(self, bar: Bar) -> int:
        # 当前 bar 收盘时刻之前（含）已收盘的最后一根高周期 bar
        closes_at = bar.timestamp.timestamp() + self._base_step
        idx = bisect_right(self._close_times, closes_at) - 1
        return self._trend[idx] if idx >= 0 else 0


def in_session(hour: int, start: int, end: int) -> bool:
    """[start, end) 小时区间，支持跨午夜；start == end 视为全天。"""
    if start == end:
        return True
    if start < end:
        return start <= hour < end
    return hour >= start or hour < end


class EnhancedSimulationEngine(SimulationEngine):
    def run(self, config: RunConfig, bars: BarInput) -> RunResult:
        if not isinstance(config, EnhancedRunConfig):
            raise ConfigError("EnhancedSimulationEngine requires an EnhancedRunConfig")
        return super().run(config, bars)

    def _before_run(self, state: RunState, bars: Sequence[Bar]) -> None:
        cfg = state.config
        if cfg.higher_timeframe and bars:
            state.context["trend"] = TrendFilter(bars, cfg.higher_timeframe, cfg.trend_ma_period)

    def _allow_entry(self, state: RunState, bar: Bar, direction: Direction) -> bool:
        cfg = state.config
        if bar.timestamp.weekday() in cfg.excluded_weekdays:
            return False
        if cfg.session_start_hour is not None and not in_session(
            bar.timestamp.hour, cfg.session_start_hour, cfg.session_end_hour
        ):
            return False
        trend = state.context.get("trend")
        if trend is not None and trend.direction_at(bar) != int(direction):
            return False
        return True

    def commission(self, config: RunConfig, notional: float) -> float:
        model = getattr(config, "commission", None)
        if model is None or model.type == "percent":
            return super().commission(config, notional)
        if model.type == "fixed":
            return model.fixed_fee
        percent = config.commission_percent
        for tier in sorted(model.tiers, key=lambda t: t.min_notional):
            if abs(notional) >= tier.min_notional:
                percent = tier.percent
        return abs(notional) * percent / 100.0

    def _check_exits(self, state: RunState, bar: Bar) -> None:
        cfg = state.config
        pos = state.position
        side = int(pos.direction)

        hit = stop_target_hit(pos, bar)
        if hit is not None and hit[1] == ExitReason.STOP_LOSS:
            self._close(state, bar, hit[0], hit[1])
            return

        if cfg.trailing_stop_percent and pos.best_price is not None:
            trail = pos.best_price * (1 - side * cfg.trailing_stop_percent / 100.0)
            if side > 0 and bar.low <= trail:
                self._close(state, bar, min(bar.open, trail), ExitReason.TRAILING_STOP)
                return
            if side < 0 and bar.high >= trail:
                self._close(state, bar, max(bar.open, trail), ExitReason.TRAILING_STOP)
                return

        levels = cfg.partial_take_profits
        while state.position is not None and pos.partials_taken < len(levels):
            level = levels[pos.partials_taken]
            trigger = pos.entry_price * (1 + side * level.gain_percent / 100.0)
            touched = bar.high >= trigger if side > 0 else bar.low <= trigger
            if not touched:
                break
            price = max(bar.open, trigger) if side > 0 else min(bar.open, trigger)
            pos.partials_taken += 1
            self._close(state, bar, price, ExitReason.PARTIAL_TAKE_PROFIT, qty=pos.qty * level.close_fraction)

        if state.position is not None and hit is not None:
            self._close(state, bar, hit[0], hit[1])

    def _after_bar(self, state: RunState, bar: Bar) -> None:
        pos = state.position
        if pos.entry_time == bar.timestamp:
            return
        if pos.direction == Direction.LONG:
            pos.best_price = max(pos.best_price or bar.high, bar.high)
        else:
            pos.best_price = min(pos.best_price or bar.low, bar.low)

    def _enhanced_statistics(self, state: RunState, stats) -> EnhancedStatistics:
        return compute_enhanced_statistics(
            initial_capital=state.config.initial_capital,
            equity_curve=state.equity_curve,
            trades=state.trades,
            max_drawdown=stats.max_drawdown,
            profit_factor=stats.profit_factor,
        )
