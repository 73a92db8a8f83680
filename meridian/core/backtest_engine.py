"""单品种回测引擎（单遍、严格向前）。

每根 bar 的处理顺序：
1. 策略在收盘时给出信号（每根有效 bar 恰好调用一次）；
2. 有持仓时先判定出场：止损 -> 止盈（用 high/low，跳空按开盘价成交）-> 信号离场（收盘价）；
3. 无持仓且信号要求入场时开仓，仓位 = 当前权益 × position_size_percent × leverage；
4. 以收盘价盯市记录权益点；回撤超过 max_drawdown_percent 时强平并停止开仓。

数据末尾仍持仓时在最后一根 bar 上按收盘价平仓（end_of_data），
该 bar 的权益点已扣除平仓成本，因此最后一个权益点等于 final_capital。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from meridian.analysis.metrics import DrawdownTracker, compute_run_statistics
from meridian.common.config.schema import RunConfig
from meridian.common.config.validation import check_run_config
from meridian.common.models import Bar, Direction, EquityPoint, ExitReason, Position, Signal, Trade
from meridian.core.base_engine import BarInput, BaseEngine
from meridian.core.results import RunResult
from meridian.data.price_store import BarSeries, slice_bars
from meridian.strategies.base import Strategy
from meridian.strategies.registry import StrategyRegistry, default_registry


@dataclass
class RunState:
    """单次回测的可变状态，只存在于 run() 调用期间。"""
    config: RunConfig
    capital: float
    position: Position | None = None
    trades: list[Trade] = field(default_factory=list)
    equity_curve: list[EquityPoint] = field(default_factory=list)
    drawdown: DrawdownTracker = field(default_factory=DrawdownTracker)
    halted: bool = False
    context: dict = field(default_factory=dict)

    def equity(self, price: float) -> float:
        if self.position is None:
            return self.capital
        return self.capital + self.position.unrealized(price)


def prepare_bars(config: RunConfig, bars: BarInput) -> tuple[list[Bar], int]:
    """剔除无效 bar（质量报告标记、OHLC 非法、时间不递增）并按配置区间裁剪。

    Returns
    -------
    (usable, skipped)
    """
    raw = bars.valid_bars() if isinstance(bars, BarSeries) else list(bars)
    total = len(bars)
    in_range = slice_bars(raw, config.start, config.end)
    out: list[Bar] = []
    for bar in in_range:
        if not bar.is_valid():
            continue
        if out and bar.timestamp <= out[-1].timestamp:
            continue
        out.append(bar)
    return out, total - len(out)


class SimulationEngine(BaseEngine):
    """
    回测引擎。

    Parameters
    ----------
    registry:
        策略注册表；缺省使用内置策略的新注册表（不共享全局状态）。
    """

    def __init__(self, registry: StrategyRegistry | None = None) -> None:
        self.registry = registry or default_registry()

    def run(self, config: RunConfig, bars: BarInput) -> RunResult:
        """
        执行一次回测。

        Raises
        ------
        ConfigError
            配置非法（资金、仓位比例等）或策略参数非法，在处理任何 bar 之前抛出。
        """
        check_run_config(config)
        strategy = self.registry.build(config.strategy)
        usable, skipped = prepare_bars(config, bars)
        state = RunState(config=config, capital=config.initial_capital)
        self._before_run(state, usable)
        last = len(usable) - 1
        for i, bar in enumerate(usable):
            self._step(state, strategy, bar, final=i == last)
        return self._build_result(state, usable, skipped)

    # ---- 钩子（增强引擎覆盖） ----

    def _before_run(self, state: RunState, bars: Sequence[Bar]) -> None:
        pass

    def _allow_entry(self, state: RunState, bar: Bar, direction: Direction) -> bool:
        return True

    def commission(self, config: RunConfig, notional: float) -> float:
        return abs(notional) * config.commission_percent / 100.0

    def _check_exits(self, state: RunState, bar: Bar) -> None:
        """盘中出场（止损优先于止盈）。"""
        hit = stop_target_hit(state.position, bar)
        if hit is not None:
            price, reason = hit
            self._close(state, bar, price, reason)

    def _after_bar(self, state: RunState, bar: Bar) -> None:
        pass

    # ---- 主循环 ----

    def _step(self, state: RunState, strategy: Strategy, bar: Bar, final: bool = False) -> None:
        cfg = state.config
        signal = strategy.on_bar(bar)

        if state.position is not None:
            self._check_exits(state, bar)
        if state.position is not None and is_exit_signal(state.position.direction, signal):
            self._close(state, bar, bar.close, ExitReason.SIGNAL)

        if state.position is None and not state.halted and signal in (Signal.LONG, Signal.SHORT):
            direction = Direction.LONG if signal == Signal.LONG else Direction.SHORT
            if (direction == Direction.LONG or cfg.allow_short) and self._allow_entry(state, bar, direction):
                self._open(state, bar, direction)

        if state.position is not None:
            self._after_bar(state, bar)

        equity = state.equity(bar.close)
        if not state.halted and state.drawdown.drawdown_percent(equity) > cfg.max_drawdown_percent:
            # 资金保护熔断：强平后本次回测不再开仓
            if state.position is not None:
                self._close(state, bar, bar.close, ExitReason.MAX_DRAWDOWN)
            state.halted = True
            equity = state.equity(bar.close)
        if final and state.position is not None:
            self._close(state, bar, bar.close, ExitReason.END_OF_DATA)
            equity = state.capital
        state.equity_curve.append(EquityPoint(bar.timestamp, equity))
        state.drawdown.update(equity)

    def fill_price(self, config: RunConfig, price: float, side: int) -> float:
        """滑点对交易者不利：买入(side=+1)抬价，卖出(side=-1)压价。"""
        return price * (1.0 + side * config.slippage_percent / 100.0)

    def _open(self, state: RunState, bar: Bar, direction: Direction) -> None:
        cfg = state.config
        equity = state.capital
        if equity <= 0:
            return
        position_value = equity * cfg.position_size_percent / 100.0 * cfg.leverage
        qty = position_value / bar.close
        side = int(direction)
        fill = self.fill_price(cfg, bar.close, side)
        commission = self.commission(cfg, fill * qty)
        state.capital -= commission
        stop = fill * (1 - side * cfg.stop_loss_percent / 100.0) if cfg.stop_loss_percent else None
        target = fill * (1 + side * cfg.take_profit_percent / 100.0) if cfg.take_profit_percent else None
        state.position = Position(
            symbol=cfg.symbol,
            direction=direction,
            qty=qty,
            entry_price=fill,
            entry_time=bar.timestamp,
            entry_commission=commission,
            entry_slippage=abs(fill - bar.close) * qty,
            stop_price=stop,
            target_price=target,
            best_price=fill,
        )

    def _close(self, state: RunState, bar: Bar, price: float, reason: ExitReason, qty: float | None = None) -> None:
        """平掉全部或部分持仓并记录 Trade；入场手续费/滑点按数量比例分摊。"""
        cfg = state.config
        pos = state.position
        if pos is None:
            return
        qty = pos.qty if qty is None or qty >= pos.qty else qty
        share = qty / pos.qty
        side = int(pos.direction)
        fill = self.fill_price(cfg, price, -side)
        exit_commission = self.commission(cfg, fill * qty)
        entry_commission = pos.entry_commission * share
        entry_slippage = pos.entry_slippage * share
        gross = (fill - pos.entry_price) * qty * side
        pnl = gross - entry_commission - exit_commission
        committed = pos.entry_price * qty / cfg.leverage
        state.capital += gross - exit_commission
        state.trades.append(
            Trade(
                trade_id=len(state.trades) + 1,
                symbol=pos.symbol,
                direction=pos.direction,
                entry_time=pos.entry_time,
                entry_price=pos.entry_price,
                exit_time=bar.timestamp,
                exit_price=fill,
                qty=qty,
                pnl=pnl,
                pnl_percent=pnl / committed * 100.0 if committed else 0.0,
                commission=entry_commission + exit_commission,
                slippage_cost=entry_slippage + abs(fill - price) * qty,
                exit_reason=reason,
            )
        )
        if qty >= pos.qty:
            state.position = None
        else:
            pos.qty -= qty
            pos.entry_commission -= entry_commission
            pos.entry_slippage -= entry_slippage

    def _build_result(self, state: RunState, bars: Sequence[Bar], skipped: int) -> RunResult:
        cfg = state.config
        stats = compute_run_statistics(
            initial_capital=cfg.initial_capital,
            final_capital=state.capital,
            equity_curve=state.equity_curve,
            trades=state.trades,
            periods_per_year=cfg.periods_per_year,
            drawdown=(state.drawdown.max_drawdown, state.drawdown.max_drawdown_percent),
        )
        return RunResult(
            symbol=cfg.symbol,
            start=bars[0].timestamp if bars else cfg.start,
            end=bars[-1].timestamp if bars else cfg.end,
            initial_capital=cfg.initial_capital,
            final_capital=state.capital,
            trades=tuple(state.trades),
            equity_curve=tuple(state.equity_curve),
            statistics=stats,
            halted=state.halted,
            skipped_bars=skipped,
            enhanced=self._enhanced_statistics(state, stats),
        )

    def _enhanced_statistics(self, state: RunState, stats):
        return None


def is_exit_signal(direction: Direction, signal: Signal | None) -> bool:
    if signal is None:
        return False
    if signal == Signal.FLAT:
        return True
    return (direction == Direction.LONG and signal == Signal.SHORT) or (
        direction == Direction.SHORT and signal == Signal.LONG
    )


def stop_target_hit(pos: Position | None, bar: Bar) -> tuple[float, ExitReason] | None:
    """固定止损/止盈判定；同一根 bar 两者都触及时按止损处理（保守）。"""
    if pos is None:
        return None
    if pos.direction == Direction.LONG:
        if pos.stop_price is not None and bar.low <= pos.stop_price:
            return min(bar.open, pos.stop_price), ExitReason.STOP_LOSS
        if pos.target_price is not None and bar.high >= pos.target_price:
            return max(bar.open, pos.target_price), ExitReason.TAKE_PROFIT
        return None
    if pos.stop_price is not None and bar.high >= pos.stop_price:
        return max(bar.open, pos.stop_price), ExitReason.STOP_LOSS
    if pos.target_price is not None and bar.low <= pos.target_price:
        return min(bar.open, pos.target_price), ExitReason.TAKE_PROFIT
    return None
