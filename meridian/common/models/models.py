"""核心数据结构：Bar/Signal/Position/Trade/EquityPoint。"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Signal(str, Enum):
    """策略在某根 bar 收盘时的目标方向。"""

    LONG = "long"
    SHORT = "short"
    FLAT = "flat"


class Direction(int, Enum):
    LONG = 1
    SHORT = -1


class ExitReason(str, Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    SIGNAL = "signal"
    END_OF_DATA = "end_of_data"
    MAX_DRAWDOWN = "max_drawdown"
    TRAILING_STOP = "trailing_stop"
    PARTIAL_TAKE_PROFIT = "partial_take_profit"


@dataclass(frozen=True)
class Bar:
    """单一品种、单一周期的一根 K 线。"""
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def is_valid(self) -> bool:
        """价格为正且有限、OHLC 自洽、成交量非负。"""
        prices = (self.open, self.high, self.low, self.close)
        if not all(math.isfinite(p) and p > 0 for p in prices):
            return False
        if not math.isfinite(self.volume) or self.volume < 0:
            return False
        return self.low <= min(self.open, self.close) and self.high >= max(self.open, self.close)


@dataclass
class Position:
    """运行中的持仓（每个品种至多一个，仅由引擎内部修改）。"""
    symbol: str
    direction: Direction
    qty: float
    entry_price: float
    entry_time: datetime
    entry_commission: float
    entry_slippage: float
    stop_price: float | None = None
    target_price: float | None = None
    best_price: float | None = None  # 追踪止损用的最有利价格
    partials_taken: int = 0

    def unrealized(self, price: float) -> float:
        return (price - self.entry_price) * self.qty * int(self.direction)


@dataclass(frozen=True)
class Trade:
    """已平仓交易，创建后不可变。

    pnl 为扣除开平两侧手续费后的净盈亏；滑点已体现在成交价里，
    `slippage_cost` 只作展示，不再重复扣减。
    """
    trade_id: int
    symbol: str
    direction: Direction
    entry_time: datetime
    entry_price: float
    exit_time: datetime
    exit_price: float
    qty: float
    pnl: float
    pnl_percent: float
    commission: float
    slippage_cost: float
    exit_reason: ExitReason

    @property
    def holding_hours(self) -> float:
        return (self.exit_time - self.entry_time).total_seconds() / 3600.0

    @property
    def is_win(self) -> bool:
        return self.pnl > 0

    @property
    def is_loss(self) -> bool:
        return self.pnl < 0


@dataclass(frozen=True)
class EquityPoint:
    timestamp: datetime
    equity: float
