"""内置规则策略。

全部基于 deque 维护滚动窗口，单根 bar O(窗口) 以内完成，且不含任何随机性。
"""

from __future__ import annotations

from collections import deque
from statistics import mean, pstdev

from meridian.common.errors import ConfigError
from meridian.common.models import Bar, Signal
from meridian.strategies.base import Strategy, as_window


class AlwaysLongStrategy(Strategy):
    """每根 bar 都要求做多（基准/测试用）。"""

    def on_bar(self, bar: Bar) -> Signal | None:
        return Signal.LONG


class MovingAverageCrossStrategy(Strategy):
    """双均线：fast > slow 做多，fast < slow 做空（或离场）。"""

    def __init__(self, fast: int = 10, slow: int = 30) -> None:
        self.fast = as_window(fast, "fast")
        self.slow = as_window(slow, "slow", minimum=2)
        if self.fast >= self.slow:
            raise ConfigError(f"fast ({self.fast}) must be < slow ({self.slow})")
        self._closes: deque[float] = deque(maxlen=self.slow)

    @property
    def warmup(self) -> int:
        return self.slow

    def on_bar(self, bar: Bar) -> Signal | None:
        self._closes.append(bar.close)
        if len(self._closes) < self.slow:
            return None
        closes = list(self._closes)
        fast_ma = mean(closes[-self.fast:])
        slow_ma = mean(closes)
        if fast_ma > slow_ma:
            return Signal.LONG
        if fast_ma < slow_ma:
            return Signal.SHORT
        return None


class BreakoutStrategy(Strategy):
    """Donchian 通道突破：收盘价突破前 lookback 根 bar 的最高/最低价。"""

    def __init__(self, lookback: int = 20) -> None:
        self.lookback = as_window(lookback, "lookback", minimum=2)
        self._highs: deque[float] = deque(maxlen=self.lookback)
        self._lows: deque[float] = deque(maxlen=self.lookback)

    @property
    def warmup(self) -> int:
        return self.lookback + 1

    def on_bar(self, bar: Bar) -> Signal | None:
        signal = None
        if len(self._highs) == self.lookback:
            if bar.close > max(self._highs):
                signal = Signal.LONG
            elif bar.close < min(self._lows):
                signal = Signal.SHORT
        # 当前 bar 只参与之后的通道
        self._highs.append(bar.high)
        self._lows.append(bar.low)
        return signal


class MeanReversionStrategy(Strategy):
    """z-score 均值回归：偏离超过 entry_z 反向开仓，回到 exit_z 以内离场。"""

    def __init__(self, lookback: int = 20, entry_z: float = 2.0, exit_z: float = 0.5) -> None:
        self.lookback = as_window(lookback, "lookback", minimum=2)
        self.entry_z = float(entry_z)
        self.exit_z = float(exit_z)
        if self.entry_z <= 0 or self.exit_z < 0 or self.exit_z >= self.entry_z:
            raise ConfigError("mean_reversion requires 0 <= exit_z < entry_z")
        self._closes: deque[float] = deque(maxlen=self.lookback)

    @property
    def warmup(self) -> int:
        return self.lookback

    def on_bar(self, bar: Bar) -> Signal | None:
        self._closes.append(bar.close)
        if len(self._closes) < self.lookback:
            return None
        sigma = pstdev(self._closes)
        if sigma == 0:
            return None
        z = (bar.close - mean(self._closes)) / sigma
        if z <= -self.entry_z:
            return Signal.LONG
        if z >= self.entry_z:
            return Signal.SHORT
        if abs(z) <= self.exit_z:
            return Signal.FLAT
        return None
