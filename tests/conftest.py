import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# 确保项目根目录在 sys.path，便于测试内直接以顶层包名导入
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from meridian.common.models import Bar, Signal  # noqa: E402
from meridian.core.backtest_engine import SimulationEngine  # noqa: E402
from meridian.strategies import Strategy, default_registry  # noqa: E402

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def bars_from_closes(closes, start=T0, step=timedelta(days=1), spread=0.0):
    """收盘价序列 -> bar；open=close，high/low 按 spread 上下浮动。"""
    return [
        Bar(start + i * step, float(c), float(c) * (1 + spread), float(c) * (1 - spread), float(c), 1.0)
        for i, c in enumerate(closes)
    ]


class ScriptedStrategy(Strategy):
    """按脚本逐根返回信号（"long"/"short"/"flat"/None）。"""

    def __init__(self, signals=()):
        self._signals = [Signal(s) if s else None for s in signals]
        self._i = 0

    def on_bar(self, bar):
        sig = self._signals[self._i] if self._i < len(self._signals) else None
        self._i += 1
        return sig


@pytest.fixture
def make_bars():
    return bars_from_closes


@pytest.fixture
def scripted_registry():
    """内置策略 + 脚本化策略 "scripted"（参数 signals）。"""
    registry = default_registry()
    registry.register("scripted", ScriptedStrategy)
    return registry


@pytest.fixture
def scripted_engine(scripted_registry):
    return SimulationEngine(scripted_registry)
