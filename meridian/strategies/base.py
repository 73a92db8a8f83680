from __future__ import annotations

from abc import ABC, abstractmethod

from meridian.common.errors import ConfigError
from meridian.common.models import Bar, Signal


class Strategy(ABC):
    """规则策略接口。

    每次回测都会新建实例；`on_bar` 在每根有效 bar 上恰好调用一次，
    返回该 bar 收盘时的目标方向（None 表示“维持现状”）。
    """

    @abstractmethod
    def on_bar(self, bar: Bar) -> Signal | None:
        ...

    @property
    def warmup(self) -> int:
        """产生第一个信号前需要的 bar 数。"""
        return 0


def as_window(value, name: str, minimum: int = 1) -> int:
    """把窗口参数规范为整数；非整数或过小都视为配置错误。"""
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    try:
        as_float = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc
    if not as_float.is_integer():
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    window = int(as_float)
    if window < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {window}")
    return window
