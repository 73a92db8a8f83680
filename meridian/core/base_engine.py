"""回测引擎基类（模板模式）。

目标：
- 把“逐 bar 推进”的单遍循环固定在基类/主引擎里；
- 增强变体只覆盖入场过滤、出场判定、手续费模型等钩子，不改核心不变量。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence, Union

from meridian.common.config.schema import RunConfig
from meridian.common.models import Bar
from meridian.core.results import RunResult
from meridian.data.price_store import BarSeries

BarInput = Union[Sequence[Bar], BarSeries]


class BaseEngine(ABC):
    """引擎抽象基类：`run(config, bars)` 必须是确定性的纯函数。"""

    @abstractmethod
    def run(self, config: RunConfig, bars: BarInput) -> RunResult:
        raise NotImplementedError
