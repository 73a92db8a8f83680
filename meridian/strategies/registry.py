"""策略注册表：字符串 -> Strategy 实现。

注册表是普通对象而非模块级全局：每个引擎持有自己的实例，
测试可以往独立的注册表里塞脚本化策略而互不影响。
"""

from __future__ import annotations

import inspect
from typing import Any, Mapping

from meridian.common.config.schema import StrategyConfig
from meridian.common.config.validation import unknown_key_message
from meridian.common.errors import ConfigError
from meridian.strategies.base import Strategy
from meridian.strategies.rules import (
    AlwaysLongStrategy,
    BreakoutStrategy,
    MeanReversionStrategy,
    MovingAverageCrossStrategy,
)


def _init_parameters(cls: type) -> dict[str, inspect.Parameter]:
    sig = inspect.signature(cls.__init__)
    return {
        name: p
        for name, p in sig.parameters.items()
        if name != "self" and p.kind not in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)
    }


class StrategyRegistry:
    def __init__(self, strategies: Mapping[str, type[Strategy]] | None = None) -> None:
        self._registry: dict[str, type[Strategy]] = dict(strategies or {})

    def register(self, name: str, cls: type[Strategy]) -> None:
        self._registry[name] = cls

    def names(self) -> list[str]:
        return sorted(self._registry)

    def get(self, name: str) -> type[Strategy]:
        if name not in self._registry:
            raise ConfigError(unknown_key_message(name, self._registry, ctx="strategy"))
        return self._registry[name]

    def parameter_names(self, name: str) -> set[str]:
        """策略构造函数接受的参数名（用于校验 overlay 参数）。"""
        return set(_init_parameters(self.get(name)))

    def build(self, cfg: StrategyConfig | Mapping[str, Any]) -> Strategy:
        """从配置构建策略实例。

        未知参数直接报错，不做静默过滤：
        搜索空间里的拼写错误必须在第一个候选之前暴露。
        """
        if isinstance(cfg, Mapping):
            cfg = StrategyConfig.model_validate(dict(cfg))
        cls = self.get(cfg.type)
        allowed = set(_init_parameters(cls))
        for key in cfg.params:
            if key not in allowed:
                raise ConfigError(unknown_key_message(key, allowed, ctx=f"strategy '{cfg.type}'"))
        try:
            return cls(**dict(cfg.params))
        except TypeError as exc:
            raise ConfigError(f"strategy '{cfg.type}': {exc}") from exc


def default_registry() -> StrategyRegistry:
    """返回包含内置策略的新注册表。"""
    return StrategyRegistry(
        {
            "always_long": AlwaysLongStrategy,
            "ma_cross": MovingAverageCrossStrategy,
            "breakout": BreakoutStrategy,
            "mean_reversion": MeanReversionStrategy,
        }
    )
