from meridian.strategies.base import Strategy
from meridian.strategies.registry import StrategyRegistry, default_registry

__all__ = ["Strategy", "StrategyRegistry", "default_registry"]
