"""显式的配置 overlay。

搜索引擎不能把任意 dict “摊”到基准配置上：可覆盖字段在这里逐一列出，
策略参数通过 `strategy.<name>`（或不与 RunConfig 冲突的裸名）指定，
并对照策略构造函数签名校验。未知名字一律 ConfigError。
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from meridian.common.config.schema import EnhancedRunConfig, ParameterSpec, RunConfig
from meridian.common.config.validation import unknown_key_message
from meridian.common.errors import ConfigError
from meridian.strategies.registry import StrategyRegistry

STRATEGY_PREFIX = "strategy."


class RunConfigOverrides(BaseModel):
    """RunConfig 的部分更新；只有显式设置过的字段才会生效。"""
    initial_capital: Optional[float] = None
    position_size_percent: Optional[float] = None
    max_drawdown_percent: Optional[float] = None
    commission_percent: Optional[float] = None
    slippage_percent: Optional[float] = None
    leverage: Optional[float] = None
    stop_loss_percent: Optional[float] = None
    take_profit_percent: Optional[float] = None
    allow_short: Optional[bool] = None
    strategy_params: Dict[str, Any] = Field(default_factory=dict)
    model_config = ConfigDict(extra="forbid", frozen=True)

    def apply(self, base: RunConfig) -> RunConfig:
        """生成新的配置实例（重新走完整校验，非法组合抛 ValidationError）。"""
        changes = self.model_dump(exclude_unset=True, exclude={"strategy_params"})
        data = base.model_dump()
        data.update(changes)
        if self.strategy_params:
            data["strategy"] = {
                "type": base.strategy.type,
                "params": {**base.strategy.params, **self.strategy_params},
            }
        return type(base).model_validate(data)


class EnhancedRunConfigOverrides(RunConfigOverrides):
    trailing_stop_percent: Optional[float] = None
    trend_ma_period: Optional[int] = None


def overrides_model(base: RunConfig) -> type[RunConfigOverrides]:
    return EnhancedRunConfigOverrides if isinstance(base, EnhancedRunConfig) else RunConfigOverrides


def overridable_fields(base: RunConfig) -> set[str]:
    return set(overrides_model(base).model_fields) - {"strategy_params"}


def resolve_parameter(name: str, base: RunConfig, registry: StrategyRegistry) -> tuple[str, str]:
    """把搜索维度名解析为 ("run", 字段名) 或 ("strategy", 参数名)。"""
    run_fields = overridable_fields(base)
    strategy_params = registry.parameter_names(base.strategy.type)
    if name.startswith(STRATEGY_PREFIX):
        key = name[len(STRATEGY_PREFIX):]
        if key in strategy_params:
            return "strategy", key
        raise ConfigError(unknown_key_message(key, strategy_params, ctx=f"strategy '{base.strategy.type}'"))
    if name in run_fields:
        return "run", name
    if name in strategy_params:
        return "strategy", name
    allowed = run_fields | strategy_params | {STRATEGY_PREFIX + p for p in strategy_params}
    raise ConfigError(unknown_key_message(name, allowed, ctx="search space"))


def check_parameter_names(specs: Iterable[ParameterSpec], base: RunConfig, registry: StrategyRegistry) -> None:
    seen: set[tuple[str, str]] = set()
    for spec in specs:
        target = resolve_parameter(spec.name, base, registry)
        if target in seen:
            raise ConfigError(f"search space: parameter '{spec.name}' is specified twice")
        seen.add(target)


def build_overrides(params: Mapping[str, Any], base: RunConfig, registry: StrategyRegistry) -> RunConfigOverrides:
    run_changes: dict[str, Any] = {}
    strategy_changes: dict[str, Any] = {}
    for name, value in params.items():
        kind, key = resolve_parameter(name, base, registry)
        if kind == "run":
            run_changes[key] = value
        else:
            strategy_changes[key] = value
    return overrides_model(base)(**run_changes, strategy_params=strategy_changes)


def derive_config(base: RunConfig, params: Mapping[str, Any], registry: StrategyRegistry) -> RunConfig:
    """base + 参数赋值 -> 新 RunConfig。"""
    return build_overrides(params, base, registry).apply(base)
