"""搜索空间：把 ParameterSpec 展开为取值、笛卡尔积，以及随机采样/变异。"""

from __future__ import annotations

import itertools
import math
from typing import Any, Dict, List, Sequence

import numpy as np

from meridian.common.config.schema import ParameterSpec
from meridian.common.errors import ConfigError


def _normalize(spec: ParameterSpec, value: float) -> Any:
    if spec.integer:
        return int(round(value))
    return round(float(value), 10)


def axis_values(spec: ParameterSpec) -> List[Any]:
    """离散 values 原样返回；区间按 step 从 min 走到 max（含端点，容忍浮点误差）。"""
    if spec.values is not None:
        return list(spec.values)
    if spec.step is None:
        raise ConfigError(f"parameter '{spec.name}': grid search requires step or values")
    n = int(math.floor((spec.max - spec.min) / spec.step + 1e-9)) + 1
    out: list[Any] = []
    for i in range(n):
        v = _normalize(spec, spec.min + i * spec.step)
        if v not in out:
            out.append(v)
    return out


def product_dict(param_grid: Dict[str, List[Any]]) -> List[Dict[str, Any]]:
    keys = list(param_grid.keys())
    values = [param_grid[k] for k in keys]
    return [dict(zip(keys, vals)) for vals in itertools.product(*values)]


def grid_combinations(specs: Sequence[ParameterSpec]) -> List[Dict[str, Any]]:
    if not specs:
        return [{}]
    return product_dict({s.name: axis_values(s) for s in specs})


def axis_range(spec: ParameterSpec) -> float:
    if spec.values is not None:
        return 0.0
    return float(spec.max - spec.min)


def random_value(spec: ParameterSpec, rng: np.random.Generator) -> Any:
    if spec.values is not None:
        return spec.values[int(rng.integers(len(spec.values)))]
    return _normalize(spec, rng.uniform(spec.min, spec.max))


def mutate_value(spec: ParameterSpec, value: Any, rng: np.random.Generator) -> Any:
    """离散轴随机换一个取值；数值轴加高斯扰动（截断在轴宽 ±10% 内）并夹回边界。"""
    if spec.values is not None:
        return random_value(spec, rng)
    span = axis_range(spec)
    delta = float(np.clip(rng.normal(0.0, 0.05 * span), -0.1 * span, 0.1 * span))
    clamped = min(spec.max, max(spec.min, float(value) + delta))
    return _normalize(spec, clamped)


def linspace_values(spec: ParameterSpec, num_steps: int) -> List[Any]:
    """敏感性分析用：min..max 均匀取 num_steps 个点；离散轴直接用 values。"""
    if spec.values is not None:
        return list(spec.values)
    out: list[Any] = []
    for v in np.linspace(spec.min, spec.max, num_steps):
        nv = _normalize(spec, float(v))
        if nv not in out:
            out.append(nv)
    return out


def params_key(params: Dict[str, Any]) -> tuple:
    return tuple(sorted(params.items()))
