"""配置语义校验。

pydantic 负责类型与未知字段（extra="forbid"）；这里集中放跨字段的业务约束，
让 schema 的 validator 与引擎入口共用同一份规则：
- 资金必须为正，仓位比例在 (0, 100]，杠杆 >= 1；
- 组合权重之和必须为 100 ± 0.01；
- 未知参数名给出 difflib 拼写建议。
"""

from __future__ import annotations

import difflib
import math
from typing import Any, Iterable, Sequence

from meridian.common.errors import ConfigError

ALLOCATION_TOLERANCE = 0.01


def suggest_key(key: str, allowed: Iterable[str]) -> str | None:
    matches = difflib.get_close_matches(key, list(allowed), n=1, cutoff=0.75)
    return matches[0] if matches else None


def unknown_key_message(key: str, allowed: Iterable[str], *, ctx: str) -> str:
    suggestion = suggest_key(key, allowed)
    if suggestion:
        return f"{ctx}: unknown parameter '{key}' (did you mean '{suggestion}'?)"
    return f"{ctx}: unknown parameter '{key}'"


def _finite(val: Any) -> bool:
    return isinstance(val, (int, float)) and not isinstance(val, bool) and math.isfinite(val)


def run_config_problems(cfg: Any) -> list[str]:
    """返回 RunConfig 的全部违规项（空列表表示合法）。

    接受任何带同名属性的对象，便于对 `model_construct` 绕过校验构造的实例再检查一次。
    """
    problems: list[str] = []
    capital = getattr(cfg, "initial_capital", None)
    if not _finite(capital) or capital <= 0:
        problems.append(f"initial_capital must be > 0, got {capital!r}")
    size = getattr(cfg, "position_size_percent", None)
    if not _finite(size) or not (0 < size <= 100):
        problems.append(f"position_size_percent must be in (0, 100], got {size!r}")
    dd = getattr(cfg, "max_drawdown_percent", None)
    if not _finite(dd) or not (0 < dd <= 100):
        problems.append(f"max_drawdown_percent must be in (0, 100], got {dd!r}")
    lev = getattr(cfg, "leverage", None)
    if not _finite(lev) or lev < 1:
        problems.append(f"leverage must be >= 1, got {lev!r}")
    for name in ("commission_percent", "slippage_percent"):
        val = getattr(cfg, name, None)
        if not _finite(val) or val < 0:
            problems.append(f"{name} must be >= 0, got {val!r}")
    for name in ("stop_loss_percent", "take_profit_percent"):
        val = getattr(cfg, name, None)
        if val is not None and (not _finite(val) or val <= 0):
            problems.append(f"{name} must be > 0 when set, got {val!r}")
    ppy = getattr(cfg, "periods_per_year", None)
    if ppy is not None and (not _finite(ppy) or ppy <= 0):
        problems.append(f"periods_per_year must be > 0 when set, got {ppy!r}")
    start = getattr(cfg, "start", None)
    end = getattr(cfg, "end", None)
    if start is not None and end is not None and end <= start:
        problems.append("end must be after start")
    return problems


def check_run_config(cfg: Any) -> None:
    """引擎入口使用：任何违规都同步抛出 ConfigError，不做静默修正。"""
    problems = run_config_problems(cfg)
    if problems:
        raise ConfigError("invalid run config: " + "; ".join(problems))


def check_allocations(allocations: Sequence[float], *, ctx: str = "portfolio") -> None:
    """目标权重（百分比）之和必须为 100 ± 0.01。"""
    if not allocations:
        raise ConfigError(f"{ctx}: at least one asset is required")
    for alloc in allocations:
        if not _finite(alloc) or alloc <= 0:
            raise ConfigError(f"{ctx}: allocation must be a positive number, got {alloc!r}")
    total = float(sum(allocations))
    if abs(total - 100.0) > ALLOCATION_TOLERANCE + 1e-9:
        raise ConfigError(f"{ctx}: allocations must sum to 100%, got {total:.4f}%")
