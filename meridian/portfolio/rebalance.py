"""按日推进的再平衡模拟。

触发条件取先到者：
- 距上次再平衡（起点视为首次配置）超过日历周期；
- 任一资产实时权重偏离目标超过其漂移阈值。
触发时扣除 权益 × cost% × 资产数 的交易成本并把权重重置为目标，
已发生的业绩不做追溯调整。
"""

from __future__ import annotations

from datetime import timedelta
from typing import Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from meridian.common.models import EquityPoint
from meridian.portfolio.schemas import RebalanceEvent

FREQUENCY_INTERVALS: dict[str, Optional[timedelta]] = {
    "none": None,
    "daily": timedelta(days=1),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
    "quarterly": timedelta(days=90),
}


def _weights_dict(symbols: Sequence[str], w: np.ndarray) -> dict[str, float]:
    return {s: float(v) for s, v in zip(symbols, w)}


def simulate_rebalancing(
    returns: pd.DataFrame,
    start,
    total_capital: float,
    targets: Mapping[str, float],
    frequency: str = "monthly",
    drift_thresholds: Mapping[str, Optional[float]] | None = None,
    cost_percent: float = 0.1,
) -> tuple[list[EquityPoint], list[RebalanceEvent]]:
    """
    Parameters
    ----------
    returns:
        已对齐的各资产逐期收益率（列为 symbol，索引为时间）。
    start:
        组合起点时间（首个权益点）。
    targets:
        目标权重（百分比，和为 100）。
    drift_thresholds:
        各资产漂移阈值（百分点）；None 表示该资产不触发漂移再平衡。

    Returns
    -------
    (combined_equity_curve, events)
    """
    symbols = list(returns.columns)
    target = np.asarray([targets[s] / 100.0 for s in symbols], dtype=float)
    thresholds = drift_thresholds or {}
    drift = np.asarray(
        [thresholds[s] if thresholds.get(s) is not None else np.inf for s in symbols],
        dtype=float,
    )
    interval = FREQUENCY_INTERVALS[frequency]
    n_assets = len(symbols)

    values = total_capital * target
    last_rebalance = start
    curve = [EquityPoint(start, float(values.sum()))]
    events: list[RebalanceEvent] = []

    for ts, row in zip(returns.index, returns.to_numpy(dtype=float)):
        ts = ts.to_pydatetime() if hasattr(ts, "to_pydatetime") else ts
        values = values * (1.0 + row)
        equity = float(values.sum())
        weights = values / equity if equity > 0 else target.copy()

        reason = None
        if interval is not None and ts - last_rebalance >= interval:
            reason = "scheduled"
        elif np.any(np.abs(weights - target) * 100.0 > drift):
            reason = "drift"

        if reason is not None and equity > 0:
            cost = equity * cost_percent / 100.0 * n_assets
            equity -= cost
            values = equity * target
            events.append(
                RebalanceEvent(
                    timestamp=ts,
                    reason=reason,
                    old_weights=_weights_dict(symbols, weights),
                    new_weights=_weights_dict(symbols, target),
                    transaction_cost=cost,
                    equity_after=equity,
                )
            )
            last_rebalance = ts
        curve.append(EquityPoint(ts, equity))
    return curve, events
