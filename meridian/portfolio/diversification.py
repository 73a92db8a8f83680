"""资产类别分布与集中度（Herfindahl）。"""

from __future__ import annotations

from typing import Sequence

from meridian.common.config.schema import AssetConfig
from meridian.portfolio.schemas import DiversificationReport, SectorAllocation


def herfindahl(weights_percent: Sequence[float]) -> float:
    """Σ wᵢ²（w 为小数权重）；1 表示完全集中。"""
    total = sum(weights_percent)
    if total <= 0:
        return 0.0
    return sum((w / total) ** 2 for w in weights_percent)


def analyze_diversification(assets: Sequence[AssetConfig]) -> DiversificationReport:
    by_class: dict[str, list[AssetConfig]] = {}
    for a in assets:
        by_class.setdefault(a.asset_class, []).append(a)
    sectors = tuple(
        SectorAllocation(
            asset_class=name,
            allocation_percent=sum(a.target_allocation_percent for a in members),
            symbols=tuple(a.symbol for a in members),
        )
        for name, members in sorted(by_class.items())
    )
    hhi = herfindahl([a.target_allocation_percent for a in assets])
    sector_hhi = herfindahl([s.allocation_percent for s in sectors])
    return DiversificationReport(
        sectors=sectors,
        herfindahl_index=hhi,
        effective_assets=1.0 / hhi if hhi > 0 else 0.0,
        sector_herfindahl_index=sector_hhi,
        effective_sectors=1.0 / sector_hhi if sector_hhi > 0 else 0.0,
    )
