"""收益率对齐、相关矩阵与组合波动率。"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Mapping, Sequence

import numpy as np
import pandas as pd

from meridian.common.models import Bar, EquityPoint

_REL_EPS = 1e-6


def utc_index(timestamps: Iterable[datetime]) -> pd.DatetimeIndex:
    """时间戳统一为 UTC；naive 时间按 UTC 解释，与 PriceSeriesStore 的区间裁剪一致。"""
    return pd.DatetimeIndex(pd.to_datetime(list(timestamps), utc=True))


@dataclass(frozen=True)
class CorrelationMatrix:
    """对称、对角线为 1 的相关矩阵，按 symbol 索引。"""
    symbols: tuple[str, ...]
    values: tuple[tuple[float, ...], ...]

    def get(self, a: str, b: str) -> float:
        return self.values[self.symbols.index(a)][self.symbols.index(b)]

    def as_array(self) -> np.ndarray:
        n = len(self.symbols)
        return np.asarray(self.values, dtype=float).reshape(n, n)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.as_array(), index=list(self.symbols), columns=list(self.symbols))


def equity_frame(curves: Mapping[str, Sequence[EquityPoint]], initial: Mapping[str, float]) -> pd.DataFrame:
    """
    把各资产权益曲线按时间外连接对齐。

    缺失值向前填充；某资产开始前（或完全没有数据）视为持有初始资金不变。
    """
    series = {
        symbol: pd.Series(
            [p.equity for p in curve],
            index=utc_index(p.timestamp for p in curve),
            dtype=float,
        )
        for symbol, curve in curves.items()
        if curve
    }
    df = pd.concat(series, axis=1).sort_index().ffill() if series else pd.DataFrame(index=pd.DatetimeIndex([]))
    for symbol in curves:
        if symbol in df.columns:
            df[symbol] = df[symbol].fillna(float(initial[symbol]))
        else:
            df[symbol] = float(initial[symbol])
    return df[list(curves)]


def close_frame(bars: Mapping[str, Sequence[Bar]]) -> pd.DataFrame:
    series = {
        symbol: pd.Series([b.close for b in items], index=utc_index(b.timestamp for b in items), dtype=float)
        for symbol, items in bars.items()
        if items
    }
    df = pd.concat(series, axis=1).sort_index().ffill().bfill() if series else pd.DataFrame(index=pd.DatetimeIndex([]))
    for symbol in bars:
        if symbol not in df.columns:
            df[symbol] = 1.0
    return df[list(bars)]


def returns_frame(levels: pd.DataFrame) -> pd.DataFrame:
    """逐期简单收益率（首行丢弃，非正水平视为 0 收益）。"""
    if len(levels) < 2:
        return pd.DataFrame(columns=levels.columns, dtype=float)
    prev = levels.shift(1).iloc[1:]
    curr = levels.iloc[1:]
    rets = (curr / prev - 1.0).where(prev > 0, 0.0)
    return rets.replace([np.inf, -np.inf], 0.0).fillna(0.0)


def pearson(x: np.ndarray, y: np.ndarray) -> float:
    """皮尔逊相关；任一侧零方差时返回 0，结果截断到 [-1, 1]。"""
    if len(x) < 2:
        return 0.0
    dx = x - x.mean()
    dy = y - y.mean()
    denom = math.sqrt(float(np.dot(dx, dx)) * float(np.dot(dy, dy)))
    if denom == 0.0:
        return 0.0
    return float(min(1.0, max(-1.0, float(np.dot(dx, dy)) / denom)))


def correlation_matrix(returns: pd.DataFrame) -> CorrelationMatrix:
    symbols = tuple(str(c) for c in returns.columns)
    n = len(symbols)
    mat = np.eye(n)
    data = returns.to_numpy(dtype=float)
    for i in range(n):
        for j in range(i + 1, n):
            rho = pearson(data[:, i], data[:, j])
            mat[i, j] = mat[j, i] = rho
    return CorrelationMatrix(symbols, tuple(tuple(float(v) for v in row) for row in mat))


def annualized_volatility(returns: pd.DataFrame, periods_per_year: float) -> np.ndarray:
    """各列总体标准差 × √(年化周期数) × 100（%）。"""
    if returns.empty:
        return np.zeros(returns.shape[1])
    return returns.std(ddof=0).to_numpy(dtype=float) * math.sqrt(periods_per_year) * 100.0


def portfolio_volatility(weights: Sequence[float], vols: Sequence[float], corr: np.ndarray) -> float:
    """sqrt(ΣΣ wᵢ wⱼ σᵢ σⱼ ρᵢⱼ)；浮点抵消产生的微小残差视为 0。"""
    w = np.asarray(weights, dtype=float)
    if w.size == 0:
        return 0.0
    s = np.asarray(vols, dtype=float)
    ws = w * s
    var = float(ws @ np.asarray(corr, dtype=float) @ ws)
    scale = float(np.dot(w, s))
    if var <= 0 or math.sqrt(var) <= _REL_EPS * max(scale, 1e-12):
        return 0.0
    return math.sqrt(var)


def diversification_ratio(weights: Sequence[float], vols: Sequence[float], portfolio_vol: float) -> float:
    """加权平均波动率 / 组合波动率；组合波动率为 0 时返回 inf（无波动资产时返回 0）。"""
    weighted = float(np.dot(np.asarray(weights, dtype=float), np.asarray(vols, dtype=float)))
    if weighted <= 0:
        return 0.0
    if portfolio_vol <= 0:
        return math.inf
    return weighted / portfolio_vol
