"""价格序列存储：按 (symbol, timeframe) 缓存 bar，有界 LRU。

- 读写都在同一把 RLock 下完成（OrderedDict 的 move_to_end 本身就是写操作）；
- 缓存未命中时可选地调用 loader 读取（loader 在锁外执行，避免阻塞其它读者）；
- 空区间返回 status=INSUFFICIENT_DATA 的空序列，而不是抛异常。
"""

from __future__ import annotations

import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional, Sequence

import pandas as pd

from meridian.common.models import Bar
from meridian.common.utils.logging import setup_logger
from meridian.data.quality import QualityReport, bars_to_frame, check_quality, parse_timeframe

logger = setup_logger("meridian.data")

BarLoader = Callable[[str, str], Optional[Sequence[Bar]]]


class SeriesStatus(str, Enum):
    OK = "ok"
    FLAGGED = "flagged"
    INSUFFICIENT_DATA = "insufficient_data"


@dataclass(frozen=True)
class BarSeries:
    """带质量报告的只读 bar 序列。"""
    symbol: str
    timeframe: str
    bars: tuple[Bar, ...]
    quality: QualityReport = field(default_factory=QualityReport)

    @property
    def status(self) -> SeriesStatus:
        if self.quality.valid_count <= 0:
            return SeriesStatus.INSUFFICIENT_DATA
        return SeriesStatus.FLAGGED if self.quality.flagged else SeriesStatus.OK

    @property
    def is_empty(self) -> bool:
        return not self.bars

    def __len__(self) -> int:
        return len(self.bars)

    def valid_bars(self) -> list[Bar]:
        """去掉质量扫描判定为无效的 bar（保持原始顺序）。"""
        if not self.quality.invalid_indices:
            return list(self.bars)
        invalid = set(self.quality.invalid_indices)
        return [b for i, b in enumerate(self.bars) if i not in invalid]

    def to_frame(self) -> pd.DataFrame:
        return bars_to_frame(self.bars)


def make_series(
    symbol: str,
    timeframe: str,
    bars: Sequence[Bar],
    gap_tolerance: float = 0.1,
) -> BarSeries:
    """构造 BarSeries 并附带质量报告。"""
    try:
        interval = parse_timeframe(timeframe)
    except ValueError:
        interval = None
    report = check_quality(bars, expected_interval=interval, gap_tolerance=gap_tolerance)
    return BarSeries(symbol=symbol, timeframe=timeframe, bars=tuple(bars), quality=report)


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    evictions: int
    entries: int
    max_entries: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


def _align(bound: datetime | None, reference: datetime) -> datetime | None:
    """naive 边界按 UTC 解释，使之可以与带时区的时间戳比较（反之亦然）。"""
    if bound is None:
        return None
    if reference.tzinfo is not None and bound.tzinfo is None:
        return bound.replace(tzinfo=timezone.utc)
    if reference.tzinfo is None and bound.tzinfo is not None:
        return bound.astimezone(timezone.utc).replace(tzinfo=None)
    return bound


def slice_bars(bars: Sequence[Bar], start: datetime | None, end: datetime | None) -> list[Bar]:
    """按 [start, end] 闭区间过滤，保持原顺序。"""
    if not bars or (start is None and end is None):
        return list(bars)
    ref = bars[0].timestamp
    lo = _align(start, ref)
    hi = _align(end, ref)
    return [b for b in bars if (lo is None or b.timestamp >= lo) and (hi is None or b.timestamp <= hi)]


class PriceSeriesStore:
    """
    有界 LRU 价格缓存。

    Parameters
    ----------
    max_entries:
        最多缓存的 (symbol, timeframe) 序列数。
    gap_tolerance:
        质量检查中的缺口容忍比例。
    loader:
        可选的读穿回调 `(symbol, timeframe) -> bars | None`。
    """

    def __init__(self, max_entries: int = 32, gap_tolerance: float = 0.1, loader: BarLoader | None = None) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = int(max_entries)
        self.gap_tolerance = float(gap_tolerance)
        self.loader = loader
        self._cache: "OrderedDict[tuple[str, str], BarSeries]" = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def put(self, symbol: str, timeframe: str, bars: Sequence[Bar]) -> BarSeries:
        series = make_series(symbol, timeframe, bars, self.gap_tolerance)
        if series.quality.flagged:
            logger.warning("%s %s flagged: %s", symbol, timeframe, ", ".join(series.quality.flags))
        with self._lock:
            self._insert((symbol, timeframe), series)
        return series

    def _insert(self, key: tuple[str, str], series: BarSeries) -> None:
        self._cache[key] = series
        self._cache.move_to_end(key)
        while len(self._cache) > self.max_entries:
            self._cache.popitem(last=False)
            self._evictions += 1

    def _lookup(self, key: tuple[str, str]) -> BarSeries | None:
        with self._lock:
            series = self._cache.get(key)
            if series is None:
                self._misses += 1
                return None
            self._cache.move_to_end(key)
            self._hits += 1
            return series

    def get(
        self,
        symbol: str,
        timeframe: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> BarSeries:
        """读取区间内的 bar；无数据时返回空的 INSUFFICIENT_DATA 序列。"""
        key = (symbol, timeframe)
        series = self._lookup(key)
        if series is None and self.loader is not None:
            loaded = self.loader(symbol, timeframe)
            if loaded:
                fresh = make_series(symbol, timeframe, loaded, self.gap_tolerance)
                with self._lock:
                    # 并发加载时保留先到者
                    series = self._cache.get(key)
                    if series is None:
                        self._insert(key, fresh)
                        series = fresh
        if series is None:
            return make_series(symbol, timeframe, [], self.gap_tolerance)
        if start is None and end is None:
            return series
        return make_series(symbol, timeframe, slice_bars(series.bars, start, end), self.gap_tolerance)

    def invalidate(self, symbol: str, timeframe: str) -> bool:
        with self._lock:
            return self._cache.pop((symbol, timeframe), None) is not None

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def keys(self) -> list[tuple[str, str]]:
        """按最近最少使用 -> 最近使用排序。"""
        with self._lock:
            return list(self._cache.keys())

    def __contains__(self, key: tuple[str, str]) -> bool:
        with self._lock:
            return key in self._cache

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                entries=len(self._cache),
                max_entries=self.max_entries,
            )
