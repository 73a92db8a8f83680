"""K 线数据质量检查与修复工具。

检查项：
- 时间戳非单调（重复或倒序）；
- 非正价格 / 负成交量 / OHLC 不自洽；
- 相邻 bar 间隔超过期望周期 × (1 + tolerance) 的缺口。

被标记的序列仍然返回，只附带报告，是否继续由调用方决定；
单根坏 bar 记入 invalid_indices，回测引擎会跳过这些位置。
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from statistics import mean, median, pstdev
from typing import Sequence

import pandas as pd

from meridian.common.errors import ConfigError
from meridian.common.models import Bar

FLAG_NON_MONOTONIC = "non_monotonic_timestamps"
FLAG_NON_POSITIVE_PRICE = "non_positive_price"
FLAG_NEGATIVE_VOLUME = "negative_volume"
FLAG_INCONSISTENT_OHLC = "inconsistent_ohlc"
FLAG_GAPS = "gaps"

_TIMEFRAME_RE = re.compile(r"^(\d+)([smhdw])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 7 * 86400}


def parse_timeframe(timeframe: str) -> timedelta:
    """'15m' / '1h' / '4h' / '1d' / '1w' -> timedelta。"""
    m = _TIMEFRAME_RE.match(str(timeframe).strip().lower())
    if not m:
        raise ConfigError(f"unsupported timeframe: {timeframe!r}")
    n = int(m.group(1))
    if n <= 0:
        raise ConfigError(f"unsupported timeframe: {timeframe!r}")
    return timedelta(seconds=n * _UNIT_SECONDS[m.group(2)])


@dataclass(frozen=True)
class Gap:
    after: datetime
    before: datetime
    missing_bars: int


@dataclass(frozen=True)
class QualityReport:
    flags: tuple[str, ...] = ()
    invalid_indices: tuple[int, ...] = ()
    gaps: tuple[Gap, ...] = ()
    bar_count: int = 0

    @property
    def flagged(self) -> bool:
        return bool(self.flags)

    @property
    def valid_count(self) -> int:
        return self.bar_count - len(self.invalid_indices)


def infer_interval(bars: Sequence[Bar]) -> timedelta | None:
    """相邻时间戳正间隔的中位数；不足两根时返回 None。"""
    deltas = []
    for prev, curr in zip(bars, bars[1:]):
        dt = (curr.timestamp - prev.timestamp).total_seconds()
        if dt > 0:
            deltas.append(dt)
    if not deltas:
        return None
    return timedelta(seconds=median(deltas))


def check_quality(
    bars: Sequence[Bar],
    expected_interval: timedelta | None = None,
    gap_tolerance: float = 0.1,
) -> QualityReport:
    """
    对 bar 序列做一次 O(n) 质量扫描。

    Parameters
    ----------
    bars:
        原始顺序的 bar（不会被排序）。
    expected_interval:
        期望周期；缺省时用中位间隔估计。
    gap_tolerance:
        允许的间隔超出比例，默认 10%。

    Returns
    -------
    QualityReport
        标记、无效下标与缺口列表。
    """
    flags: set[str] = set()
    invalid: list[int] = []
    gaps: list[Gap] = []
    interval = expected_interval or infer_interval(bars)
    limit = interval.total_seconds() * (1.0 + gap_tolerance) if interval else None

    last_ts: datetime | None = None
    for idx, bar in enumerate(bars):
        bad = False
        prices = (bar.open, bar.high, bar.low, bar.close)
        if not all(math.isfinite(p) and p > 0 for p in prices):
            flags.add(FLAG_NON_POSITIVE_PRICE)
            bad = True
        if not math.isfinite(bar.volume) or bar.volume < 0:
            flags.add(FLAG_NEGATIVE_VOLUME)
            bad = True
        if not bad and not bar.is_valid():
            flags.add(FLAG_INCONSISTENT_OHLC)
            bad = True
        if last_ts is not None and bar.timestamp <= last_ts:
            flags.add(FLAG_NON_MONOTONIC)
            bad = True
        if bad:
            invalid.append(idx)
            continue
        if last_ts is not None and limit is not None and interval is not None:
            delta = (bar.timestamp - last_ts).total_seconds()
            if delta > limit:
                missing = max(1, int(round(delta / interval.total_seconds())) - 1)
                gaps.append(Gap(after=last_ts, before=bar.timestamp, missing_bars=missing))
                flags.add(FLAG_GAPS)
        last_ts = bar.timestamp

    return QualityReport(
        flags=tuple(sorted(flags)),
        invalid_indices=tuple(invalid),
        gaps=tuple(gaps),
        bar_count=len(bars),
    )


def fill_missing_bars(bars: Sequence[Bar], interval: timedelta) -> list[Bar]:
    """按固定周期补齐缺失 bar：OHLC 取上一根收盘价，成交量为 0。"""
    if not bars:
        return []
    step = interval.total_seconds()
    out: list[Bar] = [bars[0]]
    for bar in bars[1:]:
        prev = out[-1]
        missing = int(round((bar.timestamp - prev.timestamp).total_seconds() / step)) - 1
        for k in range(1, missing + 1):
            ts = prev.timestamp + k * interval
            if ts >= bar.timestamp:
                break
            out.append(Bar(ts, prev.close, prev.close, prev.close, prev.close, 0.0))
        out.append(bar)
    return out


def detect_outliers(bars: Sequence[Bar], threshold: float = 3.0, min_bars: int = 20) -> list[int]:
    """收益率 z-score 超过阈值的 bar 下标；样本不足 min_bars 时返回空列表。"""
    if len(bars) < min_bars:
        return []
    returns = [
        (curr.close - prev.close) / prev.close
        for prev, curr in zip(bars, bars[1:])
        if prev.close > 0
    ]
    if len(returns) < 2:
        return []
    mu = mean(returns)
    sigma = pstdev(returns)
    if sigma == 0:
        return []
    return [i + 1 for i, r in enumerate(returns) if abs(r - mu) / sigma > threshold]


def bars_to_frame(bars: Sequence[Bar]) -> pd.DataFrame:
    df = pd.DataFrame(
        {
            "timestamp": [b.timestamp for b in bars],
            "open": [b.open for b in bars],
            "high": [b.high for b in bars],
            "low": [b.low for b in bars],
            "close": [b.close for b in bars],
            "volume": [b.volume for b in bars],
        }
    )
    return df


_TS_COLUMNS = ("timestamp", "start_ts", "time", "date", "datetime")


def bars_from_frame(df: pd.DataFrame) -> list[Bar]:
    """DataFrame -> Bar 列表。时间列可为 timestamp/start_ts/time/date 或 DatetimeIndex。"""
    frame = df.copy()
    frame.columns = [str(c).lower() for c in frame.columns]
    ts_col = next((c for c in _TS_COLUMNS if c in frame.columns), None)
    if ts_col is not None:
        stamps = pd.to_datetime(frame[ts_col], utc=True)
    elif isinstance(frame.index, pd.DatetimeIndex):
        stamps = pd.Series(frame.index, index=frame.index)
        stamps = stamps.dt.tz_localize("UTC") if stamps.dt.tz is None else stamps.dt.tz_convert("UTC")
    else:
        raise ValueError(f"bar frame needs one of {_TS_COLUMNS} or a DatetimeIndex")
    missing = [c for c in ("open", "high", "low", "close") if c not in frame.columns]
    if missing:
        raise ValueError(f"bar frame is missing columns: {missing}")
    volume = frame["volume"] if "volume" in frame.columns else pd.Series(0.0, index=frame.index)
    return [
        Bar(
            timestamp=ts.to_pydatetime(),
            open=float(o),
            high=float(h),
            low=float(lo),
            close=float(c),
            volume=float(v),
        )
        for ts, o, h, lo, c, v in zip(stamps, frame["open"], frame["high"], frame["low"], frame["close"], volume)
    ]


def aggregate_bars(bars: Sequence[Bar], timeframe: str | timedelta) -> list[Bar]:
    """把低周期 bar 重采样为高周期（左闭左标签）。用于多周期过滤。"""
    if not bars:
        return []
    rule = parse_timeframe(timeframe) if isinstance(timeframe, str) else timeframe
    df = bars_to_frame(bars).set_index("timestamp")
    df.index = pd.DatetimeIndex(df.index)
    agg = (
        df.resample(pd.Timedelta(rule), label="left", closed="left")
        .agg({"open": "first", "high": "max", "low": "min", "close": "last", "volume": "sum"})
        .dropna(subset=["open", "close"])
    )
    return [
        Bar(ts.to_pydatetime(), float(r.open), float(r.high), float(r.low), float(r.close), float(r.volume))
        for ts, r in zip(agg.index, agg.itertuples(index=False))
    ]
