"""Walk-Forward 验证。

按时间分段训练（网格搜索找最优参数）+ 测试（用该参数回测下一段），
用于评估参数的样本外泛化能力。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from meridian.common.config.schema import OptimizationConfig, ParallelConfig, RunConfig, WalkForwardConfig
from meridian.common.errors import ConfigError
from meridian.common.models import Bar
from meridian.common.utils.json_sanitize import sanitize_for_json
from meridian.common.utils.logging import setup_logger
from meridian.core.backtest_engine import SimulationEngine
from meridian.core.parallel import CancellationToken
from meridian.optimization.grid_search import grid_search
from meridian.optimization.overrides import derive_config

logger = setup_logger("meridian.walkforward")

Window = Tuple[datetime, datetime]


def split_segments(
    start: datetime,
    end: datetime,
    n_segments: int = 3,
    train_ratio: float = 0.7,
) -> List[Tuple[Window, Window]]:
    """将整体区间切成 n 段 train/test 子区间。"""
    segments = []
    for i in range(n_segments):
        seg_start = start + i * (end - start) / n_segments
        seg_end = start + (i + 1) * (end - start) / n_segments
        train_end = seg_start + (seg_end - seg_start) * train_ratio
        segments.append(((seg_start, train_end), (train_end, seg_end)))
    return segments


def _window(bars: Sequence[Bar], start: datetime, end: datetime, last: bool) -> list[Bar]:
    # 左闭右开，最后一段包含终点，保证相邻窗口不重叠
    return [b for b in bars if b.timestamp >= start and (b.timestamp < end or (last and b.timestamp == end))]


@dataclass(frozen=True)
class WalkForwardSegment:
    index: int
    train: Window
    test: Window
    params: Optional[Mapping[str, Any]]
    in_sample_return_percent: Optional[float]
    out_of_sample_return_percent: Optional[float]
    test_metrics: Mapping[str, Any]


@dataclass(frozen=True)
class WalkForwardResult:
    segments: tuple[WalkForwardSegment, ...]
    average_in_sample_return_percent: float
    average_out_of_sample_return_percent: float
    efficiency: float
    profitable_segments_ratio: float
    accepted: bool
    reasons: tuple[str, ...]
    cancelled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return sanitize_for_json(self)


def walk_forward(
    base_config: RunConfig,
    bars: Sequence[Bar],
    settings: OptimizationConfig,
    wf: WalkForwardConfig | None = None,
    engine: SimulationEngine | None = None,
    parallel: ParallelConfig | None = None,
    cancel: CancellationToken | None = None,
) -> WalkForwardResult:
    """
    执行 Walk-Forward 验证。

    Parameters
    ----------
    settings:
        每个训练段使用的网格搜索设置。
    wf:
        分段数、训练占比与验收门槛。

    Returns
    -------
    WalkForwardResult
        每段参数/样本内外收益，以及效率（样本外均值 / 样本内均值）与 accept/reject 决策。
    """
    wf = wf or WalkForwardConfig()
    engine = engine or SimulationEngine()
    ordered = [b for b in bars if b.is_valid()]
    if len(ordered) < 2:
        raise ConfigError("walk-forward needs at least two valid bars")
    start, end = ordered[0].timestamp, ordered[-1].timestamp
    segments: list[WalkForwardSegment] = []
    cancelled = False
    plan = split_segments(start, end, wf.n_segments, wf.train_ratio)

    for idx, ((train_start, train_end), (test_start, test_end)) in enumerate(plan, 1):
        if cancel is not None and cancel.cancelled:
            cancelled = True
            break
        train_bars = _window(ordered, train_start, train_end, last=False)
        test_bars = _window(ordered, test_start, test_end, last=idx == len(plan))
        search = grid_search(base_config, train_bars, settings, engine=engine, parallel=parallel, cancel=cancel)
        if search.cancelled:
            cancelled = True
        if search.best is None:
            logger.warning("segment %d: no candidate passed the constraints", idx)
            segments.append(
                WalkForwardSegment(idx, (train_start, train_end), (test_start, test_end), None, None, None, {})
            )
            continue
        test_cfg = derive_config(base_config, search.best.params, engine.registry)
        test_result = engine.run(test_cfg, test_bars)
        segments.append(
            WalkForwardSegment(
                index=idx,
                train=(train_start, train_end),
                test=(test_start, test_end),
                params=dict(search.best.params),
                in_sample_return_percent=search.best.metrics["total_return_percent"],
                out_of_sample_return_percent=test_result.total_return_percent,
                test_metrics=test_result.metrics(),
            )
        )
        logger.info(
            "segment %d: params=%s IS=%.2f%% OOS=%.2f%%",
            idx,
            dict(search.best.params),
            search.best.metrics["total_return_percent"],
            test_result.total_return_percent,
        )
    return summarize(segments, wf, cancelled)


def summarize(segments: Sequence[WalkForwardSegment], wf: WalkForwardConfig, cancelled: bool = False) -> WalkForwardResult:
    scored = [s for s in segments if s.params is not None]
    reasons: list[str] = []
    if not scored:
        return WalkForwardResult(tuple(segments), 0.0, 0.0, 0.0, 0.0, False, ("no_valid_segments",), cancelled)
    n = len(scored)
    avg_is = sum(s.in_sample_return_percent for s in scored) / n
    avg_oos = sum(s.out_of_sample_return_percent for s in scored) / n
    efficiency = avg_oos / avg_is if avg_is > 0 else 0.0
    profitable = sum(1 for s in scored if s.out_of_sample_return_percent > 0) / n

    if len(scored) < len(segments):
        reasons.append("segments_without_valid_params")
    if efficiency < wf.min_efficiency:
        reasons.append("low_efficiency")
    if profitable < 0.5:
        reasons.append("few_profitable_segments")
    thin = [s.index for s in scored if int(s.test_metrics.get("total_trades", 0)) < wf.min_test_trades]
    if thin:
        reasons.append("min_test_trades")
    if cancelled:
        reasons.append("cancelled")
    return WalkForwardResult(
        segments=tuple(segments),
        average_in_sample_return_percent=avg_is,
        average_out_of_sample_return_percent=avg_oos,
        efficiency=efficiency,
        profitable_segments_ratio=profitable,
        accepted=not reasons,
        reasons=tuple(reasons),
        cancelled=cancelled,
    )
