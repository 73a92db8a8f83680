"""进度回调。

优化器/组合引擎不直接写日志，而是把进度事件交给调用方提供的回调；
`LoggingProgressReporter` 是把事件落到 logger 的默认实现。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from meridian.common.utils.logging import setup_logger


@dataclass(frozen=True)
class ProgressEvent:
    """一次进度通知。

    stage:
        阶段名，例如 "grid"、"genetic"、"sensitivity"、"portfolio"。
    completed / total:
        已完成单元数 / 总单元数（GA 中为代数）。
    best:
        当前最优目标值（若有）。
    """

    stage: str
    completed: int
    total: int
    message: str = ""
    best: Optional[float] = None


ProgressCallback = Callable[[ProgressEvent], Any]


class LoggingProgressReporter:
    """把进度事件写入 logger，按 `every` 抽样避免刷屏。"""

    def __init__(self, logger: logging.Logger | None = None, every: int = 10) -> None:
        self.logger = logger or setup_logger("meridian.progress")
        self.every = max(1, int(every))

    def __call__(self, event: ProgressEvent) -> None:
        if event.completed != event.total and event.completed % self.every != 0:
            return
        best = f" best={event.best:.4f}" if event.best is not None else ""
        self.logger.info(
            "[%s] %d/%d%s %s",
            event.stage,
            event.completed,
            event.total,
            best,
            event.message,
        )


def emit(callback: ProgressCallback | None, event: ProgressEvent) -> None:
    if callback is not None:
        callback(event)
