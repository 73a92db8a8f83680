"""有界并行执行（fan-out / fan-in）。

- 单次回测是纯函数，候选/资产之间互不共享可变状态，可直接并行；
- 在途任务数受 max_in_flight 限制，避免一次性提交大量 bar 序列；
- 取消是协作式的：只在两次提交之间检查，不打断正在运行的回测；
- 结果按输入顺序返回，保证聚合（排名、相关矩阵）与串行执行一致。
"""

from __future__ import annotations

import os
import threading
from concurrent.futures import FIRST_COMPLETED, Executor, ProcessPoolExecutor, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Generic, Sequence, TypeVar

from meridian.common.config.schema import ParallelConfig

T = TypeVar("T")
R = TypeVar("R")


class CancellationToken:
    """调用方持有的取消信号（线程安全）。"""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class ParallelOutcome(Generic[R]):
    """按输入下标排序的 (index, result)；取消时只包含已完成的部分。"""
    results: list[tuple[int, R]]
    total: int
    cancelled: bool

    @property
    def completed(self) -> int:
        return len(self.results)


def resolve_workers(parallel: ParallelConfig | None, n_items: int) -> int:
    if parallel is None:
        return 1
    workers = parallel.max_workers
    if parallel.executor == "process":
        workers = min(workers, os.cpu_count() or 1)
    return max(1, min(workers, n_items))


def _make_executor(parallel: ParallelConfig, workers: int) -> Executor:
    if parallel.executor == "process":
        return ProcessPoolExecutor(max_workers=workers)
    return ThreadPoolExecutor(max_workers=workers, thread_name_prefix="meridian")


def run_parallel(
    fn: Callable[[T], R],
    items: Sequence[T],
    parallel: ParallelConfig | None = None,
    cancel: CancellationToken | None = None,
    on_result: Callable[[int, R], None] | None = None,
) -> ParallelOutcome[R]:
    """
    对 items 逐个调用 fn，受并发上限约束。

    Parameters
    ----------
    fn:
        纯函数；process 模式下必须可 pickle。
    parallel:
        并行配置；None 或 max_workers<=1 时在当前线程顺序执行。
    cancel:
        取消信号，在每次提交前检查。
    on_result:
        每完成一个单元在调用线程里回调一次（用于进度通知）。

    Notes
    -----
    fn 抛出的异常原样向上传播（属于程序错误，而非数据条件）。
    """
    n = len(items)
    workers = resolve_workers(parallel, n)
    done: dict[int, R] = {}

    if workers <= 1:
        for idx, item in enumerate(items):
            if cancel is not None and cancel.cancelled:
                break
            done[idx] = fn(item)
            if on_result is not None:
                on_result(idx, done[idx])
        return ParallelOutcome(sorted(done.items()), n, len(done) < n)

    window = parallel.max_in_flight or workers * 2
    next_idx = 0
    with _make_executor(parallel, workers) as pool:
        in_flight = {}
        while next_idx < n or in_flight:
            while next_idx < n and len(in_flight) < window:
                if cancel is not None and cancel.cancelled:
                    next_idx = n + 1
                    break
                in_flight[pool.submit(fn, items[next_idx])] = next_idx
                next_idx += 1
            if not in_flight:
                break
            finished, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
            for fut in finished:
                idx = in_flight.pop(fut)
                done[idx] = fut.result()
                if on_result is not None:
                    on_result(idx, done[idx])
    return ParallelOutcome(sorted(done.items()), n, len(done) < n)
