"""结果存储契约（save / get / list / delete）。

只负责留存与检索，不含业务逻辑；持久化技术由宿主应用决定。
这里提供两个实现：
- InMemoryResultStore：进程内字典，get 返回原始结果对象；
- JsonResultStore：每条结果一个 JSON 文件，get 返回还原后的 dict。
"""

from __future__ import annotations

import itertools
import json
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from meridian.common.utils.json_sanitize import restore_floats, sanitize_for_json
from meridian.core.results import RunResult
from meridian.optimization.schemas import OptimizationResult


@dataclass(frozen=True)
class StoredResult:
    id: str
    kind: str
    created_at: datetime
    symbol: Optional[str]
    tags: tuple[str, ...]
    notes: Optional[str]
    result: Any
    sequence: int = 0

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "created_at": self.created_at.isoformat(),
            "symbol": self.symbol,
            "tags": list(self.tags),
            "notes": self.notes,
        }


@dataclass(frozen=True)
class ResultFilter:
    kind: Optional[str] = None
    symbol: Optional[str] = None
    tag: Optional[str] = None
    limit: Optional[int] = None

    def matches(self, item: StoredResult) -> bool:
        if self.kind is not None and item.kind != self.kind:
            return False
        if self.symbol is not None and item.symbol != self.symbol:
            return False
        if self.tag is not None and self.tag not in item.tags:
            return False
        return True


def describe(result: Any) -> tuple[str, Optional[str]]:
    """识别结果类型与所属品种。"""
    if isinstance(result, RunResult):
        return "run", result.symbol
    if isinstance(result, OptimizationResult):
        symbol = result.best.result.symbol if result.best and result.best.result else None
        return "optimization", symbol
    name = type(result).__name__
    kind = {
        "PortfolioResult": "portfolio",
        "SensitivityResult": "sensitivity",
        "WalkForwardResult": "walkforward",
        "MonteCarloResult": "monte_carlo",
        "MeanVarianceResult": "mean_variance",
    }.get(name)
    if kind is None:
        raise TypeError(f"unsupported result type: {name}")
    return kind, None


def _newest_first(items: Iterable[StoredResult], flt: ResultFilter | None) -> list[StoredResult]:
    flt = flt or ResultFilter()
    out = sorted(
        (i for i in items if flt.matches(i)),
        key=lambda i: (i.created_at, i.sequence),
        reverse=True,
    )
    return out[: flt.limit] if flt.limit is not None else out


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResultStore(ABC):
    @abstractmethod
    def save(self, result: Any, tags: Iterable[str] = (), notes: str | None = None) -> str:
        ...

    @abstractmethod
    def get(self, result_id: str) -> StoredResult | None:
        ...

    @abstractmethod
    def list(self, flt: ResultFilter | None = None) -> list[StoredResult]:
        """按创建时间倒序（最新在前）。"""

    @abstractmethod
    def delete(self, result_id: str) -> bool:
        ...


class InMemoryResultStore(ResultStore):
    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._items: dict[str, StoredResult] = {}
        self._lock = threading.Lock()
        self._seq = itertools.count(1)
        self._clock = clock

    def save(self, result: Any, tags: Iterable[str] = (), notes: str | None = None) -> str:
        kind, symbol = describe(result)
        result_id = uuid.uuid4().hex
        with self._lock:
            self._items[result_id] = StoredResult(
                id=result_id,
                kind=kind,
                created_at=self._clock(),
                symbol=symbol,
                tags=tuple(tags),
                notes=notes,
                result=result,
                sequence=next(self._seq),
            )
        return result_id

    def get(self, result_id: str) -> StoredResult | None:
        with self._lock:
            return self._items.get(result_id)

    def list(self, flt: ResultFilter | None = None) -> list[StoredResult]:
        with self._lock:
            items = list(self._items.values())
        return _newest_first(items, flt)

    def delete(self, result_id: str) -> bool:
        with self._lock:
            return self._items.pop(result_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class JsonResultStore(ResultStore):
    """目录下每条结果一个 `<id>.json`：{"meta": {...}, "payload": {...}}。"""

    def __init__(self, directory: str | Path, clock: Callable[[], datetime] = _utcnow) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._clock = clock

    def _path(self, result_id: str) -> Path:
        return self.directory / f"{result_id}.json"

    def _next_sequence(self) -> int:
        return max((self._read(p).sequence for p in self.directory.glob("*.json")), default=0) + 1

    def save(self, result: Any, tags: Iterable[str] = (), notes: str | None = None) -> str:
        kind, symbol = describe(result)
        result_id = uuid.uuid4().hex
        payload = result.to_dict()
        with self._lock:
            meta = {
                "id": result_id,
                "kind": kind,
                "created_at": self._clock().isoformat(),
                "symbol": symbol,
                "tags": list(tags),
                "notes": notes,
                "sequence": self._next_sequence(),
            }
            text = json.dumps(sanitize_for_json({"meta": meta, "payload": payload}), ensure_ascii=False, indent=2)
            self._path(result_id).write_text(text, encoding="utf-8")
        return result_id

    def _read(self, path: Path) -> StoredResult:
        doc = json.loads(path.read_text(encoding="utf-8"))
        meta = doc["meta"]
        return StoredResult(
            id=meta["id"],
            kind=meta["kind"],
            created_at=datetime.fromisoformat(meta["created_at"]),
            symbol=meta.get("symbol"),
            tags=tuple(meta.get("tags") or ()),
            notes=meta.get("notes"),
            result=restore_floats(doc["payload"]),
            sequence=int(meta.get("sequence", 0)),
        )

    def get(self, result_id: str) -> StoredResult | None:
        path = self._path(result_id)
        with self._lock:
            if not path.exists():
                return None
            return self._read(path)

    def list(self, flt: ResultFilter | None = None) -> list[StoredResult]:
        with self._lock:
            items = [self._read(p) for p in self.directory.glob("*.json")]
        return _newest_first(items, flt)

    def delete(self, result_id: str) -> bool:
        path = self._path(result_id)
        with self._lock:
            if not path.exists():
                return False
            path.unlink()
            return True
