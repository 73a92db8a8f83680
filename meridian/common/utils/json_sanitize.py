from __future__ import annotations

import dataclasses
import math
from datetime import date, datetime
from enum import Enum
from typing import Any

import numpy as np


def sanitize_for_json(obj: Any) -> Any:
    """
    把结果对象转换为可写出的标准 JSON 结构。

    - NaN/Inf 转成字符串，避免写出非标准 JSON（Infinity/NaN）；
    - dataclass 展开为 dict，datetime 转 ISO 字符串，numpy 标量转 Python 标量。
    """
    if isinstance(obj, np.generic):
        obj = obj.item()
    if isinstance(obj, bool) or obj is None:
        return obj
    if isinstance(obj, float):
        if math.isnan(obj):
            return "nan"
        if math.isinf(obj):
            return "inf" if obj > 0 else "-inf"
        return obj
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: sanitize_for_json(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    if isinstance(obj, dict):
        return {str(k): sanitize_for_json(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [sanitize_for_json(v) for v in obj]
    if isinstance(obj, np.ndarray):
        return [sanitize_for_json(v) for v in obj.tolist()]
    return obj


def restore_floats(obj: Any) -> Any:
    """`sanitize_for_json` 的逆操作：把 "nan"/"inf"/"-inf" 字符串还原为 float。"""
    if isinstance(obj, str) and obj in {"nan", "inf", "-inf"}:
        return float(obj)
    if isinstance(obj, dict):
        return {k: restore_floats(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [restore_floats(v) for v in obj]
    return obj
