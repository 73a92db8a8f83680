"""配置加载。

支持 YAML 配置与环境变量占位符 `${VAR}` 展开，结果经 pydantic 校验为 MeridianConfig。
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml

from meridian.common.config.schema import MeridianConfig

_ENV_RE = re.compile(r"\$\{([^}]+)\}")


def expand_env(value: Any) -> Any:
    """递归展开字符串中的 `${VAR}`；变量缺失时报错，不静默替换为空。"""
    if isinstance(value, str):
        def replacer(match):
            var_name = match.group(1)
            if var_name not in os.environ:
                raise ValueError(f"Missing environment variable: {var_name}")
            return os.environ[var_name]

        return _ENV_RE.sub(replacer, value)
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


def load_raw_config(path: str | Path, expand: bool = True) -> dict[str, Any]:
    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")
    with cfg_path.open("r", encoding="utf-8") as f:
        raw: Any = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"Config root must be a mapping: {cfg_path}")
    return expand_env(raw) if expand else raw


def load_config(path: str | Path, expand: bool = True) -> MeridianConfig:
    """从 YAML 读取并校验配置。

    Parameters
    ----------
    path:
        配置文件路径。
    expand:
        是否展开 `${VAR}` 占位符。

    Returns
    -------
    MeridianConfig
        校验后的配置对象。

    Raises
    ------
    FileNotFoundError
        配置文件不存在。
    ValueError
        缺失环境变量，或 schema 校验失败（pydantic ValidationError）。
    """
    return MeridianConfig.model_validate(load_raw_config(path, expand=expand))
