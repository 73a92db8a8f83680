"""核心层错误类型。

只有“程序员错误”类问题（配置非法）才会抛异常；数据缺失、约束不满足等
预期情况一律返回结构化结果，不走异常路径。
"""

from __future__ import annotations


class ConfigError(ValueError):
    """配置非法（资金、仓位比例、权重之和、未知参数名等）。

    继承 ValueError：调用方可以与 pydantic 的 ValidationError 一起用
    `except ValueError` 统一捕获。
    """
