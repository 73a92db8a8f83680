"""Meridian：回测、参数搜索与组合分析核心。"""

__version__ = "0.4.0"
