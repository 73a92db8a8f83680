from meridian.data.price_store import BarSeries, CacheStats, PriceSeriesStore, SeriesStatus
from meridian.data.quality import QualityReport, check_quality

__all__ = ["BarSeries", "CacheStats", "PriceSeriesStore", "QualityReport", "SeriesStatus", "check_quality"]
