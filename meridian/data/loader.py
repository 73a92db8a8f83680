"""本地历史数据读取（CSV / Parquet）。

文件命名约定：`<data_dir>/<SYMBOL>_<TIMEFRAME>.csv` 或 `.parquet`。
"""

from __future__ import annotations

from pathlib import Path

import pandas as pd

from meridian.common.models import Bar
from meridian.data.quality import bars_from_frame


def read_bars(path: str | Path) -> list[Bar]:
    p = Path(path)
    if p.suffix == ".parquet":
        df = pd.read_parquet(p, engine="pyarrow")
    else:
        df = pd.read_csv(p)
    return bars_from_frame(df)


class CsvBarLoader:
    """PriceSeriesStore 的读穿 loader；文件不存在返回 None。"""

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)

    def path_for(self, symbol: str, timeframe: str) -> Path | None:
        for suffix in (".parquet", ".csv"):
            p = self.data_dir / f"{symbol}_{timeframe}{suffix}"
            if p.exists():
                return p
        return None

    def __call__(self, symbol: str, timeframe: str) -> list[Bar] | None:
        path = self.path_for(symbol, timeframe)
        if path is None:
            return None
        return read_bars(path)
