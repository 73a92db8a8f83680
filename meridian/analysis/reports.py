"""结果导出：JSON（NaN/Inf 已清洗）与交易/权益 CSV。"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pandas as pd

from meridian.common.utils.json_sanitize import sanitize_for_json
from meridian.core.results import RunResult


def trades_frame(result: RunResult) -> pd.DataFrame:
    rows = [
        {
            "trade_id": t.trade_id,
            "symbol": t.symbol,
            "direction": t.direction.name.lower(),
            "entry_time": t.entry_time,
            "entry_price": t.entry_price,
            "exit_time": t.exit_time,
            "exit_price": t.exit_price,
            "qty": t.qty,
            "pnl": t.pnl,
            "pnl_percent": t.pnl_percent,
            "commission": t.commission,
            "slippage_cost": t.slippage_cost,
            "exit_reason": t.exit_reason.value,
            "holding_hours": t.holding_hours,
        }
        for t in result.trades
    ]
    return pd.DataFrame(rows, columns=list(rows[0].keys()) if rows else None)


def equity_frame(result: RunResult) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "timestamp": [p.timestamp for p in result.equity_curve],
            "equity": [p.equity for p in result.equity_curve],
        }
    )


def write_json(obj: Any, path: str | Path) -> Path:
    """写出任意结果对象（带 to_dict 的优先使用 to_dict）。"""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    payload = obj.to_dict() if hasattr(obj, "to_dict") else obj
    p.write_text(json.dumps(sanitize_for_json(payload), ensure_ascii=False, indent=2), encoding="utf-8")
    return p


def write_run_csv(result: RunResult, out_dir: str | Path) -> dict[str, Path]:
    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    paths = {"trades": out / "trades.csv", "equity": out / "equity.csv"}
    trades_frame(result).to_csv(paths["trades"], index=False)
    equity_frame(result).to_csv(paths["equity"], index=False)
    return paths
