"""Meridian 命令行入口。

子命令：
- `backtest`：单次回测（`enhanced:` 配置块存在时使用增强引擎）。
- `sweep`：网格搜索。
- `genetic`：遗传算法搜索。
- `sensitivity`：单参数敏感性分析。
- `walkforward`：Walk-Forward 验证。
- `montecarlo`：对单次回测的交易序列做 Monte Carlo 重采样。
- `portfolio`：多资产组合回测。

数据从 `data.data_dir` 下的 `<SYMBOL>_<TIMEFRAME>.csv|parquet` 读取。
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from typing import Any, Mapping

from rich import box
from rich.console import Console
from rich.table import Table

from meridian.analysis.monte_carlo import run_monte_carlo
from meridian.analysis.reports import write_json
from meridian.common.config.config_loader import load_config
from meridian.common.config.schema import MeridianConfig, RunConfig
from meridian.common.errors import ConfigError
from meridian.common.utils.progress import LoggingProgressReporter
from meridian.core.backtest_engine import SimulationEngine
from meridian.core.enhanced_engine import EnhancedSimulationEngine
from meridian.data.loader import CsvBarLoader
from meridian.data.price_store import BarSeries, PriceSeriesStore
from meridian.optimization.genetic import genetic_search
from meridian.optimization.grid_search import grid_search
from meridian.optimization.sensitivity import sensitivity_analysis
from meridian.optimization.walkforward import walk_forward
from meridian.portfolio.engine import run_portfolio

console = Console()

TASKS = ("backtest", "sweep", "genetic", "sensitivity", "walkforward", "montecarlo", "portfolio")


@dataclass
class CliArgs:
    """命令行参数。

    config: 配置文件路径
    task: 子命令
    output: 可选的 JSON 结果输出路径
    top_n: 搜索结果展示前 N 名
    """
    config: str
    task: str
    output: str | None = None
    top_n: int = 5


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="meridian", description="Meridian 回测与参数搜索")
    parser.add_argument("--config", default="config/meridian.yml", help="配置文件路径")
    sub = parser.add_subparsers(dest="task", required=True)
    for task in TASKS:
        p = sub.add_parser(task)
        p.add_argument("--config", default=argparse.SUPPRESS, help="配置文件路径")
        p.add_argument("--output", default=None, help="结果 JSON 输出路径")
        if task in ("sweep", "genetic"):
            p.add_argument("--top-n", type=int, default=5)
    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    ns = build_parser().parse_args(argv)
    return CliArgs(
        config=str(ns.config),
        task=ns.task,
        output=ns.output,
        top_n=int(getattr(ns, "top_n", 5)),
    )


def _run_config(cfg: MeridianConfig) -> RunConfig:
    run_cfg = cfg.enhanced or cfg.run
    if run_cfg is None:
        raise ConfigError("config needs a `run:` (or `enhanced:`) block for this task")
    return run_cfg


def _engine(cfg: MeridianConfig) -> SimulationEngine:
    return EnhancedSimulationEngine() if cfg.enhanced is not None else SimulationEngine()


def _store(cfg: MeridianConfig) -> PriceSeriesStore:
    return PriceSeriesStore(
        max_entries=cfg.data.cache_entries,
        gap_tolerance=cfg.data.gap_tolerance,
        loader=CsvBarLoader(cfg.data.data_dir),
    )


def _series(store: PriceSeriesStore, run_cfg: RunConfig) -> BarSeries:
    series = store.get(run_cfg.symbol, run_cfg.timeframe, run_cfg.start, run_cfg.end)
    console.print(f"[cyan]{run_cfg.symbol} {run_cfg.timeframe}[/cyan]: {len(series)} bars, status={series.status.value}")
    return series


def _fmt(val: Any) -> str:
    if isinstance(val, float):
        return f"{val:.4f}"
    return str(val)


def _print_metrics(title: str, metrics: dict[str, Any]) -> None:
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("metric")
    table.add_column("value", justify="right")
    for k, v in metrics.items():
        table.add_row(k, _fmt(v))
    console.print(table)


def _print_candidates(result, top_n: int) -> None:
    table = Table(title=f"{result.method} search ({result.objective})", box=box.ROUNDED)
    for col in ("rank", "params", "objective", "return %", "sharpe", "max dd %", "trades", "pareto"):
        table.add_column(col)
    for c in result.candidates[:top_n]:
        m = c.metrics
        table.add_row(
            str(c.rank),
            str(dict(c.params)),
            _fmt(c.objective_value),
            _fmt(m["total_return_percent"]),
            _fmt(m["sharpe"]),
            _fmt(m["max_drawdown_percent"]),
            str(m["total_trades"]),
            "*" if c.on_pareto_frontier else "",
        )
    console.print(table)
    console.print(f"filter stats: {dict(result.filter_stats)}")


def main(argv: list[str] | None = None) -> Any:
    """程序主入口，返回对应子命令的结果对象。"""
    args = parse_args(argv)
    cfg = load_config(args.config)
    progress = LoggingProgressReporter()
    result: Any

    if args.task == "portfolio":
        if cfg.portfolio is None:
            raise ConfigError("config needs a `portfolio:` block")
        store = _store(cfg)
        base = cfg.portfolio.base
        bars = {
            a.symbol: store.get(a.symbol, base.timeframe, base.start, base.end) for a in cfg.portfolio.assets
        }
        result = run_portfolio(cfg.portfolio, bars, engine=SimulationEngine(), parallel=cfg.parallel, progress=progress)
        _print_metrics("portfolio", {k: v for k, v in vars(result.metrics).items() if not isinstance(v, Mapping)})
    else:
        run_cfg = _run_config(cfg)
        series = _series(_store(cfg), run_cfg)
        engine = _engine(cfg)
        bars = series.valid_bars()
        if args.task == "backtest":
            result = engine.run(run_cfg, series)
            _print_metrics(f"backtest {run_cfg.symbol}", result.metrics())
        elif args.task == "montecarlo":
            run = engine.run(run_cfg, series)
            result = run_monte_carlo(run, cfg.monte_carlo)
            _print_metrics("monte carlo", {k: v for k, v in vars(result).items() if isinstance(v, (int, float))})
        elif args.task == "sweep":
            result = grid_search(run_cfg, bars, cfg.optimization, engine=engine, parallel=cfg.parallel, progress=progress)
            _print_candidates(result, args.top_n)
        elif args.task == "genetic":
            result = genetic_search(
                run_cfg, bars, cfg.optimization, cfg.genetic, engine=engine, parallel=cfg.parallel, progress=progress
            )
            _print_candidates(result, args.top_n)
        elif args.task == "sensitivity":
            if cfg.sensitivity is None:
                raise ConfigError("config needs a `sensitivity:` block")
            result = sensitivity_analysis(
                run_cfg, bars, cfg.sensitivity, engine=engine, parallel=cfg.parallel, progress=progress
            )
            _print_metrics(
                f"sensitivity {result.parameter}",
                {"sensitivity": result.sensitivity, "robustness": result.robustness, "points": len(result.points)},
            )
        elif args.task == "walkforward":
            result = walk_forward(run_cfg, bars, cfg.optimization, cfg.walkforward, engine=engine, parallel=cfg.parallel)
            _print_metrics(
                "walk-forward",
                {
                    "efficiency": result.efficiency,
                    "avg_is_return_%": result.average_in_sample_return_percent,
                    "avg_oos_return_%": result.average_out_of_sample_return_percent,
                    "accepted": result.accepted,
                    "reasons": ", ".join(result.reasons) or "-",
                },
            )
        else:
            raise ValueError(f"Unknown task: {args.task}")

    if args.output:
        path = write_json(result, args.output)
        console.print(f"[green]saved[/green] {path}")
    return result


if __name__ == "__main__":
    main()
