"""多资产组合引擎。

流程：
1. 校验目标权重之和为 100 ± 0.01；
2. 每个资产独立回测一次（可并行）；
3. 对齐逐期收益率，计算相关矩阵、各资产年化波动率、组合波动率与分散化比率；
4. 按再平衡策略推进组合权益曲线；
5. 组合 Sharpe/Sortino 使用合成曲线；最大回撤取各资产回撤的最大值（保守口径）。
"""

from __future__ import annotations

from typing import Mapping, Sequence

from meridian.analysis.metrics import (
    annualized_return_percent,
    infer_periods_per_year,
    max_drawdown,
    periodic_returns,
    sharpe_ratio,
    sortino_ratio,
)
from meridian.common.config.schema import ParallelConfig, PortfolioConfig, RunConfig
from meridian.common.config.validation import check_allocations
from meridian.common.models import Bar
from meridian.common.utils.logging import setup_logger
from meridian.common.utils.progress import ProgressCallback, ProgressEvent, emit
from meridian.core.backtest_engine import SimulationEngine, prepare_bars
from meridian.core.base_engine import BarInput
from meridian.core.parallel import CancellationToken, run_parallel
from meridian.core.results import RunResult
from meridian.data.price_store import BarSeries
from meridian.portfolio.covariance import (
    annualized_volatility,
    close_frame,
    correlation_matrix,
    diversification_ratio,
    equity_frame,
    portfolio_volatility,
    returns_frame,
)
from meridian.portfolio.diversification import analyze_diversification
from meridian.portfolio.rebalance import simulate_rebalancing
from meridian.portfolio.schemas import PortfolioMetrics, PortfolioResult

logger = setup_logger("meridian.portfolio")


class _AssetRunner:
    """(config, bars) -> RunResult，可在线程/进程池中调用。"""

    def __init__(self, engine: SimulationEngine) -> None:
        self.engine = engine

    def __call__(self, job: tuple[RunConfig, BarInput]) -> RunResult:
        cfg, bars = job
        return self.engine.run(cfg, bars)


def asset_config(portfolio: PortfolioConfig, symbol: str) -> RunConfig:
    """由组合模板派生单个资产的回测配置（资金按目标权重分配）。"""
    asset = next(a for a in portfolio.assets if a.symbol == symbol)
    data = portfolio.base.model_dump()
    data["symbol"] = asset.symbol
    data["initial_capital"] = portfolio.total_capital * asset.target_allocation_percent / 100.0
    if asset.strategy is not None:
        data["strategy"] = asset.strategy.model_dump()
    return type(portfolio.base).model_validate(data)


def _usable_bars(cfg: RunConfig, bars: BarInput | None) -> list[Bar]:
    if bars is None:
        return []
    usable, _ = prepare_bars(cfg, bars)
    return usable


def run_portfolio(
    config: PortfolioConfig,
    bars_by_symbol: Mapping[str, BarInput],
    engine: SimulationEngine | None = None,
    parallel: ParallelConfig | None = None,
    cancel: CancellationToken | None = None,
    progress: ProgressCallback | None = None,
) -> PortfolioResult:
    """
    运行组合回测。

    Parameters
    ----------
    bars_by_symbol:
        symbol -> bar 序列（或 BarSeries）；缺失的资产按无数据处理（零交易结果）。

    Raises
    ------
    ConfigError
        权重之和不为 100 ± 0.01，或资产配置非法。
    """
    check_allocations([a.target_allocation_percent for a in config.assets])
    engine = engine or SimulationEngine()
    symbols = [a.symbol for a in config.assets]
    configs = {s: asset_config(config, s) for s in symbols}
    jobs = [(configs[s], bars_by_symbol.get(s, BarSeries(s, configs[s].timeframe, ()))) for s in symbols]

    finished: list[int] = []

    def _on_result(idx: int, result: RunResult) -> None:
        finished.append(idx)
        emit(progress, ProgressEvent("portfolio", len(finished), len(symbols), message=symbols[idx]))

    outcome = run_parallel(_AssetRunner(engine), jobs, parallel=parallel, cancel=cancel, on_result=_on_result)
    per_asset = {symbols[idx]: result for idx, result in outcome.results}
    if outcome.cancelled:
        logger.warning("portfolio run cancelled after %d/%d assets", outcome.completed, len(symbols))
        symbols = [s for s in symbols if s in per_asset]

    initial = {s: per_asset[s].initial_capital for s in symbols}
    levels = equity_frame({s: per_asset[s].equity_curve for s in symbols}, initial)
    equity_returns = returns_frame(levels)
    if config.correlation_source == "price":
        stat_returns = returns_frame(
            close_frame({s: _usable_bars(configs[s], bars_by_symbol.get(s)) for s in symbols})
        )
    else:
        stat_returns = equity_returns

    stamps = [ts.to_pydatetime() for ts in levels.index]
    ppy = config.periods_per_year or config.base.periods_per_year or infer_periods_per_year(stamps)
    corr = correlation_matrix(stat_returns)
    vols = annualized_volatility(stat_returns, ppy)
    weights = [next(a.target_allocation_percent for a in config.assets if a.symbol == s) / 100.0 for s in symbols]
    port_vol = portfolio_volatility(weights, vols, corr.as_array())
    div_ratio = diversification_ratio(weights, vols, port_vol)

    total_capital = sum(initial.values())
    if stamps:
        curve, events = simulate_rebalancing(
            equity_returns,
            start=stamps[0],
            total_capital=total_capital,
            targets={s: w * 100.0 for s, w in zip(symbols, weights)},
            frequency=config.rebalance.frequency,
            drift_thresholds={
                a.symbol: a.rebalance_drift_threshold_percent for a in config.assets if a.symbol in symbols
            },
            cost_percent=config.rebalance.cost_percent,
        )
    else:
        curve, events = [], []

    values = [p.equity for p in curve]
    final_equity = values[-1] if values else total_capital
    total_return = final_equity - total_capital
    total_return_pct = total_return / total_capital * 100.0 if total_capital else 0.0
    blended_returns = periodic_returns(values)
    metrics = PortfolioMetrics(
        initial_capital=total_capital,
        final_equity=final_equity,
        total_return=total_return,
        total_return_percent=total_return_pct,
        annualized_return_percent=annualized_return_percent(
            total_return_pct, curve[0].timestamp if curve else None, curve[-1].timestamp if curve else None
        ),
        volatility_percent=port_vol,
        weighted_average_volatility_percent=float(sum(w * v for w, v in zip(weights, vols))),
        diversification_ratio=div_ratio,
        sharpe_ratio=sharpe_ratio(blended_returns, ppy),
        sortino_ratio=sortino_ratio(blended_returns, ppy),
        max_drawdown_percent=max((r.max_drawdown_percent for r in per_asset.values()), default=0.0),
        blended_max_drawdown_percent=max_drawdown(values)[1] if values else 0.0,
        rebalance_count=len(events),
        total_rebalance_cost=sum(e.transaction_cost for e in events),
        asset_volatility_percent={s: float(v) for s, v in zip(symbols, vols)},
    )
    logger.info(
        "portfolio done: assets=%d return=%.2f%% vol=%.2f%% rebalances=%d",
        len(symbols),
        total_return_pct,
        port_vol,
        len(events),
    )
    return PortfolioResult(
        per_asset=per_asset,
        correlation=corr,
        metrics=metrics,
        rebalance_events=tuple(events),
        combined_equity_curve=tuple(curve),
        diversification=analyze_diversification(config.assets),
        cancelled=outcome.cancelled,
    )
