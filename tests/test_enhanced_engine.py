from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from meridian.common.config.schema import EnhancedRunConfig, RunConfig
from meridian.common.errors import ConfigError
from meridian.common.models import Bar, ExitReason
from meridian.core.enhanced_engine import EnhancedSimulationEngine, TrendFilter, in_session


@pytest.fixture
def engine(scripted_registry):
    return EnhancedSimulationEngine(scripted_registry)


def _cfg(**kwargs) -> EnhancedRunConfig:
    base = dict(
        symbol="TEST",
        commission_percent=0.0,
        slippage_percent=0.0,
        stop_loss_percent=None,
        take_profit_percent=None,
    )
    base.update(kwargs)
    return EnhancedRunConfig(**base)


def test_requires_enhanced_config(engine, make_bars):
    with pytest.raises(ConfigError):
        engine.run(RunConfig(symbol="TEST"), make_bars([1, 2]))


def test_fixed_commission_per_fill(engine, make_bars):
    cfg = _cfg(
        commission={"type": "fixed", "fixed_fee": 5.0},
        strategy={"type": "scripted", "signals": ["long", "flat"]},
    )
    trade = engine.run(cfg, make_bars([100, 110])).trades[0]
    assert trade.commission == pytest.approx(10.0)
    assert trade.pnl == pytest.approx(100.0 - 10.0)


def test_tiered_commission_picks_highest_reached_tier(engine, make_bars):
    cfg = _cfg(
        commission={
            "type": "tiered",
            "tiers": [{"min_notional": 0, "percent": 0.2}, {"min_notional": 5000, "percent": 0.05}],
        },
        strategy={"type": "scripted", "signals": ["long", "flat"]},
    )
    assert engine.commission(cfg, 1000.0) == pytest.approx(2.0)
    assert engine.commission(cfg, 6000.0) == pytest.approx(3.0)

    trade = engine.run(cfg, make_bars([100, 110])).trades[0]
    assert trade.commission == pytest.approx(2.0 + 2.2)


def test_session_filter_delays_entry(engine, make_bars):
    bars = make_bars([100 + i for i in range(24)], step=timedelta(hours=1))
    cfg = _cfg(session_start_hour=10, session_end_hour=12)
    result = engine.run(cfg, bars)

    assert result.trades[0].entry_time.hour == 10


def test_excluded_weekdays_delay_entry(engine, make_bars):
    bars = make_bars([100 + i for i in range(7)])
    cfg = _cfg(excluded_weekdays=[0, 1])
    result = engine.run(cfg, bars)

    assert bars[0].timestamp.weekday() == 0
    assert result.trades[0].entry_time.weekday() == 2


def test_partial_take_profit_then_end_of_data(engine, make_bars):
    t0 = make_bars([100])[0].timestamp
    bars = [
        Bar(t0, 100, 100, 100, 100),
        Bar(t0 + timedelta(days=1), 100, 106, 100, 105),
    ]
    cfg = _cfg(
        partial_take_profits=[{"gain_percent": 5, "close_fraction": 0.5}],
        strategy={"type": "scripted", "signals": ["long"]},
    )
    result = engine.run(cfg, bars)

    partial, rest = result.trades
    assert partial.exit_reason == ExitReason.PARTIAL_TAKE_PROFIT
    assert partial.qty == pytest.approx(5.0)
    assert partial.pnl == pytest.approx(25.0)
    assert rest.exit_reason == ExitReason.END_OF_DATA
    assert rest.qty == pytest.approx(5.0)
    assert result.final_capital == pytest.approx(10_000 + 50.0)


def test_trailing_stop_follows_best_price(engine, make_bars):
    t0 = make_bars([100])[0].timestamp
    bars = [
        Bar(t0, 100, 100, 100, 100),
        Bar(t0 + timedelta(days=1), 101, 120, 100, 118),
        Bar(t0 + timedelta(days=2), 116, 117, 113, 115),
    ]
    cfg = _cfg(trailing_stop_percent=5, strategy={"type": "scripted", "signals": ["long"]})
    trade = engine.run(cfg, bars).trades[0]

    assert trade.exit_reason == ExitReason.TRAILING_STOP
    assert trade.exit_price == pytest.approx(114.0)
    assert trade.pnl == pytest.approx(140.0)


def test_enhanced_statistics_are_attached(engine, make_bars):
    bars = make_bars([100 + i for i in range(60)], spread=0.01)
    result = engine.run(_cfg(), bars)

    assert result.enhanced is not None
    assert set(result.enhanced.monthly_returns) == {"2024-01", "2024-02"}
    assert sum(b.trades for b in result.enhanced.duration_histogram.values()) == result.trade_count


def test_in_session_wraps_midnight():
    assert in_session(23, 22, 2)
    assert in_session(1, 22, 2)
    assert not in_session(3, 22, 2)
    assert in_session(5, 9, 9)


def test_trend_filter_uses_completed_higher_bars(make_bars):
    bars = make_bars([100 + i for i in range(48)], step=timedelta(hours=1))
    trend = TrendFilter(bars, "4h", ma_period=3)

    assert trend.direction_at(bars[0]) == 0
    assert trend.direction_at(bars[-1]) == 1


def test_trend_filter_blocks_early_entries(engine, make_bars):
    bars = make_bars([100 + i for i in range(48)], step=timedelta(hours=1))
    result = engine.run(_cfg(higher_timeframe="4h", trend_ma_period=3), bars)

    assert result.trade_count == 1
    assert result.trades[0].entry_time > bars[8].timestamp


def test_monthly_returns_compound_to_total_return(engine, make_bars):
    bars = make_bars([100 + i for i in range(40)], start=datetime(2024, 1, 15, tzinfo=timezone.utc))
    cfg = _cfg(
        commission_percent=0.1,
        slippage_percent=0.05,
        position_size_percent=100,
        strategy={"type": "scripted", "signals": ["long"]},
    )
    result = engine.run(cfg, bars)

    growth = 1.0
    for pct in result.enhanced.monthly_returns.values():
        growth *= 1.0 + pct / 100.0
    assert (growth - 1.0) * 100.0 == pytest.approx(result.total_return_percent, rel=1e-9)
    assert result.equity_curve[-1].equity == pytest.approx(result.final_capital)
