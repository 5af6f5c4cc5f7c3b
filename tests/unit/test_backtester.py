import numpy as np
import pandas as pd
import pytest

from backtest_core.backtester import (
    calculate_stats,
    evaluate_signals,
    run_all_strategies,
    run_backtest,
    simulate_fixed_horizon,
    simulate_signal_exit,
    view_details,
)
from backtest_core.models import (
    LONG_HORIZONS,
    SHORT_HORIZONS,
    BacktestReport,
    SignalSet,
    Stats,
    Trade,
)
from backtest_core.rules import Strategy, generate_signals


def _trade(pnl, entry="2020-01-01"):
    ts = pd.Timestamp(entry, tz="UTC")
    return Trade(ts, 100.0, ts + pd.Timedelta(days=5), 100.0 * (1 + pnl), 5, pnl)


def test_fixed_horizon_drops_trades_past_the_end(rising_series):
    trades = simulate_fixed_horizon(rising_series, [0, 5, 55], 5)
    assert [t.days for t in trades] == [5, 5]
    first = trades[0]
    assert first.entry_price == 100.0
    assert first.exit_price == 105.0
    assert first.pnl == pytest.approx(0.05)
    assert first.exit_date == rising_series.index[5]
    # 54 + 5 = 59 is the last bar, 55 + 5 is past it
    assert simulate_fixed_horizon(rising_series, [54], 5)[0].exit_price == 159.0


def test_signal_exit_overlapping_entries(rising_series):
    trades = simulate_signal_exit(rising_series, [1, 3, 8], [5, 6])
    assert [(t.entry_price, t.exit_price) for t in trades] == [(101.0, 105.0), (103.0, 105.0)]
    assert [t.days for t in trades] == [4, 2]


def test_signal_exit_single_position(rising_series):
    trades = simulate_signal_exit(rising_series, [1, 3, 8], [5, 6], single_position=True)
    assert len(trades) == 1
    assert trades[0].exit_date == rising_series.index[5]

    trades = simulate_signal_exit(rising_series, [1, 6, 7], [5, 9], single_position=True)
    assert [(t.entry_price, t.exit_price) for t in trades] == [(101.0, 105.0), (106.0, 109.0)]


def test_signal_exit_requires_strictly_later_exit(rising_series):
    assert simulate_signal_exit(rising_series, [5], [5]) == []
    assert simulate_signal_exit(rising_series, [2], []) == []


def test_calculate_stats():
    stats = calculate_stats([_trade(0.1), _trade(-0.05), _trade(0.0), _trade(0.2)])
    assert stats.count == 4
    assert stats.wins == 2
    # a flat trade counts as a loss
    assert stats.losses == 2
    assert stats.win_rate == pytest.approx(50.0)
    assert stats.avg_return == pytest.approx(6.25)
    assert stats.max_win == pytest.approx(20.0)
    assert stats.max_loss == pytest.approx(-5.0)
    assert len(stats.trades) == 4


def test_calculate_stats_extremes_clamped_at_zero():
    only_losses = calculate_stats([_trade(-0.02), _trade(-0.04)])
    assert only_losses.max_win == 0.0
    assert only_losses.max_loss == pytest.approx(-4.0)
    only_wins = calculate_stats([_trade(0.03)])
    assert only_wins.max_loss == 0.0


def test_empty_stats():
    assert calculate_stats([]) == Stats.empty()
    assert Stats.empty().as_dict() == {
        "count": 0,
        "wins": 0,
        "losses": 0,
        "win_rate": 0.0,
        "avg_return": 0.0,
        "max_win": 0.0,
        "max_loss": 0.0,
        "trades": [],
    }


def test_evaluate_empty_signal_set(random_walk):
    report = evaluate_signals(random_walk, SignalSet(), "rsi")
    assert set(report.short) == set(SHORT_HORIZONS)
    assert set(report.long) == set(LONG_HORIZONS)
    assert all(s.count == 0 for _, bucket in report.buckets() for s in bucket.values())
    assert report.signal.count == 0


@pytest.mark.parametrize("strategy", list(Strategy))
def test_short_series_gives_zero_counts(make_ohlc, strategy):
    report = run_backtest(make_ohlc([10.0, 10.5, 10.2, 10.8, 11.0]), strategy)
    assert report.strategy == strategy.value
    assert all(s.count == 0 for _, bucket in report.buckets() for s in bucket.values())
    assert report.signal == Stats.empty()


def test_backtest_is_deterministic(random_walk):
    assert run_backtest(random_walk, "macd") == run_backtest(random_walk, "macd")


def test_trade_counts_follow_entries(random_walk):
    report = run_backtest(random_walk, Strategy.RSI)
    n = len(random_walk)
    entries = generate_signals(random_walk, Strategy.RSI).entries
    for h, stats in report.short.items():
        assert stats.count == sum(1 for e in entries if e + h < n)
        assert stats.wins + stats.losses == stats.count
        assert 0 <= stats.win_rate <= 100


def test_run_all_strategies(random_walk):
    reports = run_all_strategies(random_walk)
    assert list(reports) == list(Strategy)
    assert reports[Strategy.SMA50].strategy == "sma50"


def test_run_backtest_rejects_unknown_strategy(random_walk):
    with pytest.raises(ValueError):
        run_backtest(random_walk, "vwap")


def test_view_details(random_walk):
    report = run_backtest(random_walk, Strategy.BOLLINGER)
    assert view_details(report, 5, "short") is report.short[5]
    assert view_details(report, "130", "long") is report.long[130]
    assert view_details(report, "signal", "short") is report.signal
    assert view_details(report, None, "signal") is report.signal
    with pytest.raises(KeyError):
        view_details(report, 7, "short")
    with pytest.raises(KeyError):
        view_details(report, 5, "medium")
    with pytest.raises(KeyError):
        view_details(report, None, "long")


def test_report_serialization(random_walk):
    report = run_backtest(random_walk, Strategy.SMA20)
    payload = report.as_dict()
    assert set(payload["short"]) == {"3", "5", "9", "14"}
    assert "trades" not in payload["signal"]
    detailed = report.as_dict(include_trades=True)
    assert len(detailed["signal"]["trades"]) == report.signal.count
    assert np.isfinite(detailed["short"]["3"]["avg_return"])


def test_report_is_read_only(random_walk):
    report = run_backtest(random_walk, Strategy.RSI)
    with pytest.raises(TypeError):
        report.short[3] = Stats.empty()
    with pytest.raises(TypeError):
        report.long[65] = Stats.empty()
    assert report.short[3].count == sum(
        1 for e in generate_signals(random_walk, Strategy.RSI).entries if e + 3 < len(random_walk)
    )


def test_report_copies_its_input_maps():
    short = {3: Stats.empty()}
    report = BacktestReport("rsi", short=short)
    short[5] = Stats.empty()
    assert list(report.short) == [3]
    assert report == BacktestReport("rsi", short={3: Stats.empty()})
