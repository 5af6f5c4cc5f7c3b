import pandas as pd
import pytest

from backtest_core.analysis import best_month, monthly_breakdown, summarize, top_strategy
from backtest_core.models import BacktestReport, Stats, Trade


def _trade(entry, pnl):
    ts = pd.Timestamp(entry, tz="UTC")
    return Trade(ts, 10.0, ts + pd.Timedelta(days=3), 10.0 * (1 + pnl), 3, pnl)


def _stats(count, win_rate):
    wins = round(count * win_rate / 100)
    return Stats(count=count, wins=wins, losses=count - wins, win_rate=win_rate)


def test_monthly_breakdown():
    trades = [
        _trade("2021-01-04", 0.02),
        _trade("2022-01-10", -0.01),
        _trade("2021-03-01", 0.05),
    ]
    table = monthly_breakdown(trades)
    assert list(table.index) == list(range(1, 13))
    assert table.loc[1, "count"] == 2
    assert table.loc[1, "wins"] == 1
    assert table.loc[1, "losses"] == 1
    assert table.loc[1, "total_pnl"] == pytest.approx(0.01)
    assert table.loc[1, "avg_pnl"] == pytest.approx(0.005)
    assert table.loc[3, "avg_pnl"] == pytest.approx(0.05)
    assert table.loc[7, "count"] == 0
    assert table.loc[7, "avg_pnl"] == 0.0


def test_monthly_breakdown_empty():
    table = monthly_breakdown([])
    assert len(table) == 12
    assert table["count"].sum() == 0


def test_best_month():
    trades = [
        _trade("2021-01-04", 0.02),
        _trade("2021-01-11", 0.01),
        _trade("2021-02-01", 0.08),
        _trade("2021-03-01", 0.03),
        _trade("2021-03-08", 0.03),
        _trade("2021-03-15", -0.02),
    ]
    # February is perfect but has a single trade
    assert best_month(trades) == 1
    assert best_month(trades, min_trades=1) == 1
    assert best_month(trades, min_trades=3) == 3


def test_best_month_needs_a_winner():
    trades = [_trade("2021-05-03", -0.01), _trade("2021-05-10", 0.0)]
    assert best_month(trades) is None
    assert best_month([]) is None


def test_top_strategy():
    reports = {
        "rsi": BacktestReport("rsi", short={3: _stats(10, 60.0), 5: _stats(2, 100.0)}),
        "macd": BacktestReport("macd", short={3: _stats(5, 60.0)}, long={65: _stats(4, 75.0)}),
    }
    best = top_strategy(reports)
    assert (best.strategy, best.bucket, best.horizon) == ("macd", "long", 65)
    assert best.stats.win_rate == 75.0
    # 2-trade horizon qualifies once the minimum drops
    assert top_strategy(reports, min_trades=2).horizon == 5


def test_top_strategy_none_when_nothing_qualifies():
    reports = {"rsi": BacktestReport("rsi", short={3: _stats(2, 100.0)})}
    assert top_strategy(reports) is None
    assert top_strategy({}) is None


def test_summarize():
    report = BacktestReport(
        "sma20",
        short={3: _stats(10, 40.0), 9: _stats(10, 70.0)},
        long={65: _stats(4, 50.0)},
        signal=_stats(6, 50.0),
    )
    summary = summarize({"sma20": report})
    row = summary["sma20"]
    assert row["short"]["horizon"] == 9
    assert row["short"]["win_rate"] == 70.0
    assert row["long"]["horizon"] == 65
    assert row["signal"]["count"] == 6
    assert "trades" not in row["signal"]
