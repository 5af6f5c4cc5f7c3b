import asyncio
import datetime as dt
import math

import numpy as np
import pytest

from backtest_core.models import HORIZON_LABELS
from backtest_core.rules import Strategy
from backtest_core.screener import (
    DEFAULT_UNIVERSE,
    RankingRow,
    ScanResult,
    Zones,
    all_symbols,
    dynamic_zones,
    evaluate_symbol,
    generate_rankings,
    generate_recommendation,
    scan_market,
    sector_of,
)

START = dt.datetime(2019, 1, 1, tzinfo=dt.timezone.utc)
END = dt.datetime(2021, 1, 1, tzinfo=dt.timezone.utc)


def _walk(make_ohlc, seed, n=600):
    rng = np.random.default_rng(seed)
    return make_ohlc(50 * np.exp(np.cumsum(rng.normal(0, 0.02, n))))


def _row(**overrides):
    values = dict(
        symbol="FPT",
        sector="Retail & Technology",
        strategy=Strategy.RSI,
        bucket="short",
        horizon=5,
        win_rate=70.0,
        avg_return=5.0,
        total_return=50.0,
        max_win=12.0,
        max_loss=-3.0,
        trades=10,
        wins=7,
        losses=3,
        last_price=100.0,
    )
    values.update(overrides)
    return RankingRow(**values)


def test_universe_helpers():
    symbols = all_symbols()
    assert len(symbols) == len(set(symbols))
    assert symbols[0] == "VCB"
    assert sector_of("FPT") == "Retail & Technology"
    assert sector_of("ZZZ") == "Other"
    assert set(DEFAULT_UNIVERSE["Other"]) == {"VEA", "G36", "C4G"}


def test_recommendation_without_zones():
    rec = generate_recommendation(_row())
    assert rec.buy_price == 100.0
    assert rec.buy_low == pytest.approx(98.0)
    assert rec.buy_high == pytest.approx(102.0)
    # average return below the 8% floor
    assert rec.target_price == pytest.approx(108.0)
    assert rec.stop_loss == pytest.approx(97.0)
    assert rec.stop_loss_pct == 3.0
    assert rec.risk_reward == 2.7
    assert rec.horizon_label == HORIZON_LABELS[5]
    assert math.isnan(rec.indicator_value)


def test_recommendation_stop_loss_is_capped():
    rec = generate_recommendation(_row(max_loss=-25.0, avg_return=12.0))
    assert rec.stop_loss == pytest.approx(94.0)
    assert rec.target_price == pytest.approx(112.0)
    # no historical loss falls back to the cap as well
    assert generate_recommendation(_row(max_loss=0.0)).stop_loss_pct == 6.0


def test_recommendation_uses_price_zones():
    zones = Zones(buy_zone=90.0, sell_zone=99.0, value=90.0, name="SMA(20)", description="SMA(20) line")
    rec = generate_recommendation(_row(strategy=Strategy.SMA20), zones)
    assert rec.buy_price == 90.0
    assert rec.target_price == 99.0
    assert rec.indicator_name == "SMA(20)"
    # signal-only strategies keep the last close as the anchor
    rsi = generate_recommendation(_row(), Zones(90.0, 105.0, 25.0, "RSI(14)", "RSI below 30"))
    assert rsi.buy_price == 100.0
    assert rsi.target_price == 105.0


def test_recommendation_ignores_close_sell_zone():
    zones = Zones(buy_zone=100.0, sell_zone=101.0, value=100.0, name="SMA(50)", description="")
    rec = generate_recommendation(_row(strategy=Strategy.SMA50), zones)
    assert rec.target_price == pytest.approx(108.0)


def test_dynamic_zones(random_walk):
    last = float(random_walk["close"].iloc[-1])
    rsi = dynamic_zones(Strategy.RSI, random_walk)
    assert rsi.buy_zone == last
    assert rsi.sell_zone == pytest.approx(last * 1.05)
    assert 0 <= rsi.value <= 100
    sma = dynamic_zones(Strategy.SMA50, random_walk)
    assert sma.sell_zone == pytest.approx(sma.buy_zone * 1.1)
    assert sma.name == "SMA(50)"
    for strategy in Strategy:
        assert dynamic_zones(strategy, random_walk).name


def test_scan_isolates_failures(make_ohlc):
    frames = {"AAA": _walk(make_ohlc, 1), "BBB": _walk(make_ohlc, 2, n=50)}

    async def fake_fetch(symbol, start, end):
        if symbol not in frames:
            raise RuntimeError("History API error 500: boom")
        return frames[symbol]

    events = []
    scan = asyncio.run(
        scan_market(["AAA", "BBB", "CCC"], START, END, fetch=fake_fetch, delay=0, on_progress=events.append)
    )
    assert list(scan.results) == ["AAA"]
    assert scan.failed == ("BBB", "CCC")
    assert scan.errors == 2
    assert [e.symbol for e in events] == ["AAA", "BBB", "CCC", "DONE"]
    assert events[-1].percent == 100
    assert events[-1].errors == 2
    result = scan.results["AAA"]
    assert result.data_points == 600
    assert set(result.reports) == set(Strategy)


def test_generate_rankings(make_ohlc):
    results = {
        sym: evaluate_symbol(sym, _walk(make_ohlc, seed))
        for sym, seed in (("FPT", 3), ("VNM", 4), ("HPG", 5))
    }
    rankings = generate_rankings(ScanResult(results=results))
    assert rankings.total_symbols_scanned == 3
    assert rankings.total_strategies == len(Strategy)
    for rows, min_trades in ((rankings.short_term, 5), (rankings.long_term, 3)):
        assert rows
        assert len({r.symbol for r in rows}) == len(rows)
        rates = [r.win_rate for r in rows]
        assert rates == sorted(rates, reverse=True)
        assert all(r.trades >= min_trades for r in rows)
        assert all(r.recommendation is not None for r in rows)
    assert all(r.bucket == "short" for r in rankings.short_term)
    assert {r.sector for r in rankings.long_term} <= {"Retail & Technology", "Food & Beverage", "Steel & Materials"}


def test_rankings_truncate_to_top_n(make_ohlc):
    results = {f"S{i}": evaluate_symbol(f"S{i}", _walk(make_ohlc, 10 + i)) for i in range(3)}
    rankings = generate_rankings(ScanResult(results=results), top_n=2)
    assert len(rankings.short_term) <= 2
    assert len(rankings.long_term) <= 2
