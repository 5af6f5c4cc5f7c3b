"""
Simple backtesting engine for indicator‑based strategies.

Entry signals from :mod:`backtest_core.rules` are turned into
hypothetical long trades under two exit policies:

* fixed horizon – exit ``h`` bars after entry, for every horizon in the
  short (3/5/9/14 bars) and long (65/130/195/260 bars) buckets;
* signal exit – exit on the first exit signal after the entry.

Trade lists are reduced to :class:`~backtest_core.models.Stats`.  Every
function is pure, so strategies and symbols can be evaluated in parallel.
"""
from __future__ import annotations

import bisect
from typing import Dict, Iterable, List, Sequence, Union

import pandas as pd

from .config import get_logger
from .models import (
    LONG_HORIZONS,
    SHORT_HORIZONS,
    BacktestReport,
    SignalSet,
    Stats,
    Trade,
)
from .rules import Strategy, generate_signals

logger = get_logger("backtest_core.backtester")


def _make_trade(df: pd.DataFrame, entry: int, exit_: int) -> Trade:
    entry_price = float(df["close"].iat[entry])
    exit_price = float(df["close"].iat[exit_])
    return Trade(
        entry_date=df.index[entry],
        entry_price=entry_price,
        exit_date=df.index[exit_],
        exit_price=exit_price,
        days=exit_ - entry,
        pnl=(exit_price - entry_price) / entry_price,
    )


def simulate_fixed_horizon(
    df: pd.DataFrame, entries: Iterable[int], horizon: int
) -> List[Trade]:
    """
    Exit every entry exactly ``horizon`` bars later.  Entries whose exit
    bar lies beyond the end of the series produce no trade.
    """
    n = len(df)
    return [_make_trade(df, e, e + horizon) for e in entries if e + horizon < n]


def simulate_signal_exit(
    df: pd.DataFrame,
    entries: Iterable[int],
    exits: Sequence[int],
    single_position: bool = False,
) -> List[Trade]:
    """
    Pair each entry with the first exit strictly after it; entries with
    no later exit produce no trade.

    By default entries are independent, so one exit may close several
    earlier entries.  With ``single_position=True`` only one position is
    held at a time: entries arriving while a position is open are ignored.
    """
    trades: List[Trade] = []
    open_until = -1
    for entry in entries:
        if single_position and entry <= open_until:
            continue
        pos = bisect.bisect_right(exits, entry)
        if pos == len(exits):
            if single_position:
                break
            continue
        exit_ = exits[pos]
        trades.append(_make_trade(df, entry, exit_))
        open_until = exit_
    return trades


def calculate_stats(trades: Sequence[Trade]) -> Stats:
    """
    Reduce a trade list to summary statistics (percent values).
    An empty list gives the all‑zero Stats.
    """
    if not trades:
        return Stats.empty()
    wins = 0
    total = 0.0
    max_win = 0.0
    max_loss = 0.0
    for t in trades:
        if t.pnl > 0:
            wins += 1
        total += t.pnl
        max_win = max(max_win, t.pnl)
        max_loss = min(max_loss, t.pnl)
    count = len(trades)
    return Stats(
        count=count,
        wins=wins,
        losses=count - wins,
        win_rate=wins / count * 100,
        avg_return=total / count * 100,
        max_win=max_win * 100,
        max_loss=max_loss * 100,
        trades=tuple(trades),
    )


def evaluate_signals(
    df: pd.DataFrame,
    signals: SignalSet,
    strategy: str,
    single_position: bool = False,
) -> BacktestReport:
    """Build the per‑horizon report for an already computed signal set."""
    short = {
        h: calculate_stats(simulate_fixed_horizon(df, signals.entries, h))
        for h in SHORT_HORIZONS
    }
    long = {
        h: calculate_stats(simulate_fixed_horizon(df, signals.entries, h))
        for h in LONG_HORIZONS
    }
    signal = calculate_stats(
        simulate_signal_exit(df, signals.entries, signals.exits, single_position)
    )
    return BacktestReport(strategy=strategy, short=short, long=long, signal=signal)


def run_backtest(
    df: pd.DataFrame,
    strategy: Union[Strategy, str],
    single_position: bool = False,
) -> BacktestReport:
    """
    Run one strategy over a price series and return its report.  Series
    shorter than the strategy's warm‑up yield zero‑count stats everywhere.
    """
    strategy = Strategy(strategy)
    signals = generate_signals(df, strategy)
    logger.debug(
        "%s: %d entries, %d exits over %d bars",
        strategy.value,
        len(signals.entries),
        len(signals.exits),
        len(df),
    )
    return evaluate_signals(df, signals, strategy.value, single_position)


def run_all_strategies(
    df: pd.DataFrame, single_position: bool = False
) -> Dict[Strategy, BacktestReport]:
    return {s: run_backtest(df, s, single_position) for s in Strategy}


def view_details(
    report: BacktestReport, horizon_key: Union[int, str], bucket: str
) -> Stats:
    """
    Look up the stats of one bucket/horizon in a report.  ``bucket`` is
    ``short``, ``long`` or ``signal`` (the horizon key is ignored for
    ``signal``).  Raises KeyError for unknown buckets or horizons.
    """
    if bucket == "signal" or horizon_key == "signal":
        return report.signal
    if bucket not in ("short", "long"):
        raise KeyError(f"unknown bucket {bucket!r}")
    stats_by_horizon = report.short if bucket == "short" else report.long
    try:
        return stats_by_horizon[int(horizon_key)]
    except (KeyError, TypeError, ValueError):
        raise KeyError(f"no {bucket} horizon {horizon_key!r}") from None
