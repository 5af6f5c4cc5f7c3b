"""Drill‑down helpers over finished backtest reports."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence, Union

import pandas as pd

from .models import BacktestReport, Stats, Trade


@dataclass(frozen=True)
class TopStrategy:
    strategy: str
    bucket: str
    horizon: int
    stats: Stats


def monthly_breakdown(trades: Sequence[Trade]) -> pd.DataFrame:
    """
    Distribution of trades by calendar month of entry.  Always returns
    12 rows indexed 1..12 with columns count, wins, losses, total_pnl and
    avg_pnl (fractions; avg_pnl is 0 for empty months).
    """
    months = pd.RangeIndex(1, 13, name="month")
    if not trades:
        out = pd.DataFrame(0, index=months, columns=["count", "wins", "losses"])
        out["total_pnl"] = 0.0
        out["avg_pnl"] = 0.0
        return out
    frame = pd.DataFrame(
        {
            "month": [pd.Timestamp(t.entry_date).month for t in trades],
            "pnl": [t.pnl for t in trades],
        }
    )
    frame["win"] = frame["pnl"] > 0
    grouped = frame.groupby("month").agg(
        count=("pnl", "size"), wins=("win", "sum"), total_pnl=("pnl", "sum")
    )
    out = grouped.reindex(months, fill_value=0)
    out["count"] = out["count"].astype(int)
    out["wins"] = out["wins"].astype(int)
    out["losses"] = out["count"] - out["wins"]
    out["total_pnl"] = out["total_pnl"].astype(float)
    out["avg_pnl"] = (out["total_pnl"] / out["count"]).where(out["count"] > 0, 0.0)
    return out[["count", "wins", "losses", "total_pnl", "avg_pnl"]]


def best_month(trades: Sequence[Trade], min_trades: int = 2) -> Optional[int]:
    """
    Month (1..12) with the highest win rate among months with at least
    ``min_trades`` entries.  Months with no winners never qualify; the
    earliest month wins ties.  None when nothing qualifies.
    """
    table = monthly_breakdown(trades)
    best: Optional[int] = None
    best_rate = 0.0
    for month, row in table.iterrows():
        if row["count"] < min_trades:
            continue
        rate = row["wins"] / row["count"]
        if rate > best_rate:
            best, best_rate = int(month), rate
    return best


def top_strategy(
    reports: Mapping[Union[str, object], BacktestReport], min_trades: int = 3
) -> Optional[TopStrategy]:
    """
    Highest win‑rate fixed‑horizon result across all reports, requiring at
    least ``min_trades`` trades.  Earlier strategies/horizons win ties.
    """
    best: Optional[TopStrategy] = None
    for report in reports.values():
        for bucket, stats_by_horizon in report.buckets():
            for horizon, stats in stats_by_horizon.items():
                if stats.count < min_trades:
                    continue
                if stats.win_rate > (best.stats.win_rate if best else 0.0):
                    best = TopStrategy(report.strategy, bucket, horizon, stats)
    return best


def summarize(reports: Mapping[object, BacktestReport]) -> Dict[str, Dict[str, object]]:
    """Flat per‑strategy summary: best short/long horizon by win rate plus signal exit."""
    summary: Dict[str, Dict[str, object]] = {}
    for report in reports.values():
        row: Dict[str, object] = {}
        for bucket, stats_by_horizon in report.buckets():
            horizon, stats = max(
                stats_by_horizon.items(), key=lambda kv: kv[1].win_rate, default=(None, Stats())
            )
            row[bucket] = {"horizon": horizon, **stats.as_dict(include_trades=False)}
        row["signal"] = report.signal.as_dict(include_trades=False)
        summary[report.strategy] = row
    return summary
