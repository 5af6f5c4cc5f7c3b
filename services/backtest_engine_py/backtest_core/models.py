"""
Value types shared by the indicator, signal and backtest modules.

A price series is a pandas DataFrame indexed by UTC timestamps with the
float columns ``open``, ``high``, ``low``, ``close`` and ``volume``.
Everything produced from it (trades, stats, reports) is immutable.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Tuple

import pandas as pd

OHLCV_COLUMNS = ["open", "high", "low", "close", "volume"]

SHORT_HORIZONS: Tuple[int, ...] = (3, 5, 9, 14)
LONG_HORIZONS: Tuple[int, ...] = (65, 130, 195, 260)  # ~3, 6, 9, 12 months

HORIZON_LABELS: Dict[Any, str] = {
    3: "3 Days",
    5: "5 Days",
    9: "9 Days",
    14: "14 Days",
    65: "3 Months",
    130: "6 Months",
    195: "9 Months",
    260: "1 Year",
    "signal": "Signal Exit",
}


@dataclass(frozen=True)
class Bar:
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: int


def price_series_from_bars(bars: Iterable[Bar]) -> pd.DataFrame:
    """Build a price series frame from bars given in chronological order."""
    bars = list(bars)
    df = pd.DataFrame(
        [[b.open, b.high, b.low, b.close, b.volume] for b in bars],
        columns=OHLCV_COLUMNS,
        dtype=float,
    )
    df.index = pd.to_datetime([b.timestamp for b in bars], unit="s", utc=True)
    df.index.name = "date"
    return df


def price_series_from_dchart(payload: Dict[str, Any]) -> pd.DataFrame:
    """
    Convert a UDF history payload (``t``, ``o``, ``h``, ``l``, ``c``, ``v``
    arrays) into a price series frame.  Rows come back in payload order.
    """
    ts = payload.get("t") or []
    if not ts:
        return pd.DataFrame(columns=OHLCV_COLUMNS)
    df = pd.DataFrame(
        {
            "open": payload.get("o"),
            "high": payload.get("h"),
            "low": payload.get("l"),
            "close": payload.get("c"),
            "volume": payload.get("v"),
        }
    ).astype(float)
    df.index = pd.to_datetime(ts, unit="s", utc=True)
    df.index.name = "date"
    return df


def iter_bars(df: pd.DataFrame) -> Iterator[Bar]:
    for ts, row in zip(df.index, df.itertuples(index=False)):
        yield Bar(
            timestamp=int(pd.Timestamp(ts).timestamp()),
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=int(row.volume),
        )


@dataclass(frozen=True)
class SignalSet:
    """Ascending positional indices of entry and exit bars."""

    entries: Tuple[int, ...] = ()
    exits: Tuple[int, ...] = ()


@dataclass(frozen=True)
class Trade:
    entry_date: pd.Timestamp
    entry_price: float
    exit_date: pd.Timestamp
    exit_price: float
    days: int
    pnl: float

    def as_dict(self) -> Dict[str, Any]:
        return {
            "entry_date": self.entry_date.isoformat(),
            "entry_price": float(self.entry_price),
            "exit_date": self.exit_date.isoformat(),
            "exit_price": float(self.exit_price),
            "days": int(self.days),
            "pnl": float(self.pnl),
        }


@dataclass(frozen=True)
class Stats:
    count: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    avg_return: float = 0.0
    max_win: float = 0.0
    max_loss: float = 0.0
    trades: Tuple[Trade, ...] = ()

    @classmethod
    def empty(cls) -> "Stats":
        return cls()

    def as_dict(self, include_trades: bool = True) -> Dict[str, Any]:
        out = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "trades"}
        if include_trades:
            out["trades"] = [t.as_dict() for t in self.trades]
        return out


@dataclass(frozen=True)
class BacktestReport:
    """Per-strategy results: fixed-horizon stats per bucket plus signal-exit stats."""

    strategy: str
    short: Mapping[int, Stats] = field(default_factory=dict)
    long: Mapping[int, Stats] = field(default_factory=dict)
    signal: Stats = field(default_factory=Stats.empty)

    def __post_init__(self) -> None:
        object.__setattr__(self, "short", MappingProxyType(dict(self.short)))
        object.__setattr__(self, "long", MappingProxyType(dict(self.long)))

    def buckets(self) -> List[Tuple[str, Mapping[int, Stats]]]:
        return [("short", self.short), ("long", self.long)]

    def as_dict(self, include_trades: bool = False) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "short": {str(h): s.as_dict(include_trades) for h, s in self.short.items()},
            "long": {str(h): s.as_dict(include_trades) for h, s in self.long.items()},
            "signal": self.signal.as_dict(include_trades),
        }
