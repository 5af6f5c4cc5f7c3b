"""
Market screener: backtest every strategy on every symbol and rank results.

Symbols are fetched and evaluated one at a time with a short pause
between provider requests.  A symbol that fails (network error, too few
bars, bad data) is logged and counted but never aborts the scan.
Rankings keep the best row per symbol, ordered by win rate.
"""
from __future__ import annotations

import asyncio
import datetime as dt
import math
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from . import config
from .analysis import best_month
from .backtester import run_all_strategies
from .config import get_logger
from .indicators import (
    compute_adx,
    compute_bollinger,
    compute_ichimoku,
    compute_macd,
    compute_rsi,
    compute_sma,
)
from .models import HORIZON_LABELS, BacktestReport, Trade
from .ohlc_fetcher import fetch_ohlc
from .rules import Strategy

logger = get_logger("backtest_core.screener")

Fetcher = Callable[[str, dt.datetime, dt.datetime], Awaitable[pd.DataFrame]]

DEFAULT_UNIVERSE: Dict[str, List[str]] = {
    "Banking": ["VCB", "BID", "CTG", "MBB", "TCB", "ACB", "VPB", "HDB", "STB", "VIB",
                "TPB", "EIB", "SHB", "OCB", "MSB", "SSB", "LPB"],
    "Real Estate": ["VIC", "VHM", "VRE", "NVL", "KDH", "PDR", "DIG", "DXG", "NLG", "KBC",
                    "VPI", "HDG", "CRE", "AGG", "TCH", "SCR", "HQC", "DXS"],
    "Securities": ["SSI", "VND", "VCI", "HCM", "FTS", "BSI", "CTS", "AGR", "VIX", "ORS", "TVS"],
    "Steel & Materials": ["HPG", "HSG", "NKG", "VGS", "POM", "HT1", "BCC"],
    "Food & Beverage": ["VNM", "MSN", "SAB", "KDC", "SBT", "VHC", "ANV", "DBC", "PAN", "LTG"],
    "Retail & Technology": ["MWG", "PNJ", "FRT", "PET", "DGW", "FPT", "CMG", "ELC"],
    "Oil, Gas & Energy": ["GAS", "PLX", "POW", "PVD", "PVT", "PXS", "GEG", "NT2", "REE", "PC1"],
    "Fertilizers & Chemicals": ["DPM", "DCM", "DGC", "CSV", "GVR", "PHR", "DPR"],
    "Transport & Ports": ["GMD", "VJC", "HVN", "HAH", "VOS", "ACV", "PHP", "SGP", "VNA"],
    "Other": ["VEA", "G36", "C4G"],
}

STRATEGY_CONDITIONS: Dict[Strategy, Dict[str, str]] = {
    Strategy.RSI: {
        "buy": "Buy when RSI < 30 (oversold)",
        "sell": "Sell when RSI > 70 (overbought) or the target is reached",
    },
    Strategy.MACD: {
        "buy": "Buy when MACD crosses above its signal line",
        "sell": "Sell when MACD crosses below its signal line or the target is reached",
    },
    Strategy.BOLLINGER: {
        "buy": "Buy when price touches the lower Bollinger band",
        "sell": "Sell when price touches the upper Bollinger band or the target is reached",
    },
    Strategy.SMA20: {
        "buy": "Buy when price crosses above SMA(20)",
        "sell": "Sell when price crosses below SMA(20) or the target is reached",
    },
    Strategy.SMA50: {
        "buy": "Buy when price crosses above SMA(50)",
        "sell": "Sell when price crosses below SMA(50) or the target is reached",
    },
    Strategy.SMA200: {
        "buy": "Buy when price crosses above SMA(200) (long-term trend)",
        "sell": "Sell when price crosses below SMA(200) or the target is reached",
    },
    Strategy.ICHIMOKU: {
        "buy": "Buy when price breaks out above the Kumo cloud",
        "sell": "Sell when price breaks down below the Kumo cloud or the target is reached",
    },
    Strategy.ADX: {
        "buy": "Buy when ADX > 20 and +DI crosses above -DI (strong trend)",
        "sell": "Sell when +DI crosses below -DI or ADX weakens",
    },
}


def all_symbols(universe: Optional[Dict[str, List[str]]] = None) -> List[str]:
    """Unique symbols of the universe in first‑seen order."""
    seen: Dict[str, None] = {}
    for symbols in (universe or DEFAULT_UNIVERSE).values():
        for s in symbols:
            seen.setdefault(s, None)
    return list(seen)


def sector_of(symbol: str, universe: Optional[Dict[str, List[str]]] = None) -> str:
    for sector, symbols in (universe or DEFAULT_UNIVERSE).items():
        if symbol in symbols:
            return sector
    return "Other"


# ──────────────────────────────────────────────────────────────────────────────
# Result types
# ──────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Zones:
    """Indicator‑derived price anchors at the last bar of a series."""

    buy_zone: float
    sell_zone: float
    value: float
    name: str
    description: str


@dataclass(frozen=True)
class SymbolResult:
    symbol: str
    reports: Dict[Strategy, BacktestReport]
    zones: Dict[Strategy, Zones]
    last_price: float
    data_points: int
    first_date: pd.Timestamp
    last_date: pd.Timestamp


@dataclass(frozen=True)
class ScanProgress:
    current: int
    total: int
    symbol: str
    percent: int
    errors: int


@dataclass(frozen=True)
class ScanResult:
    results: Dict[str, SymbolResult]
    failed: Tuple[str, ...] = ()

    @property
    def errors(self) -> int:
        return len(self.failed)


@dataclass(frozen=True)
class Recommendation:
    buy_price: float
    buy_low: float
    buy_high: float
    target_price: float
    stop_loss: float
    stop_loss_pct: float
    expected_return_pct: float
    risk_reward: float
    conditions: Dict[str, str]
    best_month: Optional[int]
    horizon_label: str
    indicator_name: str
    indicator_value: float
    zone_description: str


@dataclass(frozen=True)
class RankingRow:
    symbol: str
    sector: str
    strategy: Strategy
    bucket: str
    horizon: int
    win_rate: float
    avg_return: float
    total_return: float
    max_win: float
    max_loss: float
    trades: int
    wins: int
    losses: int
    last_price: float
    all_trades: Tuple[Trade, ...] = field(default=(), repr=False)
    recommendation: Optional[Recommendation] = None

    @property
    def strategy_label(self) -> str:
        return self.strategy.label

    @property
    def horizon_label(self) -> str:
        return HORIZON_LABELS.get(self.horizon, str(self.horizon))


@dataclass(frozen=True)
class Rankings:
    short_term: List[RankingRow]
    long_term: List[RankingRow]
    total_symbols_scanned: int
    total_strategies: int


# ──────────────────────────────────────────────────────────────────────────────
# Zones & recommendations
# ──────────────────────────────────────────────────────────────────────────────

def _last(series: pd.Series) -> float:
    return float(series.iloc[-1]) if len(series) else math.nan


def _positive(value: float) -> bool:
    return not math.isnan(value) and value > 0


def dynamic_zones(strategy: Strategy, df: pd.DataFrame) -> Zones:
    """Buy/sell anchors from the strategy's indicator at the last bar."""
    strategy = Strategy(strategy)
    close = df["close"]
    last_close = _last(close)
    if strategy is Strategy.RSI:
        return Zones(last_close, last_close * 1.05, _last(compute_rsi(close, 14)),
                     "RSI(14)", "RSI below 30")
    if strategy is Strategy.BOLLINGER:
        bb = compute_bollinger(close, 20, 2.0)
        lower, upper = _last(bb["bb_lower"]), _last(bb["bb_upper"])
        return Zones(lower, upper, lower, "BB Lower", "Lower Bollinger band")
    if strategy is Strategy.MACD:
        hist = _last(compute_macd(close)["macd_diff"])
        return Zones(last_close, last_close * 1.05, hist, "MACD Hist", "MACD above signal")
    if strategy in (Strategy.SMA20, Strategy.SMA50, Strategy.SMA200):
        period = strategy.warmup
        sma = _last(compute_sma(close, period))
        return Zones(sma, sma * 1.1, sma, f"SMA({period})", f"SMA({period}) line")
    if strategy is Strategy.ICHIMOKU:
        span_b = _last(compute_ichimoku(df)["span_b"])
        return Zones(span_b, span_b * 1.1, span_b, "Kumo Cloud", "Kumo cloud")
    if strategy is Strategy.ADX:
        adx = _last(compute_adx(df, 14)["adx"])
        return Zones(last_close, last_close * 1.05, adx, "ADX(14)", "ADX above 20")
    raise ValueError(f"Unsupported strategy {strategy!r}")


# strategies whose signal is not a price level keep the last close as buy anchor
_SIGNAL_ONLY = {Strategy.RSI, Strategy.MACD, Strategy.ADX}


def generate_recommendation(row: RankingRow, zones: Optional[Zones] = None) -> Recommendation:
    """
    Trade plan for a ranked row: buy zone ±2% around the anchor, target
    from the average return (at least 8%) or the indicator's sell zone,
    stop loss from the worst historical loss capped at 6%.
    """
    buy_price = row.last_price
    if zones is not None and _positive(zones.buy_zone) and row.strategy not in _SIGNAL_ONLY:
        buy_price = zones.buy_zone

    expected = max(row.avg_return / 100, 0.08)
    target_price = buy_price * (1 + expected)
    if zones is not None and _positive(zones.sell_zone) and zones.sell_zone > buy_price * 1.02:
        target_price = zones.sell_zone

    stop_loss_pct = min(abs(row.max_loss) / 100, 0.06) or 0.06
    stop_loss = buy_price * (1 - stop_loss_pct)
    risk = buy_price - stop_loss
    reward = target_price - buy_price
    risk_reward = round(reward / risk, 1) if risk > 0 else 1.0

    return Recommendation(
        buy_price=buy_price,
        buy_low=buy_price * 0.98,
        buy_high=buy_price * 1.02,
        target_price=target_price,
        stop_loss=stop_loss,
        stop_loss_pct=round(stop_loss_pct * 100, 1),
        expected_return_pct=round((target_price - buy_price) / buy_price * 100, 1),
        risk_reward=risk_reward,
        conditions=STRATEGY_CONDITIONS[row.strategy],
        best_month=best_month(row.all_trades),
        horizon_label=row.horizon_label,
        indicator_name=zones.name if zones else "",
        indicator_value=zones.value if zones else math.nan,
        zone_description=zones.description if zones else "",
    )


# ──────────────────────────────────────────────────────────────────────────────
# Scan & rank
# ──────────────────────────────────────────────────────────────────────────────

def evaluate_symbol(symbol: str, df: pd.DataFrame) -> SymbolResult:
    """Run every strategy over one symbol's series."""
    reports = run_all_strategies(df)
    zones = {s: dynamic_zones(s, df) for s in Strategy}
    return SymbolResult(
        symbol=symbol,
        reports=reports,
        zones=zones,
        last_price=float(df["close"].iloc[-1]),
        data_points=len(df),
        first_date=df.index[0],
        last_date=df.index[-1],
    )


async def scan_market(
    symbols: Sequence[str],
    start: dt.datetime,
    end: dt.datetime,
    fetch: Fetcher = fetch_ohlc,
    min_bars: int = 100,
    delay: Optional[float] = None,
    on_progress: Optional[Callable[[ScanProgress], None]] = None,
) -> ScanResult:
    """
    Fetch and backtest each symbol sequentially.  Symbols with fewer than
    ``min_bars`` bars or that raise are recorded in ``failed``.
    """
    delay = config.SCREENER_REQUEST_DELAY_SECS if delay is None else delay
    results: Dict[str, SymbolResult] = {}
    failed: List[str] = []
    total = len(symbols)

    for n, symbol in enumerate(symbols):
        if on_progress:
            on_progress(ScanProgress(n, total, symbol, round(n / total * 100), len(failed)))
        try:
            df = await fetch(symbol, start, end)
            if len(df) < min_bars:
                logger.info("Skipping %s: %d bars (< %d)", symbol, len(df), min_bars)
                failed.append(symbol)
            else:
                results[symbol] = evaluate_symbol(symbol, df)
        except Exception:
            logger.exception("Error processing %s", symbol)
            failed.append(symbol)
        if delay and n < total - 1:
            await asyncio.sleep(delay)

    if on_progress:
        on_progress(ScanProgress(total, total, "DONE", 100, len(failed)))
    logger.info("Scan finished: %d ok, %d failed", len(results), len(failed))
    return ScanResult(results=results, failed=tuple(failed))


def _rows_for(result: SymbolResult, sector: str, bucket: str, min_trades: int) -> List[RankingRow]:
    rows = []
    for strategy, report in result.reports.items():
        stats_by_horizon = report.short if bucket == "short" else report.long
        for horizon, stats in stats_by_horizon.items():
            if stats.count < min_trades:
                continue
            rows.append(
                RankingRow(
                    symbol=result.symbol,
                    sector=sector,
                    strategy=strategy,
                    bucket=bucket,
                    horizon=horizon,
                    win_rate=stats.win_rate,
                    avg_return=stats.avg_return,
                    total_return=stats.avg_return * stats.count,
                    max_win=stats.max_win,
                    max_loss=stats.max_loss,
                    trades=stats.count,
                    wins=stats.wins,
                    losses=stats.losses,
                    last_price=result.last_price,
                    all_trades=stats.trades,
                )
            )
    return rows


def _top_unique(rows: List[RankingRow], top_n: int) -> List[RankingRow]:
    rows = sorted(rows, key=lambda r: r.win_rate, reverse=True)
    seen = set()
    unique = []
    for row in rows:
        if row.symbol in seen:
            continue
        seen.add(row.symbol)
        unique.append(row)
    return unique[:top_n]


def generate_rankings(
    scan: ScanResult,
    top_n: int = 10,
    min_trades_short: int = 5,
    min_trades_long: int = 3,
    universe: Optional[Dict[str, List[str]]] = None,
) -> Rankings:
    """
    Rank (symbol, strategy, horizon) rows by win rate, separately for the
    short and long buckets, keeping only the best row per symbol.
    """
    short_rows: List[RankingRow] = []
    long_rows: List[RankingRow] = []
    for symbol, result in scan.results.items():
        sector = sector_of(symbol, universe)
        short_rows.extend(_rows_for(result, sector, "short", min_trades_short))
        long_rows.extend(_rows_for(result, sector, "long", min_trades_long))

    def _with_plan(rows: List[RankingRow]) -> List[RankingRow]:
        return [
            replace(r, recommendation=generate_recommendation(
                r, scan.results[r.symbol].zones.get(r.strategy)))
            for r in rows
        ]

    return Rankings(
        short_term=_with_plan(_top_unique(short_rows, top_n)),
        long_term=_with_plan(_top_unique(long_rows, top_n)),
        total_symbols_scanned=len(scan.results),
        total_strategies=len(Strategy),
    )
