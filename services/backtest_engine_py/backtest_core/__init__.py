"""Core utilities for the backtest engine.

This package provides helpers for fetching daily OHLCV bars, computing
technical indicators, generating strategy entry/exit signals, running
fixed‑horizon and signal‑exit backtests, and screening many symbols.
All indicator, signal and backtest functions are side‑effect free and
deterministic when given the same inputs.
"""

from .models import (
    HORIZON_LABELS,
    LONG_HORIZONS,
    SHORT_HORIZONS,
    BacktestReport,
    Bar,
    SignalSet,
    Stats,
    Trade,
    iter_bars,
    price_series_from_bars,
)
from .indicators import (
    FibonacciLevels,
    IndicatorKind,
    compute_adx,
    compute_bollinger,
    compute_ema,
    compute_fibonacci,
    compute_ichimoku,
    compute_indicator,
    compute_macd,
    compute_rsi,
    compute_sma,
    compute_stddev,
    compute_stochastic,
)
from .rules import Strategy, generate_signals
from .backtester import (
    calculate_stats,
    run_all_strategies,
    run_backtest,
    simulate_fixed_horizon,
    simulate_signal_exit,
    view_details,
)
from .analysis import best_month, monthly_breakdown, summarize, top_strategy
from .ohlc_fetcher import fetch_ohlc
from .screener import generate_rankings, scan_market
from .charts import find_examples

__all__ = [
    "HORIZON_LABELS",
    "LONG_HORIZONS",
    "SHORT_HORIZONS",
    "BacktestReport",
    "Bar",
    "SignalSet",
    "Stats",
    "Trade",
    "iter_bars",
    "price_series_from_bars",
    "FibonacciLevels",
    "IndicatorKind",
    "compute_adx",
    "compute_bollinger",
    "compute_ema",
    "compute_fibonacci",
    "compute_ichimoku",
    "compute_indicator",
    "compute_macd",
    "compute_rsi",
    "compute_sma",
    "compute_stddev",
    "compute_stochastic",
    "Strategy",
    "generate_signals",
    "calculate_stats",
    "run_all_strategies",
    "run_backtest",
    "simulate_fixed_horizon",
    "simulate_signal_exit",
    "view_details",
    "best_month",
    "monthly_breakdown",
    "summarize",
    "top_strategy",
    "fetch_ohlc",
    "generate_rankings",
    "scan_market",
    "find_examples",
]
