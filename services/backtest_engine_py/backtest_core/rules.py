"""
Define trading signal rules based on indicator series.

Each supported strategy turns one or two indicator series into a
:class:`~backtest_core.models.SignalSet`: ascending positional indices of
entry bars and exit bars.  Positions before a strategy's warm‑up are
never reported, and NaN never satisfies a condition.
"""
from __future__ import annotations

from enum import Enum
from typing import Tuple

import numpy as np
import pandas as pd

from .indicators import (
    compute_adx,
    compute_bollinger,
    compute_ichimoku,
    compute_macd,
    compute_rsi,
    compute_sma,
)
from .models import SignalSet

RSI_OVERSOLD = 30.0
RSI_OVERBOUGHT = 70.0
ADX_TREND_THRESHOLD = 20.0


class Strategy(str, Enum):
    RSI = "rsi"
    BOLLINGER = "bollinger"
    MACD = "macd"
    SMA20 = "sma20"
    SMA50 = "sma50"
    SMA200 = "sma200"
    ICHIMOKU = "ichimoku"
    ADX = "adx"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def warmup(self) -> int:
        """First bar index the strategy may signal on."""
        return _WARMUP[self]


_LABELS = {
    Strategy.RSI: "RSI (14)",
    Strategy.BOLLINGER: "Bollinger Bands",
    Strategy.MACD: "MACD (12,26,9)",
    Strategy.SMA20: "SMA 20",
    Strategy.SMA50: "SMA 50",
    Strategy.SMA200: "SMA 200",
    Strategy.ICHIMOKU: "Ichimoku Cloud",
    Strategy.ADX: "ADX (14) Trend",
}

_WARMUP = {
    Strategy.RSI: 14,
    Strategy.BOLLINGER: 20,
    Strategy.MACD: 26,
    Strategy.SMA20: 20,
    Strategy.SMA50: 50,
    Strategy.SMA200: 200,
    Strategy.ICHIMOKU: 52,
    Strategy.ADX: 14,
}


def cross_up(series1: pd.Series, series2: pd.Series) -> pd.Series:
    """Return True where series1 moves from <= series2 to > series2."""
    return (series1.shift(1) <= series2.shift(1)) & (series1 > series2)


def cross_down(series1: pd.Series, series2: pd.Series) -> pd.Series:
    """Return True where series1 moves from >= series2 to < series2."""
    return (series1.shift(1) >= series2.shift(1)) & (series1 < series2)


def mask_to_indices(mask: pd.Series, start: int = 0) -> Tuple[int, ...]:
    """Positional indices where ``mask`` is True, ignoring positions before ``start``."""
    positions = np.flatnonzero(mask.fillna(False).to_numpy(dtype=bool))
    return tuple(int(i) for i in positions if i >= start)


def rsi_signals(close: pd.Series, start: int = 14) -> SignalSet:
    """Enter on every oversold bar, exit on every overbought bar."""
    rsi = compute_rsi(close, 14)
    return SignalSet(
        entries=mask_to_indices(rsi < RSI_OVERSOLD, start),
        exits=mask_to_indices(rsi > RSI_OVERBOUGHT, start),
    )


def bollinger_signals(close: pd.Series, start: int = 20) -> SignalSet:
    """Contrarian band touch: enter below the lower band, exit above the upper band."""
    bb = compute_bollinger(close, 20, 2.0)
    return SignalSet(
        entries=mask_to_indices(close < bb["bb_lower"], start),
        exits=mask_to_indices(close > bb["bb_upper"], start),
    )


def crossover_signals(series_a: pd.Series, series_b: pd.Series, start: int) -> SignalSet:
    """
    Enter where ``series_a`` crosses above ``series_b`` and exit where it
    crosses below.  NaN on either side of either bar suppresses the cross.
    """
    return SignalSet(
        entries=mask_to_indices(cross_up(series_a, series_b), start),
        exits=mask_to_indices(cross_down(series_a, series_b), start),
    )


def macd_signals(close: pd.Series, start: int = 26) -> SignalSet:
    macd = compute_macd(close, 12, 26, 9)
    return crossover_signals(macd["macd"], macd["macd_signal"], start)


def sma_signals(close: pd.Series, window: int) -> SignalSet:
    """Price crossing its own SMA."""
    return crossover_signals(close, compute_sma(close, window), window)


def ichimoku_signals(df: pd.DataFrame, start: int = 52) -> SignalSet:
    """
    Kumo breakout: enter when the close moves from at/below the cloud top
    to above it, exit when it moves from at/above the cloud bottom to
    below it.  Both closes are compared with the cloud at the current bar.
    """
    ichi = compute_ichimoku(df)
    # np.maximum/np.minimum propagate NaN, so bars without a cloud never match
    top = pd.Series(np.maximum(ichi["span_a"], ichi["span_b"]), index=df.index)
    bottom = pd.Series(np.minimum(ichi["span_a"], ichi["span_b"]), index=df.index)
    close = df["close"]
    prev_close = close.shift(1)
    return SignalSet(
        entries=mask_to_indices((prev_close <= top) & (close > top), start),
        exits=mask_to_indices((prev_close >= bottom) & (close < bottom), start),
    )


def adx_signals(df: pd.DataFrame, start: int = 14) -> SignalSet:
    """+DI/-DI crossovers, only while ADX shows a trend (ADX > 20)."""
    adx = compute_adx(df, 14)
    trending = adx["adx"] > ADX_TREND_THRESHOLD
    return SignalSet(
        entries=mask_to_indices(trending & cross_up(adx["plus_di"], adx["minus_di"]), start),
        exits=mask_to_indices(trending & cross_down(adx["plus_di"], adx["minus_di"]), start),
    )


def generate_signals(df: pd.DataFrame, strategy: Strategy | str) -> SignalSet:
    """
    Compute the entry/exit signal set of ``strategy`` over an OHLCV frame.
    Raises ValueError for an unknown strategy key.
    """
    strategy = Strategy(strategy)
    close = df["close"].astype(float)
    if strategy is Strategy.RSI:
        return rsi_signals(close, strategy.warmup)
    if strategy is Strategy.BOLLINGER:
        return bollinger_signals(close, strategy.warmup)
    if strategy is Strategy.MACD:
        return macd_signals(close, strategy.warmup)
    if strategy in (Strategy.SMA20, Strategy.SMA50, Strategy.SMA200):
        return sma_signals(close, strategy.warmup)
    if strategy is Strategy.ICHIMOKU:
        return ichimoku_signals(df, strategy.warmup)
    if strategy is Strategy.ADX:
        return adx_signals(df, strategy.warmup)
    raise ValueError(f"Unsupported strategy {strategy!r}")
