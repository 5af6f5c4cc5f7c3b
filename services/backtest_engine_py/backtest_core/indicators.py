"""Implement common technical indicators using pure pandas.

This module provides stand‑alone implementations of SMA, EMA, standard
deviation, Bollinger Bands, RSI, MACD, the Stochastic Oscillator,
Ichimoku Cloud, ADX and Fibonacci retracement levels without relying on
external TA libraries.

Every function returns freshly allocated pandas objects aligned to the
input index.  NaN marks positions that are undefined because of
insufficient warm‑up history; nothing here raises on numeric data.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np
import pandas as pd

FIB_LEVELS: Tuple[float, ...] = (0.0, 0.236, 0.382, 0.5, 0.618, 0.786, 1.0)


def _check_window(value: int, name: str = "window") -> None:
    if int(value) != value or value < 1:
        raise ValueError(f"{name} must be a positive integer, got {value!r}")


def _nan_like(series: pd.Series) -> pd.Series:
    return pd.Series(np.nan, index=series.index, dtype=float)


def _wilder_mean(values: pd.Series, period: int, start: int, seed: float) -> pd.Series:
    """
    Wilder smoothing ``avg[i] = (avg[i-1] * (period - 1) + values[i]) / period``
    seeded with ``seed`` at position ``start``.  Earlier positions are NaN.
    """
    out = _nan_like(values)
    if start >= len(values):
        return out
    tail = values.iloc[start:].astype(float).copy()
    tail.iloc[0] = seed
    out.iloc[start:] = tail.ewm(alpha=1.0 / period, adjust=False).mean().to_numpy()
    return out


def _rolling_midpoint(df: pd.DataFrame, period: int) -> pd.Series:
    highest = df["high"].rolling(window=period, min_periods=period).max()
    lowest = df["low"].rolling(window=period, min_periods=period).min()
    return (highest + lowest) / 2


def compute_sma(close: pd.Series, window: int) -> pd.Series:
    """
    Compute the simple moving average (SMA) over the given window.
    Missing values in the initial window remain NaN to avoid look‑ahead.
    """
    _check_window(window)
    return close.astype(float).rolling(window=window, min_periods=window).mean()


def compute_ema(close: pd.Series, window: int) -> pd.Series:
    """
    Compute the exponential moving average (EMA) with ``k = 2/(window+1)``.

    The first defined value sits ``window - 1`` bars after the first
    non‑NaN input and equals the SMA of those ``window`` values; the
    recursion ``ema = (x - prev) * k + prev`` runs from there.  Leading
    NaNs are skipped so derived series (e.g. the MACD line) can be
    smoothed with the same function.
    """
    _check_window(window)
    values = close.astype(float)
    out = _nan_like(values)
    valid = values.notna().to_numpy()
    if not valid.any():
        return out
    first = int(np.argmax(valid))
    tail = values.iloc[first:]
    if len(tail) < window:
        return out
    seeded = tail.iloc[window - 1:].copy()
    seeded.iloc[0] = tail.iloc[:window].mean()
    ema = seeded.ewm(span=window, adjust=False).mean()
    out.iloc[first + window - 1:] = ema.to_numpy()
    return out


def compute_stddev(close: pd.Series, window: int) -> pd.Series:
    """Rolling population standard deviation of ``close`` (same warm‑up as SMA)."""
    _check_window(window)
    return close.astype(float).rolling(window=window, min_periods=window).std(ddof=0)


def compute_rsi(close: pd.Series, window: int = 14) -> pd.Series:
    """
    Compute the Relative Strength Index (RSI) using Wilder’s method.

    The first ``window`` price changes are averaged to seed the average
    gain and loss at index ``window``; later values are Wilder‑smoothed.
    RSI is 100 whenever the average loss is zero.  Oversold <30,
    overbought >70.
    """
    _check_window(window)
    close = close.astype(float)
    if len(close) <= window:
        return _nan_like(close)
    delta = close.diff()
    gain = delta.clip(lower=0.0)
    loss = (-delta).clip(lower=0.0)
    avg_gain = _wilder_mean(gain, window, window, gain.iloc[1:window + 1].mean())
    avg_loss = _wilder_mean(loss, window, window, loss.iloc[1:window + 1].mean())
    rs = avg_gain / avg_loss
    rsi = 100 - (100 / (1 + rs))
    return rsi.where(avg_loss != 0, 100.0)


def compute_macd(
    close: pd.Series, fast: int = 12, slow: int = 26, signal: int = 9
) -> pd.DataFrame:
    """
    Compute the Moving Average Convergence Divergence (MACD).
    Returns a DataFrame with columns macd, macd_signal and macd_diff.
    The signal line is the EMA of the MACD line from its first defined value.
    """
    ema_fast = compute_ema(close, fast)
    ema_slow = compute_ema(close, slow)
    macd_line = ema_fast - ema_slow
    signal_line = compute_ema(macd_line, signal)
    macd_diff = macd_line - signal_line
    return pd.DataFrame(
        {"macd": macd_line, "macd_signal": signal_line, "macd_diff": macd_diff}
    )


def compute_bollinger(
    close: pd.Series, window: int = 20, n_std: float = 2.0
) -> pd.DataFrame:
    """
    Compute Bollinger Bands (lower, mid, upper) using a rolling mean
    (mid band) and rolling population standard deviation.  Missing
    values in the initial window remain NaN.
    """
    mid = compute_sma(close, window)
    std = compute_stddev(close, window)
    upper = mid + n_std * std
    lower = mid - n_std * std
    return pd.DataFrame({"bb_lower": lower, "bb_mid": mid, "bb_upper": upper})


def compute_stochastic(
    df: pd.DataFrame, period: int = 14, smooth_k: int = 3, smooth_d: int = 3
) -> pd.DataFrame:
    """
    Slow stochastic oscillator.  Raw %K is the close's position inside the
    trailing ``period`` high/low range (50 when the range is flat); the
    reported %K is its ``smooth_k`` SMA and %D the ``smooth_d`` SMA of %K.
    """
    _check_window(period, "period")
    highest = df["high"].rolling(window=period, min_periods=period).max()
    lowest = df["low"].rolling(window=period, min_periods=period).min()
    span = highest - lowest
    raw_k = (100 * (df["close"] - lowest) / span).where(span != 0, 50.0)
    k = compute_sma(raw_k, smooth_k)
    d = compute_sma(k, smooth_d)
    return pd.DataFrame({"stoch_k": k, "stoch_d": d})


def compute_ichimoku(
    df: pd.DataFrame,
    conversion: int = 9,
    base: int = 26,
    span_b: int = 52,
    displacement: int = 26,
) -> pd.DataFrame:
    """
    Ichimoku Kinko Hyo aligned to the bars of ``df``.

    ``span_a``/``span_b`` at row *i* hold the values computed
    ``displacement`` bars earlier, i.e. what a chart projects onto bar
    *i*.  ``lagging`` at row *i* is the close ``displacement`` bars in the
    future (NaN for the last ``displacement`` rows), so it must never be
    used to generate signals.
    """
    for name, value in (("conversion", conversion), ("base", base), ("span_b", span_b)):
        _check_window(value, name)
    if displacement < 0:
        raise ValueError(f"displacement must be non-negative, got {displacement!r}")
    tenkan = _rolling_midpoint(df, conversion)
    kijun = _rolling_midpoint(df, base)
    return pd.DataFrame(
        {
            "tenkan": tenkan,
            "kijun": kijun,
            "span_a": ((tenkan + kijun) / 2).shift(displacement),
            "span_b": _rolling_midpoint(df, span_b).shift(displacement),
            "lagging": df["close"].astype(float).shift(-displacement),
        }
    )


def compute_adx(df: pd.DataFrame, period: int = 14) -> pd.DataFrame:
    """
    Average Directional Index with +DI/-DI.

    True range and directional movement are summed over the first
    ``period`` bars to seed the smoothed values at index ``period``, then
    Wilder‑smoothed.  DX is 0 when +DI and -DI are both 0.  ADX starts as
    the plain average of the first ``period`` DX values and is
    Wilder‑smoothed after that.
    """
    _check_window(period, "period")
    high = df["high"].astype(float)
    low = df["low"].astype(float)
    prev_close = df["close"].astype(float).shift(1)

    # first bar has no previous close, so its TR falls back to high - low
    tr = pd.concat(
        [high - low, (high - prev_close).abs(), (low - prev_close).abs()], axis=1
    ).max(axis=1)
    up_move = high - high.shift(1)
    down_move = low.shift(1) - low
    plus_dm = up_move.where((up_move > down_move) & (up_move > 0), 0.0)
    minus_dm = down_move.where((down_move > up_move) & (down_move > 0), 0.0)

    # Smoothed sums scaled by 1/period; the factor cancels in the DI ratios.
    tr_s = _wilder_mean(tr, period, period, tr.iloc[:period].mean())
    plus_s = _wilder_mean(plus_dm, period, period, plus_dm.iloc[:period].mean())
    minus_s = _wilder_mean(minus_dm, period, period, minus_dm.iloc[:period].mean())

    plus_di = (100 * plus_s / tr_s).where(tr_s != 0, 0.0)
    minus_di = (100 * minus_s / tr_s).where(tr_s != 0, 0.0)
    di_sum = plus_di + minus_di
    dx = (100 * (plus_di - minus_di).abs() / di_sum).where(di_sum != 0, 0.0)

    adx = _wilder_mean(dx, period, 2 * period - 1, dx.iloc[period:2 * period].mean())
    return pd.DataFrame({"adx": adx, "plus_di": plus_di, "minus_di": minus_di})


@dataclass(frozen=True)
class FibonacciLevels:
    max_high: float
    min_low: float
    levels: Tuple[Tuple[float, float, str], ...]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "max": self.max_high,
            "min": self.min_low,
            "levels": [
                {"level": level, "price": price, "text": text}
                for level, price, text in self.levels
            ],
        }


def compute_fibonacci(df: pd.DataFrame) -> Optional[FibonacciLevels]:
    """
    Retracement levels between the highest high and lowest low of the
    whole frame.  Not aligned to bars; returns None for an empty frame.
    """
    if df.empty:
        return None
    max_high = float(df["high"].max())
    min_low = float(df["low"].min())
    diff = max_high - min_low
    levels = []
    for level in FIB_LEVELS:
        if level == 0.0:
            price, text = max_high, "0% (High)"
        elif level == 1.0:
            price, text = min_low, "100% (Low)"
        else:
            price, text = max_high - diff * level, f"{level * 100:g}%"
        levels.append((level, price, text))
    return FibonacciLevels(max_high=max_high, min_low=min_low, levels=tuple(levels))


class IndicatorKind(str, Enum):
    SMA = "sma"
    EMA = "ema"
    BOLLINGER = "bollinger"
    STDDEV = "stddev"
    RSI = "rsi"
    MACD = "macd"
    STOCHASTIC = "stochastic"
    ICHIMOKU = "ichimoku"
    ADX = "adx"
    FIBONACCI = "fibonacci"


_CLOSE_INDICATORS = {
    IndicatorKind.SMA: compute_sma,
    IndicatorKind.EMA: compute_ema,
    IndicatorKind.STDDEV: compute_stddev,
    IndicatorKind.BOLLINGER: compute_bollinger,
    IndicatorKind.RSI: compute_rsi,
    IndicatorKind.MACD: compute_macd,
}

_FRAME_INDICATORS = {
    IndicatorKind.STOCHASTIC: compute_stochastic,
    IndicatorKind.ICHIMOKU: compute_ichimoku,
    IndicatorKind.ADX: compute_adx,
    IndicatorKind.FIBONACCI: compute_fibonacci,
}

# kinds that must be called with window=
_NEEDS_WINDOW = {IndicatorKind.SMA, IndicatorKind.EMA, IndicatorKind.STDDEV}


def compute_indicator(
    kind: Union[IndicatorKind, str], df: pd.DataFrame, **params: Any
) -> Union[pd.Series, pd.DataFrame, FibonacciLevels, None]:
    """
    Compute one indicator by kind over an OHLCV frame.

    Close‑based indicators (SMA, EMA, StdDev, Bollinger, RSI, MACD) receive
    ``df["close"]``; the rest receive the whole frame.  ``params`` are
    forwarded as keyword arguments, e.g. ``compute_indicator("sma", df,
    window=20)``.  Raises ValueError for an unknown kind or a missing
    window.
    """
    kind = IndicatorKind(kind)
    if kind in _NEEDS_WINDOW and "window" not in params:
        raise ValueError(f"{kind.value} requires a window")
    if kind in _CLOSE_INDICATORS:
        return _CLOSE_INDICATORS[kind](df["close"], **params)
    return _FRAME_INDICATORS[kind](df, **params)
