# backtest_core/ohlc_fetcher.py
"""Fetch historical daily OHLCV bars from a UDF‑style chart history API.

The endpoint answers ``/dchart/history?resolution=D&symbol=&from=&to=``
with parallel ``t/o/h/l/c/v`` arrays (seconds since epoch).  Rate limits
and server errors are retried with exponential backoff.

The returned frame is what the core expects: UTC ``DatetimeIndex``
strictly increasing with no duplicates, float OHLCV columns, no rows
with missing prices.
"""
from __future__ import annotations

import asyncio
import datetime as dt
from typing import Optional

import httpx
import pandas as pd

from . import config
from .config import get_logger
from .models import OHLCV_COLUMNS, price_series_from_dchart

logger = get_logger("backtest_core.ohlc_fetcher")

logger.info("Chart history base=%s retries=%s", config.DCHART_BASE_URL, config.DCHART_MAX_RETRIES)

# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────

def _to_utc_ts(ts: dt.datetime | pd.Timestamp) -> pd.Timestamp:
    t = pd.Timestamp(ts)
    return t.tz_localize("UTC") if t.tz is None else t.tz_convert("UTC")


def _to_epoch_secs(ts: pd.Timestamp) -> int:
    return int(ts.timestamp())


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
        msg = body.get("s") if isinstance(body, dict) else None
    except ValueError:
        msg = None
    return msg or resp.text


def clean_price_series(df: pd.DataFrame) -> pd.DataFrame:
    """Sort by time, drop duplicate timestamps and rows missing a price."""
    if df.empty:
        return df
    df = df[~df.index.duplicated(keep="last")].sort_index()
    df = df.dropna(subset=["open", "high", "low", "close"])
    return df.assign(volume=df["volume"].fillna(0.0))[OHLCV_COLUMNS]


# ──────────────────────────────────────────────────────────────────────────────
# History endpoint
# ──────────────────────────────────────────────────────────────────────────────

async def _history_get_json(
    client: httpx.AsyncClient, symbol: str, start_secs: int, end_secs: int
) -> dict:
    url = f"{config.DCHART_BASE_URL}/dchart/history"
    params = {"resolution": "D", "symbol": symbol, "from": start_secs, "to": end_secs}

    for attempt in range(1, config.DCHART_MAX_RETRIES + 1):
        resp = await client.get(url, params=params)
        status = resp.status_code

        if status == 429 or 500 <= status < 600:
            msg = _error_message(resp)
            if attempt == config.DCHART_MAX_RETRIES:
                raise RuntimeError(f"History API error {status}: {msg or 'rate limited/temporary error'}")
            delay = config.DCHART_BACKOFF_BASE_SECS * (2 ** (attempt - 1))
            logger.warning("History %s on attempt %s for %s: %s (backoff %.2fs)", status, attempt, symbol, msg or "retrying", delay)
            await asyncio.sleep(delay)
            continue

        if status >= 400:
            raise RuntimeError(f"History API error {status}: {_error_message(resp)}")

        return resp.json()

    raise RuntimeError("History request failed after retries.")


# ──────────────────────────────────────────────────────────────────────────────
# Public entry
# ──────────────────────────────────────────────────────────────────────────────

async def fetch_ohlc(
    symbol: str,
    start: dt.datetime,
    end: dt.datetime,
    client: Optional[httpx.AsyncClient] = None,
) -> pd.DataFrame:
    """
    Return daily bars for ``symbol`` between ``start`` and ``end``
    (inclusive).  An empty frame means the provider has no data.
    Raises RuntimeError when the provider keeps failing.
    """
    start_utc = _to_utc_ts(start)
    end_utc = _to_utc_ts(end)
    if start_utc >= end_utc:
        return pd.DataFrame(columns=OHLCV_COLUMNS)

    start_secs, end_secs = _to_epoch_secs(start_utc), _to_epoch_secs(end_utc)
    if client is None:
        async with httpx.AsyncClient(timeout=config.DCHART_TIMEOUT_SECS) as own_client:
            payload = await _history_get_json(own_client, symbol.upper(), start_secs, end_secs)
    else:
        payload = await _history_get_json(client, symbol.upper(), start_secs, end_secs)

    if payload.get("s") == "no_data":
        logger.info("No history for %s between %s and %s", symbol, start_utc.date(), end_utc.date())
        return pd.DataFrame(columns=OHLCV_COLUMNS)

    df = clean_price_series(price_series_from_dchart(payload))
    logger.debug("Fetched %d bars for %s", len(df), symbol)
    return df
