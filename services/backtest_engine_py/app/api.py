"""
FastAPI application exposing endpoints for daily OHLC data, indicator
computation, strategy backtests and the market screener.  The API is
stateless: every request fetches its bars and recomputes from scratch.
"""
from __future__ import annotations
import math
import datetime as dt
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field, validator

import pandas as pd
from backtest_core import (
    Strategy,
    compute_indicator,
    fetch_ohlc,
    find_examples,
    generate_rankings,
    monthly_breakdown,
    run_all_strategies,
    run_backtest,
    scan_market,
    summarize,
    top_strategy,
    view_details,
)
from backtest_core.config import get_logger
from backtest_core.screener import all_symbols

logger = get_logger("backtest_api")
app = FastAPI(title="Indicator & Strategy Backtesting API")

# indicators whose key may carry a window suffix, e.g. sma20, rsi14
_WINDOWED = {"sma": None, "ema": None, "stddev": None, "rsi": 14, "adx": 14}


# ----------------------------------------------------------------------
# Models
# ----------------------------------------------------------------------
class OHLCResponse(BaseModel):
    date: dt.datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


class RangeRequest(BaseModel):
    symbol: str = Field(..., description="Ticker symbol, e.g. FPT")
    start: dt.datetime
    end: dt.datetime

    @validator("end")
    def validate_dates(cls, v, values):
        start = values.get("start")
        if start and v <= start:
            raise ValueError("end must be after start")
        return v


class IndicatorRequest(RangeRequest):
    indicators: List[str] = Field(
        ...,
        description="Indicators: sma20, ema50, rsi14, stddev20, macd, bollinger, "
        "stochastic, ichimoku, adx, fibonacci",
    )


class BacktestRequest(RangeRequest):
    """
    Request payload for running a backtest.  Without a strategy every
    supported strategy is run and summarized.
    """
    strategy: Optional[str] = Field(None, description="rsi, bollinger, macd, sma20, sma50, sma200, ichimoku, adx")
    single_position: bool = Field(False, description="Hold at most one signal-exit position at a time")


class DetailsRequest(RangeRequest):
    strategy: str
    bucket: str = Field("short", description="short, long or signal")
    horizon: Optional[int] = Field(None, description="Bars held; ignored for the signal bucket")
    single_position: bool = False


class ExamplesRequest(DetailsRequest):
    num_examples: int = 3


class ScreenerRequest(BaseModel):
    symbols: Optional[List[str]] = Field(None, description="Defaults to the built-in universe")
    start: dt.datetime
    end: dt.datetime
    top_n: int = 10
    min_bars: int = 100

    @validator("end")
    def _validate_dates(cls, v, values):
        start = values.get("start")
        if start and v <= start:
            raise ValueError("end must be after start")
        return v


def _as_utc(ts: dt.datetime) -> dt.datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=dt.timezone.utc)
    return ts.astimezone(dt.timezone.utc)


def _clean(value: Any) -> Any:
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


def _series_payload(series: pd.Series) -> Dict[str, float]:
    return {ts.isoformat(): float(v) for ts, v in series.dropna().items()}


def _frame_payload(frame: pd.DataFrame) -> Dict[str, List[Any]]:
    out: Dict[str, List[Any]] = {"date": [ts.isoformat() for ts in frame.index]}
    for col in frame.columns:
        out[col] = [_clean(float(v)) for v in frame[col]]
    return out


def _parse_strategy(key: str) -> Strategy:
    try:
        return Strategy(key.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unsupported strategy {key}")


async def _load_bars(symbol: str, start: dt.datetime, end: dt.datetime) -> pd.DataFrame:
    """Fetch bars, translating provider failures into HTTP errors."""
    try:
        df = await fetch_ohlc(symbol, _as_utc(start), _as_utc(end))
    except RuntimeError as e:
        msg = str(e)
        if "429" in msg or "rate limit" in msg.lower():
            raise HTTPException(status_code=429, detail=msg)
        raise HTTPException(status_code=502, detail=msg)
    except Exception:
        logger.exception("Unhandled error fetching %s", symbol)
        raise HTTPException(status_code=500, detail="Internal server error")
    if df.empty:
        raise HTTPException(
            status_code=404,
            detail="No bars returned for the given symbol/time range",
        )
    return df


async def _report_for(req: DetailsRequest):
    strategy = _parse_strategy(req.strategy)
    df = await _load_bars(req.symbol, req.start, req.end)
    report = run_backtest(df, strategy, single_position=req.single_position)
    horizon_key = "signal" if req.bucket == "signal" else req.horizon
    try:
        stats = view_details(report, horizon_key, req.bucket)
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e.args[0]))
    return df, stats


# ----------------------------------------------------------------------
# Endpoints
# ----------------------------------------------------------------------
@app.get("/data/ohlc", response_model=List[OHLCResponse])
async def get_ohlc(
    symbol: str = Query(..., description="Ticker symbol, e.g. FPT"),
    start: dt.datetime = Query(...),
    end: dt.datetime = Query(...),
) -> List[OHLCResponse]:
    """Return daily OHLCV bars for the given range."""
    df = await _load_bars(symbol, start, end)
    return [
        OHLCResponse(
            date=idx.to_pydatetime(),
            open=row.open,
            high=row.high,
            low=row.low,
            close=row.close,
            volume=row.volume,
        )
        for idx, row in df.iterrows()
    ]


@app.post("/indicators/compute")
async def compute_indicators(req: IndicatorRequest):
    if not req.indicators:
        raise HTTPException(400, detail="No indicators requested")
    df = await _load_bars(req.symbol, req.start, req.end)
    result: Dict[str, Any] = {}
    for ind in req.indicators:
        key = ind.lower()
        kind = key.rstrip("0123456789")
        suffix = key[len(kind):]
        params: Dict[str, int] = {}
        if kind in _WINDOWED:
            window = int(suffix) if suffix else _WINDOWED[kind]
            if window is None:
                raise HTTPException(400, detail=f"Indicator {ind} needs a window, e.g. {kind}20")
            params = {"period": window} if kind == "adx" else {"window": window}
        elif suffix:
            raise HTTPException(400, detail=f"Unknown indicator {ind}")
        try:
            out = compute_indicator(kind, df, **params)
        except ValueError as e:
            raise HTTPException(400, detail=f"Unknown indicator {ind}: {e}")
        if isinstance(out, pd.Series):
            result[key] = _series_payload(out)
        elif isinstance(out, pd.DataFrame):
            result[key] = _frame_payload(out)
        else:
            result[key] = out.as_dict() if out is not None else None
    return result


@app.post("/backtest/run")
async def backtest_run(req: BacktestRequest):
    """
    Run one strategy (full report) or all strategies (per-strategy summary
    plus the best fixed-horizon result).
    """
    strategy = _parse_strategy(req.strategy) if req.strategy else None
    df = await _load_bars(req.symbol, req.start, req.end)
    if strategy is not None:
        report = run_backtest(df, strategy, single_position=req.single_position)
        return {"symbol": req.symbol, "bars": len(df), "report": report.as_dict()}

    reports = run_all_strategies(df, single_position=req.single_position)
    best = top_strategy(reports)
    return {
        "symbol": req.symbol,
        "bars": len(df),
        "strategies": summarize(reports),
        "top": None if best is None else {
            "strategy": best.strategy,
            "bucket": best.bucket,
            "horizon": best.horizon,
            "stats": best.stats.as_dict(include_trades=False),
        },
    }


@app.post("/backtest/details")
async def backtest_details(req: DetailsRequest):
    """Stats and trade list for one bucket/horizon, with the monthly distribution."""
    _, stats = await _report_for(req)
    months = monthly_breakdown(stats.trades)
    return {
        "stats": stats.as_dict(),
        "monthly": [
            {
                "month": int(month),
                "count": int(row["count"]),
                "wins": int(row["wins"]),
                "losses": int(row["losses"]),
                "total_pnl": float(row["total_pnl"]),
                "avg_pnl": float(row["avg_pnl"]),
            }
            for month, row in months.iterrows()
        ],
    }


@app.post("/backtest/examples")
async def backtest_examples(req: ExamplesRequest):
    """Return example charts and metadata for the most recent trades of a bucket."""
    df, stats = await _report_for(req)
    examples = find_examples(
        df,
        stats,
        num_examples=req.num_examples,
        symbol=req.symbol,
    )
    return {"examples": examples}


@app.post("/screener/run")
async def screener_run(req: ScreenerRequest):
    """Backtest every strategy across symbols and return the top rankings."""
    symbols = req.symbols or all_symbols()
    scan = await scan_market(
        symbols,
        _as_utc(req.start),
        _as_utc(req.end),
        fetch=fetch_ohlc,
        min_bars=req.min_bars,
    )
    rankings = generate_rankings(scan, top_n=req.top_n)

    def _row(r):
        rec = r.recommendation
        return {
            "symbol": r.symbol,
            "sector": r.sector,
            "strategy": r.strategy.value,
            "strategy_label": r.strategy_label,
            "horizon": r.horizon,
            "horizon_label": r.horizon_label,
            "win_rate": r.win_rate,
            "avg_return": r.avg_return,
            "total_return": r.total_return,
            "trades": r.trades,
            "last_price": r.last_price,
            "recommendation": None if rec is None else {
                "buy_price": rec.buy_price,
                "buy_low": rec.buy_low,
                "buy_high": rec.buy_high,
                "target_price": rec.target_price,
                "stop_loss": rec.stop_loss,
                "risk_reward": rec.risk_reward,
                "best_month": rec.best_month,
                "conditions": rec.conditions,
                "indicator": rec.indicator_name,
                "indicator_value": _clean(rec.indicator_value),
            },
        }

    return {
        "short_term": [_row(r) for r in rankings.short_term],
        "long_term": [_row(r) for r in rankings.long_term],
        "total_symbols_scanned": rankings.total_symbols_scanned,
        "total_strategies": rankings.total_strategies,
        "failed": list(scan.failed),
    }
