"""Environment-driven settings and logging setup for the backtest engine."""
from __future__ import annotations

import logging
import os
from typing import Optional

# ──────────────────────────────────────────────────────────────────────────────
# Env helpers (strip quotes/whitespace so .env "KEY=value " doesn’t break things)
# ──────────────────────────────────────────────────────────────────────────────

def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return default
    v = v.strip()
    if (v.startswith('"') and v.endswith('"')) or (v.startswith("'") and v.endswith("'")):
        v = v[1:-1].strip()
    return v or default


# ──────────────────────────────────────────────────────────────────────────────
# Market data provider
# ──────────────────────────────────────────────────────────────────────────────

DCHART_BASE_URL = (_env("DCHART_BASE_URL", "https://dchart-api.vndirect.com.vn") or "").rstrip("/")
DCHART_MAX_RETRIES = int(_env("DCHART_MAX_RETRIES", "3") or "3")
DCHART_BACKOFF_BASE_SECS = float(_env("DCHART_BACKOFF_BASE_SECS", "1.5") or "1.5")
DCHART_TIMEOUT_SECS = float(_env("DCHART_TIMEOUT_SECS", "30") or "30")

# ──────────────────────────────────────────────────────────────────────────────
# Screener / presentation
# ──────────────────────────────────────────────────────────────────────────────

SCREENER_REQUEST_DELAY_SECS = float(_env("SCREENER_REQUEST_DELAY_SECS", "0.1") or "0.1")
CHART_OUTPUT_DIR = _env("CHART_OUTPUT_DIR", "examples") or "examples"

LOG_LEVEL = (_env("BACKTEST_LOG_LEVEL", "INFO") or "INFO").upper()
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Return a module logger with a single stream handler attached."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        _h = logging.StreamHandler()
        _h.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(_h)
    logger.setLevel(LOG_LEVEL)
    return logger
