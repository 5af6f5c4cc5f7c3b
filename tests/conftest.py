import os
import sys

import numpy as np
import pandas as pd
import pytest

# add backtest_engine_py to sys.path for tests
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '../services/backtest_engine_py')))


def _make_ohlc(closes, spread=0.01, start="2019-01-01"):
    """Daily bars around ``closes`` with open = previous close and a small high/low envelope."""
    closes = np.asarray(closes, dtype=float)
    opens = np.r_[closes[:1], closes[:-1]]
    highs = np.maximum(opens, closes) * (1 + spread)
    lows = np.minimum(opens, closes) * (1 - spread)
    idx = pd.date_range(start, periods=len(closes), freq="D", tz="UTC", name="date")
    return pd.DataFrame(
        {"open": opens, "high": highs, "low": lows, "close": closes, "volume": 1000.0},
        index=idx,
    )


@pytest.fixture
def make_ohlc():
    return _make_ohlc


@pytest.fixture
def rising_series():
    # 60 bars, close 100..159
    return _make_ohlc(np.arange(100, 160))


@pytest.fixture
def random_walk():
    rng = np.random.default_rng(42)
    closes = 100 * np.exp(np.cumsum(rng.normal(0, 0.02, 600)))
    return _make_ohlc(closes)
