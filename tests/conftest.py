"""
Pytest Configuration and Shared Fixtures
=========================================
Seeded OHLCV data and small candle builders for the bandbot test suite.
"""
import os
import sys

import numpy as np
import pandas as pd
import pytest

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

from bandbot.market_data import frame_to_arrays  # noqa: E402
from bandbot.search_spaces import SearchSpace  # noqa: E402

START_MS = 1_704_067_200_000  # 2024-01-01 00:00 UTC


def _ohlcv_frame(n_bars: int, freq: str, initial_price: float = 30000.0) -> pd.DataFrame:
    np.random.seed(42)
    returns = np.random.normal(0.0001, 0.02, n_bars)
    prices = initial_price * np.cumprod(1 + returns)

    dates = pd.date_range(start='2024-01-01', periods=n_bars, freq=freq)
    df = pd.DataFrame({
        'open': prices * (1 + np.random.uniform(-0.005, 0.005, n_bars)),
        'high': prices * (1 + np.random.uniform(0.001, 0.02, n_bars)),
        'low': prices * (1 - np.random.uniform(0.001, 0.02, n_bars)),
        'close': prices,
        'volume': np.random.uniform(100, 10000, n_bars)
    }, index=dates)

    # Ensure high >= open, close, low and low <= open, close, high
    df['high'] = df[['open', 'high', 'close']].max(axis=1)
    df['low'] = df[['open', 'low', 'close']].min(axis=1)
    return df


@pytest.fixture
def sample_ohlcv_data():
    """300 hourly bars as a DataFrame."""
    return _ohlcv_frame(300, '1h')


@pytest.fixture
def ohlcv_arrays(sample_ohlcv_data):
    """The hourly sample in the engine's dict-of-arrays form."""
    return frame_to_arrays(sample_ohlcv_data)


@pytest.fixture
def seconds_ohlcv_arrays():
    """200 one-second bars."""
    return frame_to_arrays(_ohlcv_frame(200, '1s', initial_price=100.0))


def build_arrays(closes, step_ms=60_000, opens=None, highs=None, lows=None, volume=1000.0):
    """Arrays from a close path; opens default to the previous close, wicks to the body."""
    close = np.asarray(closes, dtype=np.float64)
    n = len(close)
    if opens is None:
        opens = np.concatenate([[close[0]], close[:-1]])
    open_ = np.asarray(opens, dtype=np.float64)
    high = np.maximum(open_, close) if highs is None else np.asarray(highs, dtype=np.float64)
    low = np.minimum(open_, close) if lows is None else np.asarray(lows, dtype=np.float64)
    return {
        'timestamp': START_MS + np.arange(n, dtype=np.int64) * step_ms,
        'open': open_,
        'high': high,
        'low': low,
        'close': close,
        'volume': np.full(n, float(volume)),
    }


@pytest.fixture
def candle_builder():
    """Factory building arrays from a close path (see build_arrays)."""
    return build_arrays


class SmallSpace(SearchSpace):
    """Eight-combination baseline grid for fast optimizer tests"""

    def dimensions(self):
        return {
            'period': [10, 20],
            'stdDev': [1, 2],
            'offset': [0],
            'leverage': [2, 5],
        }


@pytest.fixture
def small_space():
    return SmallSpace()
