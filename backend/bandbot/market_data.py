"""
Market data helpers: candle ingestion, validation and timeframe detection
"""
from typing import Dict, List, Sequence

import numpy as np
import pandas as pd

from bandbot import SECONDS_REGIME_GAP_MS
from bandbot.config import SECONDS_REGIME_SAMPLE, TIMEFRAME_LABEL_SAMPLE
from bandbot.models import Candle

FIELDS = ('timestamp', 'open', 'high', 'low', 'close', 'volume')

# (max average gap in seconds, label), checked in order
TIMEFRAME_THRESHOLDS = [
    (1.5, '1s'),
    (5.5, '5s'),
    (15.5, '15s'),
    (30.5, '30s'),
    (65, '1m'),
    (300.5, '5m'),
    (900.5, '15m'),
    (1830, '30m'),
    (3650, '1h'),
    (14400, '4h'),
    (86500, '1d'),
]


def empty_arrays() -> Dict[str, np.ndarray]:
    return {
        'timestamp': np.array([], dtype=np.int64),
        **{key: np.array([], dtype=np.float64) for key in FIELDS[1:]},
    }


def candles_to_arrays(candles: Sequence[Candle], validate: bool = True) -> Dict[str, np.ndarray]:
    """Convert a candle list (models or plain dicts) to the dict-of-arrays form"""
    if not candles:
        return empty_arrays()

    if isinstance(candles[0], dict):
        candles = [Candle.model_validate(c) for c in candles]

    data = {
        'timestamp': np.fromiter((c.timestamp for c in candles), dtype=np.int64, count=len(candles)),
        'open': np.fromiter((c.open for c in candles), dtype=np.float64, count=len(candles)),
        'high': np.fromiter((c.high for c in candles), dtype=np.float64, count=len(candles)),
        'low': np.fromiter((c.low for c in candles), dtype=np.float64, count=len(candles)),
        'close': np.fromiter((c.close for c in candles), dtype=np.float64, count=len(candles)),
        'volume': np.fromiter((c.volume for c in candles), dtype=np.float64, count=len(candles)),
    }
    if validate:
        validate_arrays(data)
    return data


def frame_to_arrays(df: pd.DataFrame, validate: bool = True) -> Dict[str, np.ndarray]:
    """
    Convert an OHLCV DataFrame to the dict-of-arrays form.

    Timestamps come from a ``timestamp`` column (epoch ms) or, failing that,
    from a DatetimeIndex. Missing volume is filled with 0.
    """
    cols = {c.lower(): c for c in df.columns}
    missing = [k for k in ('open', 'high', 'low', 'close') if k not in cols]
    if missing:
        raise ValueError(f"DataFrame is missing columns: {missing}")

    if 'timestamp' in cols:
        ts = df[cols['timestamp']]
        if pd.api.types.is_datetime64_any_dtype(ts):
            timestamps = pd.DatetimeIndex(ts).as_unit('ms').asi8
        else:
            timestamps = ts.to_numpy(dtype=np.int64)
    elif isinstance(df.index, pd.DatetimeIndex):
        timestamps = df.index.as_unit('ms').asi8
    else:
        raise ValueError("DataFrame needs a 'timestamp' column or a DatetimeIndex")

    volume = df[cols['volume']].to_numpy(dtype=np.float64) if 'volume' in cols else np.zeros(len(df))

    data = {
        'timestamp': np.asarray(timestamps, dtype=np.int64),
        'open': df[cols['open']].to_numpy(dtype=np.float64),
        'high': df[cols['high']].to_numpy(dtype=np.float64),
        'low': df[cols['low']].to_numpy(dtype=np.float64),
        'close': df[cols['close']].to_numpy(dtype=np.float64),
        'volume': volume,
    }
    if validate:
        validate_arrays(data)
    return data


def validate_arrays(data: Dict[str, np.ndarray]) -> None:
    """Raise ValueError for missing fields, ragged lengths, unsorted timestamps or bad OHLC"""
    missing = [k for k in FIELDS if k not in data]
    if missing:
        raise ValueError(f"Market data is missing fields: {missing}")

    n = len(data['timestamp'])
    if any(len(data[k]) != n for k in FIELDS):
        raise ValueError("Market data fields have different lengths")
    if n == 0:
        return

    if np.any(np.diff(data['timestamp']) < 0):
        raise ValueError("Candle timestamps must be non-decreasing")

    prices = np.stack([data['open'], data['high'], data['low'], data['close']])
    if not np.all(np.isfinite(prices)):
        raise ValueError("Candle prices must be finite")

    body_low = np.minimum(data['open'], data['close'])
    body_high = np.maximum(data['open'], data['close'])
    bad = np.flatnonzero((data['low'] > body_low) | (data['high'] < body_high))
    if len(bad):
        raise ValueError(f"Inconsistent OHLC at index {int(bad[0])}: low must be <= open/close <= high")


def _average_gap_ms(timestamps: np.ndarray, sample: int) -> float:
    timestamps = np.asarray(timestamps, dtype=np.int64)
    gaps = np.diff(timestamps[:sample + 1])
    return float(gaps.mean())


def detect_seconds_regime(timestamps: np.ndarray) -> bool:
    """True when the first candles are spaced less than a minute apart on average"""
    if len(timestamps) < 2:
        return False
    return _average_gap_ms(timestamps, SECONDS_REGIME_SAMPLE) < SECONDS_REGIME_GAP_MS


def detect_timeframe(timestamps: np.ndarray) -> str:
    """Human timeframe label ('1s' .. '1w') from the average candle spacing"""
    if len(timestamps) < 2:
        return 'Unknown'

    avg_seconds = _average_gap_ms(timestamps, TIMEFRAME_LABEL_SAMPLE) / 1000
    for limit, label in TIMEFRAME_THRESHOLDS:
        if avg_seconds <= limit:
            return label
    return '1w'


def arrays_to_candles(data: Dict[str, np.ndarray]) -> List[Candle]:
    return [
        Candle(timestamp=int(t), open=float(o), high=float(h), low=float(l), close=float(c), volume=float(v))
        for t, o, h, l, c, v in zip(*(data[k] for k in FIELDS))
    ]
