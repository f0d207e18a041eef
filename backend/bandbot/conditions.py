"""
Vectorized Signal Conditions
Each helper takes aligned price/indicator arrays and returns np.ndarray of bools
(or a per-bar numeric series) computed once per backtest run.
"""
from typing import Callable, Dict

import numpy as np
import pandas as pd

from bandbot.indicators import BandSeries, calculate_band_width


def _shift(values: np.ndarray, fill) -> np.ndarray:
    """values[i-1] at index i"""
    out = np.empty_like(values)
    if len(values):
        out[0] = fill
        out[1:] = values[:-1]
    return out


# ---------------------------------------------------------------------------
# Bollinger Band Conditions
# ---------------------------------------------------------------------------

def crosses_above_upper(close: np.ndarray, bands: BandSeries) -> np.ndarray:
    """First close above the upper band (previous close at or below it)"""
    prev_close = _shift(close, np.inf)
    prev_upper = _shift(bands.upper, -np.inf)
    return (prev_close <= prev_upper) & (close > bands.upper)


def crosses_below_lower(close: np.ndarray, bands: BandSeries) -> np.ndarray:
    """First close below the lower band (previous close at or above it)"""
    prev_close = _shift(close, -np.inf)
    prev_lower = _shift(bands.lower, np.inf)
    return (prev_close >= prev_lower) & (close < bands.lower)


def falls_back_below_upper(close: np.ndarray, bands: BandSeries) -> np.ndarray:
    """Close back at or under the upper band after closing above it"""
    prev_close = _shift(close, -np.inf)
    prev_upper = _shift(bands.upper, np.inf)
    return (close <= bands.upper) & (prev_close > prev_upper)


def rises_back_above_lower(close: np.ndarray, bands: BandSeries) -> np.ndarray:
    prev_close = _shift(close, np.inf)
    prev_lower = _shift(bands.lower, -np.inf)
    return (close >= bands.lower) & (prev_close < prev_lower)


def squeeze(bands: BandSeries, lookback: int = 20, threshold: float = 0.8) -> np.ndarray:
    """Band width below `threshold` times its trailing `lookback`-bar average"""
    width = calculate_band_width(bands)
    width[bands.middle == 0] = np.nan
    avg = pd.Series(width).rolling(lookback, min_periods=lookback).mean().to_numpy()
    result = np.zeros(len(width), dtype=bool)
    valid = ~np.isnan(avg) & ~np.isnan(width)
    valid[:lookback] = False
    result[valid] = width[valid] < avg[valid] * threshold
    return result


# ---------------------------------------------------------------------------
# Candle Conditions
# ---------------------------------------------------------------------------

def green_candle(open_: np.ndarray, close: np.ndarray) -> np.ndarray:
    return close > open_


def red_candle(open_: np.ndarray, close: np.ndarray) -> np.ndarray:
    return close < open_


def close_rising(close: np.ndarray) -> np.ndarray:
    return close > _shift(close, np.inf)


def close_falling(close: np.ndarray) -> np.ndarray:
    return close < _shift(close, -np.inf)


def bar_change(close: np.ndarray) -> np.ndarray:
    """Fractional close-to-close change (0 on the first bar)"""
    prev = _shift(close, np.nan)
    change = np.zeros(len(close))
    valid = ~np.isnan(prev) & (prev != 0)
    change[valid] = (close[valid] - prev[valid]) / prev[valid]
    return change


# ---------------------------------------------------------------------------
# Indicator Conditions
# ---------------------------------------------------------------------------

def rising(values: np.ndarray) -> np.ndarray:
    return values > _shift(values, np.inf)


def falling(values: np.ndarray) -> np.ndarray:
    return values < _shift(values, -np.inf)


def volume_above_average(volume: np.ndarray, volume_ma: np.ndarray, threshold: float) -> np.ndarray:
    return volume > volume_ma * threshold


def lookback_return(close: np.ndarray, lookback: int) -> np.ndarray:
    """(close[i] - close[i-lookback]) / close[i-lookback], 0 before the window fills"""
    result = np.zeros(len(close))
    if lookback < len(close):
        base = close[:-lookback]
        with np.errstate(divide='ignore', invalid='ignore'):
            change = np.where(base != 0, (close[lookback:] - base) / base, 0.0)
        result[lookback:] = change
    return result


def trend_direction(close: np.ndarray, lookback: int, threshold: float) -> np.ndarray:
    """+1 bullish, -1 bearish, 0 neutral by the lookback return against a threshold"""
    change = lookback_return(close, lookback)
    direction = np.zeros(len(close), dtype=np.int8)
    direction[change > threshold] = 1
    direction[change < -threshold] = -1
    return direction


def price_velocity(close: np.ndarray, timestamps: np.ndarray, lookback: int, time_unit: float) -> np.ndarray:
    """Absolute fractional move over `lookback` bars per `time_unit` seconds"""
    result = np.zeros(len(close))
    if lookback >= len(close):
        return result

    base = close[:-lookback]
    elapsed = (timestamps[lookback:] - timestamps[:-lookback]) / 1000.0 / time_unit
    valid = (base != 0) & (elapsed > 0)
    velocity = np.zeros(len(base))
    velocity[valid] = np.abs((close[lookback:][valid] - base[valid]) / base[valid]) / elapsed[valid]
    result[lookback:] = velocity
    return result


# ---------------------------------------------------------------------------
# Time Conditions
# ---------------------------------------------------------------------------

def hour_in_range(timestamps: np.ndarray, start_hour: int, end_hour: int) -> np.ndarray:
    """UTC hour of day within [start_hour, end_hour]"""
    hours = pd.to_datetime(timestamps, unit='ms').hour.to_numpy()
    return (hours >= start_hour) & (hours <= end_hour)


def day_number(timestamps: np.ndarray) -> np.ndarray:
    """UTC calendar day index per bar"""
    return pd.to_datetime(timestamps, unit='ms').normalize().asi8


# Named entry signals shared by several rule sets
SIGNAL_HANDLERS: Dict[str, Callable] = {
    'bb_cross_up': crosses_above_upper,
    'bb_cross_down': crosses_below_lower,
    'bb_reentry_from_above': falls_back_below_upper,
    'bb_reentry_from_below': rises_back_above_lower,
}
