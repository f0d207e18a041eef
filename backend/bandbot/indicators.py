"""
Technical Indicators
Numba-compiled cores with thin NumPy wrappers
"""
from typing import NamedTuple, Tuple

import numpy as np
from numba import jit

from bandbot.logging_config import get_logger

logger = get_logger('indicators')


class BandSeries(NamedTuple):
    """Bollinger Bands aligned 1:1 with the input closes"""
    upper: np.ndarray
    middle: np.ndarray
    lower: np.ndarray


def _as_float(values) -> np.ndarray:
    return np.ascontiguousarray(values, dtype=np.float64)


def _check_period(period: int, name: str = 'period') -> int:
    period = int(period)
    if period < 1:
        raise ValueError(f"{name} must be >= 1, got {period}")
    return period


# ==================== MOVING AVERAGES ====================

@jit(nopython=True)
def _sma_core(values: np.ndarray, period: int) -> np.ndarray:
    """SMA Core (Numba optimized); 0 until the window fills"""
    n = len(values)
    result = np.zeros(n)
    if n < period:
        return result

    window_sum = 0.0
    for i in range(n):
        window_sum += values[i]
        if i >= period:
            window_sum -= values[i - period]
        if i >= period - 1:
            result[i] = window_sum / period

    return result


def calculate_sma(values: np.ndarray, period: int) -> np.ndarray:
    """Simple Moving Average (sentinel 0 before index period-1)"""
    period = _check_period(period)
    return _sma_core(_as_float(values), period)


@jit(nopython=True)
def _std_dev_core(values: np.ndarray, sma: np.ndarray, period: int) -> np.ndarray:
    """Population standard deviation around a precomputed SMA"""
    n = len(values)
    result = np.zeros(n)

    for i in range(period - 1, n):
        mean = sma[i]
        acc = 0.0
        for j in range(i - period + 1, i + 1):
            diff = values[j] - mean
            acc += diff * diff
        result[i] = np.sqrt(acc / period)

    return result


def calculate_std_dev(values: np.ndarray, sma: np.ndarray, period: int) -> np.ndarray:
    """Rolling population standard deviation using the window's SMA"""
    period = _check_period(period)
    values = _as_float(values)
    sma = _as_float(sma)
    if len(sma) != len(values):
        raise ValueError("values and sma must have the same length")
    return _std_dev_core(values, sma, period)


def calculate_bollinger_bands(close: np.ndarray, period: int = 20, std_dev: float = 2.0,
                              offset: float = 0.0) -> BandSeries:
    """
    Bollinger Bands with an absolute price offset.

    upper = sma + k*std + offset, lower = sma - k*std - offset.
    Indices below period-1 carry the sentinel (middle 0, bands at +/-offset)
    and must not be used for decisions.
    """
    close = _as_float(close)
    if len(close) < period:
        logger.debug(f"Bollinger period {period} exceeds {len(close)} candles; bands are all sentinel")
    middle = calculate_sma(close, period)
    std = _std_dev_core(close, middle, int(period))

    upper = middle + std * std_dev + offset
    lower = middle - std * std_dev - offset

    return BandSeries(upper, middle, lower)


@jit(nopython=True)
def _adaptive_bands_core(close: np.ndarray, norm_vol: np.ndarray, min_period: int, max_period: int,
                         std_dev: float, offset: float):
    n = len(close)
    upper = np.full(n, offset)
    middle = np.zeros(n)
    lower = np.full(n, -offset)

    for i in range(max_period, n):
        period = int(np.floor(min_period + (max_period - min_period) * (1.0 - norm_vol[i]) + 0.5))
        if period < 1:
            period = 1
        mean = 0.0
        for j in range(i - period + 1, i + 1):
            mean += close[j]
        mean /= period
        acc = 0.0
        for j in range(i - period + 1, i + 1):
            acc += (close[j] - mean) * (close[j] - mean)
        std = np.sqrt(acc / period)

        middle[i] = mean
        upper[i] = mean + std * std_dev + offset
        lower[i] = mean - std * std_dev - offset

    return upper, middle, lower


def calculate_adaptive_bollinger_bands(close: np.ndarray, min_period: int, max_period: int,
                                       std_dev: float = 2.0, offset: float = 0.0,
                                       volatility_lookback: int = 20) -> BandSeries:
    """
    Bollinger Bands whose period shrinks as volatility rises.

    Per bar: period = round(min + (max - min) * (1 - v)) where v is the annualized
    log-return volatility scaled to [0, 1] (0.5 annualized == 1). Bars before
    `max_period` hold the sentinel.
    """
    min_period = _check_period(min_period, 'min_period')
    max_period = _check_period(max_period, 'max_period')
    if max_period < min_period:
        raise ValueError("max_period must be >= min_period")

    close = _as_float(close)
    norm_vol = normalized_volatility(close, volatility_lookback)
    upper, middle, lower = _adaptive_bands_core(close, norm_vol, min_period, max_period,
                                                float(std_dev), float(offset))
    return BandSeries(upper, middle, lower)


def normalized_volatility(close: np.ndarray, lookback: int = 20) -> np.ndarray:
    """Annualized log-return volatility mapped onto [0, 1]; 0.5 before the window fills"""
    vol = calculate_log_return_volatility(close, lookback) * np.sqrt(252) / 0.5
    vol = np.clip(vol, 0.0, 1.0)
    vol[:lookback] = 0.5
    return vol


@jit(nopython=True)
def _ema_core(values: np.ndarray, period: int) -> np.ndarray:
    """EMA Core (Numba optimized), seeded with the first value"""
    n = len(values)
    ema = np.zeros(n)
    if n == 0:
        return ema

    k = 2.0 / (period + 1)
    ema[0] = values[0]
    for i in range(1, n):
        ema[i] = values[i] * k + ema[i - 1] * (1.0 - k)

    return ema


def calculate_ema(values: np.ndarray, period: int) -> np.ndarray:
    """Exponential Moving Average"""
    period = _check_period(period)
    return _ema_core(_as_float(values), period)


# ==================== OSCILLATORS ====================

@jit(nopython=True)
def _rsi_core(values: np.ndarray, period: int) -> np.ndarray:
    """RSI Core (Numba optimized): simple averages of the last `period` changes"""
    n = len(values)
    rsi = np.full(n, 50.0)

    for i in range(period, n):
        gain = 0.0
        loss = 0.0
        for j in range(i - period + 1, i + 1):
            change = values[j] - values[j - 1]
            if change > 0:
                gain += change
            else:
                loss -= change

        avg_gain = gain / period
        avg_loss = loss / period
        if avg_loss == 0:
            rsi[i] = 100.0
        else:
            rs = avg_gain / avg_loss
            rsi[i] = 100.0 - (100.0 / (1.0 + rs))

    return rsi


def calculate_rsi(close: np.ndarray, period: int = 14) -> np.ndarray:
    """Relative Strength Index (sentinel 50 before index period)"""
    period = _check_period(period)
    return _rsi_core(_as_float(close), period)


def calculate_macd(close: np.ndarray, fast: int = 12, slow: int = 26,
                   signal: int = 9) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """MACD line, signal line and histogram"""
    close = _as_float(close)
    macd = calculate_ema(close, fast) - calculate_ema(close, slow)
    signal_line = calculate_ema(macd, signal)
    return macd, signal_line, macd - signal_line


# ==================== VOLUME & VOLATILITY ====================

@jit(nopython=True)
def _volume_ma_core(volume: np.ndarray, period: int) -> np.ndarray:
    """Trailing volume mean; raw volume until the window fills"""
    n = len(volume)
    result = np.empty(n)

    window_sum = 0.0
    for i in range(n):
        window_sum += volume[i]
        if i >= period:
            window_sum -= volume[i - period]
        if i >= period - 1:
            result[i] = window_sum / period
        else:
            result[i] = volume[i]

    return result


def calculate_volume_ma(volume: np.ndarray, period: int = 20) -> np.ndarray:
    """Volume Moving Average"""
    period = _check_period(period)
    return _volume_ma_core(_as_float(volume), period)


@jit(nopython=True)
def _log_return_volatility_core(close: np.ndarray, lookback: int) -> np.ndarray:
    n = len(close)
    result = np.zeros(n)

    for i in range(lookback, n):
        mean = 0.0
        for j in range(i - lookback + 1, i + 1):
            if close[j - 1] > 0 and close[j] > 0:
                mean += np.log(close[j] / close[j - 1])
        mean /= lookback

        acc = 0.0
        for j in range(i - lookback + 1, i + 1):
            r = 0.0
            if close[j - 1] > 0 and close[j] > 0:
                r = np.log(close[j] / close[j - 1])
            acc += (r - mean) * (r - mean)
        result[i] = np.sqrt(acc / lookback)

    return result


def calculate_log_return_volatility(close: np.ndarray, lookback: int = 20) -> np.ndarray:
    """Rolling population std of log returns over the last `lookback` returns (0 before)"""
    lookback = _check_period(lookback, 'lookback')
    return _log_return_volatility_core(_as_float(close), lookback)


def calculate_band_width(bands: BandSeries) -> np.ndarray:
    """(upper - lower) / middle, 0 where the middle band is the sentinel"""
    width = np.zeros(len(bands.middle))
    valid = bands.middle != 0
    width[valid] = (bands.upper[valid] - bands.lower[valid]) / bands.middle[valid]
    return width


# ==================== SWING POINTS ====================

@jit(nopython=True)
def _swing_flags_core(high: np.ndarray, low: np.ndarray, lookback: int):
    n = len(high)
    is_high = np.zeros(n, dtype=np.bool_)
    is_low = np.zeros(n, dtype=np.bool_)

    for i in range(lookback, n - lookback):
        top = True
        bottom = True
        for j in range(i - lookback, i + lookback + 1):
            if j == i:
                continue
            if high[j] >= high[i]:
                top = False
            if low[j] <= low[i]:
                bottom = False
        is_high[i] = top
        is_low[i] = bottom

    return is_high, is_low


def detect_swing_points(high: np.ndarray, low: np.ndarray, lookback: int = 5) -> Tuple[np.ndarray, np.ndarray]:
    """
    Flag strict local extrema over a symmetric +-lookback window.

    A flag at index i only becomes known at bar i + lookback; callers must
    respect that delay to avoid lookahead.
    """
    lookback = _check_period(lookback, 'lookback')
    return _swing_flags_core(_as_float(high), _as_float(low), lookback)
