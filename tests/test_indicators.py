"""
Indicator library tests: warm-up sentinels, agreement with pandas, bounds.
"""
import logging

import numpy as np
import pandas as pd
import pytest

from bandbot.indicators import (
    calculate_adaptive_bollinger_bands, calculate_band_width, calculate_bollinger_bands,
    calculate_ema, calculate_log_return_volatility, calculate_macd, calculate_rsi,
    calculate_sma, calculate_std_dev, calculate_volume_ma, detect_swing_points,
    normalized_volatility,
)


class TestMovingAverages:

    def test_sma_matches_pandas_after_warmup(self, ohlcv_arrays):
        close = ohlcv_arrays['close']
        sma = calculate_sma(close, 20)
        expected = pd.Series(close).rolling(20).mean().to_numpy()

        assert np.all(sma[:19] == 0)
        np.testing.assert_allclose(sma[19:], expected[19:], rtol=1e-9)

    def test_sma_shorter_than_period_is_all_sentinel(self):
        assert np.all(calculate_sma(np.array([1.0, 2.0, 3.0]), 5) == 0)

    def test_std_dev_is_population(self, ohlcv_arrays):
        close = ohlcv_arrays['close']
        sma = calculate_sma(close, 20)
        std = calculate_std_dev(close, sma, 20)
        expected = pd.Series(close).rolling(20).std(ddof=0).to_numpy()

        np.testing.assert_allclose(std[19:], expected[19:], rtol=1e-6)

    def test_ema_seeded_with_first_value(self, ohlcv_arrays):
        close = ohlcv_arrays['close']
        ema = calculate_ema(close, 12)
        expected = pd.Series(close).ewm(span=12, adjust=False).mean().to_numpy()

        assert ema[0] == close[0]
        np.testing.assert_allclose(ema, expected, rtol=1e-9)

    @pytest.mark.parametrize("period", [0, -3])
    def test_invalid_period_raises(self, period):
        with pytest.raises(ValueError):
            calculate_sma(np.ones(10), period)


class TestBollingerBands:

    def test_sentinel_carries_offset(self):
        close = np.linspace(100, 110, 30)
        bands = calculate_bollinger_bands(close, period=10, std_dev=2.0, offset=5.0)

        assert np.all(bands.middle[:9] == 0)
        assert np.all(bands.upper[:9] == 5.0)
        assert np.all(bands.lower[:9] == -5.0)

    def test_bands_symmetric_around_middle(self, ohlcv_arrays):
        bands = calculate_bollinger_bands(ohlcv_arrays['close'], 20, 2.0, 10.0)
        np.testing.assert_allclose(bands.upper - bands.middle, bands.middle - bands.lower)
        assert np.all(bands.upper[19:] > bands.lower[19:])

    def test_flat_series_collapses_to_offset(self):
        bands = calculate_bollinger_bands(np.full(40, 100.0), 20, 2.0, 0.5)
        np.testing.assert_allclose(bands.upper[19:], 100.5)
        np.testing.assert_allclose(bands.lower[19:], 99.5)

    def test_band_width_zero_on_sentinel(self, ohlcv_arrays):
        bands = calculate_bollinger_bands(ohlcv_arrays['close'], 20, 2.0, 0.0)
        width = calculate_band_width(bands)
        assert np.all(width[:19] == 0)
        assert np.all(width[19:] > 0)

    def test_adaptive_bands_sentinel_until_max_period(self, ohlcv_arrays):
        bands = calculate_adaptive_bollinger_bands(ohlcv_arrays['close'], 10, 30, 2.0, 1.0)

        assert np.all(bands.middle[:30] == 0)
        assert np.all(bands.upper[:30] == 1.0)
        assert np.all(bands.middle[30:] > 0)

    def test_adaptive_bounds_validated(self):
        with pytest.raises(ValueError):
            calculate_adaptive_bollinger_bands(np.ones(50), 20, 10)

    def test_short_input_logged(self):
        records = []
        handler = logging.Handler(logging.DEBUG)
        handler.emit = records.append
        logger = logging.getLogger('bandbot.indicators')
        previous = logger.level
        logger.addHandler(handler)
        logger.setLevel(logging.DEBUG)
        try:
            bands = calculate_bollinger_bands(np.ones(4), period=5)
        finally:
            logger.removeHandler(handler)
            logger.setLevel(previous)

        assert np.all(bands.middle == 0)
        assert len(records) == 1
        assert "period 5 exceeds 4 candles" in records[0].getMessage()


class TestOscillators:

    def test_rsi_bounds_and_sentinel(self, ohlcv_arrays):
        rsi = calculate_rsi(ohlcv_arrays['close'], 14)

        assert np.all(rsi[:14] == 50.0)
        assert np.all((rsi >= 0) & (rsi <= 100))

    def test_rsi_all_gains_is_100(self):
        rsi = calculate_rsi(np.arange(1.0, 31.0), 14)
        assert np.all(rsi[14:] == 100.0)

    def test_rsi_all_losses_is_0(self):
        rsi = calculate_rsi(np.arange(30.0, 0.0, -1.0), 14)
        np.testing.assert_allclose(rsi[14:], 0.0)

    def test_macd_histogram(self, ohlcv_arrays):
        macd, signal, hist = calculate_macd(ohlcv_arrays['close'], 12, 26, 9)
        np.testing.assert_allclose(hist, macd - signal)
        np.testing.assert_allclose(signal, calculate_ema(macd, 9))


class TestVolumeAndVolatility:

    def test_volume_ma_raw_before_window(self):
        volume = np.array([10.0, 20.0, 30.0, 40.0, 50.0])
        ma = calculate_volume_ma(volume, 3)
        np.testing.assert_allclose(ma, [10.0, 20.0, 20.0, 30.0, 40.0])

    def test_log_return_volatility_zero_for_constant_growth(self):
        close = 100 * 1.01 ** np.arange(50)
        vol = calculate_log_return_volatility(close, 20)
        np.testing.assert_allclose(vol, 0.0, atol=1e-12)

    def test_normalized_volatility_range(self, ohlcv_arrays):
        vol = normalized_volatility(ohlcv_arrays['close'], 20)
        assert np.all(vol[:20] == 0.5)
        assert np.all((vol >= 0) & (vol <= 1))


class TestSwingPoints:

    def test_strict_extrema(self):
        high = np.array([1, 2, 3, 5, 3, 2, 1, 2, 3, 4, 3], dtype=float)
        low = high - 0.5
        is_high, is_low = detect_swing_points(high, low, 2)

        assert list(np.flatnonzero(is_high)) == [3]
        assert list(np.flatnonzero(is_low)) == [6]

    def test_plateau_is_not_a_swing(self):
        high = np.array([1, 2, 5, 5, 2, 1, 0], dtype=float)
        is_high, _ = detect_swing_points(high, high - 1, 2)
        assert not is_high.any()
