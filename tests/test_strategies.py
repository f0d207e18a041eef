"""
Strategy-specific rule tests: day trading votes, Fibonacci swing tracking,
ultra-fast slippage and the hybrid signal strength.
"""
import numpy as np
import pytest

from bandbot.backtest import make_rules, run_backtest
from bandbot.fibonacci import SwingTracker, golden_zone, level_price
from bandbot.models import (
    DayTradingConfig, FibonacciScalpingConfig, HybridConfig, TradingConfig, UltraFastScalpingConfig,
)
from bandbot.ultra_fast import tick_size


class TestDayTrading:

    def test_warmup_covers_slowest_indicator(self):
        rules = make_rules('day-trading', DayTradingConfig(period=14, rsiPeriod=10, macdSlow=26))
        assert rules.warmup() == 27

    def test_single_confirmation_trades(self, ohlcv_arrays):
        config = DayTradingConfig(minConfirmations=1, maxHoldingPeriod=3)
        result = run_backtest('day-trading', ohlcv_arrays, config)

        assert result.totalTrades > 0
        for trade in result.trades:
            if trade.reason == 'timeout':
                assert trade.exitIndex - trade.entryIndex == 3
            if trade.reason == 'stop-loss':
                expected = 1 - 0.008 if trade.position == 'long' else 1 + 0.008
                assert trade.exitPrice == pytest.approx(trade.entryPrice * expected)

    def test_annualization_is_daily(self):
        rules = make_rules('day-trading')
        assert rules.annualization_factor(True) == 252


class TestFibonacciLevels:

    def test_level_price_uptrend_measures_from_high(self):
        assert level_price(110, 100, 0.0, 'uptrend') == 110
        assert level_price(110, 100, 1.0, 'uptrend') == 100
        assert level_price(110, 100, 0.618, 'uptrend') == pytest.approx(103.82)

    def test_level_price_downtrend_measures_from_low(self):
        assert level_price(110, 100, 0.0, 'downtrend') == 100
        assert level_price(110, 100, 0.5, 'downtrend') == 105

    @pytest.mark.parametrize("direction", ['uptrend', 'downtrend'])
    def test_golden_zone_ordered(self, direction):
        low, high = golden_zone(110, 100, 0.5, 0.618, direction)
        assert low < high
        assert high - low == pytest.approx(1.18)

    def test_swing_tracker_has_no_lookahead(self, ohlcv_arrays):
        lookback = 3
        tracker = SwingTracker(ohlcv_arrays['high'], ohlcv_arrays['low'], lookback)
        seeds = set(tracker.points)

        for i in range(2 * lookback, len(ohlcv_arrays['close'])):
            tracker.advance(i)
            for point in tracker.points:
                if point not in seeds:
                    assert point.index <= i - lookback
                assert i - point.index <= lookback * 10 or point in seeds

    def test_swing_tracker_last(self):
        high = np.array([1, 2, 3, 5, 3, 2, 1, 2, 3, 4, 3, 2, 1], dtype=float)
        tracker = SwingTracker(high, high - 0.5, 2)
        tracker.advance(len(high) - 1)

        assert tracker.last('high').index == 9
        assert tracker.last('low').index == 6


class TestFibonacciRules:

    def test_lookback_sets_warmup(self):
        assert make_rules('fibonacci', FibonacciScalpingConfig(swingLookback=5)).warmup() == 10

    def test_exits_respect_holding_limit(self, ohlcv_arrays):
        config = FibonacciScalpingConfig(minConfirmations=2, requireVolumeConfirmation=False,
                                         minSwingSize=0.005, maxHoldingMinutes=4)
        result = run_backtest('fibonacci', ohlcv_arrays, config)

        for trade in result.trades:
            assert trade.exitIndex - trade.entryIndex <= 4
            if trade.reason == 'target':
                sign = 1 if trade.position == 'long' else -1
                assert trade.exitPrice == pytest.approx(trade.entryPrice * (1 + sign * 0.015))


class TestUltraFast:

    @pytest.mark.parametrize("price,seconds,expected", [
        (0.5, False, 0.0001),
        (5, False, 0.001),
        (50, False, 0.01),
        (500, False, 0.1),
        (5000, False, 1.0),
        (5000, True, 0.2),
    ])
    def test_tick_size(self, price, seconds, expected):
        assert tick_size(price, seconds) == pytest.approx(expected)

    def test_for_base_uses_seconds_defaults(self):
        config = UltraFastScalpingConfig.for_base(TradingConfig(period=5))
        assert config.maxHoldingSeconds == 15
        assert config.tightStopLoss == 0.0005
        assert config.period == 5

    def test_exit_fills_pay_slippage(self, seconds_ohlcv_arrays):
        config = UltraFastScalpingConfig(period=5, minConfirmations=1, maxHoldingSeconds=5)
        result = run_backtest('ultra-fast', seconds_ohlcv_arrays, config)
        close = seconds_ohlcv_arrays['close']

        assert result.isSecondsTimeframe
        for trade in result.trades:
            if trade.reason in ('time-limit', 'target', 'strategy-exit'):
                sign = 1 if trade.position == 'long' else -1
                assert trade.exitPrice == pytest.approx(close[trade.exitIndex] * (1 - sign * 0.0002))

    def test_entry_cooldown(self, seconds_ohlcv_arrays):
        config = UltraFastScalpingConfig(period=5, minConfirmations=1, maxHoldingSeconds=1)
        result = run_backtest('ultra-fast', seconds_ohlcv_arrays, config)

        entries = [t.entryTime for t in result.trades]
        assert all(b - a >= 1000 for a, b in zip(entries, entries[1:]))

    def test_breakout_required_without_instant_entry(self, seconds_ohlcv_arrays):
        rules = make_rules('ultra-fast', UltraFastScalpingConfig(
            period=5, minConfirmations=1, enableInstantEntry=False))
        bands = rules.compute_bands(seconds_ohlcv_arrays)
        state = rules.new_state(seconds_ohlcv_arrays, bands, True)

        for i in range(rules.warmup(), len(state.close)):
            for position in ('long', 'short'):
                if rules.check_entry(state, i, position) is not None:
                    assert state.signals[f'bb_{position}'][i]


class TestHybrid:

    def test_strength_zero_unless_all_required_hold(self, ohlcv_arrays):
        rules = make_rules('hybrid')
        bands = rules.compute_bands(ohlcv_arrays)
        state = rules.new_state(ohlcv_arrays, bands, False)

        for i in range(rules.warmup(), len(state.close)):
            rules.update(state, i)
            for position in ('long', 'short'):
                strength = rules.signal_strength(state, i, position)
                assert strength in (0.0, 100.0)
                if not state.signals[f'bb_{position}'][i]:
                    assert strength == 0.0

    def test_no_requirements_trades(self, ohlcv_arrays):
        config = HybridConfig(requireBollingerBreakout=False, requireFibonacciRetracement=False,
                              requireVolumeConfirmation=False, requireMomentumConfirmation=False)
        result = run_backtest('hybrid', ohlcv_arrays, config)
        assert result.totalTrades > 0

    def test_full_strength_meets_maximum_threshold(self, ohlcv_arrays):
        config = HybridConfig(requireBollingerBreakout=False, requireFibonacciRetracement=False,
                              requireVolumeConfirmation=False, requireMomentumConfirmation=False,
                              minSignalStrength=100)
        assert run_backtest('hybrid', ohlcv_arrays, config).totalTrades > 0

    def test_base_config_derivation(self):
        rules = make_rules('hybrid', TradingConfig(period=5, offset=0))
        assert rules.config.swingLookback == 3
        assert rules.config.maxHoldingMinutes == 30
