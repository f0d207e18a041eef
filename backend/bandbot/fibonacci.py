"""
Fibonacci retracement rules
Swing tracking, structure-break scalping and the Bollinger + Fibonacci hybrid
"""
from dataclasses import dataclass
from typing import List, NamedTuple, Optional

import numpy as np

from bandbot.conditions import (
    close_falling, close_rising, crosses_above_upper, crosses_below_lower,
    green_candle, red_candle, volume_above_average,
)
from bandbot.config import ANNUALIZATION_MINUTES, ANNUALIZATION_SECONDS
from bandbot.indicators import calculate_volume_ma, detect_swing_points
from bandbot.models import FibonacciScalpingConfig, HybridConfig
from bandbot.rules import EntrySignal, ExitSignal, RuleSet, SimulationState


class SwingPoint(NamedTuple):
    index: int
    price: float
    kind: str  # 'high' | 'low'


class Retracement(NamedTuple):
    direction: str  # 'uptrend' | 'downtrend'
    high: SwingPoint
    low: SwingPoint
    levels: List[float]
    zone_low: float
    zone_high: float


def level_price(high: float, low: float, ratio: float, direction: str) -> float:
    """Retracement price; uptrends measure down from the high, downtrends up from the low"""
    span = high - low
    if direction == 'uptrend':
        return high - span * ratio
    return low + span * ratio


def golden_zone(high: float, low: float, zone_min: float, zone_max: float, direction: str):
    """Price band between the two zone ratios, whichever way the retracement runs"""
    a = level_price(high, low, zone_min, direction)
    b = level_price(high, low, zone_max, direction)
    return min(a, b), max(a, b)


class SwingTracker:
    """
    Confirmed swing highs and lows, revealed without lookahead.

    A swing centred on bar c needs `lookback` bars on either side, so it is
    only added once bar c + lookback has been seen. Points older than
    lookback * 10 bars are dropped.
    """

    def __init__(self, high: np.ndarray, low: np.ndarray, lookback: int):
        self.lookback = lookback
        self.max_age = lookback * 10
        self.high = high
        self.low = low
        is_high, is_low = detect_swing_points(high, low, lookback)
        self.is_high = is_high.tolist()
        self.is_low = is_low.tolist()
        self.points: List[SwingPoint] = []
        self._next = 2 * lookback

        n = len(high)
        if n >= 2 * lookback:
            hi = min(lookback, n - 1)
            lo = min(2 * lookback, n - 1)
            self.points.append(SwingPoint(hi, float(high[hi]), 'high'))
            self.points.append(SwingPoint(lo, float(low[lo]), 'low'))

    def advance(self, i: int):
        """Process every bar up to and including i"""
        while self._next <= i:
            bar = self._next
            center = bar - self.lookback
            if self.is_high[center]:
                self.points.append(SwingPoint(center, float(self.high[center]), 'high'))
            if self.is_low[center]:
                self.points.append(SwingPoint(center, float(self.low[center]), 'low'))
            self.points = [p for p in self.points if bar - p.index <= self.max_age]
            self._next += 1

    def last(self, kind: str) -> Optional[SwingPoint]:
        for point in reversed(self.points):
            if point.kind == kind:
                return point
        return None


@dataclass
class FibonacciState(SimulationState):
    swings: Optional[SwingTracker] = None
    retracement: Optional[Retracement] = None
    break_up_count: int = 0
    break_down_count: int = 0


class FibonacciScalpingRules(RuleSet):
    """Trade pullbacks into the golden zone after a market structure break"""

    name = 'fibonacci'
    trade_prefix = 'fib_trade'
    config_model = FibonacciScalpingConfig
    state_class = FibonacciState

    def lookbacks(self):
        return [2 * self.config.swingLookback - 1]

    def annualization_factor(self, seconds):
        return ANNUALIZATION_SECONDS if seconds else ANNUALIZATION_MINUTES

    def prepare(self, state, data, bands):
        cfg = self.config
        state.swings = SwingTracker(data['high'], data['low'], cfg.swingLookback)

        if cfg.requireVolumeConfirmation:
            volume_ma = calculate_volume_ma(data['volume'], cfg.volumePeriod)
            volume_ok = (volume_ma > 0) & volume_above_average(data['volume'], volume_ma, cfg.volumeThreshold)
        else:
            volume_ok = np.ones(len(data['close']), dtype=bool)
        state.signals['volume_ok'] = volume_ok.tolist()

        if cfg.requireCandleColorConfirmation:
            state.signals['green'] = green_candle(data['open'], data['close']).tolist()
            state.signals['red'] = red_candle(data['open'], data['close']).tolist()
        else:
            state.signals['green'] = state.signals['red'] = [True] * len(data['close'])

    def _significant(self, a: SwingPoint, b: SwingPoint) -> bool:
        lo = min(a.price, b.price)
        if lo <= 0:
            return False
        return abs(b.price - a.price) / lo >= self.config.minSwingSize

    def _retracement(self, high: SwingPoint, low: SwingPoint, direction: str) -> Retracement:
        cfg = self.config
        levels = [level_price(high.price, low.price, ratio, direction) for ratio in cfg.fibRetracementLevels]
        zone_low, zone_high = golden_zone(high.price, low.price, cfg.goldenZoneMin, cfg.goldenZoneMax, direction)
        return Retracement(direction, high, low, levels, zone_low, zone_high)

    def update(self, state, i):
        state.swings.advance(i)
        last_high = state.swings.last('high')
        last_low = state.swings.last('low')
        if last_high is None or last_low is None:
            state.break_up_count = state.break_down_count = 0
            return

        close = state.close[i]
        significant = self._significant(last_low, last_high)
        confirm = self.config.structureBreakConfirmation

        if close > last_high.price and last_low.index < last_high.index and significant:
            state.break_up_count += 1
            if state.break_up_count >= confirm:
                state.retracement = self._retracement(last_high, last_low, 'uptrend')
        else:
            state.break_up_count = 0

        if close < last_low.price and last_high.index < last_low.index and significant:
            state.break_down_count += 1
            if state.break_down_count >= confirm:
                state.retracement = self._retracement(last_high, last_low, 'downtrend')
        else:
            state.break_down_count = 0

    def check_entry(self, state, i, position):
        cfg = self.config
        fib = state.retracement
        wanted = 'uptrend' if position == 'long' else 'downtrend'
        if fib is None or fib.direction != wanted:
            return None

        close = state.close[i]
        prev_close = state.close[i - 1]
        if not fib.zone_low <= close <= fib.zone_high:
            return None

        if position == 'long':
            votes = [
                prev_close <= fib.zone_low < close,
                state.signals['volume_ok'][i],
                state.signals['green'][i],
                close > fib.zone_low,
            ]
        else:
            votes = [
                prev_close >= fib.zone_high > close,
                state.signals['volume_ok'][i],
                state.signals['red'][i],
                close < fib.zone_high,
            ]
        if sum(votes) < cfg.minConfirmations:
            return None

        if position == 'long':
            return EntrySignal(position, close, close * (1 - cfg.stopLossPercent),
                               take_profit=close * (1 + cfg.profitTarget))
        return EntrySignal(position, close, close * (1 + cfg.stopLossPercent),
                           take_profit=close * (1 - cfg.profitTarget))

    def fib_exit(self, state, i) -> bool:
        """0% level (the swing extreme) touched intrabar"""
        fib = state.retracement
        if fib is None or 0.0 not in self.config.fibRetracementLevels:
            return False
        zero = fib.levels[self.config.fibRetracementLevels.index(0.0)]
        if state.open_trade.position == 'long':
            return state.high[i] >= zero
        return state.low[i] <= zero

    def check_exit(self, state, i):
        hit = self.stop_hit(state, i) or self.target_hit(state, i)
        if hit:
            return hit
        if self.fib_exit(state, i):
            return ExitSignal(state.close[i], 'strategy-exit')
        if self.bars_held(state, i) >= self.config.maxHoldingMinutes:
            return ExitSignal(state.close[i], 'timeout')
        return None


# ==================== BOLLINGER + FIBONACCI HYBRID ====================

@dataclass
class HybridState(SimulationState):
    swings: Optional[SwingTracker] = None
    zone: Optional[tuple] = None


class HybridRules(RuleSet):
    """Bollinger breakout scored against golden zone, volume and momentum confirmation"""

    name = 'hybrid'
    trade_prefix = 'hybrid'
    config_model = HybridConfig
    state_class = HybridState

    BB_POINTS = 30
    FIB_POINTS = 25
    VOLUME_POINTS = 25
    MOMENTUM_POINTS = 20

    def lookbacks(self):
        return [self.config.period, 2 * self.config.swingLookback - 1]

    def annualization_factor(self, seconds):
        return ANNUALIZATION_SECONDS if seconds else ANNUALIZATION_MINUTES

    def prepare(self, state, data, bands):
        cfg = self.config
        close = data['close']
        n = len(close)
        state.swings = SwingTracker(data['high'], data['low'], cfg.swingLookback)

        always = np.ones(n, dtype=bool)
        volume_ma = calculate_volume_ma(data['volume'], cfg.volumePeriod)
        signals = state.signals
        signals['bb_long'] = (crosses_above_upper(close, bands) if cfg.requireBollingerBreakout else always).tolist()
        signals['bb_short'] = (crosses_below_lower(close, bands) if cfg.requireBollingerBreakout else always).tolist()
        signals['volume'] = ((volume_ma > 0) & volume_above_average(data['volume'], volume_ma, cfg.volumeThreshold)
                             if cfg.requireVolumeConfirmation else always).tolist()
        green = green_candle(data['open'], close) & close_rising(close)
        red = red_candle(data['open'], close) & close_falling(close)
        signals['momentum_long'] = (green if cfg.requireMomentumConfirmation else always).tolist()
        signals['momentum_short'] = (red if cfg.requireMomentumConfirmation else always).tolist()

    def update(self, state, i):
        state.swings.advance(i)
        last_high = state.swings.last('high')
        last_low = state.swings.last('low')
        if last_high is None or last_low is None:
            return
        high = max(last_high.price, last_low.price)
        low = min(last_high.price, last_low.price)
        if high - low <= 0:
            return
        cfg = self.config
        state.zone = golden_zone(high, low, cfg.goldenZoneMin, cfg.goldenZoneMax, 'uptrend')

    def signal_strength(self, state, i, position) -> float:
        """Points for each confirmation; 0 unless every required confirmation holds"""
        cfg = self.config
        signals = state.signals
        bb = signals[f'bb_{position}'][i]
        if cfg.requireFibonacciRetracement:
            fib = state.zone is not None and state.zone[0] <= state.close[i] <= state.zone[1]
        else:
            fib = True
        volume = signals['volume'][i]
        momentum = signals[f'momentum_{position}'][i]

        if not (bb and fib and volume and momentum):
            return 0.0
        return float(self.BB_POINTS * bb + self.FIB_POINTS * fib
                     + self.VOLUME_POINTS * volume + self.MOMENTUM_POINTS * momentum)

    def check_entry(self, state, i, position):
        cfg = self.config
        strength = self.signal_strength(state, i, position)
        if strength == 0 or strength < cfg.minSignalStrength:
            return None
        price = state.close[i]
        if position == 'long':
            return EntrySignal(position, price, price * (1 - cfg.stopLossPercent),
                               take_profit=price * (1 + cfg.profitTarget))
        return EntrySignal(position, price, price * (1 + cfg.stopLossPercent),
                           take_profit=price * (1 - cfg.profitTarget))

    def check_exit(self, state, i):
        hit = self.stop_hit(state, i) or self.target_hit(state, i)
        if hit:
            return hit
        trade = state.open_trade
        if trade.position == 'long' and state.close[i] <= state.upper[i]:
            return ExitSignal(state.close[i], 'strategy-exit')
        if trade.position == 'short' and state.close[i] >= state.lower[i]:
            return ExitSignal(state.close[i], 'strategy-exit')
        if self.bars_held(state, i) >= self.config.maxHoldingMinutes:
            return ExitSignal(state.close[i], 'timeout')
        return None
