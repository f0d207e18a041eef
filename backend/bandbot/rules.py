"""
Rule sets for the backtest engine.

A rule set holds configuration only. Everything that changes while walking the
candles lives on a SimulationState created fresh for every run, so one rule
set instance can be backtested any number of times.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional

import numpy as np

from bandbot.conditions import (
    SIGNAL_HANDLERS, close_falling, close_rising, day_number, hour_in_range,
    lookback_return, squeeze,
)
from bandbot.config import ANNUALIZATION_DAILY, ANNUALIZATION_SECONDS
from bandbot.indicators import (
    BandSeries, calculate_adaptive_bollinger_bands, calculate_bollinger_bands,
    calculate_log_return_volatility, calculate_volume_ma, normalized_volatility,
)
from bandbot.models import EnhancedBollingerConfig, Trade, TradingConfig


class EntrySignal(NamedTuple):
    position: str
    price: float
    stop_loss: float
    take_profit: Optional[float] = None
    leverage: Optional[float] = None


class ExitSignal(NamedTuple):
    price: float
    reason: str


@dataclass
class SimulationState:
    """Per-run mutable state; candle and band arrays are held as lists for fast scalar access"""
    timestamp: List[int]
    open: List[float]
    high: List[float]
    low: List[float]
    close: List[float]
    volume: List[float]
    upper: List[float]
    middle: List[float]
    lower: List[float]
    seconds: bool
    capital: float
    signals: Dict[str, Any] = field(default_factory=dict)
    trades: List[Trade] = field(default_factory=list)
    open_trade: Optional[Trade] = None
    capital_at_entry: float = 0.0

    @classmethod
    def from_arrays(cls, data: Dict[str, np.ndarray], bands: BandSeries, seconds: bool,
                    capital: float, **kwargs) -> "SimulationState":
        return cls(
            timestamp=data['timestamp'].tolist(),
            open=data['open'].tolist(),
            high=data['high'].tolist(),
            low=data['low'].tolist(),
            close=data['close'].tolist(),
            volume=data['volume'].tolist(),
            upper=bands.upper.tolist(),
            middle=bands.middle.tolist(),
            lower=bands.lower.tolist(),
            seconds=seconds,
            capital=capital,
            **kwargs,
        )

    def set_bands(self, bands: BandSeries):
        self.upper = bands.upper.tolist()
        self.middle = bands.middle.tolist()
        self.lower = bands.lower.tolist()


def direction(position: str) -> int:
    return 1 if position == 'long' else -1


class RuleSet:
    """Base class: entry/exit rules plugged into BacktestEngine"""

    name = 'base'
    trade_prefix = 'trade'
    config_model = TradingConfig
    state_class = SimulationState
    final_exit_reason = 'strategy-exit'

    def __init__(self, config: Optional[TradingConfig] = None):
        if config is None:
            config = self.config_model()
        elif not isinstance(config, self.config_model):
            if isinstance(config, TradingConfig) and hasattr(self.config_model, 'for_base'):
                config = self.config_model.for_base(config)
            else:
                config = self.config_model.model_validate(
                    config.model_dump() if isinstance(config, TradingConfig) else config)
        self.config = config

    # -- run setup --

    def lookbacks(self) -> List[int]:
        return [self.config.period]

    def warmup(self) -> int:
        """First bar index evaluated; every indicator and its previous value are valid from here"""
        return max(self.lookbacks()) + 1

    def annualization_factor(self, seconds: bool) -> int:
        return ANNUALIZATION_SECONDS if seconds else ANNUALIZATION_DAILY

    def compute_bands(self, data: Dict[str, np.ndarray]) -> BandSeries:
        cfg = self.config
        return calculate_bollinger_bands(data['close'], cfg.period, cfg.stdDev, cfg.offset)

    def new_state(self, data: Dict[str, np.ndarray], bands: BandSeries, seconds: bool) -> SimulationState:
        state = self.state_class.from_arrays(data, bands, seconds, self.config.initialCapital)
        self.prepare(state, data, bands)
        return state

    def prepare(self, state: SimulationState, data: Dict[str, np.ndarray], bands: BandSeries):
        """Compute the per-bar signal arrays used by check_entry / check_exit"""

    # -- per bar --

    def update(self, state: SimulationState, i: int):
        pass

    def check_entry(self, state: SimulationState, i: int, position: str) -> Optional[EntrySignal]:
        raise NotImplementedError

    def check_exit(self, state: SimulationState, i: int) -> Optional[ExitSignal]:
        raise NotImplementedError

    def final_exit_price(self, state: SimulationState, i: int) -> float:
        return state.close[i]

    def adjust_pnl(self, state: SimulationState, trade: Trade, pnl: float) -> float:
        return pnl

    def on_open(self, state: SimulationState, trade: Trade):
        pass

    def on_close(self, state: SimulationState, trade: Trade):
        pass

    # -- shared exit checks --

    def stop_hit(self, state: SimulationState, i: int) -> Optional[ExitSignal]:
        trade = state.open_trade
        if trade.position == 'long' and state.low[i] <= trade.stopLoss:
            return ExitSignal(trade.stopLoss, 'stop-loss')
        if trade.position == 'short' and state.high[i] >= trade.stopLoss:
            return ExitSignal(trade.stopLoss, 'stop-loss')
        return None

    def target_hit(self, state: SimulationState, i: int) -> Optional[ExitSignal]:
        trade = state.open_trade
        if trade.takeProfit is None:
            return None
        if trade.position == 'long' and state.high[i] >= trade.takeProfit:
            return ExitSignal(trade.takeProfit, 'target')
        if trade.position == 'short' and state.low[i] <= trade.takeProfit:
            return ExitSignal(trade.takeProfit, 'target')
        return None

    def bars_held(self, state: SimulationState, i: int) -> int:
        return i - state.open_trade.entryIndex


# ==================== BASELINE BREAKOUT ====================

@dataclass
class BreakoutState(SimulationState):
    last_inside_upper: int = -1
    last_inside_lower: int = -1


class BaselineBreakoutRules(RuleSet):
    """Enter on the first close beyond a band, exit when price closes back inside"""

    name = 'baseline'
    trade_prefix = 'trade'
    state_class = BreakoutState

    def prepare(self, state, data, bands):
        close = np.asarray(state.close)
        current = BandSeries(np.asarray(state.upper), np.asarray(state.middle), np.asarray(state.lower))
        for key, handler in SIGNAL_HANDLERS.items():
            state.signals[key] = handler(close, current).tolist()

    def update(self, state, i):
        if state.close[i] <= state.upper[i]:
            state.last_inside_upper = i
        if state.close[i] >= state.lower[i]:
            state.last_inside_lower = i

    def breakout(self, state, i, position) -> bool:
        if position == 'long':
            return state.signals['bb_cross_up'][i] and state.last_inside_upper >= 0
        return state.signals['bb_cross_down'][i] and state.last_inside_lower >= 0

    def structural_stop(self, state, i, position) -> float:
        """Stop behind the last candle that closed on the entry side of the band"""
        close = state.close[i]
        if position == 'long':
            anchor = state.last_inside_upper
            if 0 <= anchor < i:
                return min(state.low[anchor] * 0.99, close * 0.98)
            return close * 0.95
        anchor = state.last_inside_lower
        if 0 <= anchor < i:
            return max(state.high[anchor] * 1.01, close * 1.02)
        return close * 1.05

    def check_entry(self, state, i, position):
        if not self.breakout(state, i, position):
            return None
        return EntrySignal(position, state.close[i], self.structural_stop(state, i, position))

    def band_reentry(self, state, i) -> bool:
        if state.open_trade.position == 'long':
            return state.signals['bb_reentry_from_above'][i]
        return state.signals['bb_reentry_from_below'][i]

    def check_exit(self, state, i):
        stop = self.stop_hit(state, i)
        if stop:
            return stop
        if self.band_reentry(state, i):
            return ExitSignal(state.close[i], 'strategy-exit')
        return None


# ==================== ENHANCED BOLLINGER ====================

@dataclass
class EnhancedState(BreakoutState):
    daily_loss: float = 0.0
    consecutive_losses: int = 0
    last_exit_time: Optional[int] = None
    trailing_stop: float = 0.0
    partial_taken: bool = False
    partial_pnl: float = 0.0


class EnhancedBollingerRules(BaselineBreakoutRules):
    """
    Baseline breakout with independently toggled gates and position management.

    Every toggle defaults off, in which case entries, stops, exits, warm-up and
    annualization are exactly the baseline's.
    """

    name = 'enhanced'
    trade_prefix = 'enhanced_trade'
    config_model = EnhancedBollingerConfig
    state_class = EnhancedState

    VOLATILITY_LOOKBACK = 20
    DEFAULT_VOLATILITY = 0.02
    TARGET_VOLATILITY = 0.02

    def lookbacks(self):
        cfg = self.config
        periods = [cfg.period]
        if cfg.enableAdaptivePeriod:
            periods.append(cfg.adaptivePeriodMax)
        if cfg.enableMarketRegimeFilter:
            periods.append(cfg.trendPeriod)
        if cfg.enableVolatilityPositioning:
            periods.append(cfg.volatilityLookback)
        return periods

    def prepare(self, state, data, bands):
        cfg = self.config
        close = data['close']

        # Adaptive bands replace the fixed-period bands handed in by the caller
        if cfg.enableAdaptivePeriod:
            state.set_bands(calculate_adaptive_bollinger_bands(
                close, cfg.adaptivePeriodMin, cfg.adaptivePeriodMax, cfg.stdDev, cfg.offset))
        super().prepare(state, data, bands)

        signals = state.signals
        if cfg.enableVolumeFilter:
            signals['volume_ma'] = calculate_volume_ma(data['volume'], cfg.volumePeriod).tolist()

        if cfg.enableMarketRegimeFilter:
            trend = lookback_return(close, cfg.trendPeriod)
            signals['trend'] = trend.tolist()
            vol = normalized_volatility(close, self.VOLATILITY_LOOKBACK)
            signals['high_volatility'] = (vol >= 0.7).tolist()

        if cfg.enableVolatilityPositioning:
            vol = calculate_log_return_volatility(close, cfg.volatilityLookback)
            vol[:cfg.volatilityLookback] = self.DEFAULT_VOLATILITY
            signals['volatility'] = vol.tolist()

        if cfg.enableSqueezeDetection:
            current = BandSeries(np.asarray(state.upper), np.asarray(state.middle), np.asarray(state.lower))
            signals['squeeze'] = squeeze(current, 20, cfg.squeezeThreshold).tolist()

        if cfg.enableTimeFilter:
            signals['trading_hours'] = hour_in_range(
                data['timestamp'], cfg.tradingStartHour, cfg.tradingEndHour).tolist()

        if cfg.maxDailyLoss > 0:
            signals['day'] = day_number(data['timestamp']).tolist()

        if cfg.enableMeanReversion:
            upper = np.asarray(state.upper)
            lower = np.asarray(state.lower)
            thr = cfg.meanReversionThreshold
            signals['mean_reversion_long'] = ((close < lower * (1 + thr)) & close_rising(close)).tolist()
            signals['mean_reversion_short'] = ((close > upper * (1 - thr)) & close_falling(close)).tolist()

    def update(self, state, i):
        super().update(state, i)
        cfg = self.config

        if cfg.maxDailyLoss > 0 and i > 0 and state.signals['day'][i] != state.signals['day'][i - 1]:
            state.daily_loss = 0.0

        trade = state.open_trade
        if trade is not None and cfg.enableTrailingStop:
            if trade.position == 'long':
                candidate = state.high[i] * (1 - cfg.trailingStopPercent)
                if state.trailing_stop == 0 or candidate > state.trailing_stop:
                    state.trailing_stop = candidate
            else:
                candidate = state.low[i] * (1 + cfg.trailingStopPercent)
                if state.trailing_stop == 0 or candidate < state.trailing_stop:
                    state.trailing_stop = candidate

    # -- entries --

    def circuit_open(self, state, i) -> bool:
        """True when risk limits block new entries"""
        cfg = self.config
        if cfg.maxDailyLoss > 0 and state.daily_loss >= cfg.maxDailyLoss:
            return True
        if cfg.maxConsecutiveLosses > 0 and state.consecutive_losses >= cfg.maxConsecutiveLosses:
            return True
        if cfg.cooldownPeriod > 0 and state.last_exit_time is not None:
            if state.timestamp[i] - state.last_exit_time < cfg.cooldownPeriod * 60 * 1000:
                return True
        return False

    def filters_pass(self, state, i, position) -> bool:
        cfg = self.config
        signals = state.signals

        if cfg.enableTimeFilter and not signals['trading_hours'][i]:
            return False

        if cfg.enableVolumeFilter:
            volume_ma = signals['volume_ma'][i]
            if volume_ma > 0 and state.volume[i] < volume_ma * cfg.volumeThreshold:
                return False

        if cfg.enableMarketRegimeFilter:
            trend = signals['trend'][i]
            if position == 'long' and trend < -cfg.trendThreshold and abs(trend) > 0.02:
                return False
            if position == 'short' and trend > cfg.trendThreshold and abs(trend) > 0.02:
                return False
            if signals['high_volatility'][i]:
                return False

        if cfg.enableSqueezeDetection and signals['squeeze'][i]:
            return False

        return True

    def position_size(self, state, i) -> float:
        cfg = self.config
        if not cfg.enableVolatilityPositioning:
            return 1.0
        vol = state.signals['volatility'][i]
        scale = 2.0 if vol <= 0 else min(2.0, max(0.5, self.TARGET_VOLATILITY / vol))
        return cfg.basePositionSize * scale

    def check_entry(self, state, i, position):
        cfg = self.config
        if self.circuit_open(state, i):
            return None

        leverage = cfg.maxLeverage * self.position_size(state, i)

        if cfg.enableMeanReversion and state.signals[f'mean_reversion_{position}'][i]:
            stop = state.close[i] * (0.95 if position == 'long' else 1.05)
            return EntrySignal(position, state.close[i], stop, leverage=leverage)

        if not self.breakout(state, i, position):
            return None
        if not self.filters_pass(state, i, position):
            return None

        return EntrySignal(position, state.close[i], self.structural_stop(state, i, position), leverage=leverage)

    # -- exits --

    def check_exit(self, state, i):
        cfg = self.config
        trade = state.open_trade

        stop = self.stop_hit(state, i)
        if stop:
            return stop

        if (cfg.enableTrailingStop or state.partial_taken) and state.trailing_stop > 0:
            if trade.position == 'long' and state.low[i] <= state.trailing_stop:
                return ExitSignal(state.trailing_stop, 'trailing-stop')
            if trade.position == 'short' and state.high[i] >= state.trailing_stop:
                return ExitSignal(state.trailing_stop, 'trailing-stop')

        if self.band_reentry(state, i):
            return ExitSignal(state.close[i], 'strategy-exit')

        if cfg.enablePartialTakeProfit and not state.partial_taken:
            move = direction(trade.position) * (state.close[i] - trade.entryPrice) / trade.entryPrice
            if move >= cfg.partialTakeProfitPercent:
                state.partial_pnl = move * trade.leverage * state.capital_at_entry * cfg.partialTakeProfitSize
                state.partial_taken = True
                # Remaining size is protected at breakeven
                state.trailing_stop = trade.entryPrice

        return None

    def adjust_pnl(self, state, trade, pnl):
        if state.partial_taken:
            return pnl * (1 - self.config.partialTakeProfitSize) + state.partial_pnl
        return pnl

    def on_close(self, state, trade):
        if trade.pnl < 0:
            state.daily_loss += abs(trade.pnl)
            state.consecutive_losses += 1
        else:
            state.consecutive_losses = 0
        state.last_exit_time = trade.exitTime
        state.trailing_stop = 0.0
        state.partial_taken = False
        state.partial_pnl = 0.0
