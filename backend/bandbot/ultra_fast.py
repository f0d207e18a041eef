"""
Ultra-fast scalping rules
Seconds-scale entries on velocity, micro trend and tick strength; every exit pays slippage
"""
from dataclasses import dataclass
from typing import Optional

import numpy as np

from bandbot.conditions import (
    bar_change, crosses_above_upper, crosses_below_lower, price_velocity, trend_direction,
)
from bandbot.config import ANNUALIZATION_MINUTES, ANNUALIZATION_SECONDS
from bandbot.models import UltraFastScalpingConfig
from bandbot.rules import EntrySignal, ExitSignal, RuleSet, SimulationState, direction


def tick_size(price: float, seconds: bool = False) -> float:
    """Estimated tick size for a price level, finer on seconds data"""
    multiplier = 0.2 if seconds else 1.0
    if price < 1:
        return 0.0001 * multiplier
    if price < 10:
        return 0.001 * multiplier
    if price < 100:
        return 0.01 * multiplier
    if price < 1000:
        return 0.1 * multiplier
    return 1.0 * multiplier


@dataclass
class UltraFastState(SimulationState):
    last_entry_time: Optional[int] = None


class UltraFastScalpingRules(RuleSet):
    """Micro-scalping on band breakouts confirmed by price velocity"""

    name = 'ultra-fast'
    trade_prefix = 'ultrafast'
    config_model = UltraFastScalpingConfig
    state_class = UltraFastState
    final_exit_reason = 'time-limit'

    MIN_LOOKBACK = 5

    def lookbacks(self):
        return [self.config.period, self.MIN_LOOKBACK]

    def annualization_factor(self, seconds):
        return ANNUALIZATION_SECONDS if seconds else ANNUALIZATION_MINUTES

    def cooldown_ms(self, seconds: bool) -> int:
        return 1000 if seconds else 5000

    def prepare(self, state, data, bands):
        cfg = self.config
        close = data['close']
        open_ = data['open']
        seconds = state.seconds
        signals = state.signals

        signals['bb_long'] = crosses_above_upper(close, bands).tolist()
        signals['bb_short'] = crosses_below_lower(close, bands).tolist()

        velocity = price_velocity(close, data['timestamp'], 10 if seconds else 3, 1 if seconds else 60)
        signals['fast'] = (velocity >= cfg.velocityThreshold).tolist()

        lookback = cfg.subMinutePeriods * 5 if seconds else cfg.subMinutePeriods
        threshold = cfg.minPriceMovement * 0.5 if seconds else cfg.minPriceMovement
        trend = trend_direction(close, lookback, threshold)
        signals['trend_long'] = (trend >= 0).tolist()
        signals['trend_short'] = (trend <= 0).tolist()

        change = bar_change(close)
        signals['scalp_long'] = (change > cfg.minPriceMovement).tolist()
        signals['scalp_short'] = (-change > cfg.minPriceMovement).tolist()

        with np.errstate(divide='ignore', invalid='ignore'):
            up_strength = np.where(open_ != 0, (data['high'] - open_) / open_, 0.0)
            down_strength = np.where(open_ != 0, (open_ - data['low']) / open_, 0.0)
        signals['tick_long'] = (up_strength > cfg.minPriceMovement).tolist()
        signals['tick_short'] = (down_strength > cfg.minPriceMovement).tolist()

    def check_entry(self, state, i, position):
        cfg = self.config
        if state.last_entry_time is not None:
            if state.timestamp[i] - state.last_entry_time < self.cooldown_ms(state.seconds):
                return None

        signals = state.signals
        breakout = signals[f'bb_{position}'][i]
        if not cfg.enableInstantEntry and not breakout:
            return None

        votes = [breakout]
        if cfg.enableVelocityFilter:
            votes.append(signals['fast'][i])
        if cfg.enableSubMinuteAnalysis:
            votes.append(signals[f'trend_{position}'][i])
        if cfg.enableScalpMode:
            votes.append(signals[f'scalp_{position}'][i])
        if cfg.enableTickConfirmation:
            votes.append(signals[f'tick_{position}'][i])
        if sum(votes) < cfg.minConfirmations:
            return None

        price = state.close[i]
        stop = price * (1 - cfg.tightStopLoss) if position == 'long' else price * (1 + cfg.tightStopLoss)
        return EntrySignal(position, price, stop)

    def on_open(self, state, trade):
        state.last_entry_time = trade.entryTime

    def slipped(self, price: float, position: str) -> float:
        """Fill price moved against the position by maxSlippage"""
        return price * (1 - direction(position) * self.config.maxSlippage)

    def final_exit_price(self, state, i):
        return self.slipped(state.close[i], state.open_trade.position)

    def check_exit(self, state, i):
        cfg = self.config
        trade = state.open_trade
        position = trade.position
        close = state.close[i]

        stop = self.stop_hit(state, i)
        if stop:
            return ExitSignal(self.slipped(stop.price, position), stop.reason)

        if state.timestamp[i] - trade.entryTime >= cfg.maxHoldingSeconds * 1000:
            return ExitSignal(self.slipped(close, position), 'time-limit')

        move = direction(position) * (close - trade.entryPrice)
        if cfg.enableMicroProfits and move / trade.entryPrice >= cfg.quickProfitTarget:
            return ExitSignal(self.slipped(close, position), 'target')

        if cfg.enableScalpMode:
            tick = tick_size(close, state.seconds)
            if move >= cfg.scalpTargetTicks * tick:
                return ExitSignal(self.slipped(close, position), 'target')
            if move <= -cfg.scalpStopTicks * tick:
                return ExitSignal(self.slipped(close, position), 'stop-loss')

        if cfg.enableInstantExit:
            if (position == 'long' and close <= state.upper[i]) or (position == 'short' and close >= state.lower[i]):
                return ExitSignal(self.slipped(close, position), 'strategy-exit')

        return None
