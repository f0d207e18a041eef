"""
Multi-signal day trading rules
Bollinger breakout, RSI, MACD, volume, candle colour and trend votes
"""
import numpy as np

from bandbot.conditions import (
    crosses_above_upper, crosses_below_lower, falling, green_candle, red_candle,
    rising, volume_above_average,
)
from bandbot.config import ANNUALIZATION_DAILY
from bandbot.indicators import calculate_macd, calculate_rsi, calculate_volume_ma
from bandbot.models import DayTradingConfig
from bandbot.rules import EntrySignal, ExitSignal, RuleSet


class DayTradingRules(RuleSet):
    """Enter when at least `minConfirmations` of six signals agree"""

    name = 'day-trading'
    trade_prefix = 'trade'
    config_model = DayTradingConfig

    def lookbacks(self):
        cfg = self.config
        return [cfg.period, cfg.rsiPeriod, cfg.macdSlow]

    def annualization_factor(self, seconds):
        return ANNUALIZATION_DAILY

    def prepare(self, state, data, bands):
        cfg = self.config
        close = data['close']
        open_ = data['open']

        rsi = calculate_rsi(close, cfg.rsiPeriod)
        macd, signal, hist = calculate_macd(close, cfg.macdFast, cfg.macdSlow, cfg.macdSignal)
        volume_ok = volume_above_average(data['volume'], calculate_volume_ma(data['volume'], cfg.volumePeriod),
                                         cfg.volumeThreshold)

        long_votes = np.vstack([
            crosses_above_upper(close, bands),
            (rsi > 50) & (rsi < cfg.rsiOverbought) & rising(rsi),
            (macd > signal) & rising(hist),
            volume_ok,
            green_candle(open_, close),
            close > bands.middle,
        ]).sum(axis=0)

        short_votes = np.vstack([
            crosses_below_lower(close, bands),
            (rsi < 50) & (rsi > cfg.rsiOversold) & falling(rsi),
            (macd < signal) & falling(hist),
            volume_ok,
            red_candle(open_, close),
            close < bands.middle,
        ]).sum(axis=0)

        state.signals['long_votes'] = long_votes.tolist()
        state.signals['short_votes'] = short_votes.tolist()
        state.signals['long_exit'] = ((close <= bands.upper) | (rsi >= cfg.rsiOverbought) | (hist < 0)).tolist()
        state.signals['short_exit'] = ((close >= bands.lower) | (rsi <= cfg.rsiOversold) | (hist > 0)).tolist()

    def check_entry(self, state, i, position):
        cfg = self.config
        if state.signals[f'{position}_votes'][i] < cfg.minConfirmations:
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
        if state.signals[f'{state.open_trade.position}_exit'][i]:
            return ExitSignal(state.close[i], 'strategy-exit')
        if self.bars_held(state, i) >= self.config.maxHoldingPeriod:
            return ExitSignal(state.close[i], 'timeout')
        return None
