"""
Backtest Engine
Walks the candles once per run, delegating entry/exit decisions to a rule set
"""
from typing import Dict, Optional, Type, Union

import numpy as np

from bandbot.day_trading import DayTradingRules
from bandbot.fibonacci import FibonacciScalpingRules, HybridRules
from bandbot.indicators import BandSeries
from bandbot.logging_config import get_logger
from bandbot.market_data import detect_seconds_regime
from bandbot.metrics import calculate_statistics
from bandbot.models import BacktestResult, Trade, TradingConfig
from bandbot.rules import (
    BaselineBreakoutRules, EnhancedBollingerRules, EntrySignal, ExitSignal, RuleSet,
    SimulationState, direction,
)
from bandbot.ultra_fast import UltraFastScalpingRules

logger = get_logger('backtest')

STRATEGIES: Dict[str, Type[RuleSet]] = {
    'baseline': BaselineBreakoutRules,
    'day-trading': DayTradingRules,
    'fibonacci': FibonacciScalpingRules,
    'ultra-fast': UltraFastScalpingRules,
    'enhanced': EnhancedBollingerRules,
    'hybrid': HybridRules,
}


def get_rules_class(strategy: str) -> Type[RuleSet]:
    try:
        return STRATEGIES[strategy]
    except KeyError:
        raise ValueError(f"Unknown strategy '{strategy}'. Available: {', '.join(STRATEGIES)}") from None


class BacktestEngine:
    """Sequential single-position backtester"""

    def __init__(self, rules: RuleSet):
        self.rules = rules
        self.config = rules.config

    def run(self, data: Dict[str, np.ndarray], bands: BandSeries) -> BacktestResult:
        """Run backtest"""
        rules = self.rules
        cfg = self.config
        n = len(data['close'])
        if len(bands.upper) != n:
            raise ValueError(f"Bands length {len(bands.upper)} does not match {n} candles")

        seconds = detect_seconds_regime(data['timestamp'])
        factor = rules.annualization_factor(seconds)
        start = rules.warmup()
        if n <= start:
            logger.debug(f"{rules.name}: {n} candles, warm-up needs {start + 1}; no trades")
            return calculate_statistics([], cfg.initialCapital, factor, seconds)

        state = rules.new_state(data, bands, seconds)

        for i in range(start, n):
            rules.update(state, i)

            if state.open_trade is not None:
                exit_signal = rules.check_exit(state, i)
                if exit_signal is not None:
                    self._close(state, i, exit_signal)
                continue

            entry = None
            if cfg.enableLongPositions:
                entry = rules.check_entry(state, i, 'long')
            if entry is None and cfg.enableShortPositions:
                entry = rules.check_entry(state, i, 'short')
            if entry is not None:
                self._open(state, i, entry)

        if state.open_trade is not None:
            last = n - 1
            self._close(state, last, ExitSignal(rules.final_exit_price(state, last), rules.final_exit_reason))

        result = calculate_statistics(state.trades, cfg.initialCapital, factor, seconds)
        logger.debug(f"{rules.name}: {result.totalTrades} trades, return {result.totalReturn:.2%}")
        return result

    def _open(self, state: SimulationState, i: int, entry: EntrySignal):
        leverage = entry.leverage if entry.leverage is not None else self.config.maxLeverage
        trade = Trade(
            id=f"{self.rules.trade_prefix}_{i}",
            entryTime=state.timestamp[i],
            entryPrice=entry.price,
            stopLoss=entry.stop_loss,
            takeProfit=entry.take_profit,
            position=entry.position,
            leverage=leverage,
            entryIndex=i,
        )
        state.open_trade = trade
        state.capital_at_entry = state.capital
        self.rules.on_open(state, trade)

    def _close(self, state: SimulationState, i: int, exit_signal: ExitSignal):
        trade = state.open_trade
        move = direction(trade.position) * (exit_signal.price - trade.entryPrice) / trade.entryPrice
        pnl = move * trade.leverage * state.capital_at_entry
        pnl = self.rules.adjust_pnl(state, trade, pnl)

        trade.close(i, state.timestamp[i], exit_signal.price, pnl, exit_signal.reason)
        state.capital += pnl
        state.trades.append(trade)
        state.open_trade = None
        self.rules.on_close(state, trade)


def make_rules(strategy: str, config: Optional[Union[TradingConfig, dict]] = None) -> RuleSet:
    """Instantiate a rule set, validating dict configs against its config model"""
    rules_class = get_rules_class(strategy)
    if isinstance(config, dict):
        config = rules_class.config_model.model_validate(config)
    return rules_class(config)


def run_backtest(strategy: str, data: Dict[str, np.ndarray],
                 config: Optional[Union[TradingConfig, dict]] = None,
                 bands: Optional[BandSeries] = None) -> BacktestResult:
    """Backtest one strategy; bands are computed from the config when not supplied"""
    rules = make_rules(strategy, config)
    if bands is None:
        bands = rules.compute_bands(data)
    return BacktestEngine(rules).run(data, bands)
