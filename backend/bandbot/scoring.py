"""
Optimization scoring
Weighted sum of 0-100 sub-scores; weights per strategy sum to 1.0
"""
import math
from dataclasses import dataclass, replace
from typing import Dict, Optional

from bandbot.models import BacktestResult, TradingConfig


def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


# ==================== SUB-SCORES ====================

def return_score(total_return: float) -> float:
    return clamp((total_return + 1) * 50)


def win_rate_score(win_rate: float) -> float:
    return clamp(win_rate * 100)


def sharpe_score(sharpe: float) -> float:
    return clamp((sharpe + 2) * 25)


def drawdown_score(max_drawdown: float) -> float:
    return clamp(100 - max_drawdown * 100)


def trades_score(total_trades: int, multiplier: float) -> float:
    return clamp(total_trades * multiplier)


def leverage_risk_score(leverage: float) -> float:
    """Bonus shrinking from 100 at 2x to 70 at 125x"""
    return clamp(100 - ((leverage - 2) / 123) * 30)


def risk_reward_score(profit_target: float, stop_loss: float) -> float:
    if stop_loss <= 0:
        return 0.0
    return clamp((profit_target / stop_loss - 1) * 25)


def speed_score(average_holding_seconds: float, unit_seconds: float, multiplier: float) -> float:
    """Shorter average holding time scores higher; 50 when nothing was held"""
    duration = average_holding_seconds / unit_seconds
    if duration <= 0:
        return 50.0
    return clamp(100 - duration * multiplier)


def signal_quality_score(config: TradingConfig) -> float:
    quality = 0.0
    if getattr(config, 'requireBollingerBreakout', False):
        quality += 25
    if getattr(config, 'requireFibonacciRetracement', False):
        quality += 30
    if getattr(config, 'requireVolumeConfirmation', False):
        quality += 25
    if getattr(config, 'requireMomentumConfirmation', False):
        quality += 20
    return quality


# ==================== PROFILES ====================

@dataclass(frozen=True)
class ScoringProfile:
    """Weights for each sub-score plus the knobs the sub-scores need"""
    weights: Dict[str, float]
    trades_multiplier: float = 1.0
    speed_unit_seconds: float = 60.0
    speed_multiplier: float = 2.0
    seconds_speed_multiplier: Optional[float] = None

    def adjusted(self, weights: Optional[Dict[str, float]] = None,
                 trades_multiplier: Optional[float] = None) -> "ScoringProfile":
        """Copy with some weights overridden, re-normalized to sum to 1.0"""
        merged = dict(self.weights)
        for key, value in (weights or {}).items():
            if key in merged:
                merged[key] = value
        total = sum(merged.values())
        if total > 0:
            merged = {k: v / total for k, v in merged.items()}
        return replace(
            self,
            weights=merged,
            trades_multiplier=self.trades_multiplier if trades_multiplier is None else trades_multiplier,
        )

    def components(self, result: BacktestResult, config: TradingConfig, seconds: bool = False) -> Dict[str, float]:
        values = {
            'return': return_score(result.totalReturn),
            'winRate': win_rate_score(result.winRate),
            'sharpe': sharpe_score(result.sharpeRatio),
            'drawdown': drawdown_score(result.maxDrawdown),
            'trades': trades_score(result.totalTrades, self.trades_multiplier),
        }
        if 'leverageRisk' in self.weights:
            values['leverageRisk'] = leverage_risk_score(config.maxLeverage)
        if 'riskReward' in self.weights:
            values['riskReward'] = risk_reward_score(config.profitTarget, config.stopLossPercent)
        if 'signalQuality' in self.weights:
            values['signalQuality'] = signal_quality_score(config)
        if 'speed' in self.weights:
            multiplier = self.speed_multiplier
            if seconds and self.seconds_speed_multiplier is not None:
                multiplier = self.seconds_speed_multiplier
            values['speed'] = speed_score(result.averageHoldingSeconds, self.speed_unit_seconds, multiplier)
        return values

    def score(self, result: BacktestResult, config: TradingConfig, seconds: bool = False) -> float:
        components = self.components(result, config, seconds)
        total = sum(components[key] * weight for key, weight in self.weights.items())
        return total if math.isfinite(total) else 0.0


PROFILES: Dict[str, ScoringProfile] = {
    'baseline': ScoringProfile(
        weights={'return': 0.35, 'winRate': 0.15, 'sharpe': 0.20, 'drawdown': 0.15,
                 'trades': 0.10, 'leverageRisk': 0.05},
        trades_multiplier=2,
    ),
    'enhanced': ScoringProfile(
        weights={'return': 0.35, 'winRate': 0.15, 'sharpe': 0.20, 'drawdown': 0.15,
                 'trades': 0.10, 'leverageRisk': 0.05},
        trades_multiplier=2,
    ),
    'day-trading': ScoringProfile(
        weights={'return': 0.25, 'winRate': 0.25, 'sharpe': 0.15, 'drawdown': 0.15,
                 'trades': 0.10, 'riskReward': 0.10},
        trades_multiplier=1,
    ),
    'fibonacci': ScoringProfile(
        weights={'return': 0.30, 'winRate': 0.25, 'sharpe': 0.15, 'drawdown': 0.15,
                 'trades': 0.10, 'speed': 0.05},
        trades_multiplier=0.5,
        speed_unit_seconds=60,
        speed_multiplier=2,
    ),
    'ultra-fast': ScoringProfile(
        weights={'return': 0.25, 'winRate': 0.20, 'sharpe': 0.15, 'drawdown': 0.15,
                 'trades': 0.15, 'speed': 0.10},
        trades_multiplier=0.2,
        speed_unit_seconds=1,
        speed_multiplier=1,
        seconds_speed_multiplier=2,
    ),
    'hybrid': ScoringProfile(
        weights={'return': 0.25, 'winRate': 0.20, 'sharpe': 0.15, 'drawdown': 0.15,
                 'trades': 0.10, 'signalQuality': 0.10, 'speed': 0.05},
        trades_multiplier=1,
        speed_unit_seconds=60,
        speed_multiplier=5,
    ),
}


def get_profile(strategy: str) -> ScoringProfile:
    try:
        return PROFILES[strategy]
    except KeyError:
        raise ValueError(f"No scoring profile for strategy '{strategy}'") from None
