"""
Parameter search spaces per strategy.

A search space is an ordered set of dimensions whose Cartesian product is
walked lazily. Values that are dicts (feature sets) are merged into the
combination, so results always carry flat parameter dicts.
"""
from functools import reduce
from itertools import product
from operator import mul
from typing import Any, Dict, Iterator, List, Optional, Type

from bandbot.config import MIN_RISK_REWARD
from bandbot.models import (
    DayTradingConfig, EnhancedBollingerConfig, FibonacciScalpingConfig, HybridConfig,
    TradingConfig, UltraFastScalpingConfig,
)

LEVERAGES = [2, 3, 5, 10, 15, 20, 25, 30, 40, 50, 75, 100, 125]


class SearchSpace:
    """Baseline breakout grid"""

    strategy = 'baseline'
    config_model: Type[TradingConfig] = TradingConfig

    # Parameter names that map onto differently named config fields
    ALIASES = {'leverage': 'maxLeverage'}

    def __init__(self, seconds: bool = False):
        self.seconds = seconds

    def dimensions(self) -> Dict[str, List[Any]]:
        if self.seconds:
            return {
                'period': [2, 3, 4, 5, 6, 7, 8, 9, 10, 12, 15, 20],
                'stdDev': [1, 1.5, 2, 2.5],
                'offset': [0, 2, 5],
                'leverage': LEVERAGES,
            }
        return {
            'period': list(range(2, 51)),
            'stdDev': [1, 1.5, 2, 2.5, 3],
            'offset': [0, 5, 10, 15, 20],
            'leverage': LEVERAGES,
        }

    def fixed(self) -> Dict[str, Any]:
        """Config values pinned for every combination"""
        return {}

    def size(self) -> int:
        """Raw Cartesian product size, before pruning"""
        return reduce(mul, (len(v) for v in self.dimensions().values()), 1)

    def combinations(self) -> Iterator[Dict[str, Any]]:
        dims = self.dimensions()
        names = list(dims)
        for values in product(*dims.values()):
            params: Dict[str, Any] = {}
            for name, value in zip(names, values):
                if isinstance(value, dict):
                    params.update(value)
                else:
                    params[name] = value
            yield params

    def is_valid(self, params: Dict[str, Any]) -> bool:
        """Structural pruning; invalid combinations are never simulated"""
        return True

    def config_updates(self, params: Dict[str, Any]) -> Dict[str, Any]:
        updates = dict(self.fixed())
        for name, value in params.items():
            updates[self.ALIASES.get(name, name)] = value
        return updates

    def build_config(self, params: Dict[str, Any], base: Optional[Dict[str, Any]] = None) -> TradingConfig:
        return self.config_model.model_validate({**(base or {}), **self.config_updates(params)})

    def describe(self, params: Dict[str, Any]) -> str:
        return ', '.join(f"{k}={v}" for k, v in params.items())


def _risk_reward_ok(params: Dict[str, Any]) -> bool:
    return params['profitTarget'] / params['stopLossPercent'] >= MIN_RISK_REWARD


class EnhancedSearchSpace(SearchSpace):
    """Baseline grid with the trailing stop and volume filter toggled"""

    strategy = 'enhanced'
    config_model = EnhancedBollingerConfig

    def dimensions(self):
        dims = super().dimensions()
        dims['enableTrailingStop'] = [False, True]
        dims['enableVolumeFilter'] = [False, True]
        return dims


class DayTradingSearchSpace(SearchSpace):
    strategy = 'day-trading'
    config_model = DayTradingConfig

    def dimensions(self):
        return {
            'period': list(range(10, 25, 2)),
            'stdDev': [1.5, 2, 2.5, 3],
            'offset': [0, 2, 5, 8, 10],
            'rsiPeriod': list(range(10, 21, 2)),
            'rsiOverbought': [65, 70, 75, 80],
            'rsiOversold': [20, 25, 30, 35],
            'macdFast': [8, 10, 12, 14],
            'macdSlow': [21, 24, 26, 28],
            'macdSignal': [7, 9, 11],
            'volumeThreshold': [1.1, 1.2, 1.3, 1.5],
            'profitTarget': [0.008, 0.01, 0.012, 0.015, 0.018, 0.02],
            'stopLossPercent': [0.005, 0.006, 0.008, 0.01, 0.012],
            'maxHoldingPeriod': [3, 4, 6, 8, 12],
            'leverage': [2, 3, 4, 5, 6, 8, 10],
        }

    def is_valid(self, params):
        if params['rsiOverbought'] <= params['rsiOversold'] + 10:
            return False
        if params['macdFast'] >= params['macdSlow']:
            return False
        return _risk_reward_ok(params)


class FibonacciSearchSpace(SearchSpace):
    strategy = 'fibonacci'
    config_model = FibonacciScalpingConfig

    def dimensions(self):
        return {
            'swingLookback': list(range(3, 9)),
            'goldenZoneMin': [0.5, 0.45, 0.55],
            'goldenZoneMax': [0.618, 0.65, 0.7],
            'structureBreakConfirmation': [1, 2, 3],
            'minSwingSize': [0.005, 0.008, 0.01, 0.015, 0.02],
            'profitTarget': [0.008, 0.01, 0.012, 0.015, 0.018, 0.02],
            'stopLossPercent': [0.004, 0.005, 0.006, 0.008, 0.01],
            'maxHoldingMinutes': [5, 7, 10, 15, 20],
            'leverage': [5, 8, 10, 15, 20, 25],
            'volumeThreshold': [1, 1.2, 1.5, 2],
            'requireVolumeConfirmation': [True, False],
            'requireCandleColorConfirmation': [True, False],
        }

    def fixed(self):
        return {'period': 20, 'stdDev': 2.0, 'offset': 0.0}

    def is_valid(self, params):
        if params['goldenZoneMin'] >= params['goldenZoneMax']:
            return False
        return _risk_reward_ok(params)


ULTRA_FAST_FEATURE_SETS = [
    {'enableInstantEntry': True, 'enableMicroProfits': True, 'enableScalpMode': True,
     'enableVelocityFilter': True, 'enableTickConfirmation': True, 'enableSubMinuteAnalysis': True},
    {'enableInstantEntry': True, 'enableMicroProfits': True, 'enableScalpMode': False,
     'enableVelocityFilter': True, 'enableTickConfirmation': False, 'enableSubMinuteAnalysis': True},
    {'enableInstantEntry': False, 'enableMicroProfits': True, 'enableScalpMode': True,
     'enableVelocityFilter': False, 'enableTickConfirmation': True, 'enableSubMinuteAnalysis': False},
    {'enableInstantEntry': True, 'enableMicroProfits': False, 'enableScalpMode': True,
     'enableVelocityFilter': True, 'enableTickConfirmation': True, 'enableSubMinuteAnalysis': False},
]


class UltraFastSearchSpace(SearchSpace):
    strategy = 'ultra-fast'
    config_model = UltraFastScalpingConfig
    ALIASES = {
        'leverage': 'maxLeverage',
        'profitTarget': 'quickProfitTarget',
        'stopLossPercent': 'tightStopLoss',
    }

    def dimensions(self):
        if self.seconds:
            timing = {
                'maxHoldingSeconds': [5, 10, 15, 20, 30, 45],
                'profitTarget': [0.0005, 0.001, 0.0015, 0.002, 0.003],
                'stopLossPercent': [0.0003, 0.0005, 0.001, 0.0015],
            }
            velocity = [0.0002, 0.0005, 0.001, 0.0015]
            movement = [0.0001, 0.0002, 0.0005]
        else:
            timing = {
                'maxHoldingSeconds': [10, 15, 20, 30, 45, 60],
                'profitTarget': [0.001, 0.0015, 0.002, 0.0025, 0.003],
                'stopLossPercent': [0.0005, 0.001, 0.0015, 0.002],
            }
            velocity = [0.0005, 0.001, 0.0015, 0.002]
            movement = [0.0002, 0.0005, 0.001]
        return {
            **timing,
            'scalpTargetTicks': [1, 2, 3, 4, 5],
            'scalpStopTicks': [1, 2, 3],
            'velocityThreshold': velocity,
            'minPriceMovement': movement,
            'leverage': [10, 15, 20, 25, 30, 50],
            'featureSet': ULTRA_FAST_FEATURE_SETS,
        }

    def fixed(self):
        return {
            'period': 5 if self.seconds else 11,
            'stdDev': 2.0,
            'offset': 0.0,
            'maxSlippage': 0.0002,
            'subMinutePeriods': 3,
        }

    def is_valid(self, params):
        return _risk_reward_ok(params)


HYBRID_FEATURE_SETS = [
    {'requireBollingerBreakout': True, 'requireFibonacciRetracement': True,
     'requireVolumeConfirmation': True, 'requireMomentumConfirmation': True},
    {'requireBollingerBreakout': True, 'requireFibonacciRetracement': True,
     'requireVolumeConfirmation': True, 'requireMomentumConfirmation': False},
    {'requireBollingerBreakout': True, 'requireFibonacciRetracement': True,
     'requireVolumeConfirmation': False, 'requireMomentumConfirmation': True},
    {'requireBollingerBreakout': True, 'requireFibonacciRetracement': False,
     'requireVolumeConfirmation': True, 'requireMomentumConfirmation': True},
    {'requireBollingerBreakout': False, 'requireFibonacciRetracement': True,
     'requireVolumeConfirmation': True, 'requireMomentumConfirmation': True},
]


class HybridSearchSpace(SearchSpace):
    strategy = 'hybrid'
    config_model = HybridConfig

    def dimensions(self):
        return {
            'period': [12, 15, 18, 20, 22, 25],
            'stdDev': [1.8, 2, 2.2, 2.5],
            'offset': [0, 2, 5, 8],
            'swingLookback': list(range(3, 8)),
            'goldenZoneMin': [0.45, 0.5, 0.55],
            'goldenZoneMax': [0.618, 0.65, 0.7],
            'profitTarget': [0.008, 0.01, 0.012, 0.015, 0.018],
            'stopLossPercent': [0.005, 0.006, 0.008, 0.01, 0.012],
            'maxHoldingMinutes': [5, 6, 8, 10, 12],
            'leverage': [5, 8, 10, 15, 20],
            'volumeThreshold': [1.2, 1.3, 1.5, 1.8],
            'featureSet': HYBRID_FEATURE_SETS,
        }

    def is_valid(self, params):
        if params['goldenZoneMin'] >= params['goldenZoneMax']:
            return False
        return _risk_reward_ok(params)


SEARCH_SPACES: Dict[str, Type[SearchSpace]] = {
    'baseline': SearchSpace,
    'enhanced': EnhancedSearchSpace,
    'day-trading': DayTradingSearchSpace,
    'fibonacci': FibonacciSearchSpace,
    'ultra-fast': UltraFastSearchSpace,
    'hybrid': HybridSearchSpace,
}


def get_search_space(strategy: str, seconds: bool = False) -> SearchSpace:
    try:
        return SEARCH_SPACES[strategy](seconds)
    except KeyError:
        raise ValueError(f"No search space for strategy '{strategy}'") from None
