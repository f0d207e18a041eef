"""
Multi-dataset optimization
Runs one strategy's grid over several datasets in turn and merges a global leaderboard
"""
import threading
import time
from typing import Any, Dict, List, Optional, Sequence, Union

from bandbot.config import (
    DATASET_LEADERBOARD_LIMIT, LARGE_DATASET_CANDLES, LARGE_DATASET_YIELD_EVERY, LEADERBOARD_LIMIT,
    YIELD_EVERY,
)
from bandbot.logging_config import get_logger
from bandbot.market_data import candles_to_arrays, detect_seconds_regime, detect_timeframe
from bandbot.models import (
    Dataset, MultiTimeframeProgress, OptimizationFilters, OptimizationProgress, OptimizationResult,
    TradingConfig,
)
from bandbot.optimizer import Leaderboard, Optimizer, ProgressCallback, estimate_remaining
from bandbot.scoring import ScoringProfile, get_profile
from bandbot.search_spaces import SearchSpace, get_search_space

logger = get_logger('optimizer')

SHORT_TIMEFRAME_WEIGHTS = {'winRate': 0.20, 'trades': 0.15, 'return': 0.30}
LONG_TIMEFRAME_WEIGHTS = {'return': 0.40, 'sharpe': 0.25, 'trades': 0.05}
LONG_TIMEFRAMES = ('1h', '4h', '1d')


class MultiTimeframeBaselineSpace(SearchSpace):
    """Baseline grid used when sweeping several timeframes at once"""

    def dimensions(self):
        return {
            'period': [2, 3, 4, 5, 6, 7, 8, 10, 12, 14, 16, 18, 20, 25, 30, 40, 50],
            'stdDev': [1, 1.5, 2, 2.5, 3],
            'offset': [0, 5, 10, 15, 20],
            'leverage': [2, 3, 5, 10, 15, 20, 25, 30, 40, 50],
        }


def profile_for_timeframe(profile: ScoringProfile, timeframe: str) -> ScoringProfile:
    """Short timeframes favour win rate and activity, long ones return and Sharpe"""
    if 's' in timeframe or timeframe == '1m':
        weights = SHORT_TIMEFRAME_WEIGHTS
    elif timeframe in LONG_TIMEFRAMES:
        weights = LONG_TIMEFRAME_WEIGHTS
    else:
        weights = None

    multiplier = None
    if 's' in timeframe:
        multiplier = 0.1
    elif 'm' in timeframe:
        multiplier = 0.5
    return profile.adjusted(weights, multiplier)


class DatasetOptimizer(Optimizer):
    """Optimizer whose results carry the dataset they came from"""

    def __init__(self, dataset_name: str, timeframe: str, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.dataset_name = dataset_name
        self.timeframe = timeframe

    def tag(self, result):
        return result.model_copy(update={'datasetName': self.dataset_name, 'timeframe': self.timeframe})


class MultiTimeframeOptimizer:
    """Sequential sweep of one strategy over many datasets"""

    def __init__(self, strategy: str, datasets: Sequence[Union[Dataset, Dict[str, Any]]],
                 base_config: Optional[Union[TradingConfig, Dict[str, Any]]] = None,
                 filters: Optional[Union[OptimizationFilters, Dict[str, Any]]] = None,
                 leaderboard_limit: int = LEADERBOARD_LIMIT,
                 dataset_leaderboard_limit: int = DATASET_LEADERBOARD_LIMIT):
        self.strategy = strategy
        self.datasets = [d if isinstance(d, Dataset) else Dataset.model_validate(d) for d in datasets]
        if not self.datasets:
            raise ValueError("At least one dataset is required")
        self.base_config = base_config
        self.filters = filters
        self.base_profile = get_profile(strategy)
        self.leaderboard = Leaderboard(leaderboard_limit)
        self.dataset_leaderboard_limit = dataset_leaderboard_limit
        self.dataset_results: Dict[str, List[OptimizationResult]] = {}
        self.cancelled = False
        self._cancel = threading.Event()

    def cancel(self):
        self._cancel.set()

    def space_for(self, seconds: bool) -> SearchSpace:
        if self.strategy == 'baseline':
            return MultiTimeframeBaselineSpace(seconds)
        return get_search_space(self.strategy, seconds)

    def _optimizer_for(self, dataset: Dataset) -> DatasetOptimizer:
        data = candles_to_arrays(dataset.candles)
        timeframe = dataset.timeframe or detect_timeframe(data['timestamp'])
        yield_every = LARGE_DATASET_YIELD_EVERY if len(dataset.candles) > LARGE_DATASET_CANDLES else YIELD_EVERY
        return DatasetOptimizer(
            dataset.name, timeframe, self.strategy, data,
            base_config=self.base_config,
            filters=self.filters,
            leaderboard_limit=self.dataset_leaderboard_limit,
            yield_every=yield_every,
            profile=profile_for_timeframe(self.base_profile, timeframe),
            space=self.space_for(detect_seconds_regime(data['timestamp'])),
            cancel_event=self._cancel,
        )

    def _wrap(self, callback: Optional[ProgressCallback], optimizer: DatasetOptimizer, index: int,
              done: int, grand_total: int, started: float) -> Optional[ProgressCallback]:
        if callback is None:
            return None

        def report(progress: OptimizationProgress):
            current = done + progress.current
            merged = self.merged(optimizer.leaderboard.top())
            callback(MultiTimeframeProgress(
                **progress.model_dump(exclude={'current', 'total', 'results', 'bestResult',
                                               'estimatedTimeRemaining', 'isRunning'}),
                current=current,
                total=grand_total,
                isRunning=True,
                results=merged,
                bestResult=merged[0] if merged else None,
                estimatedTimeRemaining=estimate_remaining(current, grand_total, time.perf_counter() - started),
                currentDataset=optimizer.dataset_name,
                currentTimeframe=optimizer.timeframe,
                totalDatasets=len(self.datasets),
                currentDatasetIndex=index,
            ))
        return report

    def merged(self, pending: List[OptimizationResult]) -> List[OptimizationResult]:
        """Global leaderboard plus results of the dataset still running"""
        board = Leaderboard(self.leaderboard.limit)
        for result in self.leaderboard.top() + pending:
            board.add(result)
        return board.top()

    def _runs(self, callback: Optional[ProgressCallback]):
        started = time.perf_counter()
        optimizers = [self._optimizer_for(d) for d in self.datasets]
        grand_total = sum(o.total for o in optimizers)
        done = 0
        last = 0

        for index, optimizer in enumerate(optimizers):
            if self._cancel.is_set():
                self.cancelled = True
                break
            last = index
            logger.info(f"Dataset {index + 1}/{len(optimizers)}: {optimizer.dataset_name} "
                        f"({optimizer.timeframe}, {len(optimizer.data['close']):,} candles)")
            yield optimizer, self._wrap(callback, optimizer, index, done, grand_total, started)

            results = optimizer.leaderboard.top()
            self.dataset_results[optimizer.dataset_name] = results
            for result in results:
                self.leaderboard.add(result)
            done += optimizer.current
            if optimizer.cancelled:
                self.cancelled = True
                break

        if callback is not None:
            best = self.leaderboard.best
            callback(MultiTimeframeProgress(
                evaluated=sum(o.evaluated for o in optimizers),
                pruned=sum(o.pruned for o in optimizers),
                filteredOut=sum(o.filtered_out for o in optimizers),
                failed=sum(o.failed for o in optimizers),
                current=done,
                total=grand_total,
                currentConfig='',
                isRunning=False,
                results=self.leaderboard.top(),
                bestResult=best,
                estimatedTimeRemaining='0 seconds',
                cancelled=self.cancelled,
                currentDataset=optimizers[last].dataset_name,
                currentTimeframe=optimizers[last].timeframe,
                totalDatasets=len(self.datasets),
                currentDatasetIndex=last,
            ))

    def optimize(self, progress_callback: Optional[ProgressCallback] = None) -> List[OptimizationResult]:
        for optimizer, callback in self._runs(progress_callback):
            optimizer.optimize(callback)
        return self.leaderboard.top()

    async def optimize_async(self, progress_callback: Optional[ProgressCallback] = None) -> List[OptimizationResult]:
        for optimizer, callback in self._runs(progress_callback):
            await optimizer.optimize_async(callback)
        return self.leaderboard.top()


def timeframe_results(results: List[OptimizationResult]) -> Dict[str, List[OptimizationResult]]:
    """Group ranked results by timeframe, keeping rank order"""
    grouped: Dict[str, List[OptimizationResult]] = {}
    for result in results:
        grouped.setdefault(result.timeframe or 'Unknown', []).append(result)
    return grouped
