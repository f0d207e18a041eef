"""
Optimization Engine
Lazy grid sweep with pruning, post-hoc filters, weighted scoring and a capped leaderboard
"""
import asyncio
import bisect
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

import numpy as np

from bandbot.backtest import BacktestEngine, get_rules_class
from bandbot.config import BAND_CACHE_SIZE, LEADERBOARD_LIMIT, LOG_EVERY, PROGRESS_EVERY, YIELD_EVERY
from bandbot.indicators import BandSeries, calculate_bollinger_bands
from bandbot.logging_config import get_logger
from bandbot.market_data import detect_seconds_regime
from bandbot.models import (
    BacktestResult, OptimizationFilters, OptimizationProgress, OptimizationResult, TradingConfig,
)
from bandbot.scoring import ScoringProfile, get_profile
from bandbot.search_spaces import SearchSpace, get_search_space

logger = get_logger('optimizer')

ProgressCallback = Callable[[OptimizationProgress], None]


def format_duration(seconds: float) -> str:
    """Human readable ETA: 'Xh Ym', 'Xm Ys' or 'Xs'"""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def estimate_remaining(current: int, total: int, elapsed: float) -> str:
    if current <= 0:
        return 'calculating...'
    return format_duration((total - current) * elapsed / current)


def passes_filters(result: BacktestResult, filters: Optional[OptimizationFilters]) -> bool:
    """Every active filter (set and non-zero) must hold"""
    if filters is None:
        return True
    if filters.minimumTradingPeriodDays:
        if result.tradingPeriodDays is None or result.tradingPeriodDays < filters.minimumTradingPeriodDays:
            return False
    if filters.minimumTrades and result.totalTrades < filters.minimumTrades:
        return False
    if filters.minimumWinRate and result.winRate < filters.minimumWinRate:
        return False
    if filters.maximumDrawdown and result.maxDrawdown > filters.maximumDrawdown:
        return False
    if filters.minimumReturn and result.totalReturn < filters.minimumReturn:
        return False
    return True


class Leaderboard:
    """Results sorted by score descending; equal scores keep insertion order"""

    def __init__(self, limit: int = LEADERBOARD_LIMIT):
        self.limit = limit
        self._keys: List[float] = []
        self._results: List[OptimizationResult] = []

    def add(self, result: OptimizationResult) -> bool:
        key = -result.score
        pos = bisect.bisect_right(self._keys, key)
        if pos >= self.limit:
            return False
        self._keys.insert(pos, key)
        self._results.insert(pos, result)
        if len(self._results) > self.limit:
            self._keys.pop()
            self._results.pop()
        return True

    @property
    def best(self) -> Optional[OptimizationResult]:
        return self._results[0] if self._results else None

    def top(self, count: Optional[int] = None) -> List[OptimizationResult]:
        return list(self._results if count is None else self._results[:count])

    def __len__(self):
        return len(self._results)


class Optimizer:
    """Single-threaded parameter sweep for one strategy over one dataset"""

    def __init__(self, strategy: str, data: Dict[str, np.ndarray],
                 base_config: Optional[Union[TradingConfig, Dict[str, Any]]] = None,
                 filters: Optional[Union[OptimizationFilters, Dict[str, Any]]] = None,
                 leaderboard_limit: int = LEADERBOARD_LIMIT,
                 yield_every: int = YIELD_EVERY,
                 progress_every: int = PROGRESS_EVERY,
                 profile: Optional[ScoringProfile] = None,
                 space: Optional[SearchSpace] = None,
                 cancel_event: Optional[threading.Event] = None):
        self.strategy = strategy
        self.rules_class = get_rules_class(strategy)
        self.data = data
        self.seconds = detect_seconds_regime(data['timestamp'])

        if isinstance(base_config, TradingConfig):
            base_config = base_config.model_dump()
        self.base_config: Dict[str, Any] = dict(base_config or {})
        self.rules_class.config_model.model_validate(self.base_config)
        if isinstance(filters, dict):
            filters = OptimizationFilters.model_validate(filters)
        self.filters = filters

        self.space = space or get_search_space(strategy, self.seconds)
        self.profile = profile or get_profile(strategy)
        self.leaderboard = Leaderboard(leaderboard_limit)
        self.yield_every = max(1, yield_every)
        self.progress_every = max(1, progress_every)

        self._cancel = cancel_event if cancel_event is not None else threading.Event()
        self._bands: "OrderedDict[tuple, BandSeries]" = OrderedDict()
        self.total = self.space.size()
        self.reset()

    def reset(self):
        """Clear counters and results; a cancel request stays in force"""
        self.leaderboard = Leaderboard(self.leaderboard.limit)
        self.current = 0
        self.evaluated = 0
        self.pruned = 0
        self.filtered_out = 0
        self.failed = 0
        self.cancelled = False
        self.last_progress: Optional[OptimizationProgress] = None

    # ==================== CONTROL ====================

    def cancel(self):
        """Ask the sweep to stop at its next yield point"""
        self._cancel.set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancel.is_set()

    # ==================== EVALUATION ====================

    def bands_for(self, config: TradingConfig) -> BandSeries:
        key = (config.period, config.stdDev, config.offset)
        bands = self._bands.get(key)
        if bands is None:
            bands = calculate_bollinger_bands(self.data['close'], config.period, config.stdDev, config.offset)
            self._bands[key] = bands
            if len(self._bands) > BAND_CACHE_SIZE:
                self._bands.popitem(last=False)
        else:
            self._bands.move_to_end(key)
        return bands

    def run_config(self, config: TradingConfig) -> BacktestResult:
        return BacktestEngine(self.rules_class(config)).run(self.data, self.bands_for(config))

    def evaluate(self, params: Dict[str, Any]) -> Optional[OptimizationResult]:
        """Backtest one combination; None when it is filtered out"""
        config = self.space.build_config(params, self.base_config)
        result = self.run_config(config)
        if not passes_filters(result, self.filters):
            return None
        return OptimizationResult(
            strategy=self.strategy,
            params=dict(params),
            totalReturn=result.totalReturn,
            totalPnL=result.totalPnL,
            winRate=result.winRate,
            totalTrades=result.totalTrades,
            maxDrawdown=result.maxDrawdown,
            sharpeRatio=result.sharpeRatio,
            score=self.profile.score(result, config, self.seconds),
            tradingPeriodDays=result.tradingPeriodDays,
            averageTradesPerDay=result.averageTradesPerDay,
            averageHoldingSeconds=result.averageHoldingSeconds,
        )

    def tag(self, result: OptimizationResult) -> OptimizationResult:
        """Hook for subclasses to annotate results before ranking"""
        return result

    # ==================== SWEEP ====================

    def _progress(self, description: str, running: bool, elapsed: float) -> OptimizationProgress:
        return OptimizationProgress(
            current=self.current,
            total=self.total,
            currentConfig=description,
            isRunning=running,
            results=self.leaderboard.top(),
            bestResult=self.leaderboard.best,
            estimatedTimeRemaining=estimate_remaining(self.current, self.total, elapsed) if running else '0 seconds',
            evaluated=self.evaluated,
            pruned=self.pruned,
            filteredOut=self.filtered_out,
            failed=self.failed,
            cancelled=self.cancelled,
        )

    def _report(self, callback: Optional[ProgressCallback], description: str, running: bool, started: float):
        self.last_progress = self._progress(description, running, time.perf_counter() - started)
        if callback is not None:
            callback(self.last_progress)

    def _sweep(self, callback: Optional[ProgressCallback]) -> Iterator[None]:
        """Walk the grid; yields at every cooperative suspension point"""
        self.reset()
        started = time.perf_counter()
        description = ''
        logger.info(f"Optimizing {self.strategy}: {self.total:,} combinations "
                    f"({'seconds' if self.seconds else 'standard'} data)")

        for params in self.space.combinations():
            if self.current % self.yield_every == 0:
                yield
                if self._cancel.is_set():
                    self.cancelled = True
                    logger.info(f"Optimization cancelled after {self.current:,} combinations")
                    break

            self.current += 1
            description = self.space.describe(params)

            if not self.space.is_valid(params):
                self.pruned += 1
            else:
                try:
                    result = self.evaluate(params)
                except Exception as e:
                    self.failed += 1
                    logger.warning(f"Combination failed ({description}): {e}")
                else:
                    self.evaluated += 1
                    if result is None:
                        self.filtered_out += 1
                    else:
                        self.leaderboard.add(self.tag(result))

            if self.current % self.progress_every == 0:
                self._report(callback, description, True, started)
            if self.current % LOG_EVERY == 0:
                elapsed = time.perf_counter() - started
                best = self.leaderboard.best
                logger.info(f"Progress: {self.current:,}/{self.total:,} | "
                            f"ETA {estimate_remaining(self.current, self.total, elapsed)} | "
                            f"best score {best.score if best else 0:.2f}")

        self._report(callback, description, False, started)
        elapsed = time.perf_counter() - started
        logger.info(f"Optimization finished in {format_duration(elapsed)}: {self.evaluated:,} evaluated, "
                    f"{self.pruned:,} pruned, {self.filtered_out:,} filtered, {self.failed:,} failed")
        self.verify_best()

    def verify_best(self):
        """Re-run the best configuration and log if it does not reproduce"""
        best = self.leaderboard.best
        if best is None:
            return
        try:
            result = self.run_config(self.space.build_config(best.params, self.base_config))
        except Exception as e:
            logger.warning(f"Best configuration could not be re-run: {e}")
            return
        if result.totalTrades != best.totalTrades or not np.isclose(result.totalReturn, best.totalReturn):
            logger.warning(f"Best configuration mismatch on re-run: {best.totalTrades} trades / "
                           f"{best.totalReturn:.4f} vs {result.totalTrades} trades / {result.totalReturn:.4f}")
        else:
            logger.info(f"Best: {self.space.describe(best.params)} | score {best.score:.2f} | "
                        f"return {best.totalReturn:.2%} | {best.totalTrades} trades")

    def optimize(self, progress_callback: Optional[ProgressCallback] = None) -> List[OptimizationResult]:
        """Run the sweep on the calling thread"""
        for _ in self._sweep(progress_callback):
            time.sleep(0)
        return self.leaderboard.top()

    async def optimize_async(self, progress_callback: Optional[ProgressCallback] = None) -> List[OptimizationResult]:
        """Run the sweep inside an event loop, handing control back at each yield point"""
        for _ in self._sweep(progress_callback):
            await asyncio.sleep(0)
        return self.leaderboard.top()


def optimize(strategy: str, data: Dict[str, np.ndarray],
             base_config: Optional[Union[TradingConfig, Dict[str, Any]]] = None,
             filters: Optional[Union[OptimizationFilters, Dict[str, Any]]] = None,
             progress_callback: Optional[ProgressCallback] = None,
             **kwargs) -> List[OptimizationResult]:
    return Optimizer(strategy, data, base_config, filters, **kwargs).optimize(progress_callback)
