"""
Optimizer tests: ranking, filters, pruning, failure isolation, progress,
cancellation and the scoring profiles.
"""
import asyncio
import threading

import pytest

from bandbot.models import (
    BacktestResult, DayTradingConfig, OptimizationFilters, OptimizationResult, TradingConfig,
)
from bandbot.optimizer import (
    Leaderboard, Optimizer, estimate_remaining, format_duration, optimize, passes_filters,
)
from bandbot.scoring import PROFILES, get_profile, leverage_risk_score, return_score, speed_score
from conftest import SmallSpace


def make_result(score, name='r'):
    return OptimizationResult(strategy='baseline', params={'name': name}, totalReturn=0.0, totalPnL=0.0,
                              winRate=0.0, totalTrades=0, maxDrawdown=0.0, sharpeRatio=0.0, score=score)


def summary(**overrides):
    values = dict(totalTrades=10, winningTrades=6, losingTrades=4, winRate=0.6, totalPnL=500.0,
                  totalReturn=0.05, finalCapital=10500.0, maxDrawdown=0.1, sharpeRatio=1.0,
                  longTrades=5, shortTrades=5, tradingPeriodDays=30.0)
    values.update(overrides)
    return BacktestResult(**values)


class PrunedSpace(SmallSpace):
    def is_valid(self, params):
        return params['period'] != 10


class BrokenSpace(SmallSpace):
    def dimensions(self):
        return {'period': [10, 0, 20], 'stdDev': [2], 'offset': [0], 'leverage': [5]}


class TestLeaderboard:

    def test_sorted_descending(self):
        board = Leaderboard(10)
        for score in [5, 50, 20, 80, 1]:
            board.add(make_result(score))
        assert [r.score for r in board.top()] == [80, 50, 20, 5, 1]

    def test_ties_keep_insertion_order(self):
        board = Leaderboard(10)
        for name in 'abc':
            board.add(make_result(42, name))
        assert [r.params['name'] for r in board.top()] == ['a', 'b', 'c']

    def test_capped(self):
        board = Leaderboard(3)
        for score in range(10):
            board.add(make_result(score))

        assert len(board) == 3
        assert [r.score for r in board.top()] == [9, 8, 7]
        assert not board.add(make_result(0))


class TestFilters:

    def test_no_filters_pass(self):
        assert passes_filters(summary(), None)
        assert passes_filters(summary(), OptimizationFilters())

    def test_zero_means_inactive(self):
        assert passes_filters(summary(totalTrades=0), OptimizationFilters(minimumTrades=0))

    @pytest.mark.parametrize("filters,result", [
        (OptimizationFilters(minimumTrades=11), summary()),
        (OptimizationFilters(minimumWinRate=0.7), summary()),
        (OptimizationFilters(maximumDrawdown=0.05), summary()),
        (OptimizationFilters(minimumReturn=0.1), summary()),
        (OptimizationFilters(minimumTradingPeriodDays=31), summary()),
        (OptimizationFilters(minimumTradingPeriodDays=1), summary(tradingPeriodDays=None)),
    ])
    def test_failing_filter(self, filters, result):
        assert not passes_filters(result, filters)


class TestDuration:

    @pytest.mark.parametrize("seconds,text", [
        (0, '0s'),
        (45, '45s'),
        (125, '2m 5s'),
        (3 * 3600 + 7 * 60 + 9, '3h 7m'),
    ])
    def test_format(self, seconds, text):
        assert format_duration(seconds) == text

    def test_estimate(self):
        assert estimate_remaining(10, 40, 5.0) == '15s'
        assert estimate_remaining(0, 40, 5.0) == 'calculating...'


class TestOptimizer:

    def test_results_sorted_and_complete(self, ohlcv_arrays, small_space):
        optimizer = Optimizer('baseline', ohlcv_arrays, space=small_space)
        results = optimizer.optimize()

        assert len(results) == 8
        assert optimizer.evaluated == 8
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)
        assert {r.params['leverage'] for r in results} == {2, 5}

    def test_result_matches_direct_backtest(self, ohlcv_arrays, small_space):
        from bandbot.backtest import run_backtest

        best = Optimizer('baseline', ohlcv_arrays, space=small_space).optimize()[0]
        config = small_space.build_config(best.params)
        direct = run_backtest('baseline', ohlcv_arrays, config)

        assert direct.totalTrades == best.totalTrades
        assert direct.totalReturn == pytest.approx(best.totalReturn)

    def test_leaderboard_limit(self, ohlcv_arrays, small_space):
        results = Optimizer('baseline', ohlcv_arrays, space=small_space, leaderboard_limit=3).optimize()
        assert len(results) == 3

    def test_filters_hold_for_every_result(self, ohlcv_arrays, small_space):
        filters = OptimizationFilters(minimumTrades=5, maximumDrawdown=0.9)
        optimizer = Optimizer('baseline', ohlcv_arrays, filters=filters, space=small_space)
        results = optimizer.optimize()

        for result in results:
            assert result.totalTrades >= 5
            assert result.maxDrawdown <= 0.9
        assert optimizer.filtered_out + len(results) == optimizer.evaluated

    def test_impossible_filter_keeps_nothing(self, ohlcv_arrays, small_space):
        optimizer = Optimizer('baseline', ohlcv_arrays, filters={'minimumTrades': 10_000}, space=small_space)
        assert optimizer.optimize() == []
        assert optimizer.filtered_out == 8

    def test_pruned_combinations_not_simulated(self, ohlcv_arrays):
        optimizer = Optimizer('baseline', ohlcv_arrays, space=PrunedSpace())
        results = optimizer.optimize()

        assert optimizer.pruned == 4
        assert optimizer.evaluated == 4
        assert all(r.params['period'] == 20 for r in results)

    def test_failing_combination_does_not_abort(self, ohlcv_arrays):
        optimizer = Optimizer('baseline', ohlcv_arrays, space=BrokenSpace())
        results = optimizer.optimize()

        assert optimizer.failed == 1
        assert optimizer.current == 3
        assert sorted(r.params['period'] for r in results) == [10, 20]

    def test_base_config_applied(self, ohlcv_arrays, small_space):
        results = Optimizer('baseline', ohlcv_arrays, base_config=TradingConfig(enableShortPositions=False),
                            space=small_space).optimize()
        assert all(r.totalTrades >= 0 for r in results)

        optimizer = Optimizer('baseline', ohlcv_arrays, base_config={'enableLongPositions': False,
                                                                     'enableShortPositions': False},
                              space=small_space)
        assert all(r.totalTrades == 0 for r in optimizer.optimize())

    def test_invalid_base_config_rejected(self, ohlcv_arrays):
        with pytest.raises(ValueError):
            Optimizer('baseline', ohlcv_arrays, base_config={'initialCapital': -5})

    def test_unknown_strategy(self, ohlcv_arrays):
        with pytest.raises(ValueError):
            Optimizer('martingale', ohlcv_arrays)

    def test_band_cache_reused(self, ohlcv_arrays, small_space):
        optimizer = Optimizer('baseline', ohlcv_arrays, space=small_space)
        optimizer.optimize()
        assert len(optimizer._bands) == 4

    def test_progress_reports(self, ohlcv_arrays, small_space):
        updates = []
        optimizer = Optimizer('baseline', ohlcv_arrays, space=small_space, progress_every=2)
        optimizer.optimize(updates.append)

        assert [u.current for u in updates] == [2, 4, 6, 8, 8]
        assert all(u.isRunning for u in updates[:-1])
        final = updates[-1]
        assert not final.isRunning
        assert final.total == 8
        assert final.estimatedTimeRemaining == '0 seconds'
        assert final.bestResult == final.results[0]

    def test_cancel_returns_partial_results(self, ohlcv_arrays, small_space):
        optimizer = Optimizer('baseline', ohlcv_arrays, space=small_space, yield_every=1, progress_every=1)

        def stop_after_first(progress):
            if progress.isRunning:
                optimizer.cancel()

        results = optimizer.optimize(stop_after_first)

        assert optimizer.cancelled
        assert optimizer.current == 1
        assert len(results) <= 1
        assert optimizer.last_progress.cancelled
        assert not optimizer.last_progress.isRunning

    def test_cancel_before_start(self, ohlcv_arrays, small_space):
        optimizer = Optimizer('baseline', ohlcv_arrays, space=small_space)
        optimizer.cancel()
        assert optimizer.optimize() == []
        assert optimizer.current == 0

    def test_shared_cancel_event(self, ohlcv_arrays, small_space):
        event = threading.Event()
        optimizer = Optimizer('baseline', ohlcv_arrays, space=small_space, cancel_event=event)
        event.set()

        assert optimizer.is_cancelled
        assert optimizer.optimize() == []
        assert optimizer.cancelled

    def test_second_run_starts_fresh(self, ohlcv_arrays, small_space):
        optimizer = Optimizer('baseline', ohlcv_arrays, space=small_space)
        first = optimizer.optimize()

        updates = []
        second = optimizer.optimize(updates.append)

        assert len(second) == 8
        assert [r.params for r in second] == [r.params for r in first]
        assert optimizer.current == optimizer.total == 8
        assert optimizer.evaluated == 8
        assert updates[-1].current == 8
        assert updates[-1].total == 8

    def test_async_matches_sync(self, ohlcv_arrays, small_space):
        sync_results = Optimizer('baseline', ohlcv_arrays, space=small_space).optimize()
        async_results = asyncio.run(
            Optimizer('baseline', ohlcv_arrays, space=SmallSpace(), yield_every=2).optimize_async())

        assert [r.params for r in async_results] == [r.params for r in sync_results]

    def test_module_level_helper(self, ohlcv_arrays, small_space):
        assert len(optimize('baseline', ohlcv_arrays, space=small_space)) == 8

    @pytest.mark.parametrize("strategy", ['enhanced', 'day-trading', 'fibonacci', 'ultra-fast', 'hybrid'])
    def test_strategy_spaces_run(self, strategy, ohlcv_arrays):
        from bandbot.search_spaces import get_search_space

        class FirstFew(type(get_search_space(strategy))):
            def combinations(self):
                for k, params in enumerate(super().combinations()):
                    if k == 6:
                        return
                    yield params

        optimizer = Optimizer(strategy, ohlcv_arrays, space=FirstFew())
        optimizer.optimize()
        assert optimizer.failed == 0
        assert optimizer.evaluated + optimizer.pruned == 6


class TestScoring:

    @pytest.mark.parametrize("strategy", list(PROFILES))
    def test_weights_sum_to_one(self, strategy):
        assert sum(get_profile(strategy).weights.values()) == pytest.approx(1.0)

    def test_adjusted_renormalizes(self):
        profile = get_profile('baseline').adjusted({'return': 0.40, 'sharpe': 0.25})
        assert sum(profile.weights.values()) == pytest.approx(1.0)
        assert profile.weights['return'] > get_profile('baseline').weights['return']

    def test_adjusted_ignores_unknown_weights(self):
        profile = get_profile('baseline').adjusted({'speed': 0.5}, trades_multiplier=0.1)
        assert 'speed' not in profile.weights
        assert profile.trades_multiplier == 0.1

    def test_sub_scores_clamped(self):
        assert return_score(5.0) == 100
        assert return_score(-3.0) == 0
        assert leverage_risk_score(2) == 100
        assert leverage_risk_score(125) == pytest.approx(70)
        assert speed_score(0, 60, 2) == 50

    def test_score_within_bounds(self):
        profile = get_profile('day-trading')
        score = profile.score(summary(), DayTradingConfig())
        assert 0 <= score <= 100

    def test_better_run_scores_higher(self):
        profile = get_profile('baseline')
        config = TradingConfig()
        assert profile.score(summary(totalReturn=0.5), config) > profile.score(summary(totalReturn=-0.5), config)

    def test_unknown_profile(self):
        with pytest.raises(ValueError):
            get_profile('martingale')
