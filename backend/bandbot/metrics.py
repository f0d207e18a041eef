"""
Backtest statistics
Aggregates a closed trade list into a BacktestResult
"""
from collections import Counter
from typing import List

import numpy as np

from bandbot import MS_PER_DAY
from bandbot.models import BacktestResult, Trade


def _finite(value: float, default: float = 0.0) -> float:
    value = float(value)
    return value if np.isfinite(value) else default


def _max_streaks(wins: np.ndarray):
    best_win = best_loss = 0
    run_win = run_loss = 0
    for is_win in wins:
        if is_win:
            run_win += 1
            run_loss = 0
        else:
            run_loss += 1
            run_win = 0
        best_win = max(best_win, run_win)
        best_loss = max(best_loss, run_loss)
    return best_win, best_loss


def calculate_statistics(trades: List[Trade], initial_capital: float,
                         annualization_factor: float, seconds_regime: bool = False) -> BacktestResult:
    """
    Calculate backtest statistics.

    Wins are trades with pnl > 0, everything else counts as a loss. Drawdown is
    measured on closed-trade equity with the running peak starting at the
    initial capital. Sharpe is per trade (returns relative to initial capital,
    population variance) scaled by sqrt(annualization_factor); it is 0 without
    trades or without return dispersion.
    """
    n = len(trades)
    if n == 0:
        return BacktestResult(
            totalTrades=0, winningTrades=0, losingTrades=0, winRate=0.0,
            totalPnL=0.0, totalReturn=0.0, finalCapital=initial_capital,
            maxDrawdown=0.0, sharpeRatio=0.0, longTrades=0, shortTrades=0,
            isSecondsTimeframe=seconds_regime, trades=[],
        )

    pnls = np.array([t.pnl or 0.0 for t in trades], dtype=np.float64)
    wins = pnls > 0
    total_pnl = float(pnls.sum())

    # Drawdown on the closed-trade equity curve
    equity = initial_capital + np.cumsum(pnls)
    peaks = np.maximum.accumulate(np.concatenate([[initial_capital], equity]))[1:]
    with np.errstate(divide='ignore', invalid='ignore'):
        drawdowns = np.where(peaks > 0, (peaks - equity) / peaks, 0.0)
    max_drawdown = _finite(drawdowns.max()) if len(drawdowns) else 0.0

    returns = pnls / initial_capital
    variance = float(returns.var())
    sharpe = 0.0
    if variance > 0:
        sharpe = _finite(returns.mean() / np.sqrt(variance) * np.sqrt(annualization_factor))

    first_time = min(t.entryTime for t in trades)
    last_time = max(t.exitTime for t in trades)
    period_days = (last_time - first_time) / MS_PER_DAY
    trades_per_day = n / period_days if period_days > 0 else None

    holding = [(t.exitTime - t.entryTime) / 1000 for t in trades]
    max_wins, max_losses = _max_streaks(wins)

    return BacktestResult(
        totalTrades=n,
        winningTrades=int(wins.sum()),
        losingTrades=int(n - wins.sum()),
        winRate=float(wins.mean()),
        totalPnL=_finite(total_pnl),
        totalReturn=_finite(total_pnl / initial_capital),
        finalCapital=_finite(initial_capital + total_pnl),
        maxDrawdown=max_drawdown,
        sharpeRatio=sharpe,
        longTrades=sum(1 for t in trades if t.position == 'long'),
        shortTrades=sum(1 for t in trades if t.position == 'short'),
        firstTradeTime=first_time,
        lastTradeTime=last_time,
        tradingPeriodDays=period_days,
        averageTradesPerDay=trades_per_day,
        averageHoldingSeconds=float(np.mean(holding)),
        maxConsecutiveWins=max_wins,
        maxConsecutiveLosses=max_losses,
        exitReasons=dict(Counter(t.reason for t in trades)),
        isSecondsTimeframe=seconds_regime,
        trades=trades,
    )
