"""
bandbot - Bollinger Band strategy backtester and parameter optimizer
"""

__version__ = "1.0.0"

# Average candle spacing (ms) below which data is treated as seconds data
SECONDS_REGIME_GAP_MS = 60_000

MS_PER_DAY = 1000 * 60 * 60 * 24
