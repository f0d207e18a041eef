"""
CONFIGURATION MODULE
====================
Tunable constants for the backtester, optimizer and API server.
"""
import os

# =============================================================================
# TIMEFRAME DETECTION
# =============================================================================

SECONDS_REGIME_SAMPLE = 20       # Candle gaps averaged for seconds detection
TIMEFRAME_LABEL_SAMPLE = 9       # Candle gaps averaged for timeframe labels

# Sharpe annualization factors (per-trade Sharpe, scaled by sqrt(factor))
ANNUALIZATION_DAILY = 252
ANNUALIZATION_MINUTES = 252 * 24 * 60
ANNUALIZATION_SECONDS = 252 * 24 * 60 * 60

# =============================================================================
# OPTIMIZER
# =============================================================================

LEADERBOARD_LIMIT = 1000          # Results kept per optimization run
DATASET_LEADERBOARD_LIMIT = 500   # Results kept per dataset (multi-timeframe)

YIELD_EVERY = 50                  # Combinations between cooperative yields
LARGE_DATASET_YIELD_EVERY = 10    # Same, for datasets above LARGE_DATASET_CANDLES
LARGE_DATASET_CANDLES = 50_000

PROGRESS_EVERY = 10               # Combinations between progress callbacks
LOG_EVERY = 1000                  # Combinations between progress log lines

BAND_CACHE_SIZE = 64              # Bollinger band series cached per run

MIN_RISK_REWARD = 1.2             # profitTarget / stopLoss below this is pruned

# =============================================================================
# API SERVER
# =============================================================================

API_HOST = os.environ.get("BANDBOT_HOST", "0.0.0.0")
API_PORT = int(os.environ.get("BANDBOT_PORT", "4000"))

CORS_ORIGINS = os.environ.get(
    "CORS_ORIGINS",
    "http://localhost:5173,http://localhost:4000,http://127.0.0.1:5173"
).split(",")

SYNC_OPTIMIZE_MAX_COMBINATIONS = 250_000   # Larger grids must use /optimize/jobs
API_TOP_RESULTS = 50
MAX_FINISHED_JOBS = 20
