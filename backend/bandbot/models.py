"""
Data Models for bandbot
"""
from typing import List, Dict, Any, Optional, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from bandbot.config import API_TOP_RESULTS

Position = Literal['long', 'short']
ExitReason = Literal['stop-loss', 'target', 'strategy-exit', 'timeout', 'time-limit', 'trailing-stop']

DEFAULT_FIB_LEVELS = [0.0, 0.236, 0.382, 0.5, 0.618, 0.786, 1.0]


class Candle(BaseModel):
    """OHLCV Candle (timestamp in epoch milliseconds)"""
    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


# ==================== STRATEGY CONFIGS ====================

class TradingConfig(BaseModel):
    """Baseline Bollinger breakout settings, shared by every strategy"""
    model_config = ConfigDict(frozen=True)

    period: int = Field(20, ge=1)
    stdDev: float = Field(2.0, ge=0)
    offset: float = 10.0
    maxLeverage: float = Field(10.0, gt=0)
    initialCapital: float = Field(10000.0, gt=0)
    enableLongPositions: bool = True
    enableShortPositions: bool = True


class DayTradingConfig(TradingConfig):
    """RSI + MACD + volume confirmed breakouts"""
    period: int = Field(14, ge=1)
    offset: float = 5.0
    maxLeverage: float = Field(5.0, gt=0)

    rsiPeriod: int = Field(14, ge=1)
    rsiOverbought: float = 70.0
    rsiOversold: float = 30.0

    macdFast: int = Field(12, ge=1)
    macdSlow: int = Field(26, ge=1)
    macdSignal: int = Field(9, ge=1)

    volumePeriod: int = Field(20, ge=1)
    volumeThreshold: float = 1.2
    profitTarget: float = Field(0.015, gt=0)
    stopLossPercent: float = Field(0.008, gt=0)
    maxHoldingPeriod: int = Field(6, ge=1)   # bars
    minConfirmations: int = Field(4, ge=1, le=6)


class FibonacciScalpingConfig(TradingConfig):
    """Structure-break Fibonacci retracement scalping"""
    offset: float = 0.0

    swingLookback: int = Field(5, ge=1)
    fibRetracementLevels: List[float] = Field(default_factory=lambda: list(DEFAULT_FIB_LEVELS))
    goldenZoneMin: float = 0.5
    goldenZoneMax: float = 0.618

    structureBreakConfirmation: int = Field(1, ge=1)   # consecutive closes beyond the swing
    minSwingSize: float = Field(0.01, ge=0)

    profitTarget: float = Field(0.015, gt=0)
    stopLossPercent: float = Field(0.008, gt=0)
    maxHoldingMinutes: int = Field(15, ge=1)   # bars

    requireVolumeConfirmation: bool = True
    volumePeriod: int = Field(20, ge=1)
    volumeThreshold: float = 1.5
    requireCandleColorConfirmation: bool = True
    minConfirmations: int = Field(3, ge=1, le=4)


class UltraFastScalpingConfig(TradingConfig):
    """Seconds-scale scalping on tiny moves"""
    maxHoldingSeconds: float = Field(30, gt=0)
    quickProfitTarget: float = Field(0.002, gt=0)
    tightStopLoss: float = Field(0.001, gt=0)

    enableInstantEntry: bool = True
    enableInstantExit: bool = True
    enableMicroProfits: bool = True

    enableTickConfirmation: bool = True
    minPriceMovement: float = 0.0005
    maxSlippage: float = Field(0.0002, ge=0)

    enableScalpMode: bool = True
    scalpTargetTicks: int = Field(3, ge=1)
    scalpStopTicks: int = Field(2, ge=1)

    enableVelocityFilter: bool = True
    velocityThreshold: float = 0.001

    enableSubMinuteAnalysis: bool = True
    subMinutePeriods: int = Field(3, ge=1)
    minConfirmations: int = Field(2, ge=1, le=5)

    @classmethod
    def for_base(cls, base: TradingConfig) -> "UltraFastScalpingConfig":
        """Derive scalping defaults from a baseline config (period < 10 suggests seconds data)"""
        seconds = base.period < 10
        return cls(
            **TradingConfig.model_validate(base.model_dump()).model_dump(),
            maxHoldingSeconds=15 if seconds else 30,
            quickProfitTarget=0.001 if seconds else 0.002,
            tightStopLoss=0.0005 if seconds else 0.001,
            minPriceMovement=0.0002 if seconds else 0.0005,
            maxSlippage=0.0001 if seconds else 0.0002,
            velocityThreshold=0.0005 if seconds else 0.001,
            subMinutePeriods=5 if seconds else 3,
        )


class EnhancedBollingerConfig(TradingConfig):
    """Baseline breakout with optional filters; everything off reproduces the baseline"""
    enableAdaptivePeriod: bool = False
    adaptivePeriodMin: Optional[int] = None
    adaptivePeriodMax: Optional[int] = None

    enableVolumeFilter: bool = False
    volumePeriod: int = Field(20, ge=1)
    volumeThreshold: float = 1.5

    enableVolatilityPositioning: bool = False
    basePositionSize: float = Field(1.0, gt=0)
    volatilityLookback: int = Field(20, ge=2)

    enableTrailingStop: bool = False
    trailingStopPercent: float = Field(0.02, gt=0)
    enablePartialTakeProfit: bool = False
    partialTakeProfitPercent: float = Field(0.03, gt=0)
    partialTakeProfitSize: float = Field(0.5, gt=0, lt=1)

    enableMarketRegimeFilter: bool = False
    trendPeriod: int = Field(50, ge=1)
    trendThreshold: float = 0.02

    enableTimeFilter: bool = False
    tradingStartHour: int = Field(9, ge=0, le=23)
    tradingEndHour: int = Field(16, ge=0, le=23)

    maxDailyLoss: float = Field(0.0, ge=0)            # currency, 0 disables
    maxConsecutiveLosses: int = Field(0, ge=0)        # 0 disables
    cooldownPeriod: float = Field(0.0, ge=0)          # minutes, 0 disables

    enableSqueezeDetection: bool = False
    squeezeThreshold: float = 0.8

    enableMeanReversion: bool = False
    meanReversionThreshold: float = 0.02

    @model_validator(mode='before')
    @classmethod
    def _adaptive_bounds(cls, data: Any) -> Any:
        if isinstance(data, dict):
            period = data.get('period', 20)
            if data.get('adaptivePeriodMin') is None:
                data = {**data, 'adaptivePeriodMin': max(5, period - 10)}
            if data.get('adaptivePeriodMax') is None:
                data = {**data, 'adaptivePeriodMax': period + 10}
        return data


class HybridConfig(TradingConfig):
    """Bollinger breakout combined with Fibonacci golden-zone confirmation"""
    swingLookback: int = Field(5, ge=1)
    fibRetracementLevels: List[float] = Field(default_factory=lambda: list(DEFAULT_FIB_LEVELS))
    goldenZoneMin: float = 0.5
    goldenZoneMax: float = 0.618

    requireBollingerBreakout: bool = True
    requireFibonacciRetracement: bool = True
    requireVolumeConfirmation: bool = True
    requireMomentumConfirmation: bool = True

    profitTarget: float = Field(0.012, gt=0)
    stopLossPercent: float = Field(0.008, gt=0)
    maxHoldingMinutes: int = Field(8, ge=1)   # bars

    volumePeriod: int = Field(20, ge=1)
    volumeThreshold: float = 1.3
    minSignalStrength: float = Field(70, ge=0, le=100)

    @classmethod
    def for_base(cls, base: TradingConfig) -> "HybridConfig":
        """Derive hybrid defaults from a baseline config (period < 10 suggests seconds data)"""
        seconds = base.period < 10
        return cls(
            **TradingConfig.model_validate(base.model_dump()).model_dump(),
            swingLookback=3 if seconds else 5,
            profitTarget=0.006 if seconds else 0.012,
            stopLossPercent=0.004 if seconds else 0.008,
            maxHoldingMinutes=30 if seconds else 8,
        )


# ==================== TRADES & RESULTS ====================

class Trade(BaseModel):
    """Single position; opened once, closed once"""
    id: str
    entryTime: int
    entryPrice: float
    stopLoss: float
    takeProfit: Optional[float] = None
    position: Position
    leverage: float
    entryIndex: int
    exitTime: Optional[int] = None
    exitIndex: Optional[int] = None
    exitPrice: Optional[float] = None
    pnl: Optional[float] = None
    isOpen: bool = True
    reason: Optional[ExitReason] = None

    def close(self, index: int, time: int, price: float, pnl: float, reason: str) -> "Trade":
        if not self.isOpen:
            raise ValueError(f"Trade {self.id} is already closed")
        self.exitIndex = index
        self.exitTime = time
        self.exitPrice = price
        self.pnl = pnl
        self.reason = reason
        self.isOpen = False
        return self


class BacktestResult(BaseModel):
    """Backtest Result (derived from the closed trade list)"""
    totalTrades: int
    winningTrades: int
    losingTrades: int
    winRate: float
    totalPnL: float
    totalReturn: float
    finalCapital: float
    maxDrawdown: float
    sharpeRatio: float
    longTrades: int
    shortTrades: int
    firstTradeTime: Optional[int] = None
    lastTradeTime: Optional[int] = None
    tradingPeriodDays: Optional[float] = None
    averageTradesPerDay: Optional[float] = None
    averageHoldingSeconds: float = 0.0
    maxConsecutiveWins: int = 0
    maxConsecutiveLosses: int = 0
    exitReasons: Dict[str, int] = {}
    isSecondsTimeframe: bool = False
    trades: List[Trade] = []


class OptimizationFilters(BaseModel):
    """Post-hoc filters; unset or zero means inactive"""
    minimumTradingPeriodDays: Optional[float] = None
    minimumTrades: Optional[int] = None
    minimumWinRate: Optional[float] = None
    maximumDrawdown: Optional[float] = None
    minimumReturn: Optional[float] = None


class OptimizationResult(BaseModel):
    """One scored parameter combination"""
    strategy: str
    params: Dict[str, Any]
    totalReturn: float
    totalPnL: float
    winRate: float
    totalTrades: int
    maxDrawdown: float
    sharpeRatio: float
    score: float
    tradingPeriodDays: Optional[float] = None
    averageTradesPerDay: Optional[float] = None
    averageHoldingSeconds: float = 0.0
    datasetName: Optional[str] = None
    timeframe: Optional[str] = None


class OptimizationProgress(BaseModel):
    """Progress record handed to progress callbacks"""
    current: int
    total: int
    currentConfig: str
    isRunning: bool
    results: List[OptimizationResult] = []
    bestResult: Optional[OptimizationResult] = None
    estimatedTimeRemaining: str
    evaluated: int = 0
    pruned: int = 0
    filteredOut: int = 0
    failed: int = 0
    cancelled: bool = False


class MultiTimeframeProgress(OptimizationProgress):
    currentDataset: str
    currentTimeframe: str
    totalDatasets: int
    currentDatasetIndex: int


class Dataset(BaseModel):
    """Named candle series for multi-dataset optimization"""
    name: str
    candles: List[Candle]
    timeframe: Optional[str] = None


# ==================== API ====================

class BacktestRequest(BaseModel):
    """Backtest Request"""
    strategy: str = 'baseline'
    candles: List[Candle]
    config: Dict[str, Any] = {}


class OptimizationRequest(BaseModel):
    """Optimization Request"""
    strategy: str = 'baseline'
    candles: List[Candle]
    config: Dict[str, Any] = {}
    filters: Optional[OptimizationFilters] = None
    top: int = Field(API_TOP_RESULTS, ge=1)


class MultiTimeframeRequest(BaseModel):
    """Multi-dataset Optimization Request"""
    strategy: str = 'baseline'
    datasets: List[Dataset]
    config: Dict[str, Any] = {}
    filters: Optional[OptimizationFilters] = None
    top: int = Field(API_TOP_RESULTS, ge=1)
