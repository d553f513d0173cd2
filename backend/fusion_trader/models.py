from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Tuple, Any
from datetime import datetime
from enum import Enum
import uuid

class TradingAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"
    SWAP = "SWAP"

class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

class OrderType(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    STOP_LOSS = "STOP_LOSS"

class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"

class OrderStatus(str, Enum):
    PENDING = "PENDING"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"

def _new_id() -> str:
    return str(uuid.uuid4())

class PricePoint(BaseModel):
    timestamp: datetime
    price: float = Field(gt=0)
    volume: float = Field(default=0.0, ge=0)
    high: Optional[float] = Field(default=None, gt=0)
    low: Optional[float] = Field(default=None, gt=0)

class MarketConditions(BaseModel):
    current_price: Optional[float] = Field(default=None, gt=0)
    volume_24h: Optional[float] = None
    price_change_24h: Optional[float] = None
    market_cap: Optional[float] = None

class MACDResult(BaseModel):
    macd: float
    signal: float
    histogram: float

class BollingerBands(BaseModel):
    upper: float
    middle: float
    lower: float

class MovingAverages(BaseModel):
    sma20: float
    sma50: float
    sma200: Optional[float] = None
    ema12: float
    ema26: float

class StochasticOscillator(BaseModel):
    k: float = Field(ge=0, le=100)
    d: float = Field(ge=0, le=100)

class TechnicalIndicators(BaseModel):
    rsi: float = Field(ge=0, le=100)
    macd: MACDResult
    bollinger_bands: BollingerBands
    moving_averages: MovingAverages
    stochastic: Optional[StochasticOscillator] = None
    volume: float = 0.0
    average_volume: float = 0.0
    volatility: float = Field(ge=0)

class SourceReading(BaseModel):
    """What a single sentiment collaborator reports for one symbol."""
    sentiment: float
    mentions: int = Field(default=0, ge=0)
    texts: List[str] = []
    trending: bool = False

class SentimentSnapshot(BaseModel):
    overall: float = Field(ge=-1, le=1)
    sources: Dict[str, float]
    mentions: int = 0
    trending: bool = False
    keywords: List[str] = []
    label: str = "Neutral"
    failed_sources: List[str] = []
    timestamp: datetime

class PredictionResult(BaseModel):
    symbol: str
    prediction: TradingAction
    confidence: float = Field(ge=0.1, le=0.95)
    score: float = 0.0
    target_price: float
    timeframe: str = "24h"
    reasoning: List[str] = []
    risk_level: RiskLevel = RiskLevel.MEDIUM
    expected_return: float = 0.0
    stop_loss: float
    take_profit: float
    predictions: Dict[str, float] = {}
    timestamp: datetime

    @field_validator("prediction")
    @classmethod
    def _directional_only(cls, value: TradingAction) -> TradingAction:
        if value == TradingAction.SWAP:
            raise ValueError("a prediction is BUY, SELL or HOLD")
        return value

class TradingSignal(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    symbol: str = Field(min_length=1)
    action: TradingAction
    confidence: float = Field(ge=0.1, le=0.95)
    price: float = Field(gt=0)
    target_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    reasoning: Tuple[str, ...] = ()
    technical_indicators: Optional[TechnicalIndicators] = None
    sentiment_score: float = 0.0
    risk_level: RiskLevel = RiskLevel.MEDIUM
    predictions: Dict[str, float] = {}
    timestamp: datetime = Field(default_factory=datetime.now)

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, value: str) -> str:
        return value.strip().upper()

class TradeExecution(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    order_type: OrderType = OrderType.MARKET
    symbol: str
    side: OrderSide
    amount: float = Field(gt=0)
    price: float = Field(gt=0)
    status: OrderStatus = OrderStatus.PENDING
    fees: float = Field(default=0.0, ge=0)
    realized_pnl: float = 0.0
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    signal_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)

class Position(BaseModel):
    symbol: str
    amount: float = Field(ge=0)
    average_price: float = Field(ge=0)
    current_price: float = Field(ge=0)
    current_value: float = 0.0
    unrealized_pnl: float = 0.0
    unrealized_pnl_pct: float = 0.0
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None

class PerformanceMetrics(BaseModel):
    realized_pnl: float = 0.0
    unrealized_pnl: float = 0.0
    total_pnl: float = 0.0
    total_return_pct: float = 0.0
    fees_paid: float = 0.0
    trade_count: int = 0

class Portfolio(BaseModel):
    cash: float
    total_value: float
    positions: Dict[str, Position] = {}
    trade_history: List[TradeExecution] = []
    performance: PerformanceMetrics = Field(default_factory=PerformanceMetrics)
    last_updated: datetime = Field(default_factory=datetime.now)

class AutoTradingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    risk_tolerance: RiskLevel = RiskLevel.MEDIUM
    max_position_size: float = Field(default=0.1, gt=0, le=1)
    stop_loss_pct: float = Field(default=0.05, gt=0, lt=1)
    take_profit_pct: float = Field(default=0.15, gt=0)
    min_confidence: float = Field(default=0.6, ge=0, le=1)
    max_daily_trades: int = Field(default=10, ge=0)
    max_portfolio_risk: float = Field(default=0.05, gt=0, le=1)
    symbols: List[str] = []
    enabled: bool = False

    def merged(self, updates: Dict[str, Any]) -> "AutoTradingConfig":
        """Return a copy with ``updates`` applied on top; unknown keys are rejected."""
        return AutoTradingConfig(**{**self.model_dump(), **updates})

class AdmissionDecision(BaseModel):
    approved: bool
    reason: str
    size: float = 0.0

class ExecutionOutcome(BaseModel):
    executed: bool
    reason: str
    execution: Optional[TradeExecution] = None
