import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple
from .models import (
    PricePoint, MarketConditions, TechnicalIndicators, SentimentSnapshot,
    PredictionResult, TradingSignal, TradingAction, RiskLevel
)
from .technical_indicators import IndicatorEngine
from .error_logger import error_logger as default_error_logger, ErrorLogger, ErrorType
from .config import settings

if TYPE_CHECKING:
    from .sentiment_analyzer import SentimentAnalyzer

logger = logging.getLogger(__name__)

# Weight table. Every group that combines scores sums to 1.
FUSION_WEIGHTS = {
    "technical": 0.4,         # RSI, MACD and EMA cross sub-score
    "sentiment": 0.3,         # bucketed aggregate social/news sentiment
    "price_action": 0.2,      # last 7 samples vs the 7 before
    "market_structure": 0.1,  # position inside the 20-sample high/low range
}

SENTIMENT_WEIGHTS = {
    "news": 0.25,
    "twitter": 0.30,
    "reddit": 0.25,
    "telegram": 0.20,
}

CONFIDENCE_WEIGHTS = {
    "base": 0.5,
    "technical_alignment": 0.3,  # share of technical sub-signals agreeing with the fused score
    "sentiment_strength": 0.2,   # |overall sentiment|
    "score_strength": 0.3,       # |fused score|, bounded like the confidence
}

HORIZON_MULTIPLIERS = {
    "1h": 0.01,
    "4h": 0.03,
    "24h": 0.08,
    "7d": 0.15,
}

BUY_THRESHOLD = 0.3
SELL_THRESHOLD = -0.3
SWAP_THRESHOLD = 0.15
CONFIDENCE_FLOOR = 0.1
CONFIDENCE_CEILING = 0.95
DEGRADED_CONFIDENCE = 0.5
DEGRADED_REASON = "Prediction degraded: internal computation error"

PRICE_ACTION_WINDOW = 7
MARKET_STRUCTURE_WINDOW = 20

ACTION_REASONS = {
    TradingAction.BUY: "Multiple indicators suggest upward price movement",
    TradingAction.SELL: "Multiple indicators suggest downward price movement",
    TradingAction.SWAP: "Mixed signals suggest rebalancing into alternative assets",
    TradingAction.HOLD: "Conflicting or weak signals suggest maintaining current position",
}

def clamp_confidence(value: float) -> float:
    return min(CONFIDENCE_CEILING, max(CONFIDENCE_FLOOR, value))

def _direction(value: float, scale: float = 1.0) -> int:
    # values within float noise of zero (e.g. EMA12 - EMA26 on a flat series) count as 0
    tolerance = 1e-9 * max(1.0, abs(scale))
    if value > tolerance:
        return 1
    if value < -tolerance:
        return -1
    return 0

def neutral_sentiment() -> SentimentSnapshot:
    return SentimentSnapshot(
        overall=0.0,
        sources={name: 0.0 for name in SENTIMENT_WEIGHTS},
        label="Neutral",
        timestamp=datetime.now()
    )

@dataclass
class FusionResult:
    """Everything one scoring pass produced for a symbol."""
    action: TradingAction
    prediction: PredictionResult
    indicators: Optional[TechnicalIndicators] = None
    sentiment: SentimentSnapshot = field(default_factory=neutral_sentiment)

class SignalHistory:
    """Bounded, thread-safe history of generated signals, newest first."""

    def __init__(self, max_size: int = settings.signal_history_size):
        self._signals: deque = deque(maxlen=max_size)
        self._lock = threading.Lock()

    def add(self, signal: TradingSignal):
        with self._lock:
            self._signals.appendleft(signal)

    def recent(self, limit: int = 10) -> List[TradingSignal]:
        if limit < 0:
            raise ValueError("limit must be non-negative")
        with self._lock:
            return list(self._signals)[:limit]

    def clear(self):
        with self._lock:
            self._signals.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._signals)

class SignalFusionEngine:
    """
    Signal Fusion Engine: fuses technical, sentiment, price-action and
    market-structure sub-scores into an action, a bounded confidence, a risk
    level, price targets and an ordered reasoning trail.
    """

    def __init__(
        self,
        sentiment_analyzer: Optional["SentimentAnalyzer"] = None,
        indicator_engine: IndicatorEngine = IndicatorEngine,
        stop_loss_pct: float = settings.stop_loss_pct,
        take_profit_pct: float = settings.take_profit_pct,
        history_size: int = settings.signal_history_size,
        error_log: Optional[ErrorLogger] = None
    ):
        self.sentiment_analyzer = sentiment_analyzer
        self.indicator_engine = indicator_engine
        self.stop_loss_pct = stop_loss_pct
        self.take_profit_pct = take_profit_pct
        self.history = SignalHistory(history_size)
        self.error_logger = error_log or default_error_logger
        self._predictions: Dict[str, PredictionResult] = {}
        self._predictions_lock = threading.Lock()

    async def generate_signal(
        self,
        symbol: str,
        price_history: Sequence[PricePoint],
        market_conditions: Optional[MarketConditions] = None
    ) -> TradingSignal:
        """Score ``symbol`` and record the resulting signal in the history"""
        current_price = self._resolve_price(symbol, price_history, market_conditions)
        result = await self._evaluate_safely(symbol, price_history, current_price, None, market_conditions)
        prediction = result.prediction
        actionable = result.action in (TradingAction.BUY, TradingAction.SELL)

        signal = TradingSignal(
            symbol=symbol.upper(),
            action=result.action,
            confidence=prediction.confidence,
            price=current_price,
            target_price=prediction.target_price,
            stop_loss=prediction.stop_loss if actionable else None,
            take_profit=prediction.take_profit if actionable else None,
            reasoning=tuple(prediction.reasoning),
            technical_indicators=result.indicators,
            sentiment_score=result.sentiment.overall,
            risk_level=prediction.risk_level,
            predictions=prediction.predictions
        )

        self.history.add(signal)
        logger.info(
            f"{signal.symbol}: {signal.action.value} @ ${current_price:.4f} "
            f"confidence {signal.confidence:.2f} risk {signal.risk_level.value}"
        )
        return signal

    async def predict(
        self,
        symbol: str,
        price_history: Sequence[PricePoint],
        sentiment: Optional[SentimentSnapshot] = None,
        current_price: Optional[float] = None
    ) -> PredictionResult:
        """Directional prediction (BUY/SELL/HOLD) without recording a signal"""
        conditions = MarketConditions(current_price=current_price) if current_price else None
        price = self._resolve_price(symbol, price_history, conditions)
        result = await self._evaluate_safely(symbol, price_history, price, sentiment, conditions)
        return result.prediction

    def get_recent_signals(self, limit: int = 10) -> List[TradingSignal]:
        return self.history.recent(limit)

    def get_prediction(self, symbol: str) -> Optional[PredictionResult]:
        with self._predictions_lock:
            return self._predictions.get(symbol.upper())

    def get_all_predictions(self) -> Dict[str, PredictionResult]:
        """Latest prediction per symbol"""
        with self._predictions_lock:
            return dict(self._predictions)

    def _resolve_price(
        self,
        symbol: str,
        price_history: Sequence[PricePoint],
        market_conditions: Optional[MarketConditions]
    ) -> float:
        if not symbol or not symbol.strip():
            raise ValueError("symbol must be a non-empty string")
        if market_conditions is not None and market_conditions.current_price is not None:
            return market_conditions.current_price
        if not price_history:
            raise ValueError(f"No price history or current price supplied for {symbol}")
        return price_history[-1].price

    async def _evaluate_safely(
        self,
        symbol: str,
        price_history: Sequence[PricePoint],
        current_price: float,
        sentiment: Optional[SentimentSnapshot],
        market_conditions: Optional[MarketConditions]
    ) -> FusionResult:
        try:
            if sentiment is None:
                sentiment = await self._fetch_sentiment(symbol)
            result = self._evaluate(symbol, price_history, current_price, sentiment, market_conditions)
        except Exception as e:
            self.error_logger.log_error(
                ErrorType.COMPUTATION_FAULT,
                f"Signal fusion failed for {symbol}: {e}",
                {"symbol": symbol, "error": repr(e)},
                "high"
            )
            result = self._degraded_result(symbol, current_price)

        with self._predictions_lock:
            self._predictions[symbol.upper()] = result.prediction
        return result

    async def _fetch_sentiment(self, symbol: str) -> SentimentSnapshot:
        if self.sentiment_analyzer is None:
            return neutral_sentiment()
        return await self.sentiment_analyzer.analyze(symbol)

    def _evaluate(
        self,
        symbol: str,
        price_history: Sequence[PricePoint],
        current_price: float,
        sentiment: SentimentSnapshot,
        market_conditions: Optional[MarketConditions]
    ) -> FusionResult:
        prices = [point.price for point in price_history]
        indicators = self.indicator_engine.calculate_all_indicators(price_history)

        technical_reasons: List[str] = []
        market_reasons: List[str] = []

        technical_score, sub_signals = self._score_technical(indicators, current_price, technical_reasons)
        sentiment_score = self._score_sentiment(sentiment)
        price_action_score = self._score_price_action(prices, market_conditions, market_reasons)
        structure_score = self._score_market_structure(current_price, prices, market_reasons)

        score = (
            technical_score * FUSION_WEIGHTS["technical"]
            + sentiment_score * FUSION_WEIGHTS["sentiment"]
            + price_action_score * FUSION_WEIGHTS["price_action"]
            + structure_score * FUSION_WEIGHTS["market_structure"]
        )

        action = self._determine_action(score, technical_score, sentiment_score)
        confidence = self._calculate_confidence(score, sub_signals, sentiment)
        risk_level = self._assess_risk_level(indicators, sentiment)

        reasoning = (
            technical_reasons
            + [f"Social sentiment is {sentiment.label.lower()}"]
            + market_reasons
            + [ACTION_REASONS[action]]
        )

        prediction = self._build_prediction(
            symbol, action, score, confidence, current_price, risk_level, reasoning
        )
        return FusionResult(action=action, prediction=prediction, indicators=indicators, sentiment=sentiment)

    def _score_technical(
        self,
        indicators: TechnicalIndicators,
        current_price: float,
        reasons: List[str]
    ) -> Tuple[float, List[int]]:
        rsi = indicators.rsi
        if rsi < 30:
            rsi_signal = 1
            reasons.append(f"RSI oversold ({rsi:.1f}) - bullish signal")
        elif rsi > 70:
            rsi_signal = -1
            reasons.append(f"RSI overbought ({rsi:.1f}) - bearish signal")
        else:
            rsi_signal = 0

        macd_signal = _direction(indicators.macd.macd, current_price)
        if macd_signal > 0:
            reasons.append("MACD positive - bullish momentum")
        elif macd_signal < 0:
            reasons.append("MACD negative - bearish momentum")

        averages = indicators.moving_averages
        ema_signal = _direction(averages.ema12 - averages.ema26, current_price)
        if ema_signal > 0:
            reasons.append("EMA12 above EMA26 - short-term bullish")
        elif ema_signal < 0:
            reasons.append("EMA12 below EMA26 - short-term bearish")

        score = (rsi_signal * 0.7 + macd_signal * 0.5 + ema_signal * 0.4) / 3
        reasons.extend(self.indicator_engine.generate_indicator_signals(indicators, current_price))

        if indicators.volatility > 0.5:
            reasons.append("High volatility - increased risk")
            score *= 0.8
        elif indicators.volatility < 0.2 and score != 0:
            reasons.append("Low volatility - stable conditions")
            score *= 1.1

        return score, [rsi_signal, macd_signal, ema_signal]

    @staticmethod
    def _score_sentiment(sentiment: SentimentSnapshot) -> float:
        overall = sentiment.overall
        if overall > 0.5:
            return 0.8
        if overall > 0.2:
            return 0.5
        if overall < -0.5:
            return -0.8
        if overall < -0.2:
            return -0.5
        return 0.0

    @staticmethod
    def _score_price_action(
        prices: List[float],
        market_conditions: Optional[MarketConditions],
        reasons: List[str]
    ) -> float:
        score = 0.0
        if len(prices) < PRICE_ACTION_WINDOW * 2:
            reasons.append("Insufficient history for price trend")
        else:
            recent = prices[-PRICE_ACTION_WINDOW:]
            older = prices[-PRICE_ACTION_WINDOW * 2:-PRICE_ACTION_WINDOW]
            recent_avg = sum(recent) / len(recent)
            older_avg = sum(older) / len(older)
            trend = (recent_avg - older_avg) / older_avg

            if trend > 0.05:
                reasons.append("Strong upward price trend")
                score = 0.6
            elif trend > 0.02:
                reasons.append("Moderate upward price trend")
                score = 0.3
            elif trend < -0.05:
                reasons.append("Strong downward price trend")
                score = -0.6
            elif trend < -0.02:
                reasons.append("Moderate downward price trend")
                score = -0.3
            else:
                reasons.append("Sideways price action")

        change = market_conditions.price_change_24h if market_conditions else None
        if change is not None:
            if change > 5:
                reasons.append(f"Strong 24h momentum (+{change:.2f}%)")
            elif change < -5:
                reasons.append(f"Strong 24h decline ({change:.2f}%)")

        return score

    @staticmethod
    def _score_market_structure(current_price: float, prices: List[float], reasons: List[str]) -> float:
        if len(prices) < MARKET_STRUCTURE_WINDOW:
            return 0.0

        window = prices[-MARKET_STRUCTURE_WINDOW:]
        high, low = max(window), min(window)
        if high == low:
            reasons.append("Price in middle range")
            return 0.0

        position = (current_price - low) / (high - low)
        if position > 0.8:
            reasons.append("Price near 20-period high - resistance level")
            return -0.2
        if position < 0.2:
            reasons.append("Price near 20-period low - support level")
            return 0.2
        reasons.append("Price in middle range")
        return 0.0

    @staticmethod
    def _determine_action(score: float, technical_score: float, sentiment_score: float) -> TradingAction:
        if score > BUY_THRESHOLD:
            return TradingAction.BUY
        if score < SELL_THRESHOLD:
            return TradingAction.SELL
        conflicting = technical_score * sentiment_score < 0
        if abs(score) > SWAP_THRESHOLD and conflicting:
            return TradingAction.SWAP
        return TradingAction.HOLD

    @staticmethod
    def _calculate_confidence(score: float, sub_signals: List[int], sentiment: SentimentSnapshot) -> float:
        direction = _direction(score)
        aligned = 0.0
        if direction != 0:
            aligned = sum(1 for signal in sub_signals if signal == direction) / len(sub_signals)

        confidence = (
            CONFIDENCE_WEIGHTS["base"]
            + CONFIDENCE_WEIGHTS["technical_alignment"] * aligned
            + CONFIDENCE_WEIGHTS["sentiment_strength"] * abs(sentiment.overall)
            + CONFIDENCE_WEIGHTS["score_strength"] * clamp_confidence(abs(score))
        )
        return clamp_confidence(confidence)

    @staticmethod
    def _assess_risk_level(indicators: TechnicalIndicators, sentiment: SentimentSnapshot) -> RiskLevel:
        risk_score = 0

        if indicators.volatility > 0.5:
            risk_score += 2
        elif indicators.volatility > 0.3:
            risk_score += 1

        if indicators.rsi < 20 or indicators.rsi > 80:
            risk_score += 1

        # weak sentiment means less conviction behind the move
        if abs(sentiment.overall) < 0.2:
            risk_score += 1

        if risk_score >= 3:
            return RiskLevel.HIGH
        if risk_score >= 2:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def _price_targets(self, action: TradingAction, price: float) -> Tuple[float, float]:
        if action == TradingAction.BUY:
            return price * (1 - self.stop_loss_pct), price * (1 + self.take_profit_pct)
        if action == TradingAction.SELL:
            return price * (1 + self.stop_loss_pct), price * (1 - self.take_profit_pct)
        return price, price

    def _build_prediction(
        self,
        symbol: str,
        action: TradingAction,
        score: float,
        confidence: float,
        price: float,
        risk_level: RiskLevel,
        reasoning: List[str]
    ) -> PredictionResult:
        base_multiplier = score * confidence
        predictions = {
            horizon: price * (1 + base_multiplier * multiplier)
            for horizon, multiplier in HORIZON_MULTIPLIERS.items()
        }
        stop_loss, take_profit = self._price_targets(action, price)
        direction = action if action != TradingAction.SWAP else TradingAction.HOLD

        return PredictionResult(
            symbol=symbol.upper(),
            prediction=direction,
            confidence=confidence,
            score=score,
            target_price=predictions["24h"],
            timeframe="24h",
            reasoning=reasoning,
            risk_level=risk_level,
            expected_return=predictions["24h"] / price - 1,
            stop_loss=stop_loss,
            take_profit=take_profit,
            predictions=predictions,
            timestamp=datetime.now()
        )

    def _degraded_result(self, symbol: str, price: float) -> FusionResult:
        prediction = PredictionResult(
            symbol=symbol.upper(),
            prediction=TradingAction.HOLD,
            confidence=DEGRADED_CONFIDENCE,
            score=0.0,
            target_price=price,
            reasoning=[DEGRADED_REASON],
            risk_level=RiskLevel.MEDIUM,
            stop_loss=price,
            take_profit=price,
            predictions={horizon: price for horizon in HORIZON_MULTIPLIERS},
            timestamp=datetime.now()
        )
        return FusionResult(action=TradingAction.HOLD, prediction=prediction)
