import numpy as np
import pandas as pd
from typing import List, Optional, Sequence
import logging
from .models import (
    PricePoint, TechnicalIndicators, MACDResult, BollingerBands,
    MovingAverages, StochasticOscillator
)

logger = logging.getLogger(__name__)

TRADING_DAYS_PER_YEAR = 252

def _as_array(values: Sequence[float]) -> np.ndarray:
    # np.array copies, so callers' sequences are never touched
    return np.array(values, dtype=float)

def _check_period(period: int):
    if period < 1:
        raise ValueError(f"period must be a positive integer, got {period}")

class IndicatorEngine:
    """
    Technical indicators over an ordered (oldest first) price series.
    All methods are pure: short histories resolve to neutral defaults
    instead of raising.
    """

    @staticmethod
    def calculate_rsi(prices: Sequence[float], period: int = 14) -> float:
        """Relative Strength Index from simple average gain/loss over the trailing window"""
        _check_period(period)
        values = _as_array(prices)
        if len(values) < period + 1:
            return 50.0

        deltas = np.diff(values[-(period + 1):])
        avg_gain = deltas[deltas > 0].sum() / period
        avg_loss = -deltas[deltas < 0].sum() / period

        if avg_loss == 0:
            return 100.0 if avg_gain > 0 else 50.0

        rs = avg_gain / avg_loss
        rsi = 100 - (100 / (1 + rs))
        return float(min(100.0, max(0.0, rsi)))

    @staticmethod
    def calculate_ema_series(prices: Sequence[float], period: int) -> pd.Series:
        """EMA seeded with the first sample, k = 2 / (period + 1)"""
        _check_period(period)
        return pd.Series(_as_array(prices)).ewm(span=period, adjust=False).mean()

    @staticmethod
    def calculate_ema(prices: Sequence[float], period: int) -> float:
        values = _as_array(prices)
        if len(values) == 0:
            return 0.0
        return float(IndicatorEngine.calculate_ema_series(values, period).iloc[-1])

    @staticmethod
    def calculate_sma(prices: Sequence[float], period: int) -> float:
        """Mean of the trailing window; falls back to the latest price on short history"""
        _check_period(period)
        values = _as_array(prices)
        if len(values) == 0:
            return 0.0
        if len(values) < period:
            return float(values[-1])
        return float(values[-period:].mean())

    @staticmethod
    def calculate_macd(
        prices: Sequence[float],
        fast: int = 12,
        slow: int = 26,
        signal: int = 9
    ) -> MACDResult:
        """MACD line (EMA fast - EMA slow), its EMA signal line and the histogram"""
        values = _as_array(prices)
        if len(values) == 0:
            return MACDResult(macd=0.0, signal=0.0, histogram=0.0)

        macd_line = (
            IndicatorEngine.calculate_ema_series(values, fast)
            - IndicatorEngine.calculate_ema_series(values, slow)
        )
        signal_line = macd_line.ewm(span=signal, adjust=False).mean()

        macd_value = float(macd_line.iloc[-1])
        signal_value = float(signal_line.iloc[-1])
        return MACDResult(
            macd=macd_value,
            signal=signal_value,
            histogram=macd_value - signal_value
        )

    @staticmethod
    def calculate_bollinger_bands(
        prices: Sequence[float],
        period: int = 20,
        num_std: float = 2.0
    ) -> BollingerBands:
        """SMA envelope of +/- num_std standard deviations of the trailing window"""
        values = _as_array(prices)
        middle = IndicatorEngine.calculate_sma(values, period)
        if len(values) == 0:
            return BollingerBands(upper=0.0, middle=0.0, lower=0.0)

        # population stddev of the trailing samples around their own mean;
        # on short history the middle band is the latest price
        std_dev = float(np.std(values[-period:]))

        return BollingerBands(
            upper=middle + num_std * std_dev,
            middle=middle,
            lower=middle - num_std * std_dev
        )

    @staticmethod
    def calculate_stochastic(
        closes: Sequence[float],
        highs: Optional[Sequence[float]] = None,
        lows: Optional[Sequence[float]] = None,
        period: int = 14,
        smooth: int = 3
    ) -> StochasticOscillator:
        """
        %K = (close - lowest low) / (highest high - lowest low) * 100 over the
        trailing window, 50 when the window has no range. %D is the mean of
        the last ``smooth`` %K readings.
        """
        _check_period(period)
        _check_period(smooth)
        close_values = _as_array(closes)
        if len(close_values) == 0:
            return StochasticOscillator(k=50.0, d=50.0)

        high_values = _as_array(highs) if highs is not None else close_values
        low_values = _as_array(lows) if lows is not None else close_values
        if not (len(high_values) == len(low_values) == len(close_values)):
            raise ValueError("highs, lows and closes must have the same length")

        k_values = []
        first = max(0, len(close_values) - smooth)
        for end in range(first, len(close_values)):
            start = max(0, end - period + 1)
            highest = high_values[start:end + 1].max()
            lowest = low_values[start:end + 1].min()
            price_range = highest - lowest
            if price_range <= 0:
                k_values.append(50.0)
            else:
                k = (close_values[end] - lowest) / price_range * 100
                k_values.append(float(min(100.0, max(0.0, k))))

        return StochasticOscillator(k=k_values[-1], d=float(np.mean(k_values)))

    @staticmethod
    def calculate_volatility(prices: Sequence[float]) -> float:
        """Annualized standard deviation of simple returns over the whole history"""
        values = _as_array(prices)
        if len(values) < 2:
            return 0.0

        returns = np.diff(values) / values[:-1]
        return float(np.std(returns) * np.sqrt(TRADING_DAYS_PER_YEAR))

    @staticmethod
    def calculate_all_indicators(price_history: Sequence[PricePoint]) -> TechnicalIndicators:
        """Full indicator set for one symbol's price history"""
        prices = [point.price for point in price_history]
        volumes = [point.volume for point in price_history]

        stochastic = None
        if prices:
            highs = [point.high if point.high is not None else point.price for point in price_history]
            lows = [point.low if point.low is not None else point.price for point in price_history]
            stochastic = IndicatorEngine.calculate_stochastic(prices, highs, lows)

        if len(prices) < 26:
            logger.debug(f"Short price history ({len(prices)} samples), indicators use neutral defaults")

        return TechnicalIndicators(
            rsi=IndicatorEngine.calculate_rsi(prices),
            macd=IndicatorEngine.calculate_macd(prices),
            bollinger_bands=IndicatorEngine.calculate_bollinger_bands(prices),
            moving_averages=MovingAverages(
                sma20=IndicatorEngine.calculate_sma(prices, 20),
                sma50=IndicatorEngine.calculate_sma(prices, 50),
                sma200=IndicatorEngine.calculate_sma(prices, 200) if len(prices) >= 200 else None,
                ema12=IndicatorEngine.calculate_ema(prices, 12),
                ema26=IndicatorEngine.calculate_ema(prices, 26)
            ),
            stochastic=stochastic,
            volume=volumes[-1] if volumes else 0.0,
            average_volume=float(np.mean(volumes[-20:])) if volumes else 0.0,
            volatility=IndicatorEngine.calculate_volatility(prices)
        )

    @staticmethod
    def generate_indicator_signals(indicators: TechnicalIndicators, current_price: float) -> List[str]:
        """
        Descriptive clauses for the indicators that do not feed the technical
        sub-score: Bollinger breakouts, Stochastic extremes and the SMA trend.
        """
        signals = []

        bands = indicators.bollinger_bands
        if bands.upper > bands.lower:
            if current_price > bands.upper:
                signals.append("Price above upper Bollinger Band - potential reversal")
            elif current_price < bands.lower:
                signals.append("Price below lower Bollinger Band - potential bounce")

        if indicators.stochastic is not None:
            if indicators.stochastic.k > 80:
                signals.append("Stochastic %K above 80 - overbought")
            elif indicators.stochastic.k < 20:
                signals.append("Stochastic %K below 20 - oversold")

        averages = indicators.moving_averages
        if averages.sma20 > averages.sma50:
            signals.append("20-period SMA above 50-period SMA - bullish trend")
        elif averages.sma20 < averages.sma50:
            signals.append("20-period SMA below 50-period SMA - bearish trend")

        return signals
