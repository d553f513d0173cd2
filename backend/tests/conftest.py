"""
Shared fixtures: deterministic price series, sentiment sources and signals.
"""

import pytest

from fusion_trader.data_ingestor import StaticSentimentSource, build_price_history
from fusion_trader.error_logger import ErrorLogger
from fusion_trader.models import SourceReading, TradingAction, TradingSignal
from fusion_trader.sentiment_analyzer import SentimentAnalyzer

SOURCE_NAMES = ("news", "twitter", "reddit", "telegram")


def linear_prices(start, end, count=60):
    step = (end - start) / (count - 1)
    return [start + step * index for index in range(count)]


@pytest.fixture
def flat_history():
    """30 hourly samples at a constant 100.0"""
    return build_price_history([100.0] * 30)


@pytest.fixture
def rising_history():
    """60 samples rising linearly from 50 to 100"""
    return build_price_history(linear_prices(50.0, 100.0))


@pytest.fixture
def falling_history():
    """60 samples falling linearly from 150 to 100"""
    return build_price_history(linear_prices(150.0, 100.0))


@pytest.fixture
def error_log():
    return ErrorLogger()


@pytest.fixture
def make_analyzer(error_log):
    """Build a SentimentAnalyzer whose four sources all report ``sentiment``."""
    def _make(sentiment=0.0, **kwargs):
        sources = [
            StaticSentimentSource(name, default=SourceReading(sentiment=sentiment))
            for name in SOURCE_NAMES
        ]
        kwargs.setdefault("error_log", error_log)
        return SentimentAnalyzer(sources, **kwargs)
    return _make


@pytest.fixture
def make_signal():
    """Build a TradingSignal with sensible defaults."""
    def _make(symbol="BTC", action=TradingAction.BUY, price=100.0, confidence=0.9, **kwargs):
        return TradingSignal(
            symbol=symbol,
            action=action,
            price=price,
            confidence=confidence,
            **kwargs
        )
    return _make
