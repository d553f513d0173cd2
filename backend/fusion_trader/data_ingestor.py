import aiohttp
import asyncio
import re
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional, Sequence, Union
from datetime import datetime, timedelta
from .models import PricePoint, SourceReading
from .config import settings
import logging
from .error_logger import error_logger, ErrorType

logger = logging.getLogger(__name__)

POSITIVE_WORDS = ["bullish", "moon", "pump", "buy", "hodl", "gains", "profit", "surge", "rally", "growth"]
NEGATIVE_WORDS = ["bearish", "dump", "crash", "sell", "loss", "drop", "fall", "decline", "fear"]

def score_text(text: str) -> float:
    """Lexicon score of a headline or post in [-1, 1]"""
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    if not words:
        return 0.0

    score = 0
    for word in words:
        if word in POSITIVE_WORDS:
            score += 1
        if word in NEGATIVE_WORDS:
            score -= 1

    return max(-1.0, min(1.0, score / len(words) * 10))

class TTLCache:
    """
    Size-capped key/value cache whose entries expire ``ttl`` seconds after
    they were stored. Oldest entries are evicted first when full.
    """

    def __init__(
        self,
        ttl: float = settings.cache_ttl,
        max_entries: int = settings.cache_max_entries,
        clock: Callable[[], float] = time.monotonic
    ):
        if ttl <= 0 or max_entries <= 0:
            raise ValueError("ttl and max_entries must be positive")
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, tuple]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at >= self.ttl:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any):
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            self._entries[key] = (self._clock(), value)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

class PriceFeed(ABC):
    """Market data collaborator: ordered price history and latest price per symbol."""

    @abstractmethod
    async def get_price_history(self, symbol: str) -> List[PricePoint]:
        ...

    async def get_current_price(self, symbol: str) -> Optional[float]:
        history = await self.get_price_history(symbol)
        return history[-1].price if history else None

class SentimentSource(ABC):
    """A single sentiment collaborator (news, twitter, reddit, telegram)."""

    name: str = "source"

    @abstractmethod
    async def fetch(self, symbol: str) -> SourceReading:
        ...

def build_price_history(
    prices: Sequence[float],
    volumes: Optional[Sequence[float]] = None,
    end: Optional[datetime] = None,
    step: timedelta = timedelta(hours=1)
) -> List[PricePoint]:
    """Turn a plain price list into an hourly PricePoint series ending at ``end``"""
    end = end or datetime.now()
    count = len(prices)
    return [
        PricePoint(
            timestamp=end - step * (count - 1 - index),
            price=price,
            volume=volumes[index] if volumes is not None else 0.0
        )
        for index, price in enumerate(prices)
    ]

class StaticPriceFeed(PriceFeed):
    """Deterministic price feed backed by fixed sequences."""

    def __init__(self, histories: Dict[str, Sequence[Union[float, PricePoint]]]):
        self._histories: Dict[str, List[PricePoint]] = {}
        for symbol, series in histories.items():
            self.set_history(symbol, series)

    def set_history(self, symbol: str, series: Sequence[Union[float, PricePoint]]):
        if series and not isinstance(series[0], PricePoint):
            series = build_price_history(series)
        self._histories[symbol.upper()] = list(series)

    async def get_price_history(self, symbol: str) -> List[PricePoint]:
        return list(self._histories.get(symbol.upper(), []))

class StaticSentimentSource(SentimentSource):
    """Deterministic sentiment source returning fixed readings per symbol."""

    def __init__(
        self,
        name: str,
        readings: Optional[Dict[str, SourceReading]] = None,
        default: Optional[SourceReading] = None
    ):
        self.name = name
        self._readings = {symbol.upper(): reading for symbol, reading in (readings or {}).items()}
        self._default = default or SourceReading(sentiment=0.0)

    async def fetch(self, symbol: str) -> SourceReading:
        return self._readings.get(symbol.upper(), self._default)

class NewsDataSentimentSource(SentimentSource):
    """
    News sentiment from the NewsData.io API. Headlines are scored with the
    keyword lexicon and averaged; responses are cached per symbol.
    """

    name = "news"

    def __init__(
        self,
        api_key: Optional[str] = settings.newsdata_api_key,
        url: str = settings.newsdata_url,
        cache: Optional[TTLCache] = None,
        session: Optional[aiohttp.ClientSession] = None,
        limit: int = 10
    ):
        self.api_key = api_key
        self.url = url
        self.cache = cache or TTLCache()
        self.session = session
        self.limit = limit

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()

    async def fetch(self, symbol: str) -> SourceReading:
        cache_key = f"{self.name}:{symbol.upper()}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        if not self.session or self.session.closed:
            self.session = aiohttp.ClientSession()

        params = {
            "apikey": self.api_key or "demo_key",
            "q": f"{symbol} OR crypto",
            "language": "en",
            "size": self.limit
        }

        async with self.session.get(self.url, params=params) as response:
            if response.status != 200:
                if response.status == 429:
                    error_logger.log_error(
                        ErrorType.NETWORK_ERROR,
                        "NewsData API rate limit reached",
                        {"symbol": symbol, "status": response.status},
                        "high"
                    )
                raise RuntimeError(f"NewsData request for {symbol} failed with status {response.status}")
            data = await response.json()

        texts = []
        for article in data.get("results", []):
            text = f"{article.get('title') or ''} {article.get('description') or ''}".strip()
            if text:
                texts.append(text)

        sentiment = sum(score_text(text) for text in texts) / len(texts) if texts else 0.0
        reading = SourceReading(sentiment=sentiment, mentions=len(texts), texts=texts)
        self.cache.set(cache_key, reading)
        return reading

class CoinGeckoPriceFeed(PriceFeed):
    """Hourly price history from CoinGecko's market_chart endpoint, cached per symbol."""

    symbol_mapping = {
        'BTC': 'bitcoin',
        'ETH': 'ethereum',
        'ADA': 'cardano',
        'SOL': 'solana',
        'DOGE': 'dogecoin',
        'XLM': 'stellar',
        'MATIC': 'polygon'
    }

    def __init__(
        self,
        base_url: str = settings.coingecko_url,
        days: int = 7,
        cache: Optional[TTLCache] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        self.base_url = base_url
        self.days = days
        self.cache = cache or TTLCache(ttl=60)
        self.session = session

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()

    async def get_price_history(self, symbol: str) -> List[PricePoint]:
        cache_key = f"coingecko:{symbol.upper()}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return list(cached)

        if not self.session or self.session.closed:
            self.session = aiohttp.ClientSession()

        coin_id = self.symbol_mapping.get(symbol.upper(), symbol.lower())
        url = f"{self.base_url}/coins/{coin_id}/market_chart"
        params = {"vs_currency": "usd", "days": self.days}

        try:
            async with self.session.get(url, params=params) as response:
                if response.status != 200:
                    logger.error(f"CoinGecko request for {symbol} failed: {response.status}")
                    return []
                data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            error_logger.log_error(
                ErrorType.NETWORK_ERROR,
                f"Error fetching price history for {symbol}: {e}",
                {"symbol": symbol},
                "medium"
            )
            return []

        volumes = {int(ts): volume for ts, volume in data.get("total_volumes", [])}
        history = [
            PricePoint(
                timestamp=datetime.fromtimestamp(ts / 1000),
                price=price,
                volume=volumes.get(int(ts), 0.0)
            )
            for ts, price in data.get("prices", [])
            if price and price > 0
        ]
        history.sort(key=lambda point: point.timestamp)

        self.cache.set(cache_key, history)
        return list(history)
