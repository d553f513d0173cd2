import asyncio
import logging
import re
from collections import Counter
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional
from .models import SentimentSnapshot, SourceReading
from .data_ingestor import SentimentSource
from .fusion_engine import SENTIMENT_WEIGHTS
from .error_logger import error_logger as default_error_logger, ErrorLogger, ErrorType
from .config import settings

logger = logging.getLogger(__name__)

MAX_KEYWORDS = 10

STOP_WORDS = {
    "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "this", "that", "these", "those", "from", "have", "has", "had", "will", "would",
    "could", "should", "into", "about", "after", "before", "over", "just", "than",
    "then", "them", "they", "their", "there", "what", "when", "where", "which",
    "while", "your", "very", "more", "most", "some", "also", "been", "being", "were"
}

# Label cut points are strict lower bounds: score > 0.5 is "Very Bullish",
# 0.5 itself is "Bullish"; anything at or below -0.5 is "Very Bearish".
SENTIMENT_LABELS = [
    (0.5, "Very Bullish"),
    (0.2, "Bullish"),
    (-0.2, "Neutral"),
    (-0.5, "Bearish"),
]

def get_sentiment_label(score: float) -> str:
    for threshold, label in SENTIMENT_LABELS:
        if score > threshold:
            return label
    return "Very Bearish"

def extract_keywords(texts: Iterable[str], limit: int = MAX_KEYWORDS) -> List[str]:
    """Most frequent words longer than three characters, first-seen order breaks ties"""
    counts = Counter()
    for text in texts:
        words = re.sub(r"[^\w\s]", "", text.lower()).split()
        counts.update(word for word in words if len(word) > 3 and word not in STOP_WORDS)

    # sorted() is stable and Counter keeps first-insertion order
    ranked = sorted(counts.items(), key=lambda item: -item[1])
    return [word for word, _ in ranked[:limit]]

def _clamp(value: float) -> float:
    return max(-1.0, min(1.0, value))

class SentimentAnalyzer:
    """
    Sentiment Aggregator: queries every configured source concurrently and
    combines the readings with fixed weights. A source that fails or times
    out contributes 0 and keeps its weight.
    """

    def __init__(
        self,
        sources: Iterable[SentimentSource] = (),
        weights: Mapping[str, float] = SENTIMENT_WEIGHTS,
        source_timeout: float = settings.source_timeout,
        trending_threshold: int = settings.trending_mentions_threshold,
        error_log: Optional[ErrorLogger] = None
    ):
        if abs(sum(weights.values()) - 1.0) > 1e-9:
            raise ValueError(f"sentiment weights must sum to 1, got {sum(weights.values())}")

        self.weights = dict(weights)
        self.sources: Dict[str, SentimentSource] = {}
        for source in sources:
            if source.name not in self.weights:
                raise ValueError(f"No weight configured for sentiment source '{source.name}'")
            self.sources[source.name] = source

        self.source_timeout = source_timeout
        self.trending_threshold = trending_threshold
        self.error_logger = error_log or default_error_logger

    async def analyze(self, symbol: str) -> SentimentSnapshot:
        """Fetch all sources for ``symbol`` concurrently and aggregate them"""
        names = list(self.sources)
        results = await asyncio.gather(
            *(self._fetch_source(name, symbol) for name in names)
        )
        readings = dict(zip(names, results))
        failed = [name for name, reading in readings.items() if reading is None]
        return self.aggregate(readings, failed_sources=failed)

    async def _fetch_source(self, name: str, symbol: str) -> Optional[SourceReading]:
        source = self.sources[name]
        try:
            return await asyncio.wait_for(source.fetch(symbol), timeout=self.source_timeout)
        except asyncio.TimeoutError:
            self.error_logger.log_error(
                ErrorType.SOURCE_UNAVAILABLE,
                f"Sentiment source '{name}' timed out for {symbol}",
                {"source": name, "symbol": symbol, "timeout": self.source_timeout},
                "medium"
            )
        except Exception as e:
            self.error_logger.log_error(
                ErrorType.SOURCE_UNAVAILABLE,
                f"Sentiment source '{name}' failed for {symbol}: {e}",
                {"source": name, "symbol": symbol, "error": str(e)},
                "medium"
            )
        return None

    def aggregate(
        self,
        readings: Mapping[str, Optional[SourceReading]],
        failed_sources: Optional[List[str]] = None
    ) -> SentimentSnapshot:
        """Weighted combination of per-source readings; missing readings count as 0"""
        sources = {}
        texts = []
        mentions = 0
        trending = False

        for name in self.weights:
            reading = readings.get(name)
            if reading is None:
                sources[name] = 0.0
                continue
            sources[name] = _clamp(reading.sentiment)
            texts.extend(reading.texts)
            mentions += reading.mentions
            trending = trending or reading.trending

        overall = _clamp(sum(self.weights[name] * sources[name] for name in self.weights))

        return SentimentSnapshot(
            overall=overall,
            sources=sources,
            mentions=mentions,
            trending=trending or mentions >= self.trending_threshold,
            keywords=extract_keywords(texts),
            label=get_sentiment_label(overall),
            failed_sources=list(failed_sources or []),
            timestamp=datetime.now()
        )
