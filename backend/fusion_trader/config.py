from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    initial_cash: float = 10000.0
    trading_fee_rate: float = 0.001   # 0.1% per simulated fill

    # Orchestrator loop
    loop_interval: float = 30.0       # seconds between ticks
    tick_timeout: float = 25.0        # a tick is cancelled after this long

    # Sentiment collaborators
    source_timeout: float = 2.0       # per-source fetch timeout
    cache_ttl: float = 300.0          # 5 minutes
    cache_max_entries: int = 512
    trending_mentions_threshold: int = 5000

    signal_history_size: int = 50

    # Default auto-trading strategy
    risk_tolerance: str = "MEDIUM"
    max_position_size: float = 0.1   # 10% of portfolio per trade
    stop_loss_pct: float = 0.05
    take_profit_pct: float = 0.15
    min_confidence: float = 0.6
    max_daily_trades: int = 10
    max_portfolio_risk: float = 0.05
    symbols: List[str] = ["BTC", "ETH", "SOL", "DOGE"]
    trading_enabled: bool = False

    newsdata_api_key: Optional[str] = None
    newsdata_url: str = "https://newsdata.io/api/1/news"
    coingecko_url: str = "https://api.coingecko.com/api/v3"

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_prefix = "FUSION_"

settings = Settings()
