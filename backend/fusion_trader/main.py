from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ValidationError
from dotenv import load_dotenv

load_dotenv()

from .trading_bot import TradingBot
from .fusion_engine import SignalFusionEngine
from .sentiment_analyzer import SentimentAnalyzer
from .portfolio_manager import PortfolioManager
from .execution_module import ExecutionModule
from .data_ingestor import (
    CoinGeckoPriceFeed, NewsDataSentimentSource, StaticSentimentSource, TTLCache
)
from .models import AutoTradingConfig, RiskLevel, TradingSignal
from .error_logger import error_logger
from .config import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

def build_trading_bot() -> TradingBot:
    """Wire the services once and inject them into their dependents"""
    strategy = AutoTradingConfig(
        risk_tolerance=RiskLevel(settings.risk_tolerance.upper()),
        max_position_size=settings.max_position_size,
        stop_loss_pct=settings.stop_loss_pct,
        take_profit_pct=settings.take_profit_pct,
        min_confidence=settings.min_confidence,
        max_daily_trades=settings.max_daily_trades,
        max_portfolio_risk=settings.max_portfolio_risk,
        symbols=settings.symbols,
        enabled=settings.trading_enabled
    )

    cache = TTLCache(ttl=settings.cache_ttl, max_entries=settings.cache_max_entries)
    sources = [
        NewsDataSentimentSource(cache=cache) if settings.newsdata_api_key
        else StaticSentimentSource("news"),
        StaticSentimentSource("twitter"),
        StaticSentimentSource("reddit"),
        StaticSentimentSource("telegram"),
    ]

    fusion_engine = SignalFusionEngine(
        sentiment_analyzer=SentimentAnalyzer(sources),
        stop_loss_pct=strategy.stop_loss_pct,
        take_profit_pct=strategy.take_profit_pct
    )
    portfolio_manager = PortfolioManager(
        strategy=strategy,
        execution_module=ExecutionModule(settings.initial_cash, settings.trading_fee_rate)
    )
    return TradingBot(fusion_engine, portfolio_manager, CoinGeckoPriceFeed())

bot_factory = build_trading_bot
trading_bot: Optional[TradingBot] = None

@asynccontextmanager
async def lifespan(app: FastAPI):
    global trading_bot
    trading_bot = bot_factory()
    logger.info("Trading bot initialized")
    yield
    if trading_bot and trading_bot.is_running:
        await trading_bot.stop()
    logger.info("Trading bot stopped")

app = FastAPI(
    title="Signal Fusion Trading API",
    description="Fused technical and sentiment signals with risk-bounded paper execution",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

class StartBotRequest(BaseModel):
    symbols: Optional[List[str]] = None
    enable_trading: bool = True

def _bot() -> TradingBot:
    if not trading_bot:
        raise HTTPException(status_code=500, detail="Trading bot not initialized")
    return trading_bot

@app.get("/healthz")
async def healthz():
    return {"status": "ok"}

@app.get("/api/status")
async def get_bot_status():
    """Current bot status, portfolio summary and risk metrics"""
    return _bot().get_status()

@app.post("/api/start")
async def start_bot(request: StartBotRequest):
    bot = _bot()
    if bot.is_running:
        return {"status": "already_running", "message": "Trading bot is already running"}

    updates: Dict[str, Any] = {"enabled": request.enable_trading}
    if request.symbols:
        updates["symbols"] = [symbol.upper() for symbol in request.symbols]
    bot.update_config(updates)
    bot.start_background()

    return {
        "status": "starting",
        "message": "Trading bot is starting",
        "symbols": bot.strategy.symbols,
        "trading_enabled": bot.strategy.enabled
    }

@app.post("/api/stop")
async def stop_bot():
    await _bot().stop()
    return {"status": "stopped", "message": "Trading bot stopped"}

@app.get("/api/signals", response_model=List[TradingSignal])
async def get_signals(limit: int = 10):
    if limit < 0:
        raise HTTPException(status_code=400, detail="limit must be non-negative")
    return _bot().get_recent_signals(limit)

@app.post("/api/signals/{symbol}", response_model=TradingSignal)
async def generate_signal(symbol: str):
    """Score a symbol on demand"""
    bot = _bot()
    try:
        return await bot.generate_signal(symbol)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))

@app.post("/api/signals/{signal_id}/execute")
async def execute_signal(signal_id: str):
    """Submit a recorded signal to the risk manager"""
    bot = _bot()
    signal = next((s for s in bot.get_recent_signals(settings.signal_history_size) if s.id == signal_id), None)
    if signal is None:
        raise HTTPException(status_code=404, detail=f"Signal {signal_id} not found")
    return bot.evaluate_for_execution(signal)

@app.get("/api/predictions")
async def get_all_predictions():
    return _bot().fusion_engine.get_all_predictions()

@app.get("/api/predictions/{symbol}")
async def get_prediction(symbol: str):
    prediction = _bot().fusion_engine.get_prediction(symbol)
    if prediction is None:
        raise HTTPException(status_code=404, detail=f"No prediction found for {symbol}")
    return prediction

@app.get("/api/portfolio")
async def get_portfolio():
    return _bot().get_portfolio_snapshot()

@app.get("/api/trades")
async def get_trade_history():
    return _bot().get_portfolio_snapshot().trade_history

@app.get("/api/risk-metrics")
async def get_risk_metrics():
    return _bot().portfolio_manager.get_risk_metrics()

@app.get("/api/strategy")
async def get_strategy_config():
    return _bot().strategy

@app.put("/api/strategy")
async def update_strategy(updates: Dict[str, Any]):
    """Merge a partial strategy update"""
    try:
        return _bot().update_config(updates)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))

@app.get("/api/errors")
async def get_errors(limit: int = 20):
    return {
        "errors": error_logger.get_recent_errors(limit),
        "stats": error_logger.get_error_stats()
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
