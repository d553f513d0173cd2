import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence
from datetime import datetime
from .data_ingestor import PriceFeed
from .fusion_engine import SignalFusionEngine
from .portfolio_manager import PortfolioManager
from .models import (
    AutoTradingConfig, ExecutionOutcome, MarketConditions, Portfolio,
    PricePoint, TradingAction, TradingSignal
)
from .error_logger import error_logger as default_error_logger, ErrorLogger, ErrorType
from .config import settings

logger = logging.getLogger(__name__)

class TradingBot:
    """
    Trading Orchestrator: on every tick, scores each watch-list symbol
    concurrently, then hands actionable signals to the portfolio manager
    one at a time. Ticks never overlap.
    """

    def __init__(
        self,
        fusion_engine: SignalFusionEngine,
        portfolio_manager: PortfolioManager,
        price_feed: PriceFeed,
        loop_interval: float = settings.loop_interval,
        tick_timeout: float = settings.tick_timeout,
        error_log: Optional[ErrorLogger] = None
    ):
        self.fusion_engine = fusion_engine
        self.portfolio_manager = portfolio_manager
        self.price_feed = price_feed
        self.loop_interval = loop_interval
        self.tick_timeout = tick_timeout
        self.error_logger = error_log or default_error_logger
        self.fusion_engine.stop_loss_pct = self.strategy.stop_loss_pct
        self.fusion_engine.take_profit_pct = self.strategy.take_profit_pct

        self.is_running = False
        self.tick_count = 0
        self.last_tick: Optional[datetime] = None
        self.last_analysis: Dict[str, Dict[str, Any]] = {}
        self._tick_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def strategy(self) -> AutoTradingConfig:
        return self.portfolio_manager.strategy

    async def start(self):
        """Run ticks until stopped"""
        if self.is_running:
            logger.warning("Trading bot is already running")
            return

        self.is_running = True
        logger.info(f"Starting trading bot for {self.strategy.symbols}")

        try:
            while self.is_running:
                await self.run_tick()
                await asyncio.sleep(self.loop_interval)
        except asyncio.CancelledError:
            logger.info("Trading loop cancelled")
            raise
        finally:
            self.is_running = False

    def start_background(self) -> asyncio.Task:
        """Schedule the loop on the running event loop"""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.start())
        return self._task

    async def stop(self):
        logger.info("Stopping trading bot...")
        self.is_running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

    async def run_tick(self) -> Dict[str, ExecutionOutcome]:
        """One bounded trading cycle; skipped if the previous one is still running"""
        if self._tick_lock.locked():
            logger.warning("Previous tick still running, skipping")
            return {}

        async with self._tick_lock:
            try:
                return await asyncio.wait_for(self._trading_cycle(), timeout=self.tick_timeout)
            except asyncio.TimeoutError:
                self.error_logger.log_error(
                    ErrorType.SYSTEM_ERROR,
                    f"Trading tick exceeded {self.tick_timeout}s and was cancelled",
                    {"tick": self.tick_count},
                    "high"
                )
                return {}
            finally:
                self.tick_count += 1
                self.last_tick = datetime.now()

    async def _trading_cycle(self) -> Dict[str, ExecutionOutcome]:
        symbols = [symbol.upper() for symbol in self.strategy.symbols]
        logger.info(f"Starting trading cycle for {symbols}")

        signals = await asyncio.gather(*(self._analyze_symbol(symbol) for symbol in symbols))

        prices = {signal.symbol: signal.price for signal in signals if signal is not None}
        for execution in self.portfolio_manager.check_exit_levels(prices):
            logger.info(f"Exit executed: {execution.symbol} {execution.order_type.value} @ ${execution.price:.4f}")

        outcomes = {}
        for signal in signals:
            if signal is None:
                continue
            if signal.action in (TradingAction.HOLD, TradingAction.SWAP):
                logger.info(f"{signal.symbol}: {signal.action.value} signal - {signal.reasoning[-1]}")
                continue
            if not self.strategy.enabled:
                logger.info(f"{signal.symbol}: auto-trading disabled, {signal.action.value} signal not executed")
                continue

            outcome = self.portfolio_manager.evaluate_for_execution(signal)
            outcomes[signal.symbol] = outcome
            self.last_analysis[signal.symbol]["outcome"] = outcome.reason

        logger.info("Trading cycle completed")
        return outcomes

    async def _analyze_symbol(self, symbol: str) -> Optional[TradingSignal]:
        try:
            price_history = await self.price_feed.get_price_history(symbol)
        except Exception as e:
            self.error_logger.log_error(
                ErrorType.SOURCE_UNAVAILABLE,
                f"Price feed failed for {symbol}: {e}",
                {"symbol": symbol, "error": str(e)},
                "medium"
            )
            return None

        if not price_history:
            logger.warning(f"No price history for {symbol}, skipping")
            return None

        try:
            signal = await self.fusion_engine.generate_signal(symbol, price_history)
        except Exception as e:
            self.error_logger.log_error(
                ErrorType.SYSTEM_ERROR,
                f"Error analyzing {symbol}: {e}",
                {"symbol": symbol, "error": str(e)},
                "high"
            )
            return None

        self.last_analysis[symbol] = {
            "signal": signal.action.value,
            "confidence": signal.confidence,
            "risk_level": signal.risk_level.value,
            "reasoning": list(signal.reasoning),
            "price": signal.price,
            "timestamp": signal.timestamp.isoformat(),
            "outcome": None
        }
        return signal

    async def generate_signal(
        self,
        symbol: str,
        price_history: Optional[Sequence[PricePoint]] = None,
        market_conditions: Optional[MarketConditions] = None
    ) -> TradingSignal:
        """Score one symbol on demand, fetching its history when none is given"""
        if price_history is None:
            price_history = await self.price_feed.get_price_history(symbol)
        return await self.fusion_engine.generate_signal(symbol, price_history, market_conditions)

    def evaluate_for_execution(self, signal: TradingSignal) -> ExecutionOutcome:
        return self.portfolio_manager.evaluate_for_execution(signal)

    def get_portfolio_snapshot(self) -> Portfolio:
        return self.portfolio_manager.get_portfolio_snapshot()

    def get_recent_signals(self, limit: int = 10) -> List[TradingSignal]:
        return self.fusion_engine.get_recent_signals(limit)

    def update_config(self, updates: Dict[str, Any]) -> AutoTradingConfig:
        """Merge ``updates`` into the strategy and point the engine's price targets at it"""
        strategy = self.portfolio_manager.update_strategy(updates)
        self.fusion_engine.stop_loss_pct = strategy.stop_loss_pct
        self.fusion_engine.take_profit_pct = strategy.take_profit_pct
        return strategy

    def get_status(self) -> Dict[str, Any]:
        portfolio = self.get_portfolio_snapshot()
        return {
            "is_running": self.is_running,
            "tick_count": self.tick_count,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "portfolio": portfolio.model_dump(mode="json", exclude={"trade_history"}),
            "risk_metrics": self.portfolio_manager.get_risk_metrics(),
            "strategy": self.strategy.model_dump(mode="json"),
            "last_analysis": dict(self.last_analysis)
        }
