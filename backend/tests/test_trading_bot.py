"""
Tests for the TradingBot orchestrator tick.
"""

import asyncio

import pytest

from fusion_trader.data_ingestor import PriceFeed, StaticPriceFeed
from fusion_trader.error_logger import ErrorType
from fusion_trader.execution_module import ExecutionModule
from fusion_trader.fusion_engine import SignalFusionEngine
from fusion_trader.models import AutoTradingConfig, TradingAction
from fusion_trader.portfolio_manager import PortfolioManager
from fusion_trader.trading_bot import TradingBot


class BrokenPriceFeed(PriceFeed):

    async def get_price_history(self, symbol):
        raise ConnectionError("feed offline")


class SlowPriceFeed(PriceFeed):

    async def get_price_history(self, symbol):
        await asyncio.sleep(1.0)
        return []


@pytest.fixture
def make_bot(make_analyzer, rising_history, flat_history, error_log):
    def _make(enabled=True, symbols=("BTC", "ETH"), price_feed=None, sentiment=1.0, **kwargs):
        feed = price_feed or StaticPriceFeed({"BTC": rising_history, "ETH": flat_history})
        engine = SignalFusionEngine(sentiment_analyzer=make_analyzer(sentiment), error_log=error_log)
        manager = PortfolioManager(
            strategy=AutoTradingConfig(symbols=list(symbols), enabled=enabled),
            execution_module=ExecutionModule(10000.0, fee_rate=0.0)
        )
        kwargs.setdefault("loop_interval", 10.0)
        return TradingBot(engine, manager, feed, error_log=error_log, **kwargs)
    return _make


class TestTradingTick:

    def test_tick_executes_actionable_signal(self, make_bot):
        bot = make_bot()
        outcomes = asyncio.run(bot.run_tick())

        assert set(outcomes) == {"BTC"}
        assert outcomes["BTC"].executed
        assert bot.tick_count == 1
        assert "BTC" in bot.get_portfolio_snapshot().positions
        assert bot.last_analysis["BTC"]["outcome"] == "Trade executed"
        assert bot.last_analysis["ETH"]["signal"] == TradingAction.HOLD.value

    def test_signals_recorded_for_every_symbol(self, make_bot):
        bot = make_bot()
        asyncio.run(bot.run_tick())

        assert {s.symbol for s in bot.get_recent_signals()} == {"BTC", "ETH"}

    def test_disabled_strategy_generates_without_trading(self, make_bot):
        bot = make_bot(enabled=False)
        outcomes = asyncio.run(bot.run_tick())

        assert outcomes == {}
        assert bot.get_recent_signals(1)
        assert bot.get_portfolio_snapshot().trade_history == []

    def test_second_tick_respects_open_position(self, make_bot):
        bot = make_bot(symbols=("BTC",))

        async def two_ticks():
            await bot.run_tick()
            return await bot.run_tick()

        outcomes = asyncio.run(two_ticks())

        assert not outcomes["BTC"].executed
        assert outcomes["BTC"].reason == "BTC already has an open position"
        assert bot.tick_count == 2

    def test_strategy_update_moves_protective_levels(self, make_bot, rising_history):
        bot = make_bot(symbols=("BTC",))
        bot.update_config({"stop_loss_pct": 0.10, "take_profit_pct": 0.30})

        outcomes = asyncio.run(bot.run_tick())
        price = rising_history[-1].price

        assert outcomes["BTC"].executed
        position = bot.get_portfolio_snapshot().positions["BTC"]
        assert position.stop_loss == pytest.approx(price * 0.90)
        assert position.take_profit == pytest.approx(price * 1.30)
        signal = bot.get_recent_signals(1)[0]
        assert signal.stop_loss == pytest.approx(price * 0.90)
        assert signal.take_profit == pytest.approx(price * 1.30)

    def test_routine_outcomes_are_not_logged_as_errors(self, make_bot, error_log):
        bot = make_bot(symbols=("BTC", "ETH"))

        async def two_ticks():
            await bot.run_tick()
            return await bot.run_tick()

        outcomes = asyncio.run(two_ticks())

        assert not outcomes["BTC"].executed
        assert error_log.get_recent_errors() == []

    def test_unknown_symbol_is_skipped(self, make_bot):
        bot = make_bot(symbols=("XRP",))
        assert asyncio.run(bot.run_tick()) == {}
        assert bot.get_recent_signals() == []

    def test_price_feed_failure_is_logged(self, make_bot, error_log):
        bot = make_bot(price_feed=BrokenPriceFeed())
        assert asyncio.run(bot.run_tick()) == {}

        errors = error_log.get_recent_errors()
        assert errors
        assert all(e.error_type == ErrorType.SOURCE_UNAVAILABLE for e in errors)

    def test_tick_timeout(self, make_bot, error_log):
        bot = make_bot(price_feed=SlowPriceFeed(), tick_timeout=0.05)
        assert asyncio.run(bot.run_tick()) == {}

        assert bot.tick_count == 1
        assert error_log.get_recent_errors()[0].error_type == ErrorType.SYSTEM_ERROR

    def test_overlapping_tick_is_skipped(self, make_bot):
        bot = make_bot(price_feed=SlowPriceFeed(), tick_timeout=0.2)

        async def overlapping():
            first = asyncio.create_task(bot.run_tick())
            await asyncio.sleep(0.01)
            second = await bot.run_tick()
            await first
            return second

        assert asyncio.run(overlapping()) == {}
        assert bot.tick_count == 1


class TestLifecycle:

    def test_start_and_stop(self, make_bot):
        bot = make_bot()

        async def run_briefly():
            bot.start_background()
            await asyncio.sleep(0.1)
            running = bot.is_running
            await bot.stop()
            return running

        assert asyncio.run(run_briefly()) is True
        assert bot.is_running is False
        assert bot.tick_count >= 1

    def test_update_config_passthrough(self, make_bot):
        bot = make_bot()
        bot.update_config({"symbols": ["SOL"], "enabled": False})

        assert bot.strategy.symbols == ["SOL"]
        assert bot.strategy.enabled is False

    def test_status(self, make_bot):
        bot = make_bot()
        asyncio.run(bot.run_tick())
        status = bot.get_status()

        assert status["is_running"] is False
        assert status["tick_count"] == 1
        assert "trade_history" not in status["portfolio"]
        assert status["risk_metrics"]["daily_trades_count"] == 1
        assert status["strategy"]["symbols"] == ["BTC", "ETH"]
