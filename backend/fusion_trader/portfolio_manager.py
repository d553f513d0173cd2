import logging
import threading
from typing import Any, Dict, List, Optional
from .models import (
    AutoTradingConfig, ExecutionOutcome, OrderSide, OrderType, Portfolio,
    TradeExecution, TradingAction, TradingSignal
)
from .risk_manager import RiskManager
from .execution_module import ExecutionModule

logger = logging.getLogger(__name__)

class PortfolioManager:
    """
    Portfolio & Risk Manager: the only stateful part of the core. Every
    admit-size-execute-update sequence runs under one lock, so two signals
    for the same symbol can never both pass the open-position check.
    """

    def __init__(
        self,
        strategy: Optional[AutoTradingConfig] = None,
        risk_manager: Optional[RiskManager] = None,
        execution_module: Optional[ExecutionModule] = None
    ):
        self.execution_module = execution_module or ExecutionModule()
        self.risk_manager = risk_manager or RiskManager(
            strategy=strategy,
            fee_rate=self.execution_module.fee_rate
        )
        if strategy is not None:
            self.risk_manager.strategy = strategy
        self.active_positions: Dict[str, TradeExecution] = {}
        self._lock = threading.RLock()

    @property
    def strategy(self) -> AutoTradingConfig:
        return self.risk_manager.strategy

    def evaluate_for_execution(self, signal: TradingSignal) -> ExecutionOutcome:
        """Admit, size and execute ``signal``, or report why it was rejected"""
        with self._lock:
            portfolio = self.execution_module.portfolio
            decision = self.risk_manager.validate_trade(signal, portfolio, self.active_positions.keys())
            if not decision.approved:
                logger.info(f"{signal.symbol}: trade rejected - {decision.reason}")
                return ExecutionOutcome(executed=False, reason=decision.reason)

            side = OrderSide.BUY if signal.action == TradingAction.BUY else OrderSide.SELL
            stop_loss, take_profit = self._protective_levels(signal)

            execution = self.execution_module.execute(
                symbol=signal.symbol,
                side=side,
                amount=decision.size,
                price=signal.price,
                stop_loss=stop_loss,
                take_profit=take_profit,
                signal_id=signal.id
            )
            self.risk_manager.record_trade(execution)

            if side == OrderSide.BUY:
                self.active_positions[execution.symbol] = execution
            elif execution.symbol not in portfolio.positions:
                self.active_positions.pop(execution.symbol, None)

            return ExecutionOutcome(executed=True, reason="Trade executed", execution=execution)

    def close_position(
        self,
        symbol: str,
        price: float,
        order_type: OrderType = OrderType.MARKET
    ) -> ExecutionOutcome:
        """Sell the whole position in ``symbol`` and release its open-position slot"""
        symbol = symbol.upper()
        with self._lock:
            position = self.execution_module.portfolio.positions.get(symbol)
            if position is None:
                self.active_positions.pop(symbol, None)
                return ExecutionOutcome(executed=False, reason=f"No {symbol} position to close")

            execution = self.execution_module.execute(
                symbol=symbol,
                side=OrderSide.SELL,
                amount=position.amount,
                price=price,
                order_type=order_type
            )
            self.active_positions.pop(symbol, None)
            logger.info(f"{symbol}: position closed @ ${price:.4f}, realized P&L ${execution.realized_pnl:.2f}")
            return ExecutionOutcome(executed=True, reason="Position closed", execution=execution)

    def check_exit_levels(self, prices: Dict[str, float]) -> List[TradeExecution]:
        """Mark positions to market and close those that hit their stop-loss or take-profit"""
        executions = []
        with self._lock:
            self.execution_module.mark_to_market(prices)
            for symbol, position in list(self.execution_module.portfolio.positions.items()):
                price = prices.get(symbol)
                if price is None:
                    continue
                if position.stop_loss is not None and price <= position.stop_loss:
                    logger.warning(f"{symbol}: stop-loss hit at ${price:.4f} (stop ${position.stop_loss:.4f})")
                    outcome = self.close_position(symbol, price, OrderType.STOP_LOSS)
                elif position.take_profit is not None and price >= position.take_profit:
                    logger.info(f"{symbol}: take-profit hit at ${price:.4f} (target ${position.take_profit:.4f})")
                    outcome = self.close_position(symbol, price, OrderType.LIMIT)
                else:
                    continue
                executions.append(outcome.execution)
        return executions

    def update_prices(self, prices: Dict[str, float]):
        with self._lock:
            self.execution_module.mark_to_market(prices)

    def get_portfolio_snapshot(self) -> Portfolio:
        """Deep copy of the portfolio; never the live object"""
        with self._lock:
            return self.execution_module.portfolio.model_copy(deep=True)

    def get_active_positions(self) -> Dict[str, TradeExecution]:
        with self._lock:
            return dict(self.active_positions)

    def get_risk_metrics(self) -> Dict[str, Any]:
        with self._lock:
            metrics = self.risk_manager.get_risk_metrics(self.execution_module.portfolio)
            metrics["active_positions"] = sorted(self.active_positions)
            return metrics

    def update_strategy(self, updates: Dict[str, Any]) -> AutoTradingConfig:
        """Merge a partial strategy update; invalid values raise and leave the old config in place"""
        with self._lock:
            self.risk_manager.strategy = self.risk_manager.strategy.merged(updates)
            logger.info(f"Strategy configuration updated: {self.risk_manager.strategy.model_dump()}")
            return self.risk_manager.strategy

    def reset(self):
        with self._lock:
            self.execution_module.reset()
            self.active_positions.clear()
            self.risk_manager.daily_trades = []

    def _protective_levels(self, signal: TradingSignal):
        # always from the live strategy, so config updates apply to the next fill
        stop_loss_pct = self.strategy.stop_loss_pct
        take_profit_pct = self.strategy.take_profit_pct
        if signal.action == TradingAction.BUY:
            return signal.price * (1 - stop_loss_pct), signal.price * (1 + take_profit_pct)
        return signal.price * (1 + stop_loss_pct), signal.price * (1 - take_profit_pct)
