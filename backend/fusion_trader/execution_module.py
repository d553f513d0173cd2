from typing import Dict, List, Optional, Tuple
from datetime import datetime
import logging
from .models import (
    OrderSide, OrderStatus, OrderType, PerformanceMetrics, Portfolio,
    Position, TradeExecution
)
from .config import settings

logger = logging.getLogger(__name__)

# Amounts below this are treated as a fully closed position
DUST_AMOUNT = 1e-12

class ExecutionModule:
    """
    Execution Module component - fills orders against an in-memory paper
    portfolio (cash + positions). Fills are immediate at the requested price
    and charge ``fee_rate`` of the notional in cash.

    Not thread-safe on its own; PortfolioManager serializes access.
    """

    def __init__(
        self,
        initial_cash: float = settings.initial_cash,
        fee_rate: float = settings.trading_fee_rate,
        initial_positions: Optional[Dict[str, Tuple[float, float]]] = None
    ):
        if initial_cash < 0:
            raise ValueError("initial_cash must be non-negative")
        if fee_rate < 0:
            raise ValueError("fee_rate must be non-negative")

        self.initial_cash = initial_cash
        self.fee_rate = fee_rate
        self.initial_positions = dict(initial_positions or {})
        self.portfolio = self._new_portfolio()

    def _new_portfolio(self) -> Portfolio:
        positions = {}
        for symbol, (amount, average_price) in self.initial_positions.items():
            positions[symbol.upper()] = Position(
                symbol=symbol.upper(),
                amount=amount,
                average_price=average_price,
                current_price=average_price
            )
        portfolio = Portfolio(cash=self.initial_cash, total_value=self.initial_cash, positions=positions)
        self._starting_value = self.initial_cash + sum(
            amount * average_price for amount, average_price in self.initial_positions.values()
        )
        self._recalculate(portfolio)
        return portfolio

    def reset(self):
        self.portfolio = self._new_portfolio()
        logger.info("Paper portfolio reset")

    def execute(
        self,
        symbol: str,
        side: OrderSide,
        amount: float,
        price: float,
        order_type: OrderType = OrderType.MARKET,
        stop_loss: Optional[float] = None,
        take_profit: Optional[float] = None,
        signal_id: Optional[str] = None
    ) -> TradeExecution:
        """Fill an order immediately and apply it to the portfolio"""
        if amount <= 0:
            raise ValueError(f"Order amount must be positive, got {amount}")
        if price <= 0:
            raise ValueError(f"Order price must be positive, got {price}")

        symbol = symbol.upper()
        fees = amount * price * self.fee_rate
        realized_pnl = 0.0

        if side == OrderSide.BUY:
            cost = amount * price + fees
            if cost > self.portfolio.cash + 1e-9:
                raise ValueError(f"Insufficient cash for {symbol}: need ${cost:.2f}, have ${self.portfolio.cash:.2f}")
            self.portfolio.cash -= cost

            position = self.portfolio.positions.get(symbol)
            if position is None:
                position = Position(symbol=symbol, amount=0.0, average_price=0.0, current_price=price)
                self.portfolio.positions[symbol] = position

            total_amount = position.amount + amount
            position.average_price = (position.amount * position.average_price + amount * price) / total_amount
            position.amount = total_amount
            position.current_price = price
            if stop_loss is not None:
                position.stop_loss = stop_loss
            if take_profit is not None:
                position.take_profit = take_profit
        else:
            position = self.portfolio.positions.get(symbol)
            if position is None or position.amount + DUST_AMOUNT < amount:
                held = position.amount if position else 0.0
                raise ValueError(f"Insufficient {symbol} position: need {amount}, have {held}")

            amount = min(amount, position.amount)
            self.portfolio.cash += amount * price - fees
            realized_pnl = (price - position.average_price) * amount
            position.current_price = price
            position.amount -= amount
            if position.amount <= DUST_AMOUNT:
                del self.portfolio.positions[symbol]

        execution = TradeExecution(
            order_type=order_type,
            symbol=symbol,
            side=side,
            amount=amount,
            price=price,
            status=OrderStatus.FILLED,
            fees=fees,
            realized_pnl=realized_pnl,
            stop_loss=stop_loss,
            take_profit=take_profit,
            signal_id=signal_id
        )

        self.portfolio.trade_history.append(execution)
        performance = self.portfolio.performance
        performance.realized_pnl += realized_pnl
        performance.fees_paid += fees
        performance.trade_count += 1
        self._recalculate(self.portfolio)

        logger.info(f"Paper trade executed: {side.value} {amount:.6f} {symbol} @ ${price:.4f} (fees ${fees:.4f})")
        return execution

    def mark_to_market(self, prices: Dict[str, float]):
        """Refresh position prices and derived values"""
        for symbol, price in prices.items():
            if price is None or price <= 0:
                raise ValueError(f"Invalid price for {symbol}: {price}")
            position = self.portfolio.positions.get(symbol.upper())
            if position is not None:
                position.current_price = price
        self._recalculate(self.portfolio)

    def get_trade_history(self) -> List[TradeExecution]:
        return list(self.portfolio.trade_history)

    def _recalculate(self, portfolio: Portfolio):
        unrealized = 0.0
        for position in portfolio.positions.values():
            position.current_value = position.amount * position.current_price
            position.unrealized_pnl = (position.current_price - position.average_price) * position.amount
            cost_basis = position.average_price * position.amount
            position.unrealized_pnl_pct = position.unrealized_pnl / cost_basis * 100 if cost_basis else 0.0
            unrealized += position.unrealized_pnl

        portfolio.total_value = portfolio.cash + sum(p.current_value for p in portfolio.positions.values())

        performance = portfolio.performance
        performance.unrealized_pnl = unrealized
        performance.total_pnl = portfolio.total_value - self._starting_value
        performance.total_return_pct = (
            performance.total_pnl / self._starting_value * 100 if self._starting_value else 0.0
        )
        portfolio.last_updated = datetime.now()
