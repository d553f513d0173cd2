from typing import Callable, Collection, Dict, Optional, Any
from datetime import datetime
import logging
from .models import (
    AdmissionDecision, AutoTradingConfig, Portfolio, RiskLevel,
    TradeExecution, TradingAction, TradingSignal
)
from .config import settings

logger = logging.getLogger(__name__)

RISK_MULTIPLIERS = {
    RiskLevel.LOW: 0.5,
    RiskLevel.MEDIUM: 0.75,
    RiskLevel.HIGH: 1.0,
}

# Each open position contributes (position value / portfolio value) * this factor
POSITION_RISK_FACTOR = 0.1

class RiskManager:
    """
    Risk Manager component - decides whether a signal may become a trade
    and how large that trade may be. Holds the daily trade counter; never
    mutates the portfolio itself.
    """

    def __init__(
        self,
        strategy: Optional[AutoTradingConfig] = None,
        fee_rate: float = settings.trading_fee_rate,
        clock: Callable[[], datetime] = datetime.now
    ):
        self.strategy = strategy or AutoTradingConfig()
        self.fee_rate = fee_rate
        self._clock = clock
        self.daily_trades = []
        self.last_reset_date = self._clock().date()

    @property
    def trades_today(self) -> int:
        self._reset_daily_counters_if_needed()
        return len(self.daily_trades)

    def validate_trade(
        self,
        signal: TradingSignal,
        portfolio: Portfolio,
        active_symbols: Collection[str]
    ) -> AdmissionDecision:
        """
        Admission checks (first failure wins) followed by sizing.
        The returned decision carries the approved amount.
        """
        decision = self.check_admission(signal, portfolio, active_symbols)
        if not decision.approved:
            return decision

        size = self.calculate_position_size(signal, portfolio)
        if size <= 0:
            return AdmissionDecision(approved=False, reason="Calculated position size is zero")

        if signal.action == TradingAction.BUY:
            affordable = portfolio.cash / (signal.price * (1 + self.fee_rate))
            if affordable <= 0:
                return AdmissionDecision(
                    approved=False,
                    reason=f"Insufficient funds (have ${portfolio.cash:.2f})"
                )
            if size > affordable:
                logger.info(f"{signal.symbol}: size reduced from {size:.6f} to affordable {affordable:.6f}")
                size = affordable
        else:
            position = portfolio.positions.get(signal.symbol)
            if position is None or position.amount <= 0:
                return AdmissionDecision(approved=False, reason=f"No {signal.symbol} position to sell")
            size = min(size, position.amount)

        logger.info(f"Trade validated: {signal.symbol} {signal.action.value} {size:.6f} @ ${signal.price:.4f}")
        return AdmissionDecision(approved=True, reason="Trade approved", size=size)

    def check_admission(
        self,
        signal: TradingSignal,
        portfolio: Portfolio,
        active_symbols: Collection[str]
    ) -> AdmissionDecision:
        if signal.action not in (TradingAction.BUY, TradingAction.SELL):
            return AdmissionDecision(approved=False, reason=f"No actionable signal ({signal.action.value})")

        if self.trades_today >= self.strategy.max_daily_trades:
            return AdmissionDecision(
                approved=False,
                reason=f"Daily trade limit reached ({self.strategy.max_daily_trades})"
            )

        if signal.symbol in active_symbols:
            return AdmissionDecision(approved=False, reason=f"{signal.symbol} already has an open position")

        if signal.confidence < self.strategy.min_confidence:
            return AdmissionDecision(
                approved=False,
                reason=f"Signal confidence too low ({signal.confidence:.2f} < {self.strategy.min_confidence:.2f})"
            )

        portfolio_risk = self.calculate_portfolio_risk(portfolio)
        if portfolio_risk >= self.strategy.max_portfolio_risk:
            return AdmissionDecision(
                approved=False,
                reason=f"Portfolio risk limit reached ({portfolio_risk:.4f} >= {self.strategy.max_portfolio_risk:.4f})"
            )

        return AdmissionDecision(approved=True, reason="Admission checks passed")

    def calculate_position_size(self, signal: TradingSignal, portfolio: Portfolio) -> float:
        """(portfolio value * max position fraction / price) * confidence * risk multiplier"""
        if portfolio.total_value <= 0:
            return 0.0
        multiplier = RISK_MULTIPLIERS[self.strategy.risk_tolerance]
        base_size = portfolio.total_value * self.strategy.max_position_size / signal.price
        return base_size * signal.confidence * multiplier

    @staticmethod
    def calculate_portfolio_risk(portfolio: Portfolio) -> float:
        if portfolio.total_value <= 0:
            return 0.0
        return sum(
            position.current_value / portfolio.total_value * POSITION_RISK_FACTOR
            for position in portfolio.positions.values()
        )

    def record_trade(self, execution: TradeExecution):
        """Count an executed trade against today's limit"""
        self._reset_daily_counters_if_needed()
        self.daily_trades.append(execution)
        logger.info(
            f"Trade recorded: {execution.symbol} {execution.side.value} "
            f"({len(self.daily_trades)}/{self.strategy.max_daily_trades} today)"
        )

    def get_risk_metrics(self, portfolio: Portfolio) -> Dict[str, Any]:
        """Current risk metrics and limits"""
        portfolio_risk = self.calculate_portfolio_risk(portfolio)
        trades_today = self.trades_today

        return {
            "daily_trades_count": trades_today,
            "daily_trades_limit": self.strategy.max_daily_trades,
            "portfolio_risk": portfolio_risk,
            "portfolio_risk_limit": self.strategy.max_portfolio_risk,
            "available_cash": portfolio.cash,
            "portfolio_value": portfolio.total_value,
            "max_trade_value": portfolio.total_value * self.strategy.max_position_size
                               * RISK_MULTIPLIERS[self.strategy.risk_tolerance],
            "risk_level": self._calculate_risk_level(portfolio_risk).value,
            "trading_enabled": self._is_trading_enabled(portfolio_risk, trades_today)
        }

    def _reset_daily_counters_if_needed(self):
        current_date = self._clock().date()
        if current_date > self.last_reset_date:
            self.daily_trades = []
            self.last_reset_date = current_date
            logger.info("Daily risk counters reset")

    def _calculate_risk_level(self, portfolio_risk: float) -> RiskLevel:
        usage = portfolio_risk / self.strategy.max_portfolio_risk
        if usage >= 0.8:
            return RiskLevel.HIGH
        if usage >= 0.5:
            return RiskLevel.MEDIUM
        return RiskLevel.LOW

    def _is_trading_enabled(self, portfolio_risk: float, trades_today: int) -> bool:
        return (
            self.strategy.enabled
            and trades_today < self.strategy.max_daily_trades
            and portfolio_risk < self.strategy.max_portfolio_risk
        )
