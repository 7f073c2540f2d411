import copy
import itertools
import logging
import math
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional

from core.domain import (
    AlertKind,
    Decision,
    DecisionAction,
    DrawdownResult,
    Portfolio,
    Position,
    PositionAlert,
    RiskMetrics,
    Trade,
    TradeSide,
    TradingStrategy,
)
from core.risk import metrics
from core.strategies import get_strategy

logger = logging.getLogger("TradingBot")

DEFAULT_INITIAL_BALANCE = 10000.0
DEFAULT_STRATEGY = "moderate"
HIGH_CONFIDENCE_LEVERAGE = 0.8
# Remaining quantity at or below this after a sell closes the position.
QUANTITY_EPSILON = 1e-9


class PortfolioSink(ABC):
    """Receives portfolio snapshots and executed trades for durable storage."""

    @abstractmethod
    def on_portfolio_snapshot(self, portfolio: Portfolio) -> None:
        raise NotImplementedError

    @abstractmethod
    def on_trade(self, trade: Trade) -> None:
        raise NotImplementedError


class PortfolioManager:
    """Owns one session's portfolio: gates, sizes and books trades.

    Not thread-safe. The caller must run at most one cycle at a time.
    """

    def __init__(
        self,
        strategy: Optional[TradingStrategy] = None,
        initial_balance: Optional[float] = None,
        snapshot_sink: Optional[PortfolioSink] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        balance = DEFAULT_INITIAL_BALANCE if initial_balance is None else float(initial_balance)
        if balance <= 0:
            raise ValueError(f"initial balance must be positive, got {balance}")
        self._initial_balance = balance
        self._strategy = strategy or get_strategy(DEFAULT_STRATEGY)
        self._sink = snapshot_sink
        self._clock = clock or datetime.now
        self._trade_seq = itertools.count(1)
        self._trailing_highs: Dict[str, float] = {}
        self._dca_counts: Dict[str, int] = {}
        self._portfolio = self._fresh_portfolio()

    def _fresh_portfolio(self) -> Portfolio:
        return Portfolio(cash=self._initial_balance, total_value=self._initial_balance)

    def get_portfolio(self) -> Portfolio:
        return copy.deepcopy(self._portfolio)

    def get_strategy(self) -> TradingStrategy:
        return self._strategy

    def set_strategy(self, strategy: TradingStrategy) -> None:
        self._strategy = strategy
        logger.info(f"Strategy set to {strategy.name}")

    def get_initial_balance(self) -> float:
        return self._initial_balance

    def set_initial_balance(self, balance: float) -> None:
        if balance <= 0:
            raise ValueError(f"initial balance must be positive, got {balance}")
        self._initial_balance = float(balance)

    def _find_position(self, symbol: str) -> Optional[Position]:
        for position in self._portfolio.positions:
            if position.symbol == symbol:
                return position
        return None

    def _open_rejection(self, decision: Decision) -> Optional[str]:
        strategy = self._strategy
        if len(self._portfolio.positions) >= strategy.max_positions:
            return f"max positions reached ({strategy.max_positions})"
        if decision.confidence < strategy.min_confidence:
            return f"confidence {decision.confidence:.2f} below {strategy.min_confidence:.2f}"
        if strategy.diversification and self._find_position(decision.symbol):
            return f"position already open for {decision.symbol}"
        if strategy.use_market_timing and strategy.avoid_weekends and self._clock().weekday() >= 5:
            return "weekend trading disabled"
        return None

    def can_open_position(self, decision: Decision) -> bool:
        return self._open_rejection(decision) is None

    def calculate_position_size(self, decision: Decision, current_price: float) -> float:
        if current_price <= 0:
            raise ValueError(f"price must be positive, got {current_price}")
        risk_amount = self._portfolio.cash * (self._strategy.risk_per_trade / 100)
        return math.floor(risk_amount / current_price * 100) / 100

    def execute_trade(self, decision: Decision, current_price: float, quantity: float) -> Optional[Trade]:
        if decision.action == DecisionAction.HOLD:
            return None
        if current_price <= 0:
            raise ValueError(f"price must be positive, got {current_price}")

        if decision.action == DecisionAction.BUY:
            trade = self._buy(decision, current_price, quantity)
        else:
            trade = self._sell(decision, current_price, quantity)
        if trade is None:
            return None

        self._portfolio.trades.insert(0, trade)
        logger.info(
            f"{trade.side.value} {trade.quantity} {trade.symbol} @ {trade.price} "
            f"(confidence {trade.confidence:.2f}, cash {self._portfolio.cash:.2f})"
        )
        self._emit("on_trade", trade)
        self._emit("on_portfolio_snapshot", self.get_portfolio())
        return trade

    def _buy(self, decision: Decision, price: float, quantity: float) -> Optional[Trade]:
        reason = self._open_rejection(decision)
        if reason:
            logger.warning(f"BUY {decision.symbol} rejected: {reason}")
            return None
        if quantity <= 0:
            logger.warning(f"BUY {decision.symbol} rejected: quantity {quantity}")
            return None
        cost = quantity * price
        if cost > self._portfolio.cash:
            logger.warning(
                f"BUY {decision.symbol} rejected: cost {cost:.2f} exceeds cash {self._portfolio.cash:.2f}"
            )
            return None

        existing = self._find_position(decision.symbol)
        strategy = self._strategy
        if existing and strategy.use_dca:
            merges = self._dca_counts.get(decision.symbol, 0)
            if strategy.dca_levels > 0 and merges >= strategy.dca_levels:
                logger.warning(f"BUY {decision.symbol} rejected: DCA levels exhausted ({merges})")
                return None
            self._portfolio.cash -= cost
            total_quantity = existing.quantity + quantity
            existing.entry_price = (
                existing.entry_price * existing.quantity + price * quantity
            ) / total_quantity
            existing.quantity = total_quantity
            existing.current_price = price
            existing.unrealized_pnl = (price - existing.entry_price) * total_quantity
            existing.stop_loss = self._merged_stop_loss(existing.stop_loss, decision.stop_loss)
            existing.take_profit = decision.take_profit
            self._dca_counts[decision.symbol] = merges + 1
        else:
            self._portfolio.cash -= cost
            if decision.confidence > HIGH_CONFIDENCE_LEVERAGE:
                leverage = strategy.max_leverage
            else:
                leverage = strategy.max_leverage // 2
            self._portfolio.positions.append(
                Position(
                    symbol=decision.symbol,
                    quantity=quantity,
                    entry_price=price,
                    current_price=price,
                    leverage=min(strategy.max_leverage, leverage),
                    entry_time=self._now_ms(),
                    stop_loss=decision.stop_loss,
                    take_profit=decision.take_profit,
                )
            )
            if strategy.use_trailing_stop:
                self._trailing_highs[decision.symbol] = price

        return self._record(decision, TradeSide.BUY, quantity, price)

    def _merged_stop_loss(self, current: Optional[float], incoming: Optional[float]) -> Optional[float]:
        """Stop-loss after a DCA merge.

        With a trailing stop the ratcheted level is kept unless the decision
        brings a higher one; otherwise the decision's stop replaces it.
        """
        if not self._strategy.use_trailing_stop:
            return incoming
        levels = [level for level in (current, incoming) if level is not None]
        return max(levels) if levels else None

    def _sell(self, decision: Decision, price: float, quantity: float) -> Optional[Trade]:
        position = self._find_position(decision.symbol)
        if position is None:
            logger.warning(f"SELL {decision.symbol} rejected: no open position")
            return None
        sell_quantity = min(quantity, position.quantity)
        if sell_quantity <= 0:
            logger.warning(f"SELL {decision.symbol} rejected: quantity {quantity}")
            return None

        self._portfolio.cash += sell_quantity * price
        position.quantity -= sell_quantity
        entry_price = position.entry_price
        if position.quantity <= QUANTITY_EPSILON:
            self._portfolio.positions.remove(position)
            self._trailing_highs.pop(decision.symbol, None)
            self._dca_counts.pop(decision.symbol, None)
            logger.info(f"Position {decision.symbol} closed")

        return self._record(decision, TradeSide.SELL, sell_quantity, price, entry_price)

    def _record(
        self,
        decision: Decision,
        side: TradeSide,
        quantity: float,
        price: float,
        entry_price: Optional[float] = None,
    ) -> Trade:
        timestamp = self._now_ms()
        return Trade(
            id=f"{timestamp}-{next(self._trade_seq)}",
            symbol=decision.symbol,
            side=side,
            quantity=quantity,
            price=price,
            timestamp=timestamp,
            confidence=decision.confidence,
            rationale=decision.rationale,
            entry_price=entry_price,
        )

    def update_positions(self, current_prices: Mapping[str, float]) -> List[PositionAlert]:
        """Mark open positions to market and recompute portfolio totals.

        Threshold crossings are returned as alerts; nothing is sold here.
        """
        strategy = self._strategy
        alerts: List[PositionAlert] = []
        positions_value = 0.0

        for position in self._portfolio.positions:
            price = current_prices.get(position.symbol)
            if price and price > 0:
                position.current_price = price
                position.unrealized_pnl = (price - position.entry_price) * position.quantity
                if strategy.use_trailing_stop:
                    self._ratchet_trailing_stop(position, price)
                alerts.extend(self._check_thresholds(position, price))
            positions_value += position.current_price * position.quantity

        self._portfolio.total_value = self._portfolio.cash + positions_value
        self._portfolio.total_return = (
            (self._portfolio.total_value - self._initial_balance) / self._initial_balance * 100
        )
        for alert in alerts:
            logger.info(
                f"{alert.kind.value} reached for {alert.symbol}: price {alert.price} vs {alert.threshold:.4f}"
            )
        self._emit("on_portfolio_snapshot", self.get_portfolio())
        return alerts

    def _ratchet_trailing_stop(self, position: Position, price: float) -> None:
        highest = self._trailing_highs.get(position.symbol, position.entry_price)
        if price <= highest:
            return
        self._trailing_highs[position.symbol] = price
        new_stop = price * (1 - self._strategy.trailing_stop_percent / 100)
        if position.stop_loss is None or new_stop > position.stop_loss:
            logger.debug(f"Trailing stop for {position.symbol} raised to {new_stop:.4f}")
            position.stop_loss = new_stop

    def _check_thresholds(self, position: Position, price: float) -> List[PositionAlert]:
        strategy = self._strategy
        alerts = []
        if strategy.use_scalping and position.entry_price > 0:
            profit_pct = (price - position.entry_price) / position.entry_price * 100
            if profit_pct >= strategy.scalping_target_percent:
                alerts.append(
                    PositionAlert(AlertKind.SCALPING_TARGET, position.symbol, price, strategy.scalping_target_percent)
                )
        if position.stop_loss and price <= position.stop_loss:
            alerts.append(PositionAlert(AlertKind.STOP_LOSS, position.symbol, price, position.stop_loss))
        if position.take_profit and price >= position.take_profit:
            alerts.append(PositionAlert(AlertKind.TAKE_PROFIT, position.symbol, price, position.take_profit))
        return alerts

    def reset_portfolio(self) -> None:
        self._portfolio = self._fresh_portfolio()
        self._trailing_highs.clear()
        self._dca_counts.clear()
        logger.info(f"Portfolio reset to {self._initial_balance:.2f}")
        self._emit("on_portfolio_snapshot", self.get_portfolio())

    def value_at_risk(self, confidence: float = 0.95, horizon_days: float = 1) -> float:
        return metrics.value_at_risk(
            self._portfolio.trades, self._portfolio.total_value, confidence, horizon_days
        )

    def sharpe_ratio(self, risk_free_rate: float = 0.02) -> float:
        return metrics.sharpe_ratio(self._portfolio.trades, risk_free_rate)

    def max_drawdown(self) -> DrawdownResult:
        return metrics.max_drawdown(self._portfolio.trades, self._initial_balance)

    def get_risk_metrics(self) -> RiskMetrics:
        return metrics.compute_risk_metrics(
            self._portfolio.trades, self._portfolio.total_value, self._initial_balance
        )

    def _now_ms(self) -> int:
        return int(self._clock().timestamp() * 1000)

    def _emit(self, method: str, payload) -> None:
        if self._sink is None:
            return
        try:
            getattr(self._sink, method)(payload)
        except Exception as e:
            logger.error(f"Snapshot sink {method} failed: {e}")
