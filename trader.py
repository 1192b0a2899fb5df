"""
Live Trading Module
Runs one evaluation cycle against the exchange and records executed trades
"""

import logging
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

import ccxt
import pandas as pd

from config import (
    DEFAULT_RISK_TIERS, ORDER_RETRY_ATTEMPTS, ORDER_RETRY_REDUCTION, RiskTiers,
    StrategyParameters,
)
from exchange import ExchangeManager, is_stop_order, order_ids, stop_trigger_price
from strategy import Action, Decision, evaluate
from trade_ledger import LedgerError, Position, TradeLedger, TradeRecord, TradeSide, TradeType

logger = logging.getLogger(__name__)


def submit_with_retry(submit: Callable[[float], Optional[Dict]], quantity: float, min_quantity: float,
                      attempts: int = ORDER_RETRY_ATTEMPTS,
                      reduction: float = ORDER_RETRY_REDUCTION) -> Tuple[Optional[Dict], float]:
    """
    Submit an order, retrying at a reduced size after an insufficient-funds rejection

    Args:
        submit: Places the order for a quantity, raising ccxt.InsufficientFunds when rejected
        quantity: Initial quantity
        min_quantity: Give up once the reduced quantity falls below this
        attempts: Maximum submissions
        reduction: Factor applied to the quantity after each rejection

    Returns:
        (order or None, quantity of the last submission)
    """
    for attempt in range(1, attempts + 1):
        try:
            return submit(quantity), quantity
        except ccxt.InsufficientFunds as e:
            logger.warning(f"Insufficient funds for {quantity:.8f} (attempt {attempt}/{attempts}): {str(e)}")
            quantity *= reduction
            if quantity < min_quantity:
                break
    return None, quantity


def evaluate_once(bars: pd.DataFrame, ledger: TradeLedger, params: StrategyParameters,
                  equity: float, risk_tiers: RiskTiers = DEFAULT_RISK_TIERS,
                  available: Optional[float] = None) -> Decision:
    """
    Decide on the latest bar window using the ledger's view of the position

    Args:
        bars: Recent OHLCV frame
        ledger: Trade history the position is derived from
        params: Strategy parameters
        equity: Quote-currency balance available for entries
        risk_tiers: Risk fraction per equity band
        available: Base-asset balance held on the exchange; the tracked
            position is clamped to it

    Returns:
        Decision from strategy.evaluate
    """
    position = ledger.get_position(params.trading_pair)
    if available is not None and position.quantity > available:
        logger.warning(f"Ledger position {position.quantity} exceeds exchange balance {available}, clamping")
        position = Position(
            symbol=position.symbol,
            quantity=max(available, 0.0),
            entry_price=position.entry_price,
            entry_quantity=position.entry_quantity,
            partial_exits=position.partial_exits,
        )
    return evaluate(bars, position, equity, params, risk_tiers)


class LiveTrader:
    """Glue between the signal evaluator, the exchange, the ledger and notifications"""

    def __init__(self, exchange: ExchangeManager, ledger: TradeLedger, notifier,
                 params: StrategyParameters, risk_tiers: RiskTiers = DEFAULT_RISK_TIERS,
                 base_asset: str = 'ETH', quote_asset: str = 'EUR', timeframe: str = '1h'):
        """
        Initialize the live trader

        Args:
            exchange: ExchangeManager instance (or anything with the same methods)
            ledger: Persistent TradeLedger
            notifier: Object with notify(text)
            params: Strategy parameters
            risk_tiers: Risk fraction per equity band
            base_asset: Asset bought and sold, as named in balances
            quote_asset: Asset the account equity is held in
            timeframe: Bar interval
        """
        self.exchange = exchange
        self.ledger = ledger
        self.notifier = notifier
        self.params = params
        self.risk_tiers = risk_tiers
        self.base_asset = base_asset
        self.quote_asset = quote_asset
        self.timeframe = timeframe
        self.last_report_date: Optional[date] = None

    @property
    def symbol(self) -> str:
        return self.params.trading_pair

    def _notify(self, text: str):
        try:
            self.notifier.notify(text)
        except Exception as e:
            logger.error(f"Notification failed: {str(e)}")

    def run_cycle(self) -> bool:
        """
        Execute one evaluation cycle

        Returns:
            True if the cycle completed (including a hold), False if it was aborted
        """
        bars = self.exchange.fetch_ohlcv(self.symbol, self.timeframe, limit=self.params.kline_count)
        if bars is None or bars.empty:
            self._notify(f"Error fetching klines for {self.symbol}")
            return False

        balances = self.exchange.fetch_balances()
        if balances is None:
            self._notify("Error fetching account balance")
            return False

        equity = balances.get(self.quote_asset, 0.0)
        base_balance = balances.get(self.base_asset, 0.0)

        decision = evaluate_once(bars, self.ledger, self.params, equity, self.risk_tiers,
                                 available=base_balance)
        position = self.ledger.get_position(self.symbol)
        position_quantity = min(position.quantity, base_balance)

        if decision.insufficient_data:
            logger.warning(decision.reason)
            self._notify(decision.reason)
            return True

        logger.info(f"Decision: {decision.action.value} - {decision.reason}")

        if decision.action == Action.BUY:
            return self._execute_buy(decision)
        if decision.action == Action.SELL:
            return self._execute_sell(decision, position_quantity)
        if decision.action == Action.ARM_TRAILING_STOP:
            return self._arm_trailing_stop(decision, position_quantity)

        self._notify(decision.reason)
        return True

    def _record(self, record: TradeRecord) -> bool:
        try:
            self.ledger.append(record)
            return True
        except LedgerError as e:
            logger.critical(f"Order {record.order_ids} executed but not recorded: {str(e)}")
            self._notify(f"Order {', '.join(record.order_ids)} executed but could not be recorded: {str(e)}")
            return False

    def _execute_buy(self, decision: Decision) -> bool:
        order, quantity = submit_with_retry(
            lambda qty: self.exchange.create_market_order(self.symbol, 'buy', qty, raise_insufficient_funds=True),
            decision.quantity,
            self.params.min_order_quantity,
        )
        if order is None:
            self._notify(f"{decision.reason}\nError executing buy order for {decision.quantity:.6f} {self.symbol}")
            return False

        recorded = self._record(TradeRecord(
            order_ids=order_ids(order),
            timestamp=datetime.now(timezone.utc),
            symbol=self.symbol,
            quantity=quantity,
            price=decision.price,
            side=TradeSide.BUY,
            type=TradeType.ENTRY,
            remaining_position=quantity,
        ))

        message = (f"{decision.reason}\nBought {quantity:.6f} {self.symbol} at {decision.price:.2f} "
                   f"(total {quantity * decision.price:.2f} {self.quote_asset})")

        stop_price = decision.price * (1 - self.params.stop_loss_percentage)
        stop_order = self.exchange.create_stop_loss_order(self.symbol, quantity, stop_price)
        if stop_order:
            message += f"\nStop-loss order placed at {stop_price:.2f}"
        else:
            message += "\nError placing stop-loss order, position opened without SL"
            logger.warning("Failed to create stop loss order, position opened without SL")

        self._notify(message)
        return recorded

    def _cancel_stop_orders(self) -> List[float]:
        """Cancel open stop orders for the symbol, returning their trigger prices"""
        open_orders = self.exchange.fetch_open_orders(self.symbol) or []
        triggers = []
        for order in open_orders:
            if is_stop_order(order) and self.exchange.cancel_order(order['id'], self.symbol):
                trigger = stop_trigger_price(order)
                if trigger is not None:
                    triggers.append(trigger)
        return triggers

    def _execute_sell(self, decision: Decision, available: float) -> bool:
        # Stop orders reserve the base balance on spot exchanges
        cancelled_triggers = self._cancel_stop_orders()

        order, quantity = submit_with_retry(
            lambda qty: self.exchange.create_market_order(self.symbol, 'sell', qty, raise_insufficient_funds=True),
            min(decision.quantity, available),
            self.params.min_order_quantity,
        )
        remaining = max(available - quantity, 0.0)

        if order is None:
            self._notify(f"Sell signal: {decision.reason}\nError executing sell order")
            if cancelled_triggers and available >= self.params.min_order_quantity:
                self.exchange.create_stop_loss_order(self.symbol, available, max(cancelled_triggers))
            return False

        trade_type = decision.trade_type
        if trade_type == TradeType.FINAL_EXIT and remaining >= self.params.min_order_quantity:
            # A retry shrank the exit, the position is still open
            trade_type = TradeType.PARTIAL_EXIT

        recorded = self._record(TradeRecord(
            order_ids=order_ids(order),
            timestamp=datetime.now(timezone.utc),
            symbol=self.symbol,
            quantity=quantity,
            price=decision.price,
            side=TradeSide.SELL,
            type=trade_type,
            remaining_position=remaining,
            profit_percentage=decision.profit,
        ))

        if remaining >= self.params.min_order_quantity and cancelled_triggers:
            self.exchange.create_stop_loss_order(self.symbol, remaining, max(cancelled_triggers))

        self._notify(f"Sell signal: {decision.reason}\nProfit: {decision.profit:.2%}, "
                     f"sold {quantity:.6f} {self.symbol} at {decision.price:.2f}, "
                     f"remaining {remaining:.6f}\nOrder IDs: {', '.join(order_ids(order))}")
        return recorded

    def _arm_trailing_stop(self, decision: Decision, available: float) -> bool:
        open_orders = self.exchange.fetch_open_orders(self.symbol)
        if open_orders is None:
            self._notify("Error checking open orders")
            return False

        stops = [o for o in open_orders if is_stop_order(o)]
        current = max((stop_trigger_price(o) or 0.0 for o in stops), default=0.0)
        if current >= decision.stop_price:
            self._notify(f"Trailing stop already at {current:.2f}. Current profit: {decision.profit:.2%}")
            return True

        for order in stops:
            self.exchange.cancel_order(order['id'], self.symbol)

        order, quantity = submit_with_retry(
            lambda qty: self.exchange.create_stop_loss_order(self.symbol, qty, decision.stop_price,
                                                             raise_insufficient_funds=True),
            available,
            self.params.min_order_quantity,
        )
        if order is None:
            logger.error(f"Failed to place trailing stop: balance {available}, price {decision.price}, "
                         f"profit {decision.profit:.2%}")
            self._notify(f"Error setting trailing stop at {decision.stop_price:.2f}")
            return False

        self._notify(f"Trailing stop set at {decision.stop_price:.2f} for {quantity:.6f} {self.symbol}. "
                     f"Current profit: {decision.profit:.2%}")
        return True

    def maybe_report_performance(self, now: Optional[datetime] = None) -> bool:
        """Send the ledger performance summary once per day, shortly after midnight"""
        now = now or datetime.now()
        if now.hour != 0 or now.minute >= 5 or self.last_report_date == now.date():
            return False
        self.last_report_date = now.date()
        self._notify(str(self.ledger.performance_summary()))
        return True
