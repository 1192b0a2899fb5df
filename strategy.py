"""
Signal Evaluation Module
Turns a bar window and the current position into a single trade decision

The same `evaluate` function drives the live trader and the backtester, so
both paths make identical decisions for identical inputs.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

import pandas as pd

from config import (
    CONST_MACD_EXIT_MIN_PROFIT, CONST_SMA_EXIT_MIN_PROFIT, UNKNOWN_ENTRY_DISCOUNT,
    RiskTiers, StrategyParameters,
)
from indicators import (
    InsufficientDataError, calculate_atr, calculate_macd, calculate_rsi,
    calculate_sma, calculate_volume_ma,
)
from risk import (
    adjust_for_volatility, calculate_max_position_size, calculate_position_size,
    get_risk_fraction,
)
from trade_ledger import Position, TradeType

logger = logging.getLogger(__name__)

DEFAULT_ATR_FRACTION = 0.02  # ATR assumed when it cannot be computed


class Action(str, Enum):
    BUY = 'buy'
    SELL = 'sell'
    ARM_TRAILING_STOP = 'arm_trailing_stop'
    HOLD = 'hold'


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Latest indicator readings for one bar window"""
    price: float
    rsi: float
    sma: float
    histogram: float
    previous_histogram: Optional[float]
    volume: float
    average_volume: Optional[float]
    atr: float

    @property
    def is_downtrend(self) -> bool:
        return self.price < self.sma


@dataclass(frozen=True)
class InsufficientData:
    """The window is too short for at least one required indicator"""
    reason: str


@dataclass(frozen=True)
class Decision:
    action: Action
    reason: str
    trade_type: Optional[TradeType] = None
    quantity: float = 0.0
    price: Optional[float] = None
    profit: Optional[float] = None
    stop_price: Optional[float] = None
    remaining_position: Optional[float] = None
    insufficient_data: bool = False
    snapshot: Optional[IndicatorSnapshot] = None

    @property
    def is_trade(self) -> bool:
        return self.action in (Action.BUY, Action.SELL)


def compute_indicators(bars: pd.DataFrame,
                       params: StrategyParameters) -> Union[IndicatorSnapshot, InsufficientData]:
    """
    Compute the indicator readings the strategy needs from the trailing window

    Args:
        bars: OHLCV frame, oldest first
        params: Strategy parameters

    Returns:
        IndicatorSnapshot, or InsufficientData naming the missing indicator
    """
    if bars is None or bars.empty:
        return InsufficientData("No bar data")

    window = bars.tail(params.kline_count)
    closes = window['close']
    price = float(closes.iloc[-1])

    rsi = calculate_rsi(closes, params.rsi_period)
    if rsi.empty:
        return InsufficientData(f"Not enough data to calculate RSI({params.rsi_period}): {len(closes)} bars")

    try:
        sma = calculate_sma(closes, params.sma_period)
    except InsufficientDataError as e:
        return InsufficientData(str(e))

    macd = calculate_macd(closes, params.macd_short_period, params.macd_long_period,
                          params.macd_signal_period)
    if macd.histogram.empty:
        return InsufficientData(f"Not enough data to calculate MACD: {len(closes)} bars")
    histogram = macd.histogram

    volume_ma = calculate_volume_ma(window['volume'], params.volume_avg_period)

    atr = calculate_atr(window['high'], window['low'], closes, params.atr_period)
    current_atr = float(atr.iloc[-1]) if not atr.empty else price * DEFAULT_ATR_FRACTION

    return IndicatorSnapshot(
        price=price,
        rsi=float(rsi.iloc[-1]),
        sma=sma,
        histogram=float(histogram.iloc[-1]),
        previous_histogram=float(histogram.iloc[-2]) if len(histogram) >= 2 else None,
        volume=float(window['volume'].iloc[-1]),
        average_volume=float(volume_ma.iloc[-1]) if not volume_ma.empty else None,
        atr=current_atr,
    )


def adaptive_oversold_threshold(snapshot: IndicatorSnapshot, params: StrategyParameters) -> float:
    if snapshot.is_downtrend:
        return params.downtrend_oversold_threshold
    return params.default_oversold_threshold


def size_entry(snapshot: IndicatorSnapshot, equity: float, params: StrategyParameters,
               risk_tiers: RiskTiers) -> float:
    """
    Risk-based entry size, scaled down for high volatility and capped by equity

    Args:
        snapshot: Indicator readings of the current window
        equity: Available quote-currency equity
        params: Strategy parameters
        risk_tiers: Risk fraction per equity band

    Returns:
        Quantity in base-asset units
    """
    price = snapshot.price
    risk_fraction = get_risk_fraction(equity, risk_tiers)
    volatility_ratio = snapshot.atr / price
    adjusted_risk = adjust_for_volatility(risk_fraction, volatility_ratio, params.max_volatility_risk)
    if adjusted_risk < risk_fraction:
        logger.info(f"High volatility ({volatility_ratio:.2%}), risk reduced from "
                    f"{risk_fraction:.2%} to {adjusted_risk:.2%}")

    quantity = calculate_position_size(equity, price, adjusted_risk, params.stop_loss_percentage)

    max_quantity = calculate_max_position_size(equity, price)
    if quantity > max_quantity:
        logger.info(f"Order size adjusted to available balance: {quantity:.6f} -> {max_quantity:.6f}")
        quantity = max_quantity

    return quantity


def check_buy_signal(snapshot: IndicatorSnapshot, equity: float, params: StrategyParameters,
                     risk_tiers: RiskTiers) -> Decision:
    """Entry when RSI is oversold, the MACD histogram is positive and volume confirms"""
    threshold = adaptive_oversold_threshold(snapshot, params)
    volume_confirmed = (
        snapshot.average_volume is not None
        and snapshot.volume >= snapshot.average_volume * params.min_volume_multiplier
    )

    if not (snapshot.rsi < threshold and snapshot.histogram > 0 and volume_confirmed):
        return Decision(
            Action.HOLD,
            reason=(f"No trade: RSI {snapshot.rsi:.2f} (adaptive threshold {threshold}), "
                    f"MACD histogram {snapshot.histogram:.2f}, "
                    f"volume confirmation: {'Yes' if volume_confirmed else 'No'}"),
            price=snapshot.price,
            snapshot=snapshot,
        )

    if equity <= 0:
        return Decision(Action.HOLD, reason="Buy signal but no equity available",
                        price=snapshot.price, snapshot=snapshot)

    quantity = size_entry(snapshot, equity, params, risk_tiers)
    if quantity < params.min_order_quantity:
        return Decision(
            Action.HOLD,
            reason=(f"Calculated position size ({quantity:.6f}) is below minimum order size "
                    f"{params.min_order_quantity}. No order placed."),
            price=snapshot.price,
            snapshot=snapshot,
        )

    stop_price = snapshot.price * (1 - params.stop_loss_percentage)
    return Decision(
        Action.BUY,
        reason=(f"Conditions met: RSI {snapshot.rsi:.2f} (< {threshold}), "
                f"MACD histogram {snapshot.histogram:.2f}, volume {snapshot.volume:.2f} "
                f"(avg {snapshot.average_volume:.2f})"),
        trade_type=TradeType.ENTRY,
        quantity=quantity,
        price=snapshot.price,
        stop_price=stop_price,
        remaining_position=quantity,
        snapshot=snapshot,
    )


def check_sell_signal(snapshot: IndicatorSnapshot, position: Position,
                      params: StrategyParameters) -> Decision:
    """
    Exit rules for an open position, first match wins

    While profit sits inside the first or second target band, that band's
    partial exit owns the bar even if its partial exit was already taken;
    the later rules are only consulted outside both bands.
    """
    price = snapshot.price
    available = position.quantity
    entry_price = position.entry_price or price * UNKNOWN_ENTRY_DISCOUNT
    profit = (price - entry_price) / entry_price

    quantity = 0.0
    trade_type = None
    reason = ''

    if params.first_profit_target <= profit < params.second_profit_target:
        if position.partial_exits == 0:
            quantity = available * params.first_sell_percentage
            trade_type = TradeType.PARTIAL_EXIT
            reason = f"First profit target reached: {profit:.2%}"
    elif params.second_profit_target <= profit < params.final_profit_target:
        if position.partial_exits < 2:
            original = position.entry_quantity or available
            quantity = original * params.second_sell_percentage
            trade_type = TradeType.PARTIAL_EXIT
            reason = f"Second profit target reached: {profit:.2%}"
    elif profit >= params.final_profit_target:
        quantity, trade_type = available, TradeType.FINAL_EXIT
        reason = f"Final profit target reached: {profit:.2%}"
    elif snapshot.rsi > params.overbought_threshold:
        quantity, trade_type = available, TradeType.FINAL_EXIT
        reason = f"RSI overbought at {snapshot.rsi:.2f}"
    elif (snapshot.previous_histogram is not None and snapshot.previous_histogram > 0
          and snapshot.histogram < 0 and profit > CONST_MACD_EXIT_MIN_PROFIT):
        quantity, trade_type = available, TradeType.FINAL_EXIT
        reason = f"MACD bearish crossover while in profit: {profit:.2%}"
    elif price < snapshot.sma and profit > CONST_SMA_EXIT_MIN_PROFIT:
        quantity, trade_type = available, TradeType.FINAL_EXIT
        reason = f"Trend reversal while in profit: {profit:.2%}"

    if trade_type is None:
        if profit >= params.trailing_stop_activation_profit:
            return Decision(
                Action.ARM_TRAILING_STOP,
                reason=f"Profit {profit:.2%} exceeds trailing stop activation",
                price=price,
                profit=profit,
                stop_price=price * (1 - params.trailing_stop_percentage),
                quantity=available,
                snapshot=snapshot,
            )
        return Decision(Action.HOLD, reason=f"Holding position, profit {profit:.2%}",
                        price=price, profit=profit, snapshot=snapshot)

    quantity = min(quantity, available)
    if quantity < params.min_order_quantity or available - quantity < params.min_order_quantity:
        quantity = available
        trade_type = TradeType.FINAL_EXIT

    return Decision(
        Action.SELL,
        reason=reason,
        trade_type=trade_type,
        quantity=quantity,
        price=price,
        profit=profit,
        remaining_position=available - quantity,
        snapshot=snapshot,
    )


def evaluate(bars: pd.DataFrame, position: Position, equity: float,
             params: StrategyParameters, risk_tiers: RiskTiers) -> Decision:
    """
    Evaluate one bar window

    Args:
        bars: OHLCV frame ending at the bar being decided on
        position: Current position in params.trading_pair
        equity: Quote-currency equity available for a new entry
        params: Strategy parameters
        risk_tiers: Risk fraction per equity band

    Returns:
        Decision; insufficient data resolves to HOLD with insufficient_data set
    """
    snapshot = compute_indicators(bars, params)
    if isinstance(snapshot, InsufficientData):
        return Decision(Action.HOLD, reason=snapshot.reason, insufficient_data=True)

    if position.quantity >= params.min_order_quantity:
        return check_sell_signal(snapshot, position, params)
    return check_buy_signal(snapshot, equity, params, risk_tiers)
