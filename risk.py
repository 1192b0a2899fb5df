"""
Risk Sizing Module
Maps account equity to a risk fraction and converts risk into a position size
"""

from bisect import bisect_right

from config import FEE_BUFFER, RISK_TIER_BOUNDARIES, RiskTiers


def get_risk_fraction(equity: float, tiers: RiskTiers) -> float:
    """
    Look up the fraction of equity to risk for an account of the given size

    Each band includes its lower boundary: 149.99 falls in tier 1,
    150.00 in tier 2, anything from 1500 up in the top tier.
    """
    return tiers.fractions()[bisect_right(RISK_TIER_BOUNDARIES, equity)]


def calculate_position_size(equity: float, price: float, risk_fraction: float,
                            stop_loss_fraction: float) -> float:
    """
    Calculate position size based on risk

    Args:
        equity: Current account equity in quote currency
        price: Current asset price
        risk_fraction: Fraction of equity to risk (0.02 = 2%)
        stop_loss_fraction: Stop distance as a fraction of price

    Returns:
        Position size in base-asset units
    """
    if price <= 0 or stop_loss_fraction <= 0:
        raise ValueError(f"price and stop loss must be positive (price={price}, stop={stop_loss_fraction})")

    risk_amount = equity * risk_fraction
    stop_loss_distance = price * stop_loss_fraction
    return risk_amount / stop_loss_distance


def calculate_max_position_size(equity: float, price: float) -> float:
    """Largest size affordable with the equity, leaving a buffer for fees"""
    return (equity * FEE_BUFFER) / price


def adjust_for_volatility(risk_fraction: float, volatility_ratio: float, ceiling: float) -> float:
    """Scale risk down by ceiling / ratio when ATR / price exceeds the ceiling"""
    if volatility_ratio > ceiling > 0:
        return risk_fraction * (ceiling / volatility_ratio)
    return risk_fraction
