"""
Technical Indicators Calculation Module
Pure functions over price/volume sequences, computed with pandas

Every series returned here starts at the first fully-determined value
(fresh RangeIndex), so its length is the input length minus the warm-up.
"""

from typing import NamedTuple, Sequence, Union

import numpy as np
import pandas as pd

Values = Union[Sequence[float], pd.Series]


class InsufficientDataError(ValueError):
    """Raised when a scalar indicator cannot be computed from the input"""


class MACDResult(NamedTuple):
    macd_line: pd.Series
    signal_line: pd.Series
    histogram: pd.Series


def _to_series(values: Values) -> pd.Series:
    if values is None:
        return pd.Series(dtype=float)
    return pd.Series(values, dtype=float).reset_index(drop=True)


def _seeded_smoothing(values: pd.Series, period: int, alpha: float) -> pd.Series:
    """
    Recursive smoothing seeded with the simple mean of the first `period` values

    avg[0] = mean(values[:period]); avg[i] = avg[i-1] + alpha * (x - avg[i-1])
    """
    seed = pd.Series([values.iloc[:period].mean()], dtype=float)
    seeded = pd.concat([seed, values.iloc[period:]], ignore_index=True)
    return seeded.ewm(alpha=alpha, adjust=False).mean()


def calculate_rsi(closes: Values, period: int) -> pd.Series:
    """
    Calculate Relative Strength Index (RSI) with Wilder's smoothing

    When the average loss is zero the relative strength is taken as 0,
    which makes the RSI of a flat or strictly rising window exactly 0.

    Args:
        closes: Closing prices, oldest first
        period: Period for RSI calculation

    Returns:
        Series with len(closes) - period values, empty if not enough data
    """
    closes = _to_series(closes)
    if len(closes) < period + 1:
        return pd.Series(dtype=float)

    changes = closes.diff().iloc[1:].reset_index(drop=True)
    gains = changes.clip(lower=0.0)
    losses = (-changes).clip(lower=0.0)

    avg_gain = _seeded_smoothing(gains, period, 1.0 / period)
    avg_loss = _seeded_smoothing(losses, period, 1.0 / period)

    rs = (avg_gain / avg_loss.where(avg_loss != 0)).fillna(0.0)
    return 100.0 - (100.0 / (1.0 + rs))


def calculate_sma(prices: Values, period: int) -> float:
    """
    Calculate Simple Moving Average over the last `period` prices

    Raises:
        InsufficientDataError: fewer than `period` prices supplied
    """
    prices = _to_series(prices)
    if period <= 0 or len(prices) < period:
        raise InsufficientDataError(f"Not enough data to calculate SMA({period}): {len(prices)} values")
    return float(prices.iloc[-period:].mean())


def calculate_ema(prices: Values, period: int) -> pd.Series:
    """
    Calculate Exponential Moving Average (EMA)

    Seeded with the simple average of the first `period` prices, then
    smoothed with multiplier 2 / (period + 1).

    Args:
        prices: Price sequence, oldest first
        period: Period for EMA calculation

    Returns:
        Series with len(prices) - period + 1 values

    Raises:
        InsufficientDataError: fewer than `period` prices supplied
    """
    prices = _to_series(prices)
    if period <= 0 or len(prices) < period:
        raise InsufficientDataError(f"Not enough data to calculate EMA({period}): {len(prices)} values")
    return _seeded_smoothing(prices, period, 2.0 / (period + 1))


def calculate_macd(prices: Values, short_period: int = 12, long_period: int = 26,
                   signal_period: int = 9) -> MACDResult:
    """
    Calculate MACD line, signal line and histogram

    The short EMA starts long_period - short_period values earlier than the
    long EMA, and the signal line starts signal_period - 1 values into the
    MACD line; both offsets are applied here.

    Args:
        prices: Closing prices, oldest first
        short_period: Fast EMA period
        long_period: Slow EMA period
        signal_period: Signal EMA period

    Returns:
        MACDResult, all three series empty if there is not enough data
    """
    if short_period >= long_period:
        raise ValueError(f"MACD short period ({short_period}) must be below long period ({long_period})")

    prices = _to_series(prices)
    empty = MACDResult(pd.Series(dtype=float), pd.Series(dtype=float), pd.Series(dtype=float))
    if len(prices) < long_period + signal_period - 1:
        return empty

    short_ema = calculate_ema(prices, short_period)
    long_ema = calculate_ema(prices, long_period)

    offset = long_period - short_period
    macd_line = short_ema.iloc[offset:].reset_index(drop=True) - long_ema

    signal_line = calculate_ema(macd_line, signal_period)
    histogram = macd_line.iloc[signal_period - 1:].reset_index(drop=True) - signal_line

    return MACDResult(macd_line, signal_line, histogram)


def calculate_atr(highs: Values, lows: Values, closes: Values, period: int) -> pd.Series:
    """
    Calculate Average True Range (ATR) with Wilder's smoothing

    Args:
        highs: High prices
        lows: Low prices
        closes: Closing prices
        period: Period for ATR calculation

    Returns:
        Series with len(closes) - period values, empty if fewer than period + 1 bars
    """
    highs, lows, closes = _to_series(highs), _to_series(lows), _to_series(closes)
    if not len(highs) == len(lows) == len(closes):
        raise ValueError("highs, lows and closes must have the same length")
    if len(closes) < period + 1:
        return pd.Series(dtype=float)

    prev_close = closes.shift(1)
    true_range = pd.Series(
        np.maximum.reduce([
            (highs - lows).to_numpy(),
            (highs - prev_close).abs().to_numpy(),
            (lows - prev_close).abs().to_numpy(),
        ])
    ).iloc[1:].reset_index(drop=True)

    return _seeded_smoothing(true_range, period, 1.0 / period)


def calculate_volume_ma(volumes: Values, period: int) -> pd.Series:
    """Trailing simple moving average, one value per full window of `period` volumes"""
    volumes = _to_series(volumes)
    if period <= 0 or len(volumes) < period:
        return pd.Series(dtype=float)
    return volumes.rolling(window=period).mean().iloc[period - 1:].reset_index(drop=True)
