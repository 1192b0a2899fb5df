"""
Configuration file for the RSI/MACD spot trading bot
Contains all constants and the immutable strategy parameter bundles
"""

import os
from dataclasses import dataclass, replace

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# ================================
# ALGORITHM PARAMETERS
# ================================
CONST_KLINE_COUNT = 50          # Bars per evaluation window
CONST_RSI_PERIOD = 14           # Momentum Measure
CONST_SMA_PERIOD = 50           # Trend filter
CONST_ATR_PERIOD = 14           # Volatility Measure
CONST_MACD_SHORT = 12
CONST_MACD_LONG = 26
CONST_MACD_SIGNAL = 9

# Entry thresholds
CONST_DEFAULT_OVERSOLD = 50.0   # RSI entry level in an uptrend
CONST_DOWNTREND_OVERSOLD = 40.0 # RSI entry level when price < SMA
CONST_RSI_OVERBOUGHT = 70.0     # Flash Exit Trigger Level
CONST_VOLUME_AVG_PERIOD = 20
CONST_MIN_VOLUME_MULTIPLIER = 1.2
CONST_MAX_VOLATILITY_RISK = 0.15  # ATR/price ceiling before risk is scaled down

# Exit thresholds
CONST_STOP_LOSS = 0.05
CONST_FIRST_PROFIT_TARGET = 0.05
CONST_SECOND_PROFIT_TARGET = 0.10
CONST_FINAL_PROFIT_TARGET = 0.15
CONST_FIRST_SELL_PCT = 0.3      # of current balance
CONST_SECOND_SELL_PCT = 0.4     # of original entry size
CONST_TRAILING_ACTIVATION = 0.05
CONST_TRAILING_STOP = 0.03
CONST_MACD_EXIT_MIN_PROFIT = 0.05
CONST_SMA_EXIT_MIN_PROFIT = 0.08

# Risk Settings (fraction of equity risked per trade, by account size)
RISK_TIER_BOUNDARIES = (150.0, 350.0, 500.0, 800.0, 1500.0)
RISK_TIER_1 = 0.20      # equity < 150
RISK_TIER_2 = 0.15      # 150 - 350
RISK_TIER_3 = 0.10      # 350 - 500
RISK_TIER_4 = 0.05      # 500 - 800
RISK_TIER_5 = 0.03      # 800 - 1500
RISK_TIER_ABOVE = 0.02  # >= 1500

MIN_ORDER_QUANTITY = 0.002     # Smallest tradable size in base currency
FEE_BUFFER = 0.995             # Share of equity usable for a single order
UNKNOWN_ENTRY_DISCOUNT = 0.9   # Entry price assumed when the ledger has none

# ================================
# TRADING SETTINGS
# ================================
SYMBOL = 'ETH/EUR'            # Spot pair
BASE_ASSET = 'ETH'
QUOTE_ASSET = 'EUR'
TIMEFRAME = '1h'              # Hourly timeframe
EXCHANGE_ID = 'kraken'
CHECK_INTERVAL_SECONDS = 300  # Live loop sleep between cycles

# Order retry on insufficient funds
ORDER_RETRY_ATTEMPTS = 3
ORDER_RETRY_REDUCTION = 0.95

# ================================
# STORAGE / LOGGING
# ================================
LEDGER_PATH = os.getenv('LEDGER_PATH', 'trade_history.json')
LOG_FILE = os.getenv('LOG_FILE', 'trading_bot.log')
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

# ================================
# API SETTINGS (Load from environment)
# ================================
# These should be set in .env file:
# EXCHANGE_API_KEY=your_api_key
# EXCHANGE_SECRET_KEY=your_secret_key
# EXCHANGE_SANDBOX=False  # Set to True for sandbox
# TELEGRAM_TOKEN=bot_token
# TELEGRAM_CHAT_ID=chat_id
EXCHANGE_API_KEY = os.getenv('EXCHANGE_API_KEY', '')
EXCHANGE_SECRET_KEY = os.getenv('EXCHANGE_SECRET_KEY', '')
EXCHANGE_SANDBOX = os.getenv('EXCHANGE_SANDBOX', 'False').lower() == 'true'
TELEGRAM_TOKEN = os.getenv('TELEGRAM_TOKEN', '')
TELEGRAM_CHAT_ID = os.getenv('TELEGRAM_CHAT_ID', '')


@dataclass(frozen=True)
class StrategyParameters:
    """Immutable bundle of every knob the signal evaluator reads"""

    trading_pair: str = SYMBOL
    kline_count: int = CONST_KLINE_COUNT
    rsi_period: int = CONST_RSI_PERIOD
    default_oversold_threshold: float = CONST_DEFAULT_OVERSOLD
    downtrend_oversold_threshold: float = CONST_DOWNTREND_OVERSOLD
    overbought_threshold: float = CONST_RSI_OVERBOUGHT
    sma_period: int = CONST_SMA_PERIOD
    stop_loss_percentage: float = CONST_STOP_LOSS
    volume_avg_period: int = CONST_VOLUME_AVG_PERIOD
    min_volume_multiplier: float = CONST_MIN_VOLUME_MULTIPLIER
    atr_period: int = CONST_ATR_PERIOD
    max_volatility_risk: float = CONST_MAX_VOLATILITY_RISK
    first_profit_target: float = CONST_FIRST_PROFIT_TARGET
    second_profit_target: float = CONST_SECOND_PROFIT_TARGET
    final_profit_target: float = CONST_FINAL_PROFIT_TARGET
    first_sell_percentage: float = CONST_FIRST_SELL_PCT
    second_sell_percentage: float = CONST_SECOND_SELL_PCT
    trailing_stop_activation_profit: float = CONST_TRAILING_ACTIVATION
    trailing_stop_percentage: float = CONST_TRAILING_STOP
    min_order_quantity: float = MIN_ORDER_QUANTITY
    macd_short_period: int = CONST_MACD_SHORT
    macd_long_period: int = CONST_MACD_LONG
    macd_signal_period: int = CONST_MACD_SIGNAL

    def with_overrides(self, **changes) -> 'StrategyParameters':
        """Return a copy with the given fields replaced"""
        return replace(self, **changes)


@dataclass(frozen=True)
class RiskTiers:
    """Risk fraction per equity band, bands bounded by RISK_TIER_BOUNDARIES"""

    tier1: float = RISK_TIER_1
    tier2: float = RISK_TIER_2
    tier3: float = RISK_TIER_3
    tier4: float = RISK_TIER_4
    tier5: float = RISK_TIER_5
    tier_above: float = RISK_TIER_ABOVE

    def fractions(self) -> tuple:
        return (self.tier1, self.tier2, self.tier3, self.tier4, self.tier5, self.tier_above)


DEFAULT_PARAMS = StrategyParameters()
DEFAULT_RISK_TIERS = RiskTiers()
