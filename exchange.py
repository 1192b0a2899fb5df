"""
Exchange Interface Module
Handles market data, balances and spot orders via CCXT
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

import ccxt
import pandas as pd

logger = logging.getLogger(__name__)

STOP_ORDER_TYPES = {'stop-loss', 'stop_loss', 'stop', 'stop_market', 'stop-market'}


def ohlcv_to_frame(ohlcv: List[List]) -> pd.DataFrame:
    """Convert raw CCXT candles into a frame indexed by open time"""
    df = pd.DataFrame(ohlcv, columns=['timestamp', 'open', 'high', 'low', 'close', 'volume'])
    df['timestamp'] = pd.to_datetime(df['timestamp'], unit='ms', utc=True)
    df.set_index('timestamp', inplace=True)
    df = df[~df.index.duplicated(keep='last')].sort_index()
    return df.astype(float)


def order_ids(order: Dict) -> List[str]:
    """All exchange ids of a placed order (Kraken may return several txids)"""
    ids = []
    if order.get('id'):
        ids.append(str(order['id']))
    txids = (order.get('info') or {}).get('txid') or []
    if isinstance(txids, str):
        txids = [txids]
    ids.extend(str(t) for t in txids if str(t) not in ids)
    return ids


def stop_trigger_price(order: Dict) -> Optional[float]:
    for key in ('stopPrice', 'triggerPrice', 'stopLossPrice'):
        if order.get(key):
            return float(order[key])
    return None


def is_stop_order(order: Dict) -> bool:
    order_type = str(order.get('type') or '').lower()
    return order_type in STOP_ORDER_TYPES or stop_trigger_price(order) is not None


class ExchangeManager:
    """Manages exchange connection and trading operations"""

    def __init__(self, api_key: Optional[str] = None, secret_key: Optional[str] = None,
                 sandbox: bool = False, exchange_id: str = 'kraken'):
        """
        Initialize exchange connection

        Args:
            api_key: Exchange API key, None for public market data only
            secret_key: Exchange secret key
            sandbox: Use the exchange sandbox if True
            exchange_id: CCXT exchange id
        """
        try:
            exchange_class = getattr(ccxt, exchange_id)
            self.exchange = exchange_class({
                'apiKey': api_key,
                'secret': secret_key,
                'enableRateLimit': True,
            })

            if sandbox:
                self.exchange.set_sandbox_mode(True)

            self.exchange.load_markets()
            logger.info(f"Exchange initialized: {self.exchange.id}")

        except Exception as e:
            logger.error(f"Failed to initialize exchange: {str(e)}")
            raise

    def fetch_ohlcv(self, symbol: str, timeframe: str, limit: int = 200) -> Optional[pd.DataFrame]:
        """
        Fetch the most recent OHLCV (candlestick) data

        Args:
            symbol: Trading symbol
            timeframe: Timeframe (e.g., '1h', '1d')
            limit: Number of candles to fetch

        Returns:
            DataFrame with OHLCV data or None if error
        """
        try:
            ohlcv = self.exchange.fetch_ohlcv(symbol, timeframe, limit=limit)

            if not ohlcv:
                logger.warning(f"No OHLCV data returned for {symbol}")
                return None

            return ohlcv_to_frame(ohlcv).tail(limit)

        except ccxt.NetworkError as e:
            logger.error(f"Network error fetching OHLCV: {str(e)}")
            return None
        except ccxt.ExchangeError as e:
            logger.error(f"Exchange error fetching OHLCV: {str(e)}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error fetching OHLCV: {str(e)}")
            return None

    def fetch_ohlcv_range(self, symbol: str, timeframe: str, since: datetime,
                          until: Optional[datetime] = None, batch_limit: int = 720) -> Optional[pd.DataFrame]:
        """
        Fetch historical candles between two dates, paging forward from `since`

        Returns:
            DataFrame with OHLCV data or None if error or no data
        """
        since_ms = int(since.timestamp() * 1000)
        until_ms = int(until.timestamp() * 1000) if until else None
        candles = []

        try:
            while True:
                batch = self.exchange.fetch_ohlcv(symbol, timeframe, since=since_ms, limit=batch_limit)
                if not batch:
                    break
                candles.extend(batch)
                last_ts = batch[-1][0]
                # Stop on reaching `until` or when the exchange stops moving forward
                if last_ts < since_ms or (until_ms is not None and last_ts >= until_ms):
                    break
                since_ms = last_ts + 1
        except ccxt.NetworkError as e:
            logger.error(f"Network error fetching OHLCV history: {str(e)}")
            return None
        except ccxt.ExchangeError as e:
            logger.error(f"Exchange error fetching OHLCV history: {str(e)}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error fetching OHLCV history: {str(e)}")
            return None

        if not candles:
            logger.warning(f"No historical OHLCV data returned for {symbol}")
            return None

        df = ohlcv_to_frame(candles)
        if until is not None:
            df = df[df.index <= pd.Timestamp(until_ms, unit='ms', tz='UTC')]
        logger.info(f"Fetched {len(df)} {timeframe} candles for {symbol}")
        return df

    def fetch_balances(self) -> Optional[Dict[str, float]]:
        """
        Fetch account balances

        Returns:
            Mapping asset -> total quantity, or None if error
        """
        try:
            balance = self.exchange.fetch_balance()
            return {asset: float(amount or 0) for asset, amount in balance.get('total', {}).items()}
        except ccxt.NetworkError as e:
            logger.error(f"Network error fetching balance: {str(e)}")
            return None
        except ccxt.ExchangeError as e:
            logger.error(f"Exchange error fetching balance: {str(e)}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error fetching balance: {str(e)}")
            return None

    def create_market_order(self, symbol: str, side: str, amount: float,
                            raise_insufficient_funds: bool = False) -> Optional[Dict]:
        """
        Create a market order

        Args:
            symbol: Trading symbol
            side: 'buy' or 'sell'
            amount: Order amount (in base currency)
            raise_insufficient_funds: Re-raise ccxt.InsufficientFunds for the caller's retry policy

        Returns:
            Order dictionary or None if error
        """
        try:
            amount = float(self.exchange.amount_to_precision(symbol, amount))
            order = self.exchange.create_market_order(symbol, side, amount)
            logger.info(f"Market order created: {side} {amount} {symbol}")
            return order
        except ccxt.InsufficientFunds as e:
            if raise_insufficient_funds:
                raise
            logger.error(f"Insufficient funds creating market order: {str(e)}")
            return None
        except ccxt.NetworkError as e:
            logger.error(f"Network error creating market order: {str(e)}")
            return None
        except ccxt.ExchangeError as e:
            logger.error(f"Exchange error creating market order: {str(e)}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error creating market order: {str(e)}")
            return None

    def create_stop_loss_order(self, symbol: str, amount: float, stop_price: float,
                               raise_insufficient_funds: bool = False) -> Optional[Dict]:
        """
        Create a sell stop-loss order protecting a long spot position

        Args:
            symbol: Trading symbol
            amount: Order amount
            stop_price: Trigger price

        Returns:
            Order dictionary or None if error
        """
        try:
            amount = float(self.exchange.amount_to_precision(symbol, amount))
            stop_price = float(self.exchange.price_to_precision(symbol, stop_price))
        except ccxt.ExchangeError as e:
            logger.error(f"Invalid stop loss parameters: {str(e)}")
            return None

        try:
            order = self.exchange.create_order(
                symbol=symbol,
                type='market',
                side='sell',
                amount=amount,
                params={'stopLossPrice': stop_price},
            )
            logger.info(f"Stop loss order created: sell {amount} {symbol} at {stop_price}")
            return order
        except ccxt.InsufficientFunds as e:
            if raise_insufficient_funds:
                raise
            logger.error(f"Insufficient funds creating stop loss: {str(e)}")
            return None
        except ccxt.NetworkError as e:
            logger.error(f"Network error creating stop loss: {str(e)}")
            return None
        except ccxt.ExchangeError as e:
            logger.error(f"Exchange error creating stop loss: {str(e)}")
            # Try the exchange's native stop order type
            try:
                order = self.exchange.create_order(
                    symbol=symbol,
                    type='stop-loss',
                    side='sell',
                    amount=amount,
                    price=stop_price,
                    params={'stopPrice': stop_price},
                )
                logger.info(f"Stop loss order created (alternative method): sell {amount} {symbol} at {stop_price}")
                return order
            except ccxt.BaseError as e2:
                logger.error(f"Alternative stop loss method also failed: {str(e2)}")
                return None
        except Exception as e:
            logger.error(f"Unexpected error creating stop loss: {str(e)}")
            return None

    def fetch_open_orders(self, symbol: str) -> Optional[List[Dict]]:
        """
        Fetch open orders for a symbol

        Returns:
            List of order dictionaries, None if the request failed
        """
        try:
            return self.exchange.fetch_open_orders(symbol)
        except ccxt.NetworkError as e:
            logger.error(f"Network error fetching open orders: {str(e)}")
            return None
        except ccxt.ExchangeError as e:
            logger.error(f"Exchange error fetching open orders: {str(e)}")
            return None
        except Exception as e:
            logger.error(f"Unexpected error fetching open orders: {str(e)}")
            return None

    def cancel_order(self, order_id: str, symbol: str) -> bool:
        """
        Cancel an open order

        An order the exchange no longer knows (already filled, triggered or
        cancelled elsewhere) is reported as not cancelled, so callers never
        treat a stop that already fired as still protecting the position.

        Returns:
            True if the exchange confirmed the cancellation
        """
        try:
            self.exchange.cancel_order(order_id, symbol)
            logger.info(f"Cancelled {symbol} order {order_id}")
            return True
        except ccxt.OrderNotFound as e:
            logger.warning(f"{symbol} order {order_id} no longer open: {str(e)}")
            return False
        except ccxt.NetworkError as e:
            logger.error(f"Network error cancelling {symbol} order {order_id}: {str(e)}")
            return False
        except ccxt.ExchangeError as e:
            logger.error(f"Exchange error cancelling {symbol} order {order_id}: {str(e)}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error cancelling {symbol} order {order_id}: {str(e)}")
            return False
