"""
RSI/MACD SPOT TRADING BOT
Command line entry point: live trading loop, backtest and parameter optimization
"""

import argparse
import logging
import time
from datetime import datetime, timezone
from typing import List, Optional

import pandas as pd

from backtest import load_bars_csv, run_backtest, save_bars_csv
from config import (
    BASE_ASSET, CHECK_INTERVAL_SECONDS, DEFAULT_PARAMS, DEFAULT_RISK_TIERS, EXCHANGE_API_KEY,
    EXCHANGE_ID, EXCHANGE_SANDBOX, EXCHANGE_SECRET_KEY, LEDGER_PATH, LOG_FILE, LOG_LEVEL,
    QUOTE_ASSET, SYMBOL, TELEGRAM_CHAT_ID, TELEGRAM_TOKEN, TIMEFRAME,
)
from exchange import ExchangeManager
from notifier import build_notifier
from optimizer import optimize
from trade_ledger import TradeLedger
from trader import LiveTrader

logger = logging.getLogger(__name__)


def setup_logging(level: str = LOG_LEVEL, log_file: str = LOG_FILE):
    """Configure root logging to file and console"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )


class TradingBot:
    """Main trading bot class"""

    def __init__(self):
        """Initialize trading bot"""
        if not EXCHANGE_API_KEY or not EXCHANGE_SECRET_KEY:
            raise ValueError("EXCHANGE_API_KEY and EXCHANGE_SECRET_KEY must be set in .env file")

        self.exchange = ExchangeManager(EXCHANGE_API_KEY, EXCHANGE_SECRET_KEY, EXCHANGE_SANDBOX, EXCHANGE_ID)
        self.ledger = TradeLedger(LEDGER_PATH)
        self.notifier = build_notifier(TELEGRAM_TOKEN, TELEGRAM_CHAT_ID)
        self.trader = LiveTrader(
            self.exchange, self.ledger, self.notifier, DEFAULT_PARAMS, DEFAULT_RISK_TIERS,
            base_asset=BASE_ASSET, quote_asset=QUOTE_ASSET, timeframe=TIMEFRAME,
        )

        logger.info(f"Trading bot initialized: {SYMBOL} {TIMEFRAME}, {len(self.ledger)} recorded trades")

    def run(self):
        """Main run loop"""
        logger.info("Starting trading bot...")
        self.notifier.notify(f"Trading bot started for {SYMBOL}")

        while True:
            try:
                if not self.trader.run_cycle():
                    logger.warning("Evaluation cycle aborted")
                self.trader.maybe_report_performance()

                time.sleep(CHECK_INTERVAL_SECONDS)

            except KeyboardInterrupt:
                logger.info("Bot stopped by user")
                break
            except Exception as e:
                logger.error(f"Error in main loop: {str(e)}", exc_info=True)
                time.sleep(60)  # Wait 1 minute before retry


def _parse_date(value: str) -> datetime:
    ts = pd.Timestamp(value)
    if ts.tzinfo is None:
        ts = ts.tz_localize('UTC')
    return ts.to_pydatetime()


def load_history(args) -> Optional[pd.DataFrame]:
    """Bars for backtest/optimize: a CSV file, or a paged download from the exchange"""
    if args.csv:
        return load_bars_csv(args.csv)

    exchange = ExchangeManager(exchange_id=EXCHANGE_ID)
    until = _parse_date(args.until) if args.until else datetime.now(timezone.utc)
    bars = exchange.fetch_ohlcv_range(args.symbol, args.timeframe, _parse_date(args.since), until)
    if bars is not None and args.save_csv:
        save_bars_csv(bars, args.save_csv)
        logger.info(f"Saved {len(bars)} bars to {args.save_csv}")
    return bars


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='trading-bot', description="RSI/MACD spot trading bot")
    sub = parser.add_subparsers(dest='command')

    sub.add_parser('live', help="Run the live trading loop")

    for name, help_text in (('backtest', "Replay historical bars with the default parameters"),
                            ('optimize', "Grid-search strategy parameters on historical bars")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument('--csv', help="CSV file with timestamp,open,high,low,close,volume")
        p.add_argument('--since', default='2024-01-01', help="History start date when downloading")
        p.add_argument('--until', default=None, help="History end date when downloading (default: now)")
        p.add_argument('--symbol', default=SYMBOL)
        p.add_argument('--timeframe', default=TIMEFRAME)
        p.add_argument('--capital', type=float, default=1000.0, help="Initial capital")
        p.add_argument('--save-csv', default=None, help="Write downloaded bars to this CSV")

    sub.choices['optimize'].add_argument('--workers', type=int, default=1,
                                         help="Worker processes for the grid search")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    if args.command in (None, 'live'):
        try:
            bot = TradingBot()
        except Exception as e:
            logger.error(f"Failed to start bot: {str(e)}", exc_info=True)
            return 1
        bot.run()
        return 0

    bars = load_history(args)
    if bars is None or bars.empty:
        logger.error("No historical data available")
        return 1

    params = DEFAULT_PARAMS.with_overrides(trading_pair=args.symbol)

    if args.command == 'backtest':
        result = run_backtest(bars, params, args.capital, DEFAULT_RISK_TIERS)
        print(result.summary())
        return 0

    best = optimize(bars, args.capital, DEFAULT_RISK_TIERS, base_params=params, max_workers=args.workers)
    if best is None:
        print("No parameter combination produced enough trades")
        return 1
    print(best.summary())
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
