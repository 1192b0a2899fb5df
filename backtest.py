"""
Backtest Engine Module
Replays historical bars through the live signal evaluator
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import pandas as pd

from config import DEFAULT_RISK_TIERS, RiskTiers, StrategyParameters
from strategy import Action, evaluate
from trade_ledger import TradeLedger, TradeRecord, TradeSide, TradeType

logger = logging.getLogger(__name__)

BAR_COLUMNS = ['open', 'high', 'low', 'close', 'volume']


@dataclass
class BacktestResult:
    initial_capital: float
    final_capital: float
    total_return: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    max_drawdown: float
    trades: List[TradeRecord] = field(default_factory=list)
    drawdown_curve: pd.Series = field(default_factory=lambda: pd.Series(dtype=float))

    @property
    def win_rate(self) -> float:
        return self.winning_trades / self.total_trades if self.total_trades > 0 else 0.0

    @property
    def realized_pnl(self) -> float:
        return sum(t.realized_pnl for t in self.trades)

    def summary(self) -> str:
        return (
            "Backtest Results:\n"
            f"Initial Capital: {self.initial_capital:.2f}\n"
            f"Final Capital: {self.final_capital:.2f}\n"
            f"Total Return: {self.total_return:.2%}\n"
            f"Total Trades: {self.total_trades}\n"
            f"Win Rate: {self.win_rate:.2%}\n"
            f"Max Drawdown: {self.max_drawdown:.2%}"
        )


def validate_bars(bars: pd.DataFrame) -> pd.DataFrame:
    """Check the frame has OHLCV columns and a strictly increasing index"""
    missing = [c for c in BAR_COLUMNS if c not in bars.columns]
    if missing:
        raise ValueError(f"Bar data is missing columns: {missing}")
    if not (bars.index.is_monotonic_increasing and bars.index.is_unique):
        raise ValueError("Bar data must be ordered by strictly increasing open time")
    return bars


def load_bars_csv(path: str) -> pd.DataFrame:
    """
    Load OHLCV bars from a CSV with a `timestamp` column

    Timestamps may be epoch milliseconds (as ccxt returns them) or ISO strings.
    """
    df = pd.read_csv(path)
    if 'timestamp' not in df.columns:
        raise ValueError(f"{path} has no 'timestamp' column")
    if pd.api.types.is_numeric_dtype(df['timestamp']):
        df['timestamp'] = pd.to_datetime(df['timestamp'], unit='ms', utc=True)
    else:
        df['timestamp'] = pd.to_datetime(df['timestamp'], utc=True)
    df.set_index('timestamp', inplace=True)
    df = df[BAR_COLUMNS].astype(float).sort_index()
    return validate_bars(df)


def save_bars_csv(bars: pd.DataFrame, path: str):
    bars[BAR_COLUMNS].to_csv(path, index_label='timestamp')


class BacktestEngine:
    """Simulated account that trades on the decisions of strategy.evaluate"""

    def __init__(self, params: StrategyParameters, risk_tiers: RiskTiers = DEFAULT_RISK_TIERS,
                 initial_capital: float = 1000.0):
        self.params = params
        self.risk_tiers = risk_tiers
        self.initial_capital = initial_capital
        self._reset()

    def _reset(self):
        self.capital = self.initial_capital
        self.peak = self.initial_capital
        self.max_drawdown = 0.0
        self.ledger = TradeLedger()
        self._drawdowns = []

    @property
    def position(self):
        return self.ledger.get_position(self.params.trading_pair)

    def run(self, bars: pd.DataFrame) -> BacktestResult:
        """
        Replay the bars and return the aggregated result

        Args:
            bars: OHLCV frame ordered by open time

        Returns:
            BacktestResult with every simulated trade
        """
        self._reset()
        validate_bars(bars)
        window_size = self.params.kline_count

        for i in range(window_size - 1, len(bars)):
            window = bars.iloc[i - window_size + 1:i + 1]
            close = float(window['close'].iloc[-1])
            timestamp = window.index[-1]

            position = self.position
            decision = evaluate(window, position, self.capital, self.params, self.risk_tiers)

            if decision.action == Action.BUY:
                self._execute_buy(timestamp, i, decision.quantity, close)
            elif decision.action == Action.SELL:
                self._execute_sell(timestamp, i, decision.quantity, close, decision.trade_type)
            elif position.is_open and position.entry_price is not None:
                stop_price = position.entry_price * (1 - self.params.stop_loss_percentage)
                if close <= stop_price:
                    self._execute_sell(timestamp, i, position.quantity, close, TradeType.STOP_LOSS)

            self._update_drawdown(timestamp, close)

        if self.position.is_open and len(bars) > 0:
            self._execute_sell(bars.index[-1], len(bars) - 1, self.position.quantity,
                               float(bars['close'].iloc[-1]), TradeType.FINAL_EXIT)

        return self._build_result()

    def _execute_buy(self, timestamp, index: int, quantity: float, price: float):
        self.capital -= quantity * price
        self.ledger.append(TradeRecord(
            order_ids=[f"BT-{index}"],
            timestamp=pd.Timestamp(timestamp).to_pydatetime(),
            symbol=self.params.trading_pair,
            quantity=quantity,
            price=price,
            side=TradeSide.BUY,
            type=TradeType.ENTRY,
            remaining_position=quantity,
        ))

    def _execute_sell(self, timestamp, index: int, quantity: float, price: float,
                      trade_type: TradeType):
        position = self.position
        quantity = min(quantity, position.quantity)
        entry_price = position.entry_price
        profit = (price - entry_price) / entry_price if entry_price else 0.0

        self.capital += quantity * price
        self.ledger.append(TradeRecord(
            order_ids=[f"BT-{index}"],
            timestamp=pd.Timestamp(timestamp).to_pydatetime(),
            symbol=self.params.trading_pair,
            quantity=quantity,
            price=price,
            side=TradeSide.SELL,
            type=trade_type,
            remaining_position=position.quantity - quantity,
            profit_percentage=profit,
        ))

    def _update_drawdown(self, timestamp, close: float):
        equity = self.capital + self.position.quantity * close
        if equity > self.peak:
            self.peak = equity
        if self.peak > 0:
            self.max_drawdown = max(self.max_drawdown, 1 - equity / self.peak)
        self._drawdowns.append((timestamp, self.max_drawdown))

    def _build_result(self) -> BacktestResult:
        trades = self.ledger.history()
        final_exits = [t for t in trades if t.type == TradeType.FINAL_EXIT]
        stop_losses = [t for t in trades if t.type == TradeType.STOP_LOSS]

        drawdown_curve = pd.Series(
            [d for _, d in self._drawdowns],
            index=[ts for ts, _ in self._drawdowns],
            dtype=float,
        )

        return BacktestResult(
            initial_capital=self.initial_capital,
            final_capital=self.capital,
            total_return=(self.capital / self.initial_capital) - 1,
            total_trades=sum(1 for t in trades if t.type == TradeType.ENTRY),
            winning_trades=sum(1 for t in final_exits if t.profit_percentage > 0),
            losing_trades=sum(1 for t in final_exits if t.profit_percentage <= 0) + len(stop_losses),
            max_drawdown=self.max_drawdown,
            trades=trades,
            drawdown_curve=drawdown_curve,
        )


def run_backtest(bars: pd.DataFrame, params: StrategyParameters, initial_capital: float = 1000.0,
                 risk_tiers: Optional[RiskTiers] = None) -> BacktestResult:
    """Run a single backtest with the given parameters"""
    engine = BacktestEngine(params, risk_tiers or DEFAULT_RISK_TIERS, initial_capital)
    return engine.run(bars)
