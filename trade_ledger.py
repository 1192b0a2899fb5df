"""
Trade Ledger Module
Append-only history of executed trades; positions are derived from it
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Raised when the ledger file cannot be read or written"""


class TradeSide(str, Enum):
    BUY = 'Buy'
    SELL = 'Sell'


class TradeType(str, Enum):
    ENTRY = 'Entry'
    PARTIAL_EXIT = 'PartialExit'
    STOP_LOSS = 'StopLoss'
    FINAL_EXIT = 'FinalExit'


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


@dataclass
class TradeRecord:
    """One executed order as written to the ledger"""
    order_ids: List[str]
    timestamp: datetime
    symbol: str
    quantity: float
    price: float
    side: TradeSide
    type: TradeType
    remaining_position: Optional[float] = None
    profit_percentage: Optional[float] = None

    def __post_init__(self):
        self.timestamp = _as_utc(self.timestamp)
        self.side = TradeSide(self.side)
        self.type = TradeType(self.type)
        self.order_ids = [str(o) for o in self.order_ids]

    @property
    def realized_pnl(self) -> float:
        """Quote-currency P&L of a sell, 0 for buys or when profit is unknown"""
        if self.side != TradeSide.SELL or self.profit_percentage is None:
            return 0.0
        entry_price = self.price / (1 + self.profit_percentage)
        return self.quantity * (self.price - entry_price)

    def to_dict(self) -> Dict:
        return {
            'order_ids': list(self.order_ids),
            'timestamp': self.timestamp.isoformat(),
            'symbol': self.symbol,
            'quantity': self.quantity,
            'price': self.price,
            'side': self.side.value,
            'type': self.type.value,
            'remaining_position': self.remaining_position,
            'profit_percentage': self.profit_percentage,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'TradeRecord':
        return cls(
            order_ids=data.get('order_ids', []),
            timestamp=datetime.fromisoformat(data['timestamp']),
            symbol=data['symbol'],
            quantity=float(data['quantity']),
            price=float(data['price']),
            side=TradeSide(data['side']),
            type=TradeType(data['type']),
            remaining_position=data.get('remaining_position'),
            profit_percentage=data.get('profit_percentage'),
        )


@dataclass(frozen=True)
class Position:
    """Current holding in one symbol, as reconstructed from the ledger"""
    symbol: str
    quantity: float = 0.0
    entry_price: Optional[float] = None
    entry_quantity: float = 0.0
    partial_exits: int = 0

    @property
    def is_open(self) -> bool:
        return self.quantity > 0


@dataclass
class PerformanceSummary:
    total_trades: int = 0
    win_rate: float = 0.0
    average_profit: float = 0.0
    max_profit: float = 0.0
    max_loss: float = 0.0
    open_positions: List[Position] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            "Performance Summary:\n"
            f"Total Trades: {self.total_trades}\n"
            f"Win Rate: {self.win_rate:.2%}\n"
            f"Average Profit: {self.average_profit:.2%}\n"
            f"Max Profit: {self.max_profit:.2%}\n"
            f"Max Loss: {self.max_loss:.2%}\n"
            f"Open Positions: {len(self.open_positions)}"
        )


class TradeLedger:
    """
    Ordered, append-only sequence of TradeRecords

    With a path, the whole history is kept as one JSON array and the file
    is rewritten on every append. Without a path the ledger lives in memory
    only (used by the backtester).
    """

    def __init__(self, path: Optional[str] = None):
        """
        Initialize the ledger

        Args:
            path: JSON file backing the ledger, None for in-memory
        """
        self.path = path
        self._records: List[TradeRecord] = []
        self._positions: Dict[str, Position] = {}
        if path:
            self._records = self._load()

    def _load(self) -> List[TradeRecord]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
            return [TradeRecord.from_dict(item) for item in raw]
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise LedgerError(f"Error reading trade history from {self.path}: {str(e)}") from e

    def _save(self, records: List[TradeRecord]):
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            fd, tmp_path = tempfile.mkstemp(prefix='.ledger-', suffix='.json', dir=directory)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump([r.to_dict() for r in records], f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise LedgerError(f"Error saving trade history to {self.path}: {str(e)}") from e

    def append(self, record: TradeRecord):
        """Persist a new record; history is unchanged if persisting fails"""
        records = self._records + [record]
        if self.path:
            self._save(records)
        self._records = records
        self._positions.pop(record.symbol, None)
        logger.debug(f"Ledger append: {record.type.value} {record.side.value} "
                     f"{record.quantity} {record.symbol} @ {record.price}")

    def history(self, symbol: Optional[str] = None) -> List[TradeRecord]:
        """Records ordered by timestamp, ties kept in insertion order"""
        records = [r for r in self._records if symbol is None or r.symbol == symbol]
        return sorted(records, key=lambda r: r.timestamp)

    def __len__(self) -> int:
        return len(self._records)

    def current_position_size(self, symbol: str) -> float:
        return self.get_position(symbol).quantity

    def estimated_entry_price(self, symbol: str) -> Optional[float]:
        """Price of the most recent Entry buy, None if there is none"""
        return self.get_position(symbol).entry_price

    def get_position(self, symbol: str) -> Position:
        """Fold the symbol's history into a Position, cached until the next append"""
        if symbol not in self._positions:
            self._positions[symbol] = self._fold_position(symbol)
        return self._positions[symbol]

    def _fold_position(self, symbol: str) -> Position:
        quantity = 0.0
        entry_price = None
        entry_quantity = 0.0
        partial_exits = 0

        for record in self.history(symbol):
            if record.remaining_position is not None:
                quantity = float(record.remaining_position)
            if record.side == TradeSide.BUY and record.type == TradeType.ENTRY:
                entry_price = record.price
                entry_quantity = record.quantity
                partial_exits = 0
            elif record.type == TradeType.PARTIAL_EXIT:
                partial_exits += 1

        return Position(symbol=symbol, quantity=quantity, entry_price=entry_price,
                        entry_quantity=entry_quantity, partial_exits=partial_exits)

    def performance_summary(self) -> PerformanceSummary:
        """Aggregate realized profit statistics over all sells carrying a profit"""
        profits = [r.profit_percentage for r in self._records
                   if r.side == TradeSide.SELL and r.profit_percentage is not None]
        symbols = sorted({r.symbol for r in self._records})
        open_positions = [p for p in (self.get_position(s) for s in symbols) if p.is_open]

        if not profits:
            return PerformanceSummary(open_positions=open_positions)

        wins = [p for p in profits if p > 0]
        return PerformanceSummary(
            total_trades=len(profits),
            win_rate=len(wins) / len(profits),
            average_profit=sum(profits) / len(profits),
            max_profit=max(profits),
            max_loss=min(profits),
            open_positions=open_positions,
        )
