import json
from datetime import datetime, timedelta, timezone

import pytest

from trade_ledger import LedgerError, TradeLedger, TradeRecord, TradeSide, TradeType

SYMBOL = 'ETH/EUR'
T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def entry(quantity=1.0, price=100.0, ts=T0, order_id='o1'):
    return TradeRecord([order_id], ts, SYMBOL, quantity, price, TradeSide.BUY, TradeType.ENTRY,
                       remaining_position=quantity)


def sell(quantity, price, remaining, trade_type=TradeType.PARTIAL_EXIT, profit=None,
         ts=T0 + timedelta(hours=1), order_id='o2'):
    return TradeRecord([order_id], ts, SYMBOL, quantity, price, TradeSide.SELL, trade_type,
                       remaining_position=remaining, profit_percentage=profit)


def test_empty_ledger_has_no_position():
    ledger = TradeLedger()
    assert ledger.current_position_size(SYMBOL) == 0.0
    assert ledger.estimated_entry_price(SYMBOL) is None
    assert not ledger.get_position(SYMBOL).is_open


def test_position_follows_latest_record():
    ledger = TradeLedger()
    ledger.append(entry(1.0, 100.0))
    ledger.append(sell(0.3, 106.0, 0.7, profit=0.06))

    position = ledger.get_position(SYMBOL)
    assert position.quantity == pytest.approx(0.7)
    assert position.entry_price == 100.0
    assert position.entry_quantity == 1.0
    assert position.partial_exits == 1


def test_new_entry_resets_partial_exit_count():
    ledger = TradeLedger()
    ledger.append(entry(1.0, 100.0))
    ledger.append(sell(0.3, 106.0, 0.7))
    ledger.append(sell(0.7, 120.0, 0.0, TradeType.FINAL_EXIT, ts=T0 + timedelta(hours=2), order_id='o3'))
    ledger.append(entry(2.0, 90.0, ts=T0 + timedelta(hours=3), order_id='o4'))

    position = ledger.get_position(SYMBOL)
    assert position.quantity == 2.0
    assert position.entry_price == 90.0
    assert position.partial_exits == 0


def test_history_orders_by_timestamp_and_keeps_ties_in_insertion_order():
    ledger = TradeLedger()
    late = entry(ts=T0 + timedelta(hours=5), order_id='late')
    first_tie = sell(0.1, 100.0, 0.9, ts=T0, order_id='tie-1')
    second_tie = sell(0.1, 100.0, 0.8, ts=T0, order_id='tie-2')
    for record in (late, first_tie, second_tie):
        ledger.append(record)

    assert [r.order_ids[0] for r in ledger.history()] == ['tie-1', 'tie-2', 'late']


def test_naive_timestamps_are_treated_as_utc():
    record = entry(ts=datetime(2024, 1, 1, 12, 0))
    assert record.timestamp.tzinfo is not None
    assert record.timestamp == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_ledger_persists_and_reloads(tmp_path):
    path = str(tmp_path / 'trade_history.json')
    ledger = TradeLedger(path)
    ledger.append(entry(1.0, 100.0))
    ledger.append(sell(0.3, 106.0, 0.7, profit=0.06))

    with open(path) as f:
        raw = json.load(f)
    assert raw[1]['type'] == 'PartialExit'
    assert raw[1]['side'] == 'Sell'

    reloaded = TradeLedger(path)
    assert len(reloaded) == 2
    assert reloaded.history()[0].timestamp == T0
    assert reloaded.get_position(SYMBOL).quantity == pytest.approx(0.7)


def test_corrupt_ledger_file_raises(tmp_path):
    path = tmp_path / 'trade_history.json'
    path.write_text('{not json')
    with pytest.raises(LedgerError):
        TradeLedger(str(path))


def test_failed_save_leaves_history_unchanged(tmp_path):
    ledger = TradeLedger(str(tmp_path / 'missing' / 'trade_history.json'))
    with pytest.raises(LedgerError):
        ledger.append(entry())
    assert len(ledger) == 0
    assert ledger.current_position_size(SYMBOL) == 0.0


def test_realized_pnl_of_sell():
    record = sell(1.0, 110.0, 0.0, TradeType.FINAL_EXIT, profit=0.10)
    assert record.realized_pnl == pytest.approx(10.0)
    assert entry().realized_pnl == 0.0


def test_performance_summary():
    ledger = TradeLedger()
    ledger.append(entry(1.0, 100.0))
    ledger.append(sell(0.3, 110.0, 0.7, profit=0.10))
    ledger.append(sell(0.7, 95.0, 0.0, TradeType.STOP_LOSS, profit=-0.05,
                       ts=T0 + timedelta(hours=2), order_id='o3'))

    summary = ledger.performance_summary()
    assert summary.total_trades == 2
    assert summary.win_rate == pytest.approx(0.5)
    assert summary.average_profit == pytest.approx(0.025)
    assert summary.max_profit == pytest.approx(0.10)
    assert summary.max_loss == pytest.approx(-0.05)
    assert summary.open_positions == []
    assert 'Win Rate: 50.00%' in str(summary)
