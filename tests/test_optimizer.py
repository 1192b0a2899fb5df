import pandas as pd
import pytest

import optimizer
from backtest import BacktestResult
from config import DEFAULT_PARAMS
from optimizer import MIN_TRADES, ParameterGrid, ParameterOptimizer, build_parameters, score_result

SMALL_GRID = ParameterGrid(
    rsi_period=(7, 9, 14),
    rsi_oversold_threshold=(30.0,),
    rsi_overbought_threshold=(70.0,),
    sma_period=(20,),
    stop_loss_percentage=(0.05,),
    profit_target=(0.10,),
)


def fake_result(total_return, max_drawdown, total_trades):
    return BacktestResult(
        initial_capital=1000.0,
        final_capital=1000.0 * (1 + total_return),
        total_return=total_return,
        total_trades=total_trades,
        winning_trades=total_trades,
        losing_trades=0,
        max_drawdown=max_drawdown,
    )


@pytest.fixture
def scripted_backtests(monkeypatch):
    """Patch run_backtest with results keyed by rsi_period"""
    def install(results_by_period):
        def fake_run_backtest(bars, params, initial_capital, risk_tiers):
            return results_by_period[params.rsi_period]
        monkeypatch.setattr(optimizer, 'run_backtest', fake_run_backtest)
    return install


def test_default_grid_size():
    grid = ParameterGrid()
    assert len(grid) == 4 * 5 * 4 * 4 * 4 * 4
    assert sum(1 for _ in grid.combinations()) == len(grid)


def test_build_parameters_derives_dependent_values():
    combo = {
        'rsi_period': 9,
        'rsi_oversold_threshold': 35.0,
        'rsi_overbought_threshold': 75.0,
        'sma_period': 100,
        'stop_loss_percentage': 0.07,
        'profit_target': 0.15,
    }
    params = build_parameters(combo)

    assert params.kline_count == 50
    assert params.rsi_period == 9
    assert params.default_oversold_threshold == 35.0
    assert params.downtrend_oversold_threshold == 40.0
    assert params.overbought_threshold == 75.0
    assert params.final_profit_target == 0.15
    assert params.first_profit_target == pytest.approx(0.0495)
    assert params.second_profit_target == pytest.approx(0.099)
    assert params.trailing_stop_activation_profit == pytest.approx(0.075)
    assert params.trailing_stop_percentage == 0.07
    assert params.volume_avg_period == DEFAULT_PARAMS.volume_avg_period


def test_score_penalizes_drawdown():
    assert score_result(fake_result(0.20, 0.10, 10)) == pytest.approx(0.15)


def test_best_combination_ignores_low_trade_counts(scripted_backtests):
    scripted_backtests({
        7: fake_result(0.50, 0.00, MIN_TRADES - 1),
        9: fake_result(0.10, 0.04, MIN_TRADES),
        14: fake_result(0.12, 0.20, 12),
    })

    best = ParameterOptimizer(pd.DataFrame(), 1000.0, grid=SMALL_GRID).optimize()

    assert best is not None
    assert best.rsi_period == 9
    assert best.score == pytest.approx(0.08)
    assert best.total_trades >= MIN_TRADES
    assert best.parameters.rsi_period == 9
    assert best.combinations_tested == len(SMALL_GRID)


def test_ties_keep_the_first_combination(scripted_backtests):
    scripted_backtests({p: fake_result(0.10, 0.02, 8) for p in (7, 9, 14)})
    best = optimizer.optimize(pd.DataFrame(), 1000.0, grid=SMALL_GRID)
    assert best.rsi_period == 7


def test_negative_scores_can_still_win(scripted_backtests):
    scripted_backtests({
        7: fake_result(-0.20, 0.30, 6),
        9: fake_result(-0.05, 0.10, 6),
        14: fake_result(0.30, 0.00, 2),
    })
    best = optimizer.optimize(pd.DataFrame(), 1000.0, grid=SMALL_GRID)
    assert best.rsi_period == 9
    assert best.score == pytest.approx(-0.10)


def test_returns_none_when_nothing_trades_enough(scripted_backtests):
    scripted_backtests({p: fake_result(0.30, 0.00, 1) for p in (7, 9, 14)})
    assert optimizer.optimize(pd.DataFrame(), 1000.0, grid=SMALL_GRID) is None


def test_optimizer_runs_real_backtests(random_bars):
    grid = ParameterGrid(
        rsi_period=(7, 14),
        rsi_oversold_threshold=(50.0,),
        rsi_overbought_threshold=(70.0,),
        sma_period=(20,),
        stop_loss_percentage=(0.03,),
        profit_target=(0.05,),
    )
    best = optimizer.optimize(random_bars, 1000.0, grid=grid)
    if best is not None:
        assert best.total_trades >= MIN_TRADES
        assert best.combinations_tested == 2


def test_process_pool_matches_sequential_search(random_bars):
    grid = ParameterGrid(
        rsi_period=(7, 9, 14),
        rsi_oversold_threshold=(45.0, 50.0),
        rsi_overbought_threshold=(70.0,),
        sma_period=(20, 50),
        stop_loss_percentage=(0.03,),
        profit_target=(0.05,),
    )
    sequential = optimizer.optimize(random_bars, 1000.0, grid=grid, max_workers=1)
    parallel = optimizer.optimize(random_bars, 1000.0, grid=grid, max_workers=2)

    assert parallel == sequential
    if sequential is not None:
        assert parallel.combinations_tested == len(grid)


def test_sequential_search_releases_shared_bars(scripted_backtests):
    scripted_backtests({p: fake_result(0.10, 0.02, 8) for p in (7, 9, 14)})
    optimizer.optimize(pd.DataFrame({'close': [1.0]}), 1000.0, grid=SMALL_GRID)
    assert optimizer._worker_state == {}
