"""
Parameter Optimizer Module
Exhaustive grid search over strategy parameters using the backtest engine
"""

import itertools
import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Sequence, Tuple

import pandas as pd

from backtest import BacktestResult, run_backtest
from config import DEFAULT_PARAMS, DEFAULT_RISK_TIERS, RiskTiers, StrategyParameters

logger = logging.getLogger(__name__)

MIN_TRADES = 5
DRAWDOWN_PENALTY = 0.5
OPTIMIZATION_KLINE_COUNT = 50
DOWNTREND_THRESHOLD_OFFSET = 5.0


@dataclass(frozen=True)
class ParameterGrid:
    """Discrete values searched for each tuned parameter"""
    rsi_period: Sequence[int] = (7, 9, 14, 21)
    rsi_oversold_threshold: Sequence[float] = (30.0, 35.0, 40.0, 45.0, 50.0)
    rsi_overbought_threshold: Sequence[float] = (65.0, 70.0, 75.0, 80.0)
    sma_period: Sequence[int] = (20, 50, 100, 200)
    stop_loss_percentage: Sequence[float] = (0.03, 0.05, 0.07, 0.10)
    profit_target: Sequence[float] = (0.05, 0.10, 0.15, 0.20)

    def dimensions(self) -> Dict[str, Sequence]:
        return {
            'rsi_period': self.rsi_period,
            'rsi_oversold_threshold': self.rsi_oversold_threshold,
            'rsi_overbought_threshold': self.rsi_overbought_threshold,
            'sma_period': self.sma_period,
            'stop_loss_percentage': self.stop_loss_percentage,
            'profit_target': self.profit_target,
        }

    def combinations(self) -> Iterator[Dict]:
        dims = self.dimensions()
        keys = list(dims.keys())
        for values in itertools.product(*dims.values()):
            yield dict(zip(keys, values))

    def __len__(self) -> int:
        total = 1
        for values in self.dimensions().values():
            total *= len(values)
        return total


@dataclass
class OptimizationResult:
    rsi_period: int
    rsi_oversold_threshold: float
    rsi_overbought_threshold: float
    sma_period: int
    stop_loss_percentage: float
    profit_target: float
    score: float
    total_return: float
    max_drawdown: float
    total_trades: int
    win_rate: float
    parameters: StrategyParameters = field(default=DEFAULT_PARAMS)
    combinations_tested: int = 0

    def summary(self) -> str:
        return (
            "Optimization Results:\n"
            f"RSI Period: {self.rsi_period}\n"
            f"RSI Oversold: {self.rsi_oversold_threshold}\n"
            f"RSI Overbought: {self.rsi_overbought_threshold}\n"
            f"SMA Period: {self.sma_period}\n"
            f"Stop Loss: {self.stop_loss_percentage:.2%}\n"
            f"Profit Target: {self.profit_target:.2%}\n"
            f"Total Return: {self.total_return:.2%}\n"
            f"Win Rate: {self.win_rate:.2%}\n"
            f"Total Trades: {self.total_trades}\n"
            f"Max Drawdown: {self.max_drawdown:.2%}"
        )


def build_parameters(combo: Dict, base: StrategyParameters = DEFAULT_PARAMS) -> StrategyParameters:
    """Expand one grid point into a full parameter set"""
    oversold = combo['rsi_oversold_threshold']
    target = combo['profit_target']
    stop_loss = combo['stop_loss_percentage']
    return base.with_overrides(
        kline_count=OPTIMIZATION_KLINE_COUNT,
        rsi_period=combo['rsi_period'],
        default_oversold_threshold=oversold,
        downtrend_oversold_threshold=oversold + DOWNTREND_THRESHOLD_OFFSET,
        overbought_threshold=combo['rsi_overbought_threshold'],
        sma_period=combo['sma_period'],
        stop_loss_percentage=stop_loss,
        final_profit_target=target,
        first_profit_target=target * 0.33,
        second_profit_target=target * 0.66,
        trailing_stop_activation_profit=target * 0.5,
        trailing_stop_percentage=stop_loss,
    )


def score_result(result: BacktestResult) -> float:
    return result.total_return - DRAWDOWN_PENALTY * result.max_drawdown


# Shared by worker processes, set once per process by _init_worker
_worker_state: Dict = {}


def _init_worker(bars: pd.DataFrame, initial_capital: float, risk_tiers: RiskTiers,
                 base_params: StrategyParameters):
    _worker_state.update(bars=bars, initial_capital=initial_capital,
                         risk_tiers=risk_tiers, base_params=base_params)


def _evaluate_combination(combo: Dict) -> Tuple[Dict, StrategyParameters, BacktestResult]:
    params = build_parameters(combo, _worker_state['base_params'])
    result = run_backtest(_worker_state['bars'], params, _worker_state['initial_capital'],
                          _worker_state['risk_tiers'])
    # The trade list is not needed for ranking; keep results cheap to pickle
    result.trades = []
    return combo, params, result


class ParameterOptimizer:
    """Grid search keeping only the best-scoring combination"""

    def __init__(self, bars: pd.DataFrame, initial_capital: float,
                 risk_tiers: RiskTiers = DEFAULT_RISK_TIERS, grid: Optional[ParameterGrid] = None,
                 base_params: StrategyParameters = DEFAULT_PARAMS, max_workers: int = 1):
        """
        Initialize the optimizer

        Args:
            bars: Historical OHLCV frame shared read-only by every backtest
            initial_capital: Starting capital of each backtest
            risk_tiers: Risk fraction per equity band
            grid: Values to search, defaults to ParameterGrid()
            base_params: Source of every parameter the grid does not set
            max_workers: Processes used for the search, 1 runs in-process
        """
        self.bars = bars
        self.initial_capital = initial_capital
        self.risk_tiers = risk_tiers
        self.grid = grid or ParameterGrid()
        self.base_params = base_params
        self.max_workers = max_workers

    def _results(self) -> Iterator[Tuple[Dict, StrategyParameters, BacktestResult]]:
        combos = self.grid.combinations()
        init_args = (self.bars, self.initial_capital, self.risk_tiers, self.base_params)

        if self.max_workers <= 1:
            _init_worker(*init_args)
            try:
                for combo in combos:
                    yield _evaluate_combination(combo)
            finally:
                _worker_state.clear()
            return

        with ProcessPoolExecutor(max_workers=self.max_workers, initializer=_init_worker,
                                 initargs=init_args) as executor:
            yield from executor.map(_evaluate_combination, combos, chunksize=16)

    def optimize(self) -> Optional[OptimizationResult]:
        """
        Run every combination and return the best one

        Returns:
            OptimizationResult, or None if no combination made MIN_TRADES trades
        """
        total = len(self.grid)
        logger.info(f"Starting parameter optimization: {total} combinations, "
                    f"{self.max_workers} worker(s)")

        best: Optional[OptimizationResult] = None
        tested = 0

        for combo, params, result in self._results():
            tested += 1
            if tested % 100 == 0 or tested == total:
                logger.info(f"Progress: {tested}/{total} combinations tested ({tested / total:.0%})")

            score = score_result(result)
            if result.total_trades < MIN_TRADES:
                continue
            if best is not None and score <= best.score:
                continue

            best = OptimizationResult(
                score=score,
                total_return=result.total_return,
                max_drawdown=result.max_drawdown,
                total_trades=result.total_trades,
                win_rate=result.win_rate,
                parameters=params,
                **combo,
            )
            logger.info(f"New best parameters found: Return: {result.total_return:.2%}, "
                        f"Drawdown: {result.max_drawdown:.2%}, Trades: {result.total_trades}")

        if best is None:
            logger.warning(f"No combination produced at least {MIN_TRADES} trades")
            return None

        best.combinations_tested = tested
        logger.info("Parameter optimization completed")
        return best


def optimize(bars: pd.DataFrame, initial_capital: float, risk_tiers: RiskTiers = DEFAULT_RISK_TIERS,
             grid: Optional[ParameterGrid] = None, base_params: StrategyParameters = DEFAULT_PARAMS,
             max_workers: int = 1) -> Optional[OptimizationResult]:
    """Grid-search the strategy parameters on the given bars"""
    optimizer = ParameterOptimizer(bars, initial_capital, risk_tiers, grid, base_params, max_workers)
    return optimizer.optimize()
