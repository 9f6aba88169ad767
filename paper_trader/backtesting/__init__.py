"""Backtesting: bar-by-bar replay through the live pipeline, and grid search on top."""

from paper_trader.backtesting.engine import BacktestResult, run_backtest
from paper_trader.backtesting.grid_search import (
    GridRow,
    GridSearchResult,
    combinations,
    default_grid,
    rank_rows,
    run_grid_search,
)
from paper_trader.backtesting.htf import ResampledHtfProvider, resample_bars

__all__ = [
    "BacktestResult",
    "run_backtest",
    "GridRow",
    "GridSearchResult",
    "combinations",
    "default_grid",
    "rank_rows",
    "run_grid_search",
    "ResampledHtfProvider",
    "resample_bars",
]
