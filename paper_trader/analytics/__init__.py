"""Analytics: trade statistics and drawdowns."""

from paper_trader.analytics.metrics import (
    PerformanceMetrics,
    compute_metrics,
    drawdown_series,
    expectancy,
    max_drawdown,
    metrics_from_trades,
    profit_factor,
    sharpe_ratio,
    sortino_ratio,
    trade_returns,
    win_rate,
)

__all__ = [
    "PerformanceMetrics",
    "compute_metrics",
    "drawdown_series",
    "expectancy",
    "max_drawdown",
    "metrics_from_trades",
    "profit_factor",
    "sharpe_ratio",
    "sortino_ratio",
    "trade_returns",
    "win_rate",
]
