"""
Trade statistics for backtests and the live rollup.
PnLs are net per closed trade in quote currency; drawdowns are positive fractions of the
running equity peak.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import numpy as np

from paper_trader.core.types import ClosedTrade

EPS = 1e-12


@dataclass
class PerformanceMetrics:
    total_return_pct: float
    sharpe_ratio: float
    sortino_ratio: float
    max_drawdown: float
    win_rate: float
    profit_factor: float
    expectancy: float
    total_trades: int
    winning_trades: int
    losing_trades: int
    avg_win: float
    avg_loss: float
    avg_r: float


def _annualized(mean: float, dev: float, periods_per_year: float) -> float:
    if dev <= EPS:
        return 0.0
    return float(np.sqrt(periods_per_year) * mean / dev)


def sharpe_ratio(returns: Sequence[float], risk_free_rate: float = 0.0, periods_per_year: float = 252.0) -> float:
    """Annualized mean excess return over its standard deviation; 0 for flat or empty input."""
    arr = np.asarray(returns, dtype=float)
    if arr.size == 0:
        return 0.0
    excess = arr - risk_free_rate / periods_per_year
    return _annualized(excess.mean(), excess.std(), periods_per_year)


def sortino_ratio(returns: Sequence[float], risk_free_rate: float = 0.0, periods_per_year: float = 252.0) -> float:
    """Like sharpe_ratio but divided by the deviation of losing periods; equals Sharpe with no losers."""
    arr = np.asarray(returns, dtype=float)
    if arr.size == 0:
        return 0.0
    losers = arr[arr < 0]
    if losers.size == 0 or losers.std() <= EPS:
        return sharpe_ratio(arr, risk_free_rate, periods_per_year)
    excess = arr - risk_free_rate / periods_per_year
    return _annualized(excess.mean(), losers.std(), periods_per_year)


def drawdown_series(equity_curve: Sequence[float]) -> np.ndarray:
    arr = np.asarray(equity_curve, dtype=float)
    if arr.size == 0:
        return arr
    peak = np.maximum.accumulate(arr)
    return (peak - arr) / np.where(peak > 0, peak, EPS)


def max_drawdown(equity_curve: Sequence[float]) -> float:
    """Largest drawdown from the running peak (0.15 = 15%); 0 for an empty curve."""
    dd = drawdown_series(equity_curve)
    return float(dd.max()) if dd.size else 0.0


def win_rate(pnls: Sequence[float]) -> float:
    arr = np.asarray(pnls, dtype=float)
    return float((arr > 0).mean()) if arr.size else 0.0


def profit_factor(pnls: Sequence[float]) -> float:
    """Gross profit over gross loss: inf with wins and no losses, 0 with neither."""
    arr = np.asarray(pnls, dtype=float)
    gross_win = float(arr[arr > 0].sum())
    gross_loss = float(-arr[arr < 0].sum())
    if gross_loss <= 0:
        return float("inf") if gross_win > 0 else 0.0
    return gross_win / gross_loss


def expectancy(pnls: Sequence[float]) -> float:
    arr = np.asarray(pnls, dtype=float)
    return float(arr.mean()) if arr.size else 0.0


def trade_returns(pnls: Sequence[float], initial_capital: float) -> np.ndarray:
    """Each trade's PnL as a fraction of the balance it started from."""
    arr = np.asarray(pnls, dtype=float)
    balance_before = initial_capital + np.concatenate(([0.0], np.cumsum(arr)[:-1])) if arr.size else arr
    return arr / np.maximum(balance_before, 1e-9)


def compute_metrics(
    pnls: Sequence[float],
    equity_curve: Optional[Sequence[float]] = None,
    r_multiples: Optional[Sequence[float]] = None,
    initial_capital: float = 100.0,
    risk_free_rate: float = 0.0,
    periods_per_year: float = 252.0,
) -> PerformanceMetrics:
    """
    Full statistics from per-trade net PnLs. Without an equity curve one is built from the
    PnLs on top of initial_capital. Sharpe/Sortino use trade_returns().
    """
    arr = np.asarray(pnls, dtype=float)
    if equity_curve is None:
        equity_curve = initial_capital + np.concatenate(([0.0], np.cumsum(arr)))
    curve = np.asarray(equity_curve, dtype=float)
    start = curve[0] if curve.size else initial_capital
    end = curve[-1] if curve.size else initial_capital + arr.sum()
    wins, losses = arr[arr > 0], arr[arr < 0]
    rets = trade_returns(arr, initial_capital)
    r = np.asarray(r_multiples if r_multiples is not None else [], dtype=float)
    return PerformanceMetrics(
        total_return_pct=float((end / max(1e-9, start) - 1.0) * 100.0) if arr.size else 0.0,
        sharpe_ratio=sharpe_ratio(rets, risk_free_rate, periods_per_year),
        sortino_ratio=sortino_ratio(rets, risk_free_rate, periods_per_year),
        max_drawdown=max_drawdown(curve),
        win_rate=win_rate(arr),
        profit_factor=profit_factor(arr),
        expectancy=expectancy(arr),
        total_trades=int(arr.size),
        winning_trades=int(wins.size),
        losing_trades=int(losses.size),
        avg_win=float(wins.mean()) if wins.size else 0.0,
        avg_loss=float(losses.mean()) if losses.size else 0.0,
        avg_r=float(r.mean()) if r.size else 0.0,
    )


def metrics_from_trades(
    trades: Iterable[ClosedTrade],
    equity_curve: Optional[Sequence[float]] = None,
    initial_capital: float = 100.0,
) -> PerformanceMetrics:
    trades = list(trades)
    return compute_metrics(
        [t.net_pnl for t in trades],
        equity_curve=equity_curve,
        r_multiples=[t.net_r for t in trades],
        initial_capital=initial_capital,
    )
