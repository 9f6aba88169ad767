"""
Indicator library over bar series. Pure and deterministic.
Every function returns a float Series aligned to the input index, NaN until its window fills.
EMA, RSI and ATR are seeded with the simple mean of their first window (Wilder style), so a value
at index i depends only on inputs up to i.
"""

from __future__ import annotations
from typing import Sequence, Union

import numpy as np
import pandas as pd

ArrayLike = Union[pd.Series, Sequence[float], np.ndarray]


def _as_series(values: ArrayLike) -> pd.Series:
    if isinstance(values, pd.Series):
        return values.astype(float)
    return pd.Series(np.asarray(values, dtype=float))


def _seeded_ewm(values: pd.Series, start: int, period: int, alpha: float) -> pd.Series:
    """
    Recursive average seeded with mean(values[start - period + 1 : start + 1]) at index `start`,
    then out[i] = alpha * values[i] + (1 - alpha) * out[i - 1].
    """
    out = pd.Series(np.nan, index=values.index, dtype=float)
    if len(values) <= start:
        return out
    tail = values.iloc[start:].copy()
    tail.iloc[0] = values.iloc[start - period + 1 : start + 1].mean()
    out.iloc[start:] = tail.ewm(alpha=alpha, adjust=False).mean().to_numpy()
    return out


def sma(values: ArrayLike, period: int) -> pd.Series:
    """Simple moving average."""
    s = _as_series(values)
    return s.rolling(period, min_periods=period).mean()


def ema(values: ArrayLike, period: int) -> pd.Series:
    """Exponential moving average, k = 2 / (period + 1), seeded with the first SMA."""
    s = _as_series(values)
    return _seeded_ewm(s, period - 1, period, 2.0 / (period + 1))


def true_range(high: ArrayLike, low: ArrayLike, close: ArrayLike) -> pd.Series:
    """True range; undefined on the first bar (no previous close)."""
    h, l, c = _as_series(high), _as_series(low), _as_series(close)
    prev_close = c.shift(1)
    tr = pd.concat([h - l, (h - prev_close).abs(), (l - prev_close).abs()], axis=1).max(axis=1)
    tr.iloc[:1] = np.nan
    return tr


def atr(high: ArrayLike, low: ArrayLike, close: ArrayLike, period: int = 14) -> pd.Series:
    """Average true range with Wilder smoothing. First value at index `period`."""
    tr = true_range(high, low, close)
    return _seeded_ewm(tr, period, period, 1.0 / period)


def rsi(close: ArrayLike, period: int = 14) -> pd.Series:
    """Relative strength index with Wilder smoothing. 100 when there are no losses."""
    c = _as_series(close)
    delta = c.diff()
    gains = delta.clip(lower=0)
    losses = (-delta).clip(lower=0)
    avg_gain = _seeded_ewm(gains, period, period, 1.0 / period)
    avg_loss = _seeded_ewm(losses, period, period, 1.0 / period)
    rs = avg_gain / avg_loss.replace(0, np.nan)
    out = 100 - (100 / (1 + rs))
    out[(avg_loss == 0) & avg_gain.notna()] = 100.0
    return out


def rolling_mean_last(values: ArrayLike, window: int, positive_only: bool = False) -> pd.Series:
    """Mean of the defined values among the last `window` (inclusive), like a trailing average."""
    s = _as_series(values)
    if positive_only:
        s = s.where(s > 0)
    return s.rolling(window, min_periods=1).mean()


def pct_change_between(a: float, b: float) -> float:
    """(b - a) / a, 0 for undefined or zero base."""
    if a is None or b is None or not np.isfinite(a) or not np.isfinite(b) or a == 0:
        return 0.0
    return (b - a) / a
