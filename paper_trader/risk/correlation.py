"""Return vectors, Pearson correlation and the per-(symbol, interval) returns cache."""

from __future__ import annotations
import math
import time
from typing import Dict, Optional, Sequence, Tuple

import numpy as np


def returns_vector(closes: Sequence[float], lookback: int) -> np.ndarray:
    """Simple returns over the last max(5, min(lookback, n - 1)) bars; non-positive bases skipped."""
    c = np.asarray(closes, dtype=float)
    n = len(c)
    if n < 3:
        return np.array([], dtype=float)
    length = max(5, min(int(lookback), n - 1))
    start = max(1, n - length)
    prev = c[start - 1 : n - 1]
    cur = c[start:n]
    ok = np.isfinite(prev) & np.isfinite(cur) & (prev > 0)
    return (cur[ok] - prev[ok]) / prev[ok]


def pearson(a: Sequence[float], b: Sequence[float], min_samples: int = 10) -> Optional[float]:
    """Correlation of the aligned tails of a and b; None with fewer than min_samples or zero variance."""
    n = min(len(a), len(b))
    if n < min_samples:
        return None
    x = np.asarray(a, dtype=float)[-n:]
    y = np.asarray(b, dtype=float)[-n:]
    dx = x - x.mean()
    dy = y - y.mean()
    den = math.sqrt(float((dx * dx).sum() * (dy * dy).sum()))
    if not math.isfinite(den) or den <= 1e-12:
        return None
    return float((dx * dy).sum() / den)


class ReturnsCache:
    """Latest return vector per (symbol, interval), refreshed on every fetch of that symbol."""

    def __init__(self):
        self._data: Dict[Tuple[str, str], Tuple[np.ndarray, float]] = {}

    def update(self, symbol: str, interval: str, closes: Sequence[float], lookback: int) -> None:
        vec = returns_vector(closes, lookback)
        if len(vec):
            self._data[(symbol, interval)] = (vec, time.time())

    def get(self, symbol: str, interval: str) -> Optional[np.ndarray]:
        entry = self._data.get((symbol, interval))
        return entry[0] if entry else None

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return key in self._data
