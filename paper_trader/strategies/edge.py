"""Rolling expectancy of recent closed trades, fed back into the momentum model."""

from __future__ import annotations
from collections import deque
from typing import Deque


class EdgeTracker:
    """Keeps the last `window` net PnLs; trades_count counts every trade ever added."""

    def __init__(self, window: int = 50):
        self.window = max(5, int(window))
        self._samples: Deque[float] = deque(maxlen=self.window)
        self.trades_count = 0

    def add_trade(self, net_pnl: float) -> None:
        try:
            v = float(net_pnl)
        except (TypeError, ValueError):
            return
        if v != v:  # NaN
            return
        self._samples.append(v)
        self.trades_count += 1

    def rolling_expectancy(self) -> float:
        if not self._samples:
            return 0.0
        return sum(self._samples) / len(self._samples)

    def rolling_win_rate(self) -> float:
        if not self._samples:
            return 0.0
        return sum(1 for x in self._samples if x > 0) / len(self._samples)

    def __len__(self) -> int:
        return len(self._samples)
