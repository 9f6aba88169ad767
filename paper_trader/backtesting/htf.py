"""
Higher-timeframe snapshots during replay: the bars seen so far are resampled to the
confirmation interval, so gate 3 never reads a bar after the cursor.
"""

from __future__ import annotations
import logging
from typing import Dict, Optional, Tuple

import pandas as pd

from paper_trader.core.config import Config
from paper_trader.execution.mtf import HtfSnapshot, snapshot_from_bars
from paper_trader.utils.timeframes import pandas_rule

logger = logging.getLogger("paper_trader.backtest")

_OHLCV = {"open": "first", "high": "max", "low": "min", "close": "last", "volume": "sum"}


def resample_bars(bars: pd.DataFrame, interval: str) -> pd.DataFrame:
    """OHLCV bars aggregated to `interval`; the last bucket may be partial."""
    if bars.empty or "time" not in bars.columns:
        return bars.iloc[0:0]
    out = (
        bars.set_index(pd.to_datetime(bars["time"]))[list(_OHLCV)]
        .resample(pandas_rule(interval), label="left", closed="left")
        .agg(_OHLCV)
        .dropna(subset=["close"])
    )
    out.index.name = "time"
    return out.reset_index()


class ResampledHtfProvider:
    """Same get_snapshot() contract as the live provider, backed by the replayed prefix."""

    def __init__(self, bars: pd.DataFrame, config: Config):
        self.bars = bars.reset_index(drop=True)
        self.config = config
        self.cursor = len(self.bars) - 1
        self._cache: Dict[Tuple[str, int], Optional[HtfSnapshot]] = {}

    def set_cursor(self, index: int) -> None:
        self.cursor = index

    def get_snapshot(self, symbol: str, interval: str) -> Optional[HtfSnapshot]:
        key = (interval, self.cursor)
        if key not in self._cache:
            prefix = self.bars.iloc[: self.cursor + 1]
            htf = resample_bars(prefix, interval)
            self._cache[key] = snapshot_from_bars(htf, interval, self.config.mtf_min_trend_strength)
            logger.debug("Replay HTF %s %s @%d: %s", symbol, interval, self.cursor, self._cache[key])
        return self._cache[key]
