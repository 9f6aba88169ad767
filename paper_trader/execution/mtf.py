"""
Higher-timeframe confirmation snapshot: EMA 9/21, SMA 200 and trend strength of the
last bar of a higher interval. Live snapshots are cached per (symbol, interval) for
max(20 s, bar / 3).
"""

from __future__ import annotations
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import pandas as pd

from paper_trader.core.config import Config
from paper_trader.execution.base import MarketDataClient, MarketDataError
from paper_trader.execution.cache import TTLCache
from paper_trader.indicators import ema, sma
from paper_trader.utils.timeframes import timeframe_minutes

logger = logging.getLogger("paper_trader.execution.mtf")


@dataclass(frozen=True)
class HtfSnapshot:
    interval: str
    last: float
    ema_fast: Optional[float]
    ema_slow: Optional[float]
    ma200: Optional[float]
    trend_strength: float
    bull_regime: bool
    bear_regime: bool
    ok: bool


def _last(series: pd.Series) -> Optional[float]:
    v = series.iloc[-1]
    return None if pd.isna(v) else float(v)


def snapshot_from_bars(bars: pd.DataFrame, interval: str, min_trend_strength: float) -> Optional[HtfSnapshot]:
    """Snapshot of the last bar; None with fewer than 2 bars. ok needs SMA200, both EMAs and enough trend."""
    if bars is None or len(bars) < 2:
        return None
    close = bars["close"].astype(float)
    last = float(close.iloc[-1])
    e9 = _last(ema(close, 9))
    e21 = _last(ema(close, 21))
    m200 = _last(sma(close, 200))
    trend = abs(e9 - e21) / max(1e-9, last) if e9 is not None and e21 is not None else 0.0
    return HtfSnapshot(
        interval=interval,
        last=last,
        ema_fast=e9,
        ema_slow=e21,
        ma200=m200,
        trend_strength=trend,
        bull_regime=m200 is not None and last > m200,
        bear_regime=m200 is not None and last < m200,
        ok=m200 is not None and e9 is not None and e21 is not None and trend >= min_trend_strength,
    )


class HigherTimeframeProvider:
    """Fetches and caches HTF snapshots. Fetch failures surface as MarketDataError."""

    def __init__(
        self,
        client: MarketDataClient,
        config: Config,
        cache: Optional[TTLCache] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.config = config
        self.cache = cache if cache is not None else TTLCache(clock)

    @staticmethod
    def ttl_seconds(interval: str) -> float:
        return max(20.0, timeframe_minutes(interval) * 60.0 / 3.0)

    def get_snapshot(self, symbol: str, interval: str) -> Optional[HtfSnapshot]:
        key = (symbol, interval)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        try:
            bars = self.client.get_klines(symbol, interval, max(220, self.config.bars_limit))
        except MarketDataError:
            raise
        except Exception as e:
            raise MarketDataError(f"HTF fetch {symbol} {interval}: {e}") from e
        snap = snapshot_from_bars(bars, interval, self.config.mtf_min_trend_strength)
        if snap is not None:
            self.cache.put(key, snap, self.ttl_seconds(interval))
        logger.debug("HTF snapshot %s %s: %s", symbol, interval, snap)
        return snap
