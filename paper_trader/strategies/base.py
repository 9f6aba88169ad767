"""Abstract decision model: indicators + decision on the last bar."""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Optional

import numpy as np
import pandas as pd

from paper_trader.core.config import Config
from paper_trader.core.types import Decision, Signal
from paper_trader.indicators import atr, ema, rsi, sma


def value_at(row: pd.Series, column: str) -> Optional[float]:
    """Float value of a column, None when missing or NaN."""
    v = row.get(column)
    if v is None or pd.isna(v):
        return None
    return float(v)


class BaseModel(ABC):
    """
    Model computes indicator columns once over a bar series, then decides on the last row.
    Indicators are causal: row i only depends on rows <= i, so a backtest can compute them on the
    full series and pass df.iloc[:i + 1] without lookahead.
    """

    name: str = "base"
    min_bars: int = 1

    def __init__(self, config: Config):
        self.config = config

    def compute_indicators(self, df: pd.DataFrame) -> pd.DataFrame:
        """Add the shared columns (EMA 9/21, SMA 200, RSI 14, ATR) to an OHLCV DataFrame."""
        df = df.copy()
        df["ema_fast"] = ema(df["close"], 9)
        df["ema_slow"] = ema(df["close"], 21)
        df["ma200"] = sma(df["close"], 200)
        df["rsi"] = rsi(df["close"], 14)
        df["atr"] = atr(df["high"], df["low"], df["close"], self.config.atr_period)
        return df

    def decide(self, df: pd.DataFrame, edge=None, **kwargs: Any) -> Decision:
        """Decision for the last row of an indicator frame. Short frames give HOLD/INSUFFICIENT_DATA."""
        if df is None or len(df) < self.min_bars:
            return self.insufficient(df)
        return self._decide(df, edge, **kwargs)

    def evaluate(self, bars: pd.DataFrame, edge=None, **kwargs: Any) -> Decision:
        """compute_indicators + decide, for one-shot use (live, comparator)."""
        if bars is None or len(bars) < self.min_bars:
            return self.insufficient(bars)
        return self.decide(self.compute_indicators(bars), edge, **kwargs)

    @abstractmethod
    def _decide(self, df: pd.DataFrame, edge=None, **kwargs: Any) -> Decision:
        pass

    def insufficient(self, df: Optional[pd.DataFrame]) -> Decision:
        last = None
        if df is not None and len(df) > 0:
            last = float(df["close"].iloc[-1])
        return Decision(model=self.name, signal=Signal.HOLD, reason="INSUFFICIENT_DATA", last=last)

    @staticmethod
    def common_fields(row: pd.Series) -> dict:
        """Metrics every model reports (used by the gate pipeline and trade idea)."""
        last = float(row["close"])
        e9 = value_at(row, "ema_fast")
        e21 = value_at(row, "ema_slow")
        m200 = value_at(row, "ma200")
        a = value_at(row, "atr")
        trend_strength = abs(e9 - e21) / max(1e-9, last) if e9 is not None and e21 is not None else 0.0
        return {
            "last": last,
            "atr": a,
            "atr_pct": a / max(1e-9, last) if a is not None else 0.0,
            "trend_strength": trend_strength,
            "ema_fast": e9,
            "ema_slow": e21,
            "ma200": m200,
            "rsi": value_at(row, "rsi"),
            "bull_regime": m200 is not None and last > m200,
            "bear_regime": m200 is not None and last < m200,
            "timestamp": _timestamp(row),
        }


def _timestamp(row: pd.Series):
    t = row.get("time")
    if t is None or (not isinstance(t, pd.Timestamp) and pd.isna(t)):
        return None
    return pd.Timestamp(t).to_pydatetime()


def clamp(x: float, lo: float, hi: float) -> float:
    return float(np.clip(x, lo, hi))
