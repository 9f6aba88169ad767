"""Indicators: moving averages, RSI, ATR over pandas series."""

from paper_trader.indicators.series import (
    sma,
    ema,
    rsi,
    atr,
    true_range,
    rolling_mean_last,
    pct_change_between,
)

__all__ = [
    "sma",
    "ema",
    "rsi",
    "atr",
    "true_range",
    "rolling_mean_last",
    "pct_change_between",
]
