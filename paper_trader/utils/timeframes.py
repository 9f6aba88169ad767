"""Timeframe string conversions."""

import pandas as pd

_UNIT_MINUTES = {"m": 1, "h": 60, "d": 60 * 24, "w": 60 * 24 * 7, "M": 60 * 24 * 30}


def timeframe_minutes(tf: str) -> int:
    """Convert Binance-style timeframe (e.g. '5m', '1h', '1d', '1w', '1M') to minutes."""
    tf = tf.strip()
    unit = tf[-1:] if tf[-1:] == "M" else tf[-1:].lower()
    if unit not in _UNIT_MINUTES or not tf[:-1].isdigit() or int(tf[:-1]) <= 0:
        raise ValueError(f"Unsupported timeframe: {tf}")
    return int(tf[:-1]) * _UNIT_MINUTES[unit]


def timeframe_delta(tf: str) -> pd.Timedelta:
    """Bar duration as a Timedelta."""
    return pd.Timedelta(minutes=timeframe_minutes(tf))


def pandas_rule(tf: str) -> str:
    """Resample rule for a timeframe ('15m' -> '15min', '4h' -> '240min')."""
    return f"{timeframe_minutes(tf)}min"
