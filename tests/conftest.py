"""Shared synthetic bar series and config fixtures."""

import numpy as np
import pandas as pd
import pytest

from paper_trader.core.config import Config


def make_bars(closes, ranges=None, volumes=None, start="2024-01-01", freq="15min", body=0.2):
    """OHLCV frame around the given closes; open sits `body` below close."""
    closes = np.asarray(closes, dtype=float)
    n = len(closes)
    ranges = np.full(n, 0.2) if ranges is None else np.asarray(ranges, dtype=float)
    volumes = np.full(n, 1000.0) if volumes is None else np.asarray(volumes, dtype=float)
    return pd.DataFrame({
        "time": pd.date_range(start, periods=n, freq=freq),
        "open": closes - body,
        "high": closes + ranges,
        "low": closes - np.maximum(ranges, body),
        "close": closes,
        "volume": volumes,
    })


def rising_series(n=400):
    """close = 100 + 0.5 i; every 5th bar (i % 5 == 4) has a wider range and double volume."""
    i = np.arange(n)
    expanded = i % 5 == 4
    closes = 100.0 + 0.5 * i
    ranges = np.where(expanded, 1.0, 0.3)
    volumes = np.where(expanded, 2000.0, 1000.0)
    return make_bars(closes, ranges, volumes)


@pytest.fixture
def flat_bars():
    return make_bars(np.full(320, 100.0), body=0.0)


@pytest.fixture
def rising_bars():
    return rising_series(400)


@pytest.fixture
def wavy_bars():
    """Noisy closes for correlation tests."""
    i = np.arange(120)
    closes = 100.0 + 2.0 * np.sin(i * 0.7) + 0.01 * i
    return make_bars(closes)


@pytest.fixture
def config():
    return Config()


@pytest.fixture
def frictionless():
    """No spread, slippage or latency; 0.1% fee."""
    return Config(
        exec_spread_bps=0.0,
        exec_slippage_bps=0.0,
        exec_latency_ms=0.0,
        fee_mode="CUSTOM",
        fee_pct_custom=0.1,
    )
