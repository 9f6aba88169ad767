"""Unit tests for utils.timeframes."""

import pandas as pd
import pytest
from paper_trader.utils.timeframes import pandas_rule, timeframe_delta, timeframe_minutes


def test_timeframe_minutes():
    assert timeframe_minutes("5m") == 5
    assert timeframe_minutes("1h") == 60
    assert timeframe_minutes("4h") == 240
    assert timeframe_minutes("1d") == 1440
    assert timeframe_minutes("1w") == 10080


def test_timeframe_invalid():
    with pytest.raises(ValueError):
        timeframe_minutes("1x")
    with pytest.raises(ValueError):
        timeframe_minutes("m")


def test_timeframe_delta_and_rule():
    assert timeframe_delta("15m") == pd.Timedelta(minutes=15)
    assert pandas_rule("1h") == "60min"
