"""Utils: timeframes."""

from paper_trader.utils.timeframes import timeframe_minutes, timeframe_delta, pandas_rule

__all__ = ["timeframe_minutes", "timeframe_delta", "pandas_rule"]
