"""Execution: market-data interface, Binance Spot public client, higher-timeframe snapshots."""

from paper_trader.execution.base import MarketDataClient, MarketDataError
from paper_trader.execution.binance_spot import BinanceSpotClient, klines_to_frame
from paper_trader.execution.cache import TTLCache
from paper_trader.execution.mtf import HigherTimeframeProvider, HtfSnapshot, snapshot_from_bars

__all__ = [
    "MarketDataClient",
    "MarketDataError",
    "BinanceSpotClient",
    "klines_to_frame",
    "TTLCache",
    "HigherTimeframeProvider",
    "HtfSnapshot",
    "snapshot_from_bars",
]
