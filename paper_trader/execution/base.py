"""Abstract market-data interface: klines and 24h ticker changes."""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Dict

import pandas as pd


class MarketDataError(Exception):
    """A fetch from the market-data collaborator failed."""


class MarketDataClient(ABC):
    """Abstract client: OHLCV bars and the 24h change snapshot used to rank a universe."""

    @abstractmethod
    def get_klines(self, symbol: str, interval: str, limit: int = 300) -> pd.DataFrame:
        """Return OHLCV DataFrame with columns: time, open, high, low, close, volume."""
        pass

    @abstractmethod
    def fetch_24h_change_percent(self) -> Dict[str, float]:
        """Symbol -> 24h price change percent."""
        pass
