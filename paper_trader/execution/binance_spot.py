"""
Binance Spot public market data (klines, 24h ticker) with retry and rate-limit handling.
No keys needed: paper trading never places orders.
"""

from __future__ import annotations
import logging
import time
from functools import wraps
from typing import Dict, Optional

import pandas as pd
import requests

from binance.client import Client
from binance.exceptions import BinanceAPIException, BinanceRequestException

from paper_trader.execution.base import MarketDataClient, MarketDataError

logger = logging.getLogger("paper_trader.execution.binance")

KLINE_COLUMNS = [
    "open_time", "open", "high", "low", "close", "volume",
    "close_time", "quote_av", "num_trades", "tb_base_av", "tb_quote_av", "ignore",
]


def retry_on_rate_limit(max_retries: int = 3, base_delay: float = 1.0):
    """Decorator: retry on 429 or 418 (rate limit), then surface failures as MarketDataError."""
    def decorator(f):
        @wraps(f)
        def wrapped(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return f(*args, **kwargs)
                except BinanceAPIException as e:
                    if e.status_code in (429, 418) and attempt < max_retries - 1:
                        delay = base_delay * (2 ** attempt)
                        logger.warning("Rate limited, retry in %.1fs (attempt %d)", delay, attempt + 1)
                        time.sleep(delay)
                        continue
                    raise MarketDataError(f"{f.__name__}: {e}") from e
                except (BinanceRequestException, requests.RequestException) as e:
                    raise MarketDataError(f"{f.__name__}: {e}") from e
            raise MarketDataError(f"{f.__name__}: retries exhausted")
        return wrapped
    return decorator


def klines_to_frame(raw: list) -> pd.DataFrame:
    """Raw kline rows to the bar frame: time, open, high, low, close, volume."""
    df = pd.DataFrame(raw, columns=KLINE_COLUMNS)
    df[["open", "high", "low", "close", "volume"]] = df[["open", "high", "low", "close", "volume"]].astype(float)
    df["time"] = pd.to_datetime(df["open_time"], unit="ms")
    return df[["time", "open", "high", "low", "close", "volume"]]


class BinanceSpotClient(MarketDataClient):
    """Public Binance Spot endpoints. Construction does no network I/O; the first request does."""

    def __init__(self, client: Optional[Client] = None, quote_asset: str = "USDT"):
        self._client = client if client is not None else Client(None, None, ping=False)
        self.quote_asset = quote_asset

    @retry_on_rate_limit(max_retries=3, base_delay=1.0)
    def get_klines(self, symbol: str, interval: str, limit: int = 300) -> pd.DataFrame:
        raw = self._client.get_klines(symbol=symbol, interval=interval, limit=limit)
        return klines_to_frame(raw)

    @retry_on_rate_limit(max_retries=2)
    def fetch_24h_change_percent(self) -> Dict[str, float]:
        tickers = self._client.get_ticker()
        out: Dict[str, float] = {}
        for t in tickers:
            symbol = t.get("symbol", "")
            if not symbol.endswith(self.quote_asset):
                continue
            try:
                out[symbol] = float(t.get("priceChangePercent", 0.0))
            except (TypeError, ValueError):
                continue
        return out
