"""TTL cache keyed by (symbol, interval) with explicit expiry timestamps."""

from __future__ import annotations
import time
from typing import Any, Callable, Dict, Generic, Hashable, Optional, Tuple, TypeVar

T = TypeVar("T")


class TTLCache(Generic[T]):
    """Entries expire at a fixed timestamp chosen when they are stored."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, T]] = {}

    def get(self, key: Hashable) -> Optional[T]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def put(self, key: Hashable, value: T, ttl_sec: float) -> None:
        self._entries[key] = (self._clock() + max(0.0, ttl_sec), value)

    def expires_at(self, key: Hashable) -> Optional[float]:
        entry = self._entries.get(key)
        return entry[0] if entry else None

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
