"""
Short-lived tier cache.

- In-memory, keyed by user id.
- Clock is injected so expiry is testable without sleeping.
"""

import threading
import time
from typing import Callable, Dict, Optional, Tuple

from promptschola.features.entitlements.tiers import NormalizedTier

DEFAULT_TTL_SECONDS = 120.0


class TierCache:
    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, time_fn: Callable[[], float] = time.monotonic):
        self.ttl_seconds = max(0.0, ttl_seconds)
        self.time_fn = time_fn
        self._entries: Dict[str, Tuple[NormalizedTier, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[NormalizedTier]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, stored_at = entry
            if self.time_fn() - stored_at > self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def put(self, key: str, value: NormalizedTier, timestamp: Optional[float] = None) -> None:
        stored_at = self.time_fn() if timestamp is None else timestamp
        with self._lock:
            self._entries[key] = (value, stored_at)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
