# =============================================
# File: telemetry/utils/caching.py
# Purpose: Single-slot TTL cache that can also hand back stale values
# =============================================

import threading
import time
from typing import Any, Optional


class SlotCache:
    """
    Holds one value and the time it was stored.
    - fresh(): value only if younger than ttl
    - stale(): value regardless of age (used when the upstream is rate limited)
    """
    def __init__(self, ttl_s: float):
        self.ttl_s = ttl_s
        self._lock = threading.Lock()
        self._value: Optional[Any] = None
        self._stored_at = 0.0

    def fresh(self, now: Optional[float] = None) -> Optional[Any]:
        now = time.time() if now is None else now
        with self._lock:
            if self._value is not None and now - self._stored_at < self.ttl_s:
                return self._value
        return None

    def stale(self) -> Optional[Any]:
        with self._lock:
            return self._value

    def set(self, value: Any, now: Optional[float] = None) -> None:
        with self._lock:
            self._value = value
            self._stored_at = time.time() if now is None else now

    def clear(self) -> None:
        with self._lock:
            self._value = None
            self._stored_at = 0.0
