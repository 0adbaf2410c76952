"""
Single-entry read-through cache with a fixed time-to-live.

Passed explicitly to the services that use it so tests can drive the clock.
"""

import threading
import time
from typing import Any, Callable, Optional

_MISSING = object()


class TTLCache:
    """Holds one value until it is older than ``ttl_seconds``."""

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._value = _MISSING
        self._stored_at: Optional[float] = None

    def get(self, default: Any = None) -> Any:
        with self._lock:
            if self._value is _MISSING:
                return default
            if self._clock() - self._stored_at >= self.ttl_seconds:
                self._value = _MISSING
                self._stored_at = None
                return default
            return self._value

    def set(self, value: Any):
        with self._lock:
            self._value = value
            self._stored_at = self._clock()

    def invalidate(self):
        with self._lock:
            self._value = _MISSING
            self._stored_at = None

    def get_or_compute(self, compute: Callable[[], Any], force_refresh: bool = False) -> Any:
        """Return the cached value, or compute and store a fresh one."""
        if not force_refresh:
            value = self.get(_MISSING)
            if value is not _MISSING:
                return value
        value = compute()
        self.set(value)
        return value
