"""Thread-safe counter and gauge metrics."""

from __future__ import annotations

import threading

_UINT64 = (1 << 64) - 1


class Counter:
    """A monotonically increasing count that also tracks per-interval deltas."""

    def __init__(self, name: str, desc: str = "") -> None:
        self.name = name
        self.desc = desc
        self._value = 0
        self._last_interval_value = 0
        self._last_interval_delta = 0
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        return self._value

    @property
    def interval_value(self) -> int:
        """Delta over the last interval, or the raw value before the first rotation."""
        with self._lock:
            if self._last_interval_value == 0:
                return self._value
            return self._last_interval_delta

    def inc(self) -> int:
        return self.add(1)

    def add(self, n: int) -> int:
        with self._lock:
            self._value = (self._value + n) & _UINT64
            return self._value

    def update_delta(self) -> None:
        """Record the change since the previous call as the interval delta."""
        with self._lock:
            now = self._value
            self._last_interval_delta = (now - self._last_interval_value) & _UINT64
            self._last_interval_value = now


class Gauge:
    """An unsigned 64-bit value that can be set, raised and lowered."""

    def __init__(self, name: str, desc: str = "") -> None:
        self.name = name
        self.desc = desc
        self._value = 0
        self._lock = threading.Lock()

    @property
    def value(self) -> int:
        return self._value

    def set(self, value: int) -> None:
        with self._lock:
            self._value = value & _UINT64

    def inc(self) -> int:
        with self._lock:
            self._value = (self._value + 1) & _UINT64
            return self._value

    def dec(self) -> int:
        with self._lock:
            self._value = (self._value - 1) & _UINT64
            return self._value