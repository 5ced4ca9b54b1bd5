"""
Clock implementations.

The event log asks a clock for the append timestamp. Production uses the
system clock in UTC; tests use a manual clock they advance explicitly.
"""

import threading
from datetime import datetime, timedelta, timezone


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """
    Deterministic time source.

    Starts at a fixed instant and only moves when tick() is called, so
    tests can assert exact timestamps.
    """

    def __init__(self, start: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)) -> None:
        self._current = start
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._current

    def tick(self, seconds: float = 1.0) -> datetime:
        """Advance clock by seconds and return the new time."""
        with self._lock:
            self._current = self._current + timedelta(seconds=seconds)
            return self._current

    def set(self, value: datetime) -> None:
        """Jump to an arbitrary instant (may go backwards)."""
        with self._lock:
            self._current = value
