"""
Metrics Layer - Clock.

============================================================
RESPONSIBILITY
============================================================
Single source of time for cache TTLs, bundle timestamps and
fallback identifiers.

- Millisecond epoch time for TTL arithmetic
- UTC datetimes for payload timestamps
- Mockable so TTL boundaries are testable to the millisecond

============================================================
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Generator, Optional
import threading
import time


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Abstract interface for the layer clock."""

    @abstractmethod
    def now(self) -> datetime:
        """Get current UTC datetime."""
        pass

    @abstractmethod
    def now_ms(self) -> int:
        """Get current Unix time in milliseconds."""
        pass

    def format_iso(self, dt: Optional[datetime] = None) -> str:
        """Format datetime as ISO 8601."""
        dt = dt or self.now()
        return dt.isoformat()


# ============================================================
# SYSTEM CLOCK (PRODUCTION)
# ============================================================

class SystemClock(ClockProtocol):
    """Production clock using actual system time. All times are UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def now_ms(self) -> int:
        return int(time.time() * 1000)


# ============================================================
# MOCK CLOCK (TESTING)
# ============================================================

class MockClock(ClockProtocol):
    """
    Mock clock for testing.

    Time only moves when the test moves it.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        """
        Initialize mock clock.

        Args:
            initial_time: Starting time (defaults to 2024-01-01 UTC)
        """
        self._time = initial_time or datetime(2024, 1, 1, tzinfo=timezone.utc)
        if self._time.tzinfo is None:
            self._time = self._time.replace(tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._time

    def now_ms(self) -> int:
        with self._lock:
            return int(round(self._time.timestamp() * 1000))

    def set_time(self, new_time: datetime) -> None:
        """Set the current time."""
        with self._lock:
            if new_time.tzinfo is None:
                new_time = new_time.replace(tzinfo=timezone.utc)
            self._time = new_time

    def advance(self, seconds: float = 0, ms: float = 0, **kwargs) -> None:
        """
        Advance time by the specified amount.

        Args:
            seconds: Number of seconds to advance
            ms: Number of milliseconds to advance
            **kwargs: Passed to timedelta (hours, minutes, days, etc.)
        """
        with self._lock:
            delta = timedelta(seconds=seconds, milliseconds=ms, **kwargs)
            self._time = self._time + delta

    @contextmanager
    def freeze(self, at_time: Optional[datetime] = None) -> Generator[None, None, None]:
        """
        Context manager to pin time, restoring the previous value on exit.

        Args:
            at_time: Time to freeze at (defaults to current)
        """
        with self._lock:
            original_time = self._time
            if at_time:
                if at_time.tzinfo is None:
                    at_time = at_time.replace(tzinfo=timezone.utc)
                self._time = at_time

        try:
            yield
        finally:
            with self._lock:
                self._time = original_time


# ============================================================
# GLOBAL CLOCK
# ============================================================

_clock: ClockProtocol = SystemClock()


def get_clock() -> ClockProtocol:
    """Get the layer-wide clock."""
    return _clock


def set_clock(clock: ClockProtocol) -> None:
    """Replace the layer-wide clock (tests)."""
    global _clock
    _clock = clock
