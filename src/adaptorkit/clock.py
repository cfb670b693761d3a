"""Time sources used for session expiry and assertion validity windows."""

from __future__ import annotations

import datetime as dt
import threading
import time
from typing import Protocol


class TimeProvider(Protocol):
    def current_time_millis(self) -> int:
        """Return milliseconds since the Unix epoch."""


class SystemTimeProvider:
    """Wall-clock time."""

    def current_time_millis(self) -> int:
        return time.time_ns() // 1_000_000


class MockTimeProvider:
    """Settable clock for tests and simulations."""

    def __init__(self, start_millis: int = 0) -> None:
        self._lock = threading.Lock()
        self._now = start_millis

    def current_time_millis(self) -> int:
        with self._lock:
            return self._now

    def set(self, millis: int) -> None:
        with self._lock:
            self._now = millis

    def advance(self, millis: int) -> int:
        with self._lock:
            self._now += millis
            return self._now


def millis_to_datetime(millis: int) -> dt.datetime:
    return dt.datetime.fromtimestamp(millis / 1000, tz=dt.timezone.utc)


def datetime_to_millis(moment: dt.datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=dt.timezone.utc)
    return int(moment.timestamp() * 1000)


__all__ = [
    "MockTimeProvider",
    "SystemTimeProvider",
    "TimeProvider",
    "datetime_to_millis",
    "millis_to_datetime",
]
