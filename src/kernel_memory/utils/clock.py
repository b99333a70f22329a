"""Time sources for queues and pipeline timestamps.

Visibility timeouts, message expiry and ``last_update`` all read the time
through a clock, so tests can jump ahead instead of sleeping.
"""

import datetime
import time
from typing import Protocol

# 2024-01-01T00:00:00Z
FAKE_EPOCH = 1704067200.0


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.timezone.utc)


class ClockProtocol(Protocol):
    """Source of the current time."""

    def time(self) -> float:
        """Seconds since the Unix epoch."""
        ...

    def now(self) -> datetime.datetime:
        """Current UTC datetime, consistent with :meth:`time`."""
        ...


class SystemClock:
    """Wall clock."""

    def time(self) -> float:
        return time.time()

    def now(self) -> datetime.datetime:
        return utc_now()


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = FAKE_EPOCH) -> None:
        self._now = start

    def time(self) -> float:
        return self._now

    def now(self) -> datetime.datetime:
        return datetime.datetime.fromtimestamp(self._now, tz=datetime.timezone.utc)

    def advance(self, seconds: float) -> float:
        """Move time forward by *seconds* and return the new timestamp."""
        if seconds < 0:
            raise ValueError(f"Cannot move a clock backwards ({seconds}s)")
        self._now += seconds
        return self._now
