"""Clock adapters implementing ClockPort."""

import time


class SystemClock:
    """Wall-clock time from ``time.time()``."""

    def now(self) -> float:
        return time.time()


class ManualClock:
    """A clock that only moves when told to. Used by tests and replays.

    Args:
        start: Initial Unix timestamp.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        """Move forward by ``seconds`` and return the new time."""
        if seconds < 0:
            raise ValueError("a clock cannot move backwards")
        self._now += seconds
        return self._now

    def set(self, timestamp: float) -> None:
        self._now = float(timestamp)
