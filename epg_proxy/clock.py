"""
Injectable clock so TTL and cooldown logic can be driven deterministically.
"""
import time


class Clock:
    """Wall clock in epoch seconds."""

    def now(self) -> float:
        return time.time()


class FakeClock(Clock):
    """
    Manually advanced clock for tests.

    Usage:
        clock = FakeClock(start=1_700_000_000)
        clock.advance(30)
    """

    def __init__(self, start: float = 0.0):
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        self._now += seconds
        return self._now

    def set(self, timestamp: float) -> None:
        self._now = float(timestamp)
