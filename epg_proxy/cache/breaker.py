"""
Cooldown gate consulted before a new network fetch after a failure.
"""
import logging
from typing import Optional

from .core import SourceRecord

logger = logging.getLogger("epg.cache.breaker")


class CircuitBreaker:
    """
    Opens for `cooldown_seconds` after the last recorded failure of a source.

    The breaker keeps no state of its own; it reads `last_error_at` from the
    source's record, so success bookkeeping (which zeroes it) closes it.
    """

    def __init__(self, cooldown_seconds: float):
        self.cooldown_seconds = cooldown_seconds

    def is_open(self, record: Optional[SourceRecord], now: float) -> bool:
        """True when new network attempts must be suppressed."""
        if record is None:
            return False
        return record.in_cooldown(now, self.cooldown_seconds)

    def remaining(self, record: Optional[SourceRecord], now: float) -> float:
        """Seconds left in the current cooldown, 0 when closed."""
        if not self.is_open(record, now):
            return 0.0
        return self.cooldown_seconds - (now - record.last_error_at)

    def log_suppressed(self, url: str, record: SourceRecord, now: float) -> None:
        elapsed = now - record.last_error_at
        logger.warning(
            f"[Circuit Breaker] {url} in cooldown "
            f"({int(elapsed)}s / {int(self.cooldown_seconds)}s)."
        )
