"""
Request coalescing to prevent duplicate source downloads.

When several queries need the same uncached source at once, only one
download is made and every caller shares its outcome.
"""
import threading
import time
import logging
from typing import Dict, Optional, Callable, Any
from dataclasses import dataclass, field

logger = logging.getLogger("epg.cache.coalescer")


@dataclass
class InFlightFetch:
    """Tracks an in-progress source download."""
    event: threading.Event = field(default_factory=threading.Event)
    result: Optional[Any] = None
    error: Optional[BaseException] = None
    started_at: float = field(default_factory=time.time)
    waiter_count: int = 0


class RequestCoalescer:
    """
    Ensures concurrent fetches for the same source URL share one download.

    Pattern:
    - First caller for a key runs the fetch
    - Later callers for the same key wait on the Event
    - Success and failure are both handed to every waiter unchanged
    - The in-flight marker is cleared on completion, so the next caller
      starts a fresh attempt

    Usage:
        coalescer = RequestCoalescer(timeout=25.0)
        text = coalescer.get_or_fetch(
            key="https://example.com/epg.xml.gz",
            fetch_fn=lambda: fetcher.read_text(url),
        )
    """

    def __init__(self, timeout: float = 30.0):
        """
        Initialize the coalescer.

        Args:
            timeout: Max seconds a waiter blocks on someone else's fetch
        """
        self._in_flight: Dict[str, InFlightFetch] = {}
        self._lock = threading.Lock()
        self._timeout = timeout
        self._fetch_count = 0

    def get_or_fetch(self, key: str, fetch_fn: Callable[[], Any]) -> Any:
        """
        Either join an existing in-flight fetch or start a new one.

        Args:
            key: Source identity (the URL)
            fetch_fn: Called only if no fetch for `key` is outstanding

        Returns:
            The fetched value, shared among all concurrent callers

        Raises:
            TimeoutError: If waiting on an in-flight fetch times out
            Exception: Any error from fetch_fn, re-raised to every caller
        """
        with self._lock:
            in_flight = self._in_flight.get(key)
            if in_flight is not None:
                in_flight.waiter_count += 1
                logger.debug(
                    f"Coalescing fetch for {key} "
                    f"(waiters: {in_flight.waiter_count})"
                )
                is_initiator = False
            else:
                in_flight = InFlightFetch()
                self._in_flight[key] = in_flight
                self._fetch_count += 1
                is_initiator = True
                logger.debug(f"Initiating fetch for {key}")

        if is_initiator:
            try:
                in_flight.result = fetch_fn()
            except Exception as e:
                in_flight.error = e
                logger.warning(f"Fetch failed for {key}: {e}")
            finally:
                with self._lock:
                    if self._in_flight.get(key) is in_flight:
                        del self._in_flight[key]
                in_flight.event.set()

            if in_flight.error is not None:
                raise in_flight.error
            return in_flight.result

        completed = in_flight.event.wait(timeout=self._timeout)
        if not completed:
            logger.error(f"Timeout waiting for coalesced fetch: {key}")
            raise TimeoutError(f"Fetch for {key} timed out after {self._timeout}s")

        if in_flight.error is not None:
            raise in_flight.error
        return in_flight.result

    def is_in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._in_flight

    def waiter_count(self, key: str) -> int:
        """Callers currently attached to someone else's fetch for `key`."""
        with self._lock:
            in_flight = self._in_flight.get(key)
            return in_flight.waiter_count if in_flight else 0

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight fetches."""
        with self._lock:
            return len(self._in_flight)

    @property
    def fetch_count(self) -> int:
        """Total fetches actually started (not joined)."""
        with self._lock:
            return self._fetch_count

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        with self._lock:
            return {
                "active_requests": len(self._in_flight),
                "active_keys": list(self._in_flight.keys()),
                "fetches_started": self._fetch_count,
            }
