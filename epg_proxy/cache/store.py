"""
Bounded in-memory store of SourceRecords, one per source URL.
"""
import threading
import logging
from typing import Dict, List, Optional

from .core import SourceRecord, SourceState

logger = logging.getLogger("epg.cache.store")

DEFAULT_CAPACITY = 5


class SourceCache:
    """
    Process-wide record store keyed by source URL.

    - At most `capacity` records; inserting a new URL when full evicts the
      URL inserted earliest (FIFO by insertion order, not by access)
    - Updating an existing URL keeps its insertion position
    - Every update swaps a whole immutable record under the lock
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._records: Dict[str, SourceRecord] = {}
        self._lock = threading.RLock()
        self._stats = {
            "hits_fresh": 0,
            "hits_stale": 0,
            "misses": 0,
            "evictions": 0,
        }

    @property
    def capacity(self) -> int:
        return self._capacity

    def get(self, url: str) -> Optional[SourceRecord]:
        """Current record for a URL, or None when cold."""
        with self._lock:
            return self._records.get(url)

    def state_of(self, url: str, now: float, cooldown_seconds: float) -> SourceState:
        """Derive the cache state for a URL. Cooldown is checked first."""
        record = self.get(url)
        if record is None:
            return SourceState.COLD
        if record.in_cooldown(now, cooldown_seconds):
            return SourceState.COOLDOWN
        if record.is_fresh(now):
            return SourceState.FRESH
        if record.has_text:
            return SourceState.STALE
        return SourceState.COLD

    def record_success(
        self,
        url: str,
        text: str,
        now: float,
        ttl_seconds: float,
    ) -> SourceRecord:
        """Store freshly fetched text and clear error state."""
        record = SourceRecord.from_success(text, now, ttl_seconds)
        self._put(url, record)
        logger.info(f"[Memory] Updated {len(text)} chars for {url}. TTL: {ttl_seconds}s")
        return record

    def record_failure(self, url: str, message: str, now: float) -> SourceRecord:
        """
        Record a failed fetch.

        Any cached text survives so it can be served stale-if-error.
        """
        with self._lock:
            existing = self._records.get(url) or SourceRecord()
            record = existing.with_failure(message, now)
            self._put(url, record)
        return record

    def note_hit(self, fresh: bool) -> None:
        with self._lock:
            self._stats["hits_fresh" if fresh else "hits_stale"] += 1

    def note_miss(self) -> None:
        with self._lock:
            self._stats["misses"] += 1

    def _put(self, url: str, record: SourceRecord) -> None:
        with self._lock:
            if url not in self._records and len(self._records) >= self._capacity:
                oldest = next(iter(self._records))
                del self._records[oldest]
                self._stats["evictions"] += 1
                logger.info(f"[Memory] Evicted {oldest} (capacity {self._capacity})")
            self._records[url] = record

    def urls(self) -> List[str]:
        """URLs in insertion order, oldest first."""
        with self._lock:
            return list(self._records.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, url: str) -> bool:
        with self._lock:
            return url in self._records

    def get_stats(self) -> Dict[str, object]:
        """Get store statistics."""
        with self._lock:
            return {
                "entries": len(self._records),
                "capacity": self._capacity,
                "urls": list(self._records.keys()),
                **self._stats,
            }
