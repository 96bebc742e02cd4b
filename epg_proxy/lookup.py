"""
Resilient channel+date lookup over cached EPG sources.

Composes CircuitBreaker -> SourceCache -> RequestCoalescer -> SourceFetcher
-> QueryEngine, with primary/backup source fallback. Fetch failures are
absorbed into cache bookkeeping and never reach the caller.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config.settings import Settings, settings as default_settings
from .cache import (
    CircuitBreaker,
    Provenance,
    RequestCoalescer,
    SourceCache,
    SourceState,
    SourceStatus,
    create_persistent_cache,
    fetch_time_from_headers,
)
from .clock import Clock
from .errors import FetchError
from .fetcher import SourceFetcher
from .models import QueryResult
from .query import QueryEngine

logger = logging.getLogger("epg.lookup")

LABEL_WAITING_UPDATE = "waiting for update"
LABEL_AWAITING_CALL = "awaiting first call"

# Extra seconds a coalesced waiter allows beyond the fetch budget
COALESCE_MARGIN_SECONDS = 5.0


class ResilientLookup:
    """
    Answers (channel, date) queries against primary and backup sources.

    Per source, evaluated in order:
    1. Circuit open after a recent failure: answer from cached text if any
       (even stale), never fetch
    2. Fresh cached text: answer from it
    3. Otherwise fetch (coalesced). On failure fall back to cached text
       (stale-if-error) or an empty result
    """

    def __init__(
        self,
        settings: Settings,
        clock: Optional[Clock] = None,
        fetcher: Optional[SourceFetcher] = None,
        cache: Optional[SourceCache] = None,
        breaker: Optional[CircuitBreaker] = None,
        coalescer: Optional[RequestCoalescer] = None,
        engine: Optional[QueryEngine] = None,
    ):
        self.settings = settings
        self.clock = clock or Clock()
        self.fetcher = fetcher or SourceFetcher(
            settings,
            persistent_cache=create_persistent_cache(
                settings.cache_enabled, settings.cache_directory
            ),
            clock=self.clock,
        )
        self.cache = cache or SourceCache(capacity=settings.memory_cache_capacity)
        self.breaker = breaker or CircuitBreaker(settings.error_cooldown_seconds)
        self.coalescer = coalescer or RequestCoalescer(
            timeout=settings.fetch_timeout_seconds + COALESCE_MARGIN_SECONDS
        )
        self.engine = engine or QueryEngine()

    # =========================================================================
    # Queries
    # =========================================================================

    def find(self, channel: str, date: str) -> QueryResult:
        """
        Query the primary source, then the backup if the primary had nothing.

        The backup result only wins when it has at least one program.
        """
        result = self.lookup(self.settings.epg_url, channel, date)

        backup_url = self.settings.epg_url_backup
        if result.is_empty and backup_url:
            logger.info("Primary source empty/failed, trying backup...")
            backup_result = self.lookup(backup_url, channel, date)
            if not backup_result.is_empty:
                return backup_result

        return result

    def lookup(self, source_url: Optional[str], channel: str, date: str) -> QueryResult:
        """Resolve a query against one source. Never raises for fetch failures."""
        if not source_url:
            return QueryResult.empty(date)

        text = self.get_text(source_url)
        if text is None:
            return QueryResult.empty(date)
        return self.engine.resolve_and_extract(text, channel, date)

    def get_text(self, source_url: str) -> Optional[str]:
        """
        Document text to answer against, or None when nothing is usable.
        """
        now = self.clock.now()
        record = self.cache.get(source_url)

        if self.breaker.is_open(record, now):
            self.breaker.log_suppressed(source_url, record, now)
            if record.has_text:
                self.cache.note_hit(fresh=False)
            return record.cached_text

        if record is not None and record.is_fresh(now):
            self.cache.note_hit(fresh=True)
            return record.cached_text

        self.cache.note_miss()
        try:
            text = self.coalescer.get_or_fetch(
                source_url,
                lambda: self._fetch_and_store(source_url),
            )
        except (FetchError, TimeoutError) as e:
            # The initiating caller already recorded the failure
            logger.error(f"[Fetch Failed] Source: {source_url}, Error: {e}")
            stale = self.cache.get(source_url)
            if stale is not None and stale.has_text:
                logger.warning(f"[Stale-If-Error] Serving expired data for {source_url}.")
                return stale.cached_text
            return None

        return text

    def _fetch_and_store(self, source_url: str) -> str:
        """Run one download and apply its outcome to the cache in one step."""
        started = self.clock.now()
        try:
            text = self.fetcher.read_text(source_url)
        except (FetchError, TimeoutError) as e:
            self.cache.record_failure(source_url, str(e), started)
            raise

        # A fresh persistent copy counts as a new fetch here, so served text
        # can be up to two TTLs old before the network is used again.
        if len(text) < self.settings.max_memory_cache_chars:
            self.cache.record_success(source_url, text, started, self.settings.cache_ttl)
        else:
            logger.warning(
                f"[Memory] {source_url} is {len(text)} chars, over the "
                f"{self.settings.max_memory_cache_chars} limit; not cached"
            )
        return text

    # =========================================================================
    # Status
    # =========================================================================

    def state_of(self, source_url: str) -> SourceState:
        return self.cache.state_of(
            source_url, self.clock.now(), self.breaker.cooldown_seconds
        )

    def status_of(self, source_url: Optional[str]) -> Optional[SourceStatus]:
        """
        Last-update status of a source. Read-only: never fetches or mutates.

        Memory is checked first since it is the most current and carries
        errors; the persistent cache covers the gap after a restart.
        """
        if not source_url:
            return None

        record = self.cache.get(source_url)
        if record is not None:
            return SourceStatus(
                timestamp_label=self.format_timestamp(record.last_fetch_at),
                provenance=Provenance.MEMORY,
                error_message=record.last_error_message,
                fetched_at=record.last_fetch_at or None,
            )

        persistent = self.fetcher.persistent_cache
        if persistent.available:
            # Headers only; the stored body can be as large as a download
            try:
                headers = persistent.match_headers(source_url)
            except Exception as e:
                logger.debug(f"[Persistent] Status lookup failed for {source_url}: {e}")
                headers = None
            fetched_at = fetch_time_from_headers(headers) if headers else None
            if fetched_at:
                return SourceStatus(
                    timestamp_label=self.format_timestamp(fetched_at),
                    provenance=Provenance.PERSISTENT_CACHE,
                    fetched_at=fetched_at,
                )

        return SourceStatus(
            timestamp_label=LABEL_AWAITING_CALL,
            provenance=Provenance.UNKNOWN,
        )

    def status_snapshot(self) -> Dict[str, Optional[dict]]:
        """Status of the configured main and backup sources."""
        main = self.status_of(self.settings.epg_url)
        backup = self.status_of(self.settings.epg_url_backup)
        return {
            "main": main.to_dict() if main else None,
            "backup": backup.to_dict() if backup else None,
        }

    def format_timestamp(self, timestamp: Optional[float]) -> str:
        """Format epoch seconds as MM-DD HH:MM:SS in the display timezone."""
        if not timestamp:
            return LABEL_WAITING_UPDATE
        try:
            tz = ZoneInfo(self.settings.display_timezone)
        except ZoneInfoNotFoundError:
            tz = timezone.utc
        return datetime.fromtimestamp(timestamp, tz).strftime("%m-%d %H:%M:%S")

    def close(self) -> None:
        """Stop the fetcher's persistence worker and HTTP session."""
        logger.info("Shutting down source fetcher")
        self.fetcher.close()

    def get_stats(self) -> Dict[str, object]:
        return {
            "store": self.cache.get_stats(),
            "coalescer": self.coalescer.get_stats(),
            "persistent_cache": self.fetcher.persistent_cache.available,
        }


# Global lookup instance
_lookup: Optional[ResilientLookup] = None


def get_lookup() -> ResilientLookup:
    """Get or create the global lookup service."""
    global _lookup
    if _lookup is None:
        _lookup = ResilientLookup(default_settings)
    return _lookup


def set_lookup(lookup: Optional[ResilientLookup]) -> None:
    """Replace the global lookup service (None resets it)."""
    global _lookup
    _lookup = lookup


def close_lookup() -> None:
    """Release the global lookup's fetcher resources, if one was created."""
    global _lookup
    if _lookup is not None:
        _lookup.close()
        _lookup = None
