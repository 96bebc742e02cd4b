"""
Core cache data structures.
"""
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional


class SourceState(Enum):
    """Per-source cache state, derived from a SourceRecord (never stored)."""
    COLD = "cold"           # No record yet
    FRESH = "fresh"         # Text present and within TTL
    STALE = "stale"         # Text present but past TTL
    COOLDOWN = "cooldown"   # Recent failure, network attempts suppressed


class Provenance(Enum):
    """Where a status observation came from."""
    MEMORY = "memory"
    PERSISTENT_CACHE = "persistent-cache"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class SourceRecord:
    """
    Cached state for one source URL.

    Records are immutable; every update builds a new record and swaps it
    into the store in one step, so readers never see a half-applied fetch.
    """
    cached_text: Optional[str] = None
    expire_at: float = 0.0
    last_fetch_at: float = 0.0
    last_error_at: float = 0.0   # 0 means no active error
    last_error_message: Optional[str] = None

    @property
    def has_text(self) -> bool:
        return self.cached_text is not None

    def is_fresh(self, now: float) -> bool:
        """Text present and not yet expired."""
        return self.has_text and now < self.expire_at

    def in_cooldown(self, now: float, cooldown_seconds: float) -> bool:
        """True while a recent failure keeps the circuit open."""
        return self.last_error_at != 0 and (now - self.last_error_at) < cooldown_seconds

    @classmethod
    def from_success(cls, text: str, now: float, ttl_seconds: float) -> "SourceRecord":
        """Record a successful fetch, clearing any previous error."""
        return cls(
            cached_text=text,
            expire_at=now + ttl_seconds,
            last_fetch_at=now,
            last_error_at=0.0,
            last_error_message=None,
        )

    def with_failure(self, message: str, now: float) -> "SourceRecord":
        """Record a failed fetch; cached text is deliberately left untouched."""
        return replace(
            self,
            last_fetch_at=now,
            last_error_at=now,
            last_error_message=message,
        )


@dataclass(frozen=True)
class SourceStatus:
    """
    Read-only status snapshot for one source, used by status pages.
    """
    timestamp_label: str
    provenance: Provenance
    error_message: Optional[str] = None
    fetched_at: Optional[float] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        return {
            "timestamp": self.timestamp_label,
            "provenance": self.provenance.value,
            "error": self.error_message,
            "fetchedAt": self.fetched_at,
        }
