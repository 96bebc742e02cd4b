"""
Source caching: bounded memory store, circuit breaker, request coalescing
and an optional persistent tier.
"""
from .core import Provenance, SourceRecord, SourceState, SourceStatus
from .store import SourceCache
from .breaker import CircuitBreaker
from .coalescer import RequestCoalescer
from .persistent import (
    CachedResponse,
    NullPersistentCache,
    PersistentCache,
    SqlitePersistentCache,
    create_persistent_cache,
    fetch_time_from_headers,
    sanitize_headers,
)

__all__ = [
    # Core types
    "Provenance",
    "SourceRecord",
    "SourceState",
    "SourceStatus",
    # Memory store
    "SourceCache",
    "CircuitBreaker",
    # Coalescing
    "RequestCoalescer",
    # Persistent tier
    "CachedResponse",
    "NullPersistentCache",
    "PersistentCache",
    "SqlitePersistentCache",
    "create_persistent_cache",
    "fetch_time_from_headers",
    "sanitize_headers",
]
