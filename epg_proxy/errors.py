"""
Error taxonomy for the EPG proxy.

Fetch-layer errors are raised by the fetcher and absorbed by the lookup
layer into cache bookkeeping; they never reach a query caller.
"""
from typing import Optional


class EPGProxyError(Exception):
    """Base class for all EPG proxy errors."""
    pass


class FetchError(EPGProxyError):
    """Raised when a source document cannot be retrieved."""
    pass


class FetchTimeout(FetchError):
    """Raised when a fetch exceeds its time budget and was cancelled."""

    def __init__(self, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(f"Timeout ({timeout_ms}ms)")


class SourceTooLarge(FetchError):
    """Raised when a source exceeds the configured maximum size."""

    def __init__(self, size: int, limit: Optional[int] = None):
        self.size = size
        self.limit = limit
        super().__init__(f"Too large ({size} bytes)")


class UpstreamStatusError(FetchError):
    """Raised on a non-success HTTP status from the source."""

    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"Status {status_code}")


class NetworkError(FetchError):
    """Any other transport failure (DNS, connection reset, decoding...)."""
    pass
