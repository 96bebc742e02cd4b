"""
Timeout- and size-bounded retrieval of remote EPG documents.

Bodies are handled as chunk iterators so a large document is never held
twice in memory by the fetch layer itself. Gzip payloads are detected from
the URL suffix or content-type and inflated on the fly.
"""
import codecs
import logging
import queue
import threading
import zlib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, Optional
from urllib.parse import urlparse

import requests

from config.settings import Settings
from .cache.persistent import (
    CachedResponse,
    NullPersistentCache,
    PersistentCache,
    find_header,
    sanitize_headers,
)
from .clock import Clock
from .errors import (
    FetchError,
    FetchTimeout,
    NetworkError,
    SourceTooLarge,
    UpstreamStatusError,
)

logger = logging.getLogger("epg.fetcher")

CHUNK_SIZE = 64 * 1024
GZIP_WBITS = 16 + zlib.MAX_WBITS
GZIP_CONTENT_TYPES = ("application/gzip", "application/x-gzip")

_DONE = object()
_ABORT = object()


def is_gzip_content(headers: Dict[str, str], url: str) -> bool:
    """Decide compression from the URL suffix or the declared content-type."""
    if url.endswith(".gz") or urlparse(url).path.endswith(".gz"):
        return True
    content_type = (find_header(headers, "content-type") or "").lower()
    return any(kind in content_type for kind in GZIP_CONTENT_TYPES)


def iter_gunzip(chunks: Iterable[bytes]) -> Iterator[bytes]:
    """Inflate a gzip byte stream, including multi-member files."""
    decompressor = zlib.decompressobj(GZIP_WBITS)
    try:
        for chunk in chunks:
            while chunk:
                out = decompressor.decompress(chunk)
                if out:
                    yield out
                if decompressor.eof:
                    chunk = decompressor.unused_data
                    decompressor = zlib.decompressobj(GZIP_WBITS)
                else:
                    chunk = b""
        tail = decompressor.flush()
        if tail:
            yield tail
    except zlib.error as e:
        raise NetworkError(f"Invalid gzip data: {e}") from e


def iter_gzip(chunks: Iterable[bytes]) -> Iterator[bytes]:
    """Gzip-compress a byte stream."""
    compressor = zlib.compressobj(wbits=GZIP_WBITS)
    for chunk in chunks:
        out = compressor.compress(chunk)
        if out:
            yield out
    yield compressor.flush()


@dataclass
class FetchedSource:
    """A source body ready to be consumed once, chunk by chunk."""
    url: str
    chunks: Iterator[bytes]
    is_compressed: bool
    headers: Dict[str, str] = field(default_factory=dict)
    from_persistent: bool = False


class SourceFetcher:
    """
    Fetches source documents with a hard time budget and size limit.

    - A cancellation timer closes the response when the budget runs out;
      the failure then surfaces as FetchTimeout
    - A declared Content-Length over the limit fails before any body is read
    - When a persistent cache is available, a still-fresh stored copy is
      served instead of downloading, and every download is also written to
      it on a background worker without slowing the caller
    """

    def __init__(
        self,
        settings: Settings,
        persistent_cache: Optional[PersistentCache] = None,
        clock: Optional[Clock] = None,
        session: Optional[requests.Session] = None,
        max_persist_workers: int = 2,
    ):
        self.settings = settings
        self.persistent_cache = persistent_cache or NullPersistentCache()
        self.clock = clock or Clock()
        self._session = session or requests.Session()
        self._persist_pool = ThreadPoolExecutor(
            max_workers=max_persist_workers,
            thread_name_prefix="epg-persist",
        )

    def fetch(self, url: str, bound_body: bool = True) -> FetchedSource:
        """
        Open a source for reading.

        With bound_body=True the time budget covers the whole body. With
        bound_body=False it ends once the upstream response arrives, and the
        body is read at the consumer's pace; each socket read still has the
        fetch timeout.

        Raises:
            FetchTimeout, SourceTooLarge, UpstreamStatusError, NetworkError
        """
        stored = self._match_persistent(url)
        if stored is not None:
            logger.info(f"[Persistent] Serving stored copy of {url}")
            return FetchedSource(
                url=url,
                chunks=iter([stored.body]),
                is_compressed=is_gzip_content(stored.headers, url),
                headers=dict(stored.headers),
                from_persistent=True,
            )

        timeout_ms = self.settings.fetch_timeout
        timeout_s = self.settings.fetch_timeout_seconds
        max_bytes = self.settings.max_source_size_bytes

        logger.info(f"[Network] Fetch start: {url}")

        cancelled = threading.Event()
        holder: Dict[str, requests.Response] = {}

        def cancel():
            cancelled.set()
            response = holder.get("response")
            if response is not None:
                response.close()

        timer = threading.Timer(timeout_s, cancel)
        timer.daemon = True
        timer.start()

        try:
            response = self._session.get(url, stream=True, timeout=(timeout_s, timeout_s))
        except requests.exceptions.Timeout as e:
            timer.cancel()
            raise FetchTimeout(timeout_ms) from e
        except requests.RequestException as e:
            timer.cancel()
            raise NetworkError(str(e)) from e

        holder["response"] = response
        if cancelled.is_set():
            response.close()
            raise FetchTimeout(timeout_ms)

        try:
            if not response.ok:
                raise UpstreamStatusError(response.status_code)

            content_length = response.headers.get("content-length")
            if content_length and content_length.isdigit() and int(content_length) > max_bytes:
                raise SourceTooLarge(int(content_length), max_bytes)
        except FetchError:
            timer.cancel()
            response.close()
            raise

        if not bound_body:
            timer.cancel()

        headers = dict(response.headers)
        chunks = self._iter_body(response, timer, cancelled, timeout_ms, max_bytes)

        if self.persistent_cache.available:
            chunks = self._tee_to_persistent(url, headers, chunks)

        return FetchedSource(
            url=url,
            chunks=chunks,
            is_compressed=is_gzip_content(headers, url),
            headers=headers,
        )

    def read_text(self, url: str) -> str:
        """Fetch a source and return its decoded (and inflated) document text."""
        source = self.fetch(url)
        chunks: Iterable[bytes] = source.chunks
        if source.is_compressed:
            chunks = iter_gunzip(chunks)

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        parts = [decoder.decode(chunk) for chunk in chunks]
        parts.append(decoder.decode(b"", final=True))
        text = "".join(parts)
        logger.info(f"[Network] Fetched {len(text)} chars from {url}")
        return text

    def iter_document(self, url: str, compress: bool) -> Iterator[bytes]:
        """
        Stream a source as plain XML (compress=False) or gzip (compress=True).

        The fetch happens eagerly so failures raise before streaming starts.
        The body follows the downstream client, so only the upstream
        response is time-bounded.
        """
        source = self.fetch(url, bound_body=False)
        if compress and not source.is_compressed:
            return iter_gzip(source.chunks)
        if not compress and source.is_compressed:
            return iter_gunzip(source.chunks)
        return source.chunks

    def _match_persistent(self, url: str) -> Optional[CachedResponse]:
        if not self.persistent_cache.available:
            return None
        try:
            stored = self.persistent_cache.match(url)
        except Exception as e:
            logger.warning(f"[Persistent] Lookup failed for {url}: {e}")
            return None
        if stored is not None and stored.is_fresh(self.clock.now()):
            return stored
        return None

    def _iter_body(
        self,
        response: requests.Response,
        timer: threading.Timer,
        cancelled: threading.Event,
        timeout_ms: int,
        max_bytes: int,
    ) -> Iterator[bytes]:
        total = 0
        try:
            for chunk in response.iter_content(CHUNK_SIZE):
                if cancelled.is_set():
                    raise FetchTimeout(timeout_ms)
                total += len(chunk)
                if total > max_bytes:
                    raise SourceTooLarge(total, max_bytes)
                yield chunk
            if cancelled.is_set():
                raise FetchTimeout(timeout_ms)
        except FetchError:
            raise
        except Exception as e:
            # Closing the response from the timer thread breaks the read
            if cancelled.is_set():
                raise FetchTimeout(timeout_ms) from e
            if isinstance(e, requests.RequestException):
                raise NetworkError(str(e)) from e
            raise
        finally:
            timer.cancel()
            response.close()

    def _tee_to_persistent(
        self,
        url: str,
        headers: Dict[str, str],
        chunks: Iterator[bytes],
    ) -> Iterator[bytes]:
        """
        Duplicate a body stream: the caller gets the chunks unchanged while a
        background worker collects them and stores the full response.
        """
        pending: "queue.Queue[object]" = queue.Queue()
        fetched_at = self.clock.now()
        ttl = self.settings.cache_ttl

        def store():
            parts = []
            while True:
                item = pending.get()
                if item is _ABORT:
                    return
                if item is _DONE:
                    break
                parts.append(item)
            try:
                self.persistent_cache.put(
                    url,
                    CachedResponse(
                        url=url,
                        body=b"".join(parts),
                        headers=sanitize_headers(headers, ttl, fetched_at),
                    ),
                )
            except Exception as e:
                logger.warning(f"[Persistent] Store failed for {url}: {e}")

        self._persist_pool.submit(store)

        def tee() -> Iterator[bytes]:
            completed = False
            try:
                for chunk in chunks:
                    pending.put(chunk)
                    yield chunk
                completed = True
            finally:
                pending.put(_DONE if completed else _ABORT)

        return tee()

    def close(self, wait: bool = False) -> None:
        """Stop the persistence worker; wait=True lets pending writes finish."""
        self._persist_pool.shutdown(wait=wait)
        self._session.close()
