"""
Optional persistent response cache for raw source documents.

Survives process restarts so status pages can still report when a source
was last fetched, and so a fresh stored copy can stand in for a download.
Always best-effort: failures here never change query results.
"""
import json
import logging
import re
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger("epg.persistent")

FETCH_TIME_HEADER = "X-EPG-Fetch-Time"
STRIPPED_HEADERS = {"vary", "set-cookie"}
MAX_AGE_REGEX = re.compile(r"max-age=(\d+)")

DB_FILENAME = "epg_cache.db"

SCHEMA = """
CREATE TABLE IF NOT EXISTS responses (
    url TEXT PRIMARY KEY,
    headers TEXT NOT NULL,
    body BLOB NOT NULL,
    stored_at TEXT NOT NULL
);
"""


def find_header(headers: Dict[str, str], name: str) -> Optional[str]:
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def fetch_time_from_headers(headers: Dict[str, str]) -> Optional[float]:
    """Epoch seconds stamped by sanitize_headers, or None."""
    raw = find_header(headers, FETCH_TIME_HEADER)
    if not raw:
        return None
    try:
        return int(raw) / 1000.0
    except ValueError:
        return None


@dataclass
class CachedResponse:
    """A stored source response: sanitized headers plus the raw body bytes."""
    url: str
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)

    def header(self, name: str) -> Optional[str]:
        return find_header(self.headers, name)

    @property
    def fetch_time(self) -> Optional[float]:
        """Epoch seconds when the body was fetched upstream, if stamped."""
        return fetch_time_from_headers(self.headers)

    @property
    def max_age(self) -> Optional[int]:
        match = MAX_AGE_REGEX.search(self.header("Cache-Control") or "")
        return int(match.group(1)) if match else None

    def is_fresh(self, now: float) -> bool:
        """True while fetch time + max-age lies in the future."""
        fetched = self.fetch_time
        max_age = self.max_age
        if fetched is None or max_age is None:
            return False
        return now < fetched + max_age


def sanitize_headers(
    headers: Dict[str, str],
    ttl_seconds: int,
    fetched_at: float,
) -> Dict[str, str]:
    """
    Prepare upstream headers for storage.

    Drops Vary and Set-Cookie so every client shares one entry, pins
    Cache-Control to our TTL and stamps the fetch time in epoch millis.
    """
    cleaned = {
        key: value
        for key, value in headers.items()
        if key.lower() not in STRIPPED_HEADERS and key.lower() != "cache-control"
    }
    cleaned["Cache-Control"] = f"public, max-age={ttl_seconds}"
    cleaned[FETCH_TIME_HEADER] = str(int(fetched_at * 1000))
    return cleaned


class PersistentCache(ABC):
    """
    Put/match store for raw source responses keyed by URL.
    """

    available: bool = True

    @abstractmethod
    def put(self, url: str, response: CachedResponse) -> None:
        """Store a response, replacing any previous one for the URL."""
        pass

    @abstractmethod
    def match(self, url: str) -> Optional[CachedResponse]:
        """Return the stored response for a URL, or None."""
        pass

    @abstractmethod
    def match_headers(self, url: str) -> Optional[Dict[str, str]]:
        """Return only the stored headers for a URL, without loading the body."""
        pass


class NullPersistentCache(PersistentCache):
    """Stand-in used when no persistent cache is configured."""

    available = False

    def put(self, url: str, response: CachedResponse) -> None:
        return None

    def match(self, url: str) -> Optional[CachedResponse]:
        return None

    def match_headers(self, url: str) -> Optional[Dict[str, str]]:
        return None


class SqlitePersistentCache(PersistentCache):
    """
    SQLite-backed response cache.

    One row per URL holding sanitized headers (JSON) and the raw body.
    """

    def __init__(self, cache_directory: Path):
        self.db_path = Path(cache_directory) / DB_FILENAME
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Initialize database with schema."""
        with self._get_connection() as conn:
            conn.executescript(SCHEMA)
            conn.commit()

    @contextmanager
    def _get_connection(self):
        """Get a database connection."""
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def put(self, url: str, response: CachedResponse) -> None:
        now = datetime.utcnow().isoformat() + "Z"
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO responses (url, headers, body, stored_at)
                VALUES (?, ?, ?, ?)
                """,
                (url, json.dumps(response.headers), sqlite3.Binary(response.body), now),
            )
            conn.commit()
        logger.info(f"[Persistent] Stored {len(response.body)} bytes for {url}")

    def match(self, url: str) -> Optional[CachedResponse]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT url, headers, body FROM responses WHERE url = ?",
                (url,),
            ).fetchone()

        if row is None:
            return None

        return CachedResponse(
            url=row["url"],
            body=bytes(row["body"]),
            headers=json.loads(row["headers"]),
        )

    def match_headers(self, url: str) -> Optional[Dict[str, str]]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT headers FROM responses WHERE url = ?",
                (url,),
            ).fetchone()

        if row is None:
            return None
        return json.loads(row["headers"])

    def delete(self, url: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM responses WHERE url = ?", (url,))
            conn.commit()
            return cursor.rowcount > 0


def create_persistent_cache(enabled: bool, cache_directory: Path) -> PersistentCache:
    """
    Build the persistent cache for the current environment.

    Falls back to the no-op cache when disabled or when the directory cannot
    be used, so callers never branch on availability.
    """
    if not enabled:
        return NullPersistentCache()
    try:
        return SqlitePersistentCache(cache_directory)
    except (OSError, sqlite3.Error) as e:
        logger.warning(f"[Persistent] Unavailable at {cache_directory}: {e}")
        return NullPersistentCache()
