"""
Shared fixtures: sample XMLTV documents, a scripted fetcher and a fake clock.
"""
import threading
from typing import Callable, Dict, Iterator, List, Optional, Union

import pytest

from config.settings import Settings
from epg_proxy.cache import CachedResponse, NullPersistentCache, PersistentCache
from epg_proxy.clock import FakeClock
from epg_proxy.fetcher import iter_gzip
from epg_proxy.lookup import ResilientLookup, set_lookup


PRIMARY_URL = "https://epg.example.com/e.xml.gz"
BACKUP_URL = "https://backup.example.com/e.xml"

START_TIME = 1_705_300_200.0  # 2024-01-15 06:30:00 UTC


SCENARIO_XML = """<?xml version="1.0" encoding="UTF-8"?>
<tv generator-info-name="test">
  <channel id="cctv1.example">
    <display-name lang="zh">CCTV1</display-name>
    <icon src="https://img.example.com/cctv1.png" />
  </channel>
  <programme start="20240115063000 +0800" stop="20240115070000 +0800" channel="cctv1.example">
    <title lang="zh">Morning News</title>
  </programme>
</tv>
"""


SAMPLE_XML = """<?xml version="1.0" encoding="UTF-8"?>
<tv generator-info-name="test">
  <channel id="cctv1.example">
    <display-name lang="zh">CCTV1</display-name>
    <icon src="https://img.example.com/cctv1.png" />
  </channel>
  <channel id="cctv-2.fuzzy">
    <display-name lang="zh">CCTV-2</display-name>
  </channel>
  <channel id="cctv2.exact">
    <display-name lang="zh">CCTV2</display-name>
  </channel>
  <channel>
    <display-name>Alias</display-name>
    <display-name>Ghost TV</display-name>
  </channel>
  <channel id="ghost.tv">
    <display-name>GHOST_TV</display-name>
  </channel>
  <programme start="20240115063000 +0800" stop="20240115070000 +0800" channel="cctv1.example">
    <title lang="zh">Morning News</title>
    <desc lang="zh"><![CDATA[ Daily headlines ]]></desc>
  </programme>
  <programme start="20240115070000 +0800" channel="cctv1.example">
    <title lang="zh"> <![CDATA[Weather]]> </title>
  </programme>
  <programme start="20240115233000 +0800" stop="20240116003000 +0800" channel="cctv1.example">
  </programme>
  <programme start="20240116000000 +0800" stop="20240116003000 +0800" channel="cctv1.example">
    <title>Midnight Movie</title>
  </programme>
  <programme start="20240115080000 +0800" stop="20240115090000 +0800" channel="cctv2.exact">
    <title>Exact Show</title>
  </programme>
  <programme start="20240115080000 +0800" stop="20240115090000 +0800" channel="cctv-2.fuzzy">
    <title>Fuzzy Show</title>
  </programme>
  <programme start="20240115100000 +0800" stop="20240115110000 +0800" channel="ghost.tv">
    <title>Ghost Hour</title>
  </programme>
</tv>
"""


class ScriptedFetcher:
    """
    Stands in for SourceFetcher: serves text per URL, or raises.

    Each URL maps to a string, an exception instance, or a callable
    returning a string. Every call is counted.
    """

    def __init__(
        self,
        responses: Optional[Dict[str, Union[str, Exception, Callable[[], str]]]] = None,
        persistent_cache: Optional[PersistentCache] = None,
    ):
        self.responses = dict(responses or {})
        self.persistent_cache = persistent_cache or NullPersistentCache()
        self.calls: List[str] = []
        self.closed = False
        self._lock = threading.Lock()

    def read_text(self, url: str) -> str:
        with self._lock:
            self.calls.append(url)
        outcome = self.responses.get(url)
        if outcome is None:
            raise KeyError(url)
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            return outcome()
        return outcome

    def iter_document(self, url: str, compress: bool) -> Iterator[bytes]:
        data = self.read_text(url).encode("utf-8")
        if compress:
            return iter_gzip([data])
        return iter([data])

    def close(self, wait: bool = False) -> None:
        self.closed = True

    def call_count(self, url: Optional[str] = None) -> int:
        with self._lock:
            if url is None:
                return len(self.calls)
            return self.calls.count(url)


class MemoryPersistentCache(PersistentCache):
    """Dict-backed persistent cache for tests."""

    def __init__(self):
        self.entries: Dict[str, CachedResponse] = {}
        self.put_calls = 0
        self.match_calls = 0

    def put(self, url: str, response: CachedResponse) -> None:
        self.put_calls += 1
        self.entries[url] = response

    def match(self, url: str) -> Optional[CachedResponse]:
        self.match_calls += 1
        return self.entries.get(url)

    def match_headers(self, url: str) -> Optional[Dict[str, str]]:
        stored = self.entries.get(url)
        return dict(stored.headers) if stored is not None else None


def make_settings(**overrides) -> Settings:
    values = {
        "epg_url": PRIMARY_URL,
        "epg_url_backup": None,
        "cache_ttl": 3600,
        "fetch_timeout": 20000,
        "error_cooldown_ms": 120000,
        "cache_enabled": False,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def clock():
    return FakeClock(start=START_TIME)


@pytest.fixture
def fetcher():
    return ScriptedFetcher({PRIMARY_URL: SAMPLE_XML})


@pytest.fixture
def lookup(clock, fetcher):
    return ResilientLookup(make_settings(), clock=clock, fetcher=fetcher)


@pytest.fixture
def installed_lookup(lookup):
    """Install a lookup as the process-wide instance for API tests."""
    set_lookup(lookup)
    yield lookup
    set_lookup(None)
