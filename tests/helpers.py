"""
Shared fakes and builders for the deterministic test modules.

Nothing here touches the network: FakeFetcher serves canned bodies and
FlakyStore injects storage failures on chosen key prefixes.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from sitemap_relay.errors import FetchError, StorageError
from sitemap_relay.feed_store import FeedStore
from sitemap_relay.kv_store import MemoryStore
from sitemap_relay.sitemap_fetcher import FetchResponse

RESULTS: List[Dict] = []

SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"
DAY_ONE = datetime(2026, 10, 19, 8, 30, tzinfo=timezone.utc)  # a Monday


def check(name: str, passed: bool, detail: str = "") -> None:
    """Record and print a result, then fail the test if it did not pass."""
    status = "✅" if passed else "❌"
    RESULTS.append({"name": name, "passed": passed})
    print(f"  {status} {name}" + (f" → {detail}" if detail else ""))
    assert passed, f"{name}: {detail}" if detail else name


def run_tests(title: str, tests: list) -> bool:
    start = datetime.now()
    print("\n" + "=" * 50)
    print(f"🧪 {title}")
    print("=" * 50)

    failed = []
    for test in tests:
        try:
            test()
        except AssertionError as e:
            failed.append(f"{test.__name__}: {e}")

    duration = (datetime.now() - start).total_seconds()
    print("\n" + "=" * 50)
    if not failed:
        print(f"🎉 ALL PASSED: {len(tests)} tests in {duration:.2f}s")
    else:
        print(f"⚠️  {len(tests) - len(failed)}/{len(tests)} passed in {duration:.2f}s")
        print("\nFailed:")
        for name in failed:
            print(f"  - {name}")
    print("=" * 50 + "\n")
    return not failed


# =============================================================================
# XML BUILDERS
# =============================================================================

def urlset(*urls: str) -> str:
    body = "".join(f"<url><loc>{u}</loc></url>" for u in urls)
    return f'<?xml version="1.0" encoding="UTF-8"?>\n<urlset xmlns="{SITEMAP_NS}">{body}</urlset>'


def sitemapindex(*urls: str) -> str:
    body = "".join(f"<sitemap><loc>{u}</loc></sitemap>" for u in urls)
    return f'<?xml version="1.0" encoding="UTF-8"?>\n<sitemapindex xmlns="{SITEMAP_NS}">{body}</sitemapindex>'


# =============================================================================
# FAKES
# =============================================================================

class FakeClock:
    def __init__(self, now: datetime = DAY_ONE):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: int = 1) -> None:
        self.now = self.now + timedelta(days=days)


class FakeFetcher:
    """Serves canned (status, body) pairs; unknown URLs raise FetchError."""

    def __init__(self, pages: Optional[Dict[str, Union[str, bytes]]] = None):
        self.pages: Dict[str, Tuple[int, bytes]] = {}
        self.calls: List[str] = []
        self.encodings: Dict[str, Optional[str]] = {}
        for url, body in (pages or {}).items():
            self.set(url, body)

    def set(self, url: str, body: Union[str, bytes], status: int = 200, encoding: Optional[str] = None) -> None:
        if isinstance(body, str):
            body = body.encode(encoding or "utf-8")
        self.pages[url] = (status, body)
        self.encodings[url] = encoding

    def fetch(self, url: str) -> FetchResponse:
        self.calls.append(url)
        if url not in self.pages:
            raise FetchError(f"Connection error fetching {url}: refused")
        status, body = self.pages[url]
        return FetchResponse(url=url, status_code=status, content=body, encoding=self.encodings.get(url))


class FlakyStore(MemoryStore):
    """MemoryStore whose get/put fail for keys starting with given prefixes."""

    def __init__(self, fail_get: Tuple[str, ...] = (), fail_put: Tuple[str, ...] = ()):
        super().__init__()
        self.fail_get = fail_get
        self.fail_put = fail_put

    def get(self, key: str) -> Optional[str]:
        if self.fail_get and key.startswith(self.fail_get):
            raise StorageError(f"read of {key} failed")
        return super().get(key)

    def put(self, key: str, value: str) -> None:
        if self.fail_put and key.startswith(self.fail_put):
            raise StorageError(f"write of {key} failed")
        super().put(key, value)


def make_store(fetcher: FakeFetcher, kv=None, clock: Optional[FakeClock] = None, sleeps: Optional[list] = None) -> FeedStore:
    return FeedStore(
        kv if kv is not None else MemoryStore(),
        fetcher,
        clock=clock or FakeClock(),
        sleep=(sleeps.append if sleeps is not None else (lambda _: None)),
        index_child_delay=1.0,
    )
