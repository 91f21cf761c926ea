"""
1.0 Feed Store Module
Owns the monitored feed list and the per-feed content snapshots.

Key features:
- Monitored feeds kept as an ordered, duplicate-free JSON list
- Three generations per feed: current, previous, and a dated daily archive
- Day guard: a feed is fetched at most once per UTC day unless forced
- Sitemap indexes are expanded recursively into child feeds
- Gzip sitemaps (.gz) are decompressed before parsing
- Every failure is converted into a ChangeResult; nothing propagates to callers
"""

import gzip
import io
import json
import logging
import time
import zlib
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set
from urllib.parse import urljoin, urlparse

from sitemap_relay.change_detector import diff
from sitemap_relay.errors import DecompressionError, StorageError
from sitemap_relay.kv_store import KeyValueStore
from sitemap_relay.models import ChangeResult, RemoveResult, SnapshotKind
from sitemap_relay.sitemap_parser import ROOT_SITEMAPINDEX, RegexExtractor, SitemapExtractor, decode_xml

logger = logging.getLogger(__name__)

# 1.1 Storage key layout (other tooling reads these names)
FEEDS_KEY = "rss_feeds"
CURRENT_KEY = "sitemap_current_{hash}"
PREVIOUS_KEY = "sitemap_latest_{hash}"
ARCHIVE_KEY = "sitemap_dated_{hash}_{date}"
LAST_UPDATE_KEY = "last_update_{hash}"
LAST_DELIVERED_KEY = "last_delivered_{hash}"

GZIP_SUFFIX = ".gz"
GZIP_MAGIC = b"\x1f\x8b"
_READ_CHUNK = 64 * 1024

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def feed_key(url: str) -> str:
    """
    Short storage identifier for a feed URL.

    djb2 over the normalized URL (lower-cased, one trailing slash removed),
    truncated to 32 bits and rendered in base 36.
    """
    normalized = url.strip().lower()
    if normalized.endswith("/"):
        normalized = normalized[:-1]
    value = 5381
    for ch in normalized:
        value = (value * 33 + ord(ch)) & 0xFFFFFFFF
    return _to_base36(value)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def today_stamp(clock: Callable[[], datetime] = utc_now) -> str:
    """YYYYMMDD of the current UTC date."""
    now = clock()
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime("%Y%m%d")


def resolve_child_url(index_url: str, child_url: str) -> str:
    """Makes a child sitemap URL absolute against the index's origin."""
    if urlparse(child_url).scheme in ("http", "https"):
        return child_url
    parsed = urlparse(index_url)
    origin = f"{parsed.scheme}://{parsed.netloc}/"
    return urljoin(origin, child_url)


class FeedStore:
    """
    2.0 FeedStore Class
    Downloads monitored sitemaps, rotates their snapshots and reports new URLs.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        fetcher: Any,
        extractor: Optional[SitemapExtractor] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
        index_child_delay: float = 1.0,
    ):
        """
        2.1 Initialize the feed store.

        Args:
            kv: Key-value store holding the feed list and snapshots
            fetcher: Object with fetch(url) -> FetchResponse (see SitemapFetcher)
            extractor: XML extractor (default: RegexExtractor)
            clock: Returns the current time, used for the day guard and archive dates
            sleep: Called between child sitemaps of an index
            index_child_delay: Seconds to wait between child sitemaps
        """
        self.kv = kv
        self.fetcher = fetcher
        self.extractor = extractor or RegexExtractor()
        self.clock = clock
        self.sleep = sleep
        self.index_child_delay = index_child_delay

    # =========================================================================
    # 3.0 STORAGE HELPERS
    # =========================================================================

    def today(self) -> str:
        return today_stamp(self.clock)

    def _safe_get(self, key: str) -> Optional[str]:
        """3.1 Read a key, treating any store failure as absence."""
        try:
            return self.kv.get(key)
        except Exception as e:
            logger.error(f"Could not read {key} from store: {e}")
            return None

    def _load_feeds(self) -> List[str]:
        """
        3.2 Read the monitored list, raising on store or decode failure.

        Mutating operations use this strict read so a transient failure can
        never cause the list to be overwritten with a truncated copy.
        """
        raw = self.kv.get(FEEDS_KEY)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(f"Feed list is not valid JSON: {e}") from e
        if not isinstance(data, list):
            raise StorageError(f"Feed list must be a JSON array, got {type(data).__name__}")

        feeds: List[str] = []
        for url in data:
            if isinstance(url, str) and url not in feeds:
                feeds.append(url)
        return feeds

    def _save_feeds(self, feeds: List[str]) -> None:
        self.kv.put(FEEDS_KEY, json.dumps(feeds))

    def _ensure_monitored(self, url: str) -> bool:
        """3.3 Append url to the monitored list. Returns True if it was added."""
        feeds = self._load_feeds()
        if url in feeds:
            return False
        feeds.append(url)
        self._save_feeds(feeds)
        logger.info(f"Now monitoring: {url}")
        return True

    # =========================================================================
    # 4.0 FEED LIST OPERATIONS
    # =========================================================================

    def list_feeds(self) -> List[str]:
        """4.1 Monitored feeds in monitoring order; empty on any failure."""
        try:
            return self._load_feeds()
        except Exception as e:
            logger.error(f"Failed to read feed list: {e}")
            return []

    def add_feed(
        self,
        url: str,
        force_update: bool = False,
        already_checked: Optional[Set[str]] = None,
    ) -> ChangeResult:
        """
        4.2 Add a feed, or re-check it if it is already monitored.

        A new URL only joins the monitored list once its first download succeeds.

        Args:
            url: Feed URL
            force_update: Ignore the once-per-day guard
            already_checked: Feeds checked earlier in the same pass; index
                expansion skips these children so their URLs are not reported twice
        """
        logger.info(f"Adding sitemap feed: {url}{' (forced)' if force_update else ''}")
        try:
            feeds = self._load_feeds()

            if url not in feeds:
                result = self.download_and_save(url, force_update, already_checked)
                if not result.success:
                    return result
                # 4.2.1 Re-read: index expansion may have appended child feeds meanwhile
                self._ensure_monitored(url)
                logger.info(f"Successfully added sitemap feed: {url}")
                result.message = result.message or "Feed added"
                return result

            # 4.2.2 Already monitored: still run the cycle (new day or forced)
            result = self.download_and_save(url, force_update, already_checked)
            if not result.success:
                return result
            if not result.skipped and not result.is_index:
                result.message = "Forced update complete" if force_update else "Existing feed updated"
            return result

        except Exception as e:
            logger.error(f"Failed to add sitemap feed {url}: {e}")
            return ChangeResult(success=False, message=f"Failed to add feed: {e}")

    def remove_feed(self, url: str) -> RemoveResult:
        """
        4.3 Stop monitoring a feed.

        Stored snapshots are kept; use reset_feed to clear them.
        """
        logger.info(f"Removing sitemap feed: {url}")
        try:
            feeds = self._load_feeds()
            if url not in feeds:
                logger.warning(f"Sitemap feed not found: {url}")
                return RemoveResult(success=False, error_msg="Feed not found")

            feeds.remove(url)
            self._save_feeds(feeds)
            logger.info(f"Successfully removed sitemap feed: {url}")
            return RemoveResult(success=True)

        except Exception as e:
            logger.error(f"Failed to remove sitemap feed {url}: {e}")
            return RemoveResult(success=False, error_msg=f"Failed to remove feed: {e}")

    # =========================================================================
    # 5.0 DOWNLOAD CYCLE
    # =========================================================================

    def download_and_save(
        self,
        url: str,
        force_update: bool = False,
        already_checked: Optional[Set[str]] = None,
    ) -> ChangeResult:
        """
        5.1 Fetch a feed, rotate its snapshots and diff against the prior content.

        Flow:
        1. Day guard: already checked today (and not forced) -> report the
           pending current-vs-previous diff without fetching
        2. Fetch; non-2xx -> failure
        3. Decompress when the URL ends in .gz
        4. Sitemap index -> expand_index takes over
        5. previous <- current, current <- new, archive[today] <- new,
           last_update <- today
        """
        return self._download(url, force_update, visited=set(already_checked or ()))

    def _download(self, url: str, force_update: bool, visited: Set[str]) -> ChangeResult:
        logger.info(f"Downloading sitemap: {url}{' (forced)' if force_update else ''}")

        url_hash = feed_key(url)
        today = self.today()
        current_key = CURRENT_KEY.format(hash=url_hash)
        previous_key = PREVIOUS_KEY.format(hash=url_hash)

        try:
            # 5.1.1 Day guard
            if not force_update and self._safe_get(LAST_UPDATE_KEY.format(hash=url_hash)) == today:
                return self._same_day_result(url, url_hash, today)

            # 5.1.2 Fetch
            response = self.fetcher.fetch(url)
            if not response.ok:
                logger.warning(f"Sitemap {url} returned HTTP {response.status_code}")
                return ChangeResult(success=False, message=f"HTTP {response.status_code}")

            # 5.1.3 Decompress
            new_content = self._decode_body(url, response.content, response.encoding)

            # 5.1.4 Classify
            if self.extractor.classify_root(new_content) == ROOT_SITEMAPINDEX:
                logger.info(f"Detected sitemap index: {url}")
                return self._expand_index(url, new_content, force_update, visited)

            if not self.extractor.is_valid_sitemap(new_content):
                logger.warning(f"Content at {url} does not look like a sitemap urlset")

            # 5.1.5 Diff and rotate
            existing_current = self._safe_get(current_key)
            new_urls: List[str] = []
            if existing_current:
                new_urls = diff(new_content, existing_current, self.extractor)
                self.kv.put(previous_key, existing_current)

            archive_key = ARCHIVE_KEY.format(hash=url_hash, date=today)
            self.kv.put(current_key, new_content)
            self.kv.put(archive_key, new_content)
            self.kv.put(LAST_UPDATE_KEY.format(hash=url_hash), today)

            logger.info(f"Saved sitemap {url} (hash: {url_hash}), {len(new_urls)} new URLs")
            return ChangeResult(success=True, new_urls=new_urls, archive_key=archive_key)

        except Exception as e:
            logger.error(f"Failed to download sitemap {url}: {e}")
            return ChangeResult(success=False, message=f"Download failed: {e}")

    def _same_day_result(self, url: str, url_hash: str, today: str) -> ChangeResult:
        """
        5.2 Result for a feed already checked today.

        Recovers the diff from the rotation done earlier today, unless that
        diff has already been acknowledged as delivered.
        """
        if self._safe_get(LAST_DELIVERED_KEY.format(hash=url_hash)) == today:
            logger.info(f"Sitemap {url} already checked and delivered today")
            return ChangeResult(success=True, message="Already checked today", skipped=True)

        current = self._safe_get(CURRENT_KEY.format(hash=url_hash))
        previous = self._safe_get(PREVIOUS_KEY.format(hash=url_hash))
        if current and previous:
            new_urls = diff(current, previous, self.extractor)
            logger.info(f"Sitemap {url} already checked today, {len(new_urls)} URLs not yet delivered")
            return ChangeResult(
                success=True,
                message="Already checked today, changes not yet delivered",
                new_urls=new_urls,
                archive_key=ARCHIVE_KEY.format(hash=url_hash, date=today),
                skipped=True,
            )

        logger.info(f"Sitemap {url} already checked today")
        return ChangeResult(success=True, message="Already checked today", skipped=True)

    def _decode_body(self, url: str, body: bytes, encoding: Optional[str] = None) -> str:
        """
        5.3 Turn a response body into text, gunzipping .gz sitemaps.

        The charset sent by the server applies to the transferred bytes, so it
        is only used for uncompressed bodies; gunzipped XML relies on its own
        declaration.
        """
        if not urlparse(url).path.lower().endswith(GZIP_SUFFIX):
            return decode_xml(body, encoding)

        if not body.startswith(GZIP_MAGIC):
            # Transport already removed the gzip layer (Content-Encoding: gzip)
            logger.debug(f"{url} has a .gz suffix but an uncompressed body")
            return decode_xml(body, encoding)

        logger.info(f"Decompressing gzipped sitemap: {url}")
        try:
            chunks = []
            with gzip.GzipFile(fileobj=io.BytesIO(body)) as gz:
                while True:
                    chunk = gz.read(_READ_CHUNK)
                    if not chunk:
                        break
                    chunks.append(chunk)
            return decode_xml(b"".join(chunks))
        except (OSError, EOFError, zlib.error) as e:
            raise DecompressionError(f"Could not decompress {url}: {e}") from e

    # =========================================================================
    # 6.0 SITEMAP INDEX EXPANSION
    # =========================================================================

    def expand_index(self, index_url: str, index_content: str, force_update: bool = False) -> ChangeResult:
        """
        6.1 Monitor and download every child sitemap of an index.

        Each child is resolved to an absolute URL, added to the monitored list
        if missing, and run through a full download cycle (recursively, so an
        index of indexes works). New URLs from all children are concatenated
        in child order.
        """
        return self._expand_index(index_url, index_content, force_update, visited=set())

    def _expand_index(
        self,
        index_url: str,
        index_content: str,
        force_update: bool,
        visited: Set[str],
    ) -> ChangeResult:
        logger.info(f"Processing sitemap index: {index_url}")
        visited.add(index_url)

        try:
            children = self.extractor.extract_child_sitemap_urls(index_content)
            logger.info(f"Found {len(children)} child sitemaps in {index_url}")

            if not children:
                return ChangeResult(
                    success=False,
                    message="No child sitemaps found in sitemap index",
                    is_index=True,
                )

            new_urls: List[str] = []
            child_urls: List[str] = []
            success_count = 0
            error_count = 0
            new_feeds_added = 0
            fetched = 0

            for child in children:
                try:
                    absolute_url = resolve_child_url(index_url, child)
                    if absolute_url in visited:
                        logger.info(f"Child sitemap {absolute_url} already checked in this run, skipping")
                        continue
                    visited.add(absolute_url)
                    child_urls.append(absolute_url)

                    # 6.1.1 Pace requests to avoid remote rate limiting
                    if fetched and self.index_child_delay > 0:
                        self.sleep(self.index_child_delay)
                    fetched += 1

                    if self._ensure_monitored(absolute_url):
                        new_feeds_added += 1

                    logger.info(f"Processing child sitemap: {absolute_url}")
                    result = self._download(absolute_url, force_update, visited)

                    new_feeds_added += result.new_feeds_added
                    child_urls.extend(result.child_urls)
                    if result.success:
                        success_count += 1
                        new_urls.extend(result.new_urls)
                    else:
                        error_count += 1
                        logger.warning(f"Child sitemap failed: {absolute_url}, reason: {result.message}")

                except Exception as e:
                    error_count += 1
                    logger.error(f"Failed to process child sitemap {child}: {e}")

            return ChangeResult(
                success=True,
                message=f"Processed sitemap index: {success_count} succeeded, {error_count} failed",
                new_urls=new_urls,
                is_index=True,
                sub_sitemaps=len(children),
                success_count=success_count,
                error_count=error_count,
                new_feeds_added=new_feeds_added,
                child_urls=child_urls,
            )

        except Exception as e:
            logger.error(f"Failed to process sitemap index {index_url}: {e}")
            return ChangeResult(
                success=False,
                message=f"Failed to process sitemap index: {e}",
                is_index=True,
            )

    # =========================================================================
    # 7.0 SNAPSHOT ACCESS AND MAINTENANCE
    # =========================================================================

    def get_content(self, url: str, kind: SnapshotKind = SnapshotKind.CURRENT, date: Optional[str] = None) -> Optional[str]:
        """
        7.1 Read one stored generation of a feed.

        Args:
            url: Feed URL
            kind: CURRENT, PREVIOUS or ARCHIVE
            date: YYYYMMDD for ARCHIVE (default: today)
        """
        try:
            kind = SnapshotKind(kind)
            url_hash = feed_key(url)
            if kind is SnapshotKind.CURRENT:
                key = CURRENT_KEY.format(hash=url_hash)
            elif kind is SnapshotKind.PREVIOUS:
                key = PREVIOUS_KEY.format(hash=url_hash)
            else:
                key = ARCHIVE_KEY.format(hash=url_hash, date=date or self.today())
            return self.kv.get(key)
        except Exception as e:
            logger.error(f"Failed to read {kind} content for {url}: {e}")
            return None

    def mark_delivered(self, url: str) -> bool:
        """7.2 Record that today's diff for url has been handed off."""
        try:
            self.kv.put(LAST_DELIVERED_KEY.format(hash=feed_key(url)), self.today())
            return True
        except Exception as e:
            logger.error(f"Failed to mark {url} as delivered: {e}")
            return False

    def reset_feed(self, url: str) -> List[str]:
        """
        7.3 Forget a feed's rotation state so the next check starts fresh.

        Dated archives are left in place. Returns the keys that were deleted.
        """
        url_hash = feed_key(url)
        keys = [
            CURRENT_KEY.format(hash=url_hash),
            PREVIOUS_KEY.format(hash=url_hash),
            LAST_UPDATE_KEY.format(hash=url_hash),
            LAST_DELIVERED_KEY.format(hash=url_hash),
        ]
        deleted = []
        for key in keys:
            try:
                self.kv.delete(key)
                deleted.append(key)
            except Exception as e:
                logger.error(f"Failed to delete {key}: {e}")
        logger.info(f"Reset monitoring state for {url} (hash: {url_hash})")
        return deleted

    def feed_status(self, url: str) -> Dict[str, Any]:
        """7.4 Summary of what is stored for a feed."""
        url_hash = feed_key(url)
        today = self.today()

        snapshots: Dict[str, Optional[Dict[str, int]]] = {}
        for kind in SnapshotKind:
            content = self.get_content(url, kind)
            if content:
                snapshots[kind.value] = {
                    "url_count": len(self.extractor.extract_locations(content)),
                    "content_length": len(content),
                }
            else:
                snapshots[kind.value] = None

        current = self.get_content(url, SnapshotKind.CURRENT)
        return {
            "url": url,
            "hash": url_hash,
            "today": today,
            "monitored": url in self.list_feeds(),
            "last_update": self._safe_get(LAST_UPDATE_KEY.format(hash=url_hash)),
            "last_delivered": self._safe_get(LAST_DELIVERED_KEY.format(hash=url_hash)),
            "root": self.extractor.classify_root(current) if current else None,
            "valid": self.extractor.is_valid_sitemap(current) if current else False,
            "snapshots": snapshots,
        }
