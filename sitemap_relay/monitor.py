"""
1.0 Monitor Module
Runs one check pass over every monitored feed and collects the changes.

Key features:
- Strictly sequential: one feed is fully checked before the next starts
- Fixed pacing delay between feeds to respect remote rate limits
- One failing feed never stops the pass
- Feeds already covered by an index expansion earlier in the pass are not re-checked
"""

import logging
import time
from typing import Callable, Optional, Set
from urllib.parse import urlparse

from sitemap_relay.feed_store import FeedStore
from sitemap_relay.models import ChangeBatch, ChangeResult, FeedChange, SnapshotKind

logger = logging.getLogger(__name__)


def get_domain(url: str) -> str:
    return urlparse(url).hostname or ""


class Monitor:
    """
    2.0 Monitor Class
    Orchestrates a monitoring pass on top of a FeedStore.
    """

    def __init__(
        self,
        feed_store: FeedStore,
        feed_delay: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.feed_store = feed_store
        self.feed_delay = feed_delay
        self.sleep = sleep

    def run_check_pass(self) -> ChangeBatch:
        """
        3.0 Check every monitored feed once.

        Flow:
        1. Snapshot the monitored list
        2. For each feed: add_feed(url) (download, diff, rotate)
        3. Failures are logged and left out of the batch
        4. Feeds with at least one new URL are appended with their domain
           and archived content

        Feeds checked earlier in the pass are handed to add_feed so an index
        listed after its children does not report their URLs a second time.
        """
        batch = ChangeBatch(started_at=self.feed_store.clock())
        feeds = self.feed_store.list_feeds()

        logger.info("=" * 60)
        logger.info(f"Starting check pass over {len(feeds)} feeds")
        logger.info(f"Run timestamp: {batch.started_at.isoformat()}")
        logger.info("=" * 60)

        if not feeds:
            logger.info("No feeds configured")
            return batch

        covered: Set[str] = set()
        checked_any = False

        for url in feeds:
            if url in covered:
                logger.info(f"Feed {url} already checked in this pass via its sitemap index, skipping")
                continue

            # 3.1 Pace consecutive feed checks
            if checked_any and self.feed_delay > 0:
                self.sleep(self.feed_delay)
            checked_any = True

            try:
                logger.info(f"Checking feed: {url}")
                result = self.feed_store.add_feed(url, already_checked=covered)
                batch.checked += 1
                covered.add(url)
                covered.update(result.child_urls)

                if not result.success:
                    batch.errors += 1
                    logger.warning(f"Feed {url} failed: {result.message}")
                    continue

                if not result.new_urls:
                    if result.skipped:
                        batch.skipped += 1
                        logger.info(f"Feed {url}: {result.message}, skipping")
                    else:
                        logger.info(f"Feed {url} updated, no new URLs")
                    continue

                batch.changes.append(self._to_change(url, result))
                logger.info(f"Feed {url} updated, {len(result.new_urls)} new URLs")

            except Exception as e:
                # 3.2 A broken feed must not block the remaining feeds
                batch.errors += 1
                logger.error(f"Unexpected error checking feed {url}: {type(e).__name__}: {e}")
                logger.exception("Full traceback:")

        # 3.3 Summary
        logger.info("=" * 60)
        logger.info("Check Pass Summary:")
        logger.info(f"  Checked: {batch.checked}, skipped: {batch.skipped}, errors: {batch.errors}")
        for change in batch:
            logger.info(f"  [NEW] {change.domain}: {len(change.new_urls)} URLs ({change.url})")
        logger.info(f"  Total new URLs: {batch.total_new_urls}")
        logger.info("=" * 60)

        return batch

    def _to_change(self, url: str, result: ChangeResult) -> FeedChange:
        sitemap_content: Optional[str] = None
        if result.archive_key:
            sitemap_content = self.feed_store.get_content(url, SnapshotKind.ARCHIVE)
        return FeedChange(
            url=url,
            domain=get_domain(url),
            new_urls=list(result.new_urls),
            archive_key=result.archive_key,
            sitemap_content=sitemap_content,
            child_urls=list(result.child_urls),
        )

    def acknowledge(self, batch: ChangeBatch) -> int:
        """
        4.0 Mark every feed in the batch (and its index children) as delivered.

        Later same-day checks of these feeds then report no pending diff.
        Returns the number of feeds marked.
        """
        marked = 0
        for change in batch:
            for url in [change.url, *change.child_urls]:
                if self.feed_store.mark_delivered(url):
                    marked += 1
        logger.info(f"Acknowledged {marked} feeds as delivered")
        return marked
