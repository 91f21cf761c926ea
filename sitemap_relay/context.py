"""
Process-wide wiring: builds every collaborator once from the configuration.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sitemap_relay.change_log import ChangeLog
from sitemap_relay.config import DEFAULT_CONFIG, get_storage_directory, validate_config
from sitemap_relay.errors import ConfigError
from sitemap_relay.feed_store import FeedStore, utc_now
from sitemap_relay.kv_store import FileStore, KeyValueStore
from sitemap_relay.monitor import Monitor
from sitemap_relay.reports import ReportManager
from sitemap_relay.sitemap_fetcher import SitemapFetcher
from sitemap_relay.sitemap_parser import SitemapExtractor, get_extractor

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    config: Dict[str, Any]
    kv: KeyValueStore
    fetcher: Any
    extractor: SitemapExtractor
    feed_store: FeedStore
    monitor: Monitor
    reports: ReportManager
    change_log: ChangeLog


def build_context(
    config: Optional[Dict[str, Any]] = None,
    kv: Optional[KeyValueStore] = None,
    fetcher: Optional[Any] = None,
    clock: Callable[[], datetime] = utc_now,
    sleep: Callable[[float], None] = time.sleep,
) -> AppContext:
    """
    Construct the application context.

    kv and fetcher may be supplied to swap the file store or the HTTP layer
    (tests pass in-memory fakes).

    Raises:
        ConfigError: If the merged configuration does not validate
    """
    config = {**DEFAULT_CONFIG, **(config or {})}
    if not validate_config(config):
        raise ConfigError("Invalid configuration, see the log for the failing field")

    kv = kv if kv is not None else FileStore(get_storage_directory(config))
    fetcher = fetcher if fetcher is not None else SitemapFetcher(config=config)
    extractor = get_extractor(config["parser"])

    feed_store = FeedStore(
        kv,
        fetcher,
        extractor=extractor,
        clock=clock,
        sleep=sleep,
        index_child_delay=float(config["index_child_delay"]),
    )
    monitor = Monitor(feed_store, feed_delay=float(config["feed_delay"]), sleep=sleep)

    logger.info(f"Context built: parser={extractor.name}, store={type(kv).__name__}")
    return AppContext(
        config=config,
        kv=kv,
        fetcher=fetcher,
        extractor=extractor,
        feed_store=feed_store,
        monitor=monitor,
        reports=ReportManager(kv, clock=clock),
        change_log=ChangeLog(config["data_directory"]),
    )
