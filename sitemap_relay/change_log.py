"""
1.0 Change Log Module
Appends newly discovered URLs to monthly per-domain CSV files.

Key features:
- Per-domain folder structure with domain-prefixed filenames
- Monthly change log files to prevent size bloat
- URL path/section categorization for content analysis
"""

import logging
import os
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any
from urllib.parse import urlparse

import pandas as pd

from sitemap_relay.models import ChangeBatch

logger = logging.getLogger(__name__)

# 1.1 Canonical change log schema
CHANGE_LOG_COLUMNS = [
    "detected_at", "domain", "feed_url", "loc", "change_type",
    "section", "subsection", "path_depth",
]
CHANGE_TYPE_DISCOVERED = "discovered"


def categorize_path(url: str) -> Dict[str, Any]:
    """Section, subsection and depth taken from the URL path segments."""
    segments = [s for s in urlparse(url).path.split("/") if s]
    return {
        "section": segments[0] if segments else None,
        "subsection": segments[1] if len(segments) > 1 else None,
        "path_depth": len(segments),
    }


class ChangeLog:
    """
    2.0 ChangeLog Class
    Writes discovered URLs from a ChangeBatch to CSV.
    """

    def __init__(self, data_dir: str = "output"):
        """
        2.1 Initialize the change log writer.

        Args:
            data_dir: Root directory for per-domain folders (default: "output")
        """
        self.data_dir = data_dir
        os.makedirs(self.data_dir, exist_ok=True)
        logger.info(f"ChangeLog initialized with data directory: {data_dir}")

    def get_monthly_path(self, domain: str, run_ts: datetime) -> str:
        """
        2.2 Path of the monthly change log file.

        Layout:
            output/
                example.com/
                    example.com_changes_YYYY-MM.csv
        """
        month_str = run_ts.strftime("%Y-%m")
        domain_dir = os.path.join(self.data_dir, domain)
        os.makedirs(domain_dir, exist_ok=True)
        return os.path.join(domain_dir, f"{domain}_changes_{month_str}.csv")

    def write_batch(self, batch: ChangeBatch, run_ts: Optional[datetime] = None) -> List[str]:
        """
        3.0 Append one row per new URL, grouped into per-domain files.

        Returns:
            Paths of the files written
        """
        run_ts = run_ts or datetime.now(timezone.utc)
        rows = []
        for change in batch:
            for loc in change.new_urls:
                rows.append({
                    "detected_at": run_ts.isoformat(),
                    "domain": change.domain,
                    "feed_url": change.url,
                    "loc": loc,
                    "change_type": CHANGE_TYPE_DISCOVERED,
                    **categorize_path(loc),
                })

        if not rows:
            logger.info("No new URLs to write to change log")
            return []

        changes_df = pd.DataFrame(rows).reindex(columns=CHANGE_LOG_COLUMNS)
        written = []
        for domain, domain_df in changes_df.groupby("domain", sort=False):
            path = self.get_monthly_path(domain or "unknown", run_ts)
            self._append(domain_df, path)
            written.append(path)
        return written

    def _append(self, changes_df: pd.DataFrame, path: str) -> None:
        """3.1 Append to an existing file (no header) or create it."""
        try:
            if os.path.exists(path):
                changes_df.to_csv(path, mode="a", header=False, index=False)
                logger.info(f"Appended {len(changes_df):,} changes to {path}")
            else:
                changes_df.to_csv(path, mode="w", header=True, index=False)
                logger.info(f"Created change log with {len(changes_df):,} changes at {path}")
        except OSError as e:
            logger.error(f"Error saving change log {path}: {e}")

    def read_month(self, domain: str, run_ts: datetime) -> pd.DataFrame:
        """3.2 Load one month's change log, empty if it does not exist."""
        path = self.get_monthly_path(domain, run_ts)
        if not os.path.exists(path):
            return pd.DataFrame(columns=CHANGE_LOG_COLUMNS)
        return pd.read_csv(path)
