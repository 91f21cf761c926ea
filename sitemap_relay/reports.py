"""
1.0 Report Manager Module
Persists change batches as reports in the key-value store for later viewing.

Key features:
- One report per non-empty check pass, addressed by a short unique id
- Report list kept newest first and capped at MAX_REPORTS
- Per-domain report lookup
- Age-based cleanup
- Short preview text for notification collaborators

Rendering (HTML, chat messages) is left to collaborators; a report stores the
batch payload as JSON.
"""

import json
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from sitemap_relay.feed_store import utc_now
from sitemap_relay.kv_store import KeyValueStore
from sitemap_relay.models import ChangeBatch

logger = logging.getLogger(__name__)

REPORTS_LIST_KEY = "reports_list"
REPORT_KEY = "report_{id}"
REPORT_META_KEY = "report_meta_{id}"
MAX_REPORTS = 100

_ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    digits = []
    while True:
        value, rem = divmod(value, 36)
        digits.append(_ID_ALPHABET[rem])
        if not value:
            return "".join(reversed(digits))


def _parse_timestamp(value: Any) -> datetime:
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ReportManager:
    """
    2.0 ReportManager Class
    Stores, lists and expires change reports.
    """

    def __init__(self, kv: KeyValueStore, clock: Callable[[], datetime] = utc_now):
        self.kv = kv
        self.clock = clock

    def generate_report_id(self) -> str:
        timestamp_ms = int(self.clock().timestamp() * 1000)
        suffix = "".join(random.choices(_ID_ALPHABET, k=6))
        return f"{_base36(timestamp_ms)}-{suffix}"

    # =========================================================================
    # 3.0 CREATE / READ
    # =========================================================================

    def generate_report(self, batch: ChangeBatch) -> Dict[str, Any]:
        """
        3.1 Save a batch as a report.

        Returns:
            Report metadata with success=True, or success=False and an error
        """
        try:
            report_id = self.generate_report_id()
            timestamp = self.clock().isoformat()
            total_new_urls = batch.total_new_urls
            total_domains = len(batch)

            payload = {
                "id": report_id,
                "timestamp": timestamp,
                "total_new_urls": total_new_urls,
                "total_domains": total_domains,
                **batch.to_dict(),
            }
            report_info = {
                "id": report_id,
                "timestamp": timestamp,
                "total_new_urls": total_new_urls,
                "total_domains": total_domains,
                "sitemap_changes": [
                    {"domain": c.domain, "url": c.url, "new_urls_count": len(c.new_urls)}
                    for c in batch
                ],
            }

            self.kv.put(REPORT_KEY.format(id=report_id), json.dumps(payload))
            self.kv.put(REPORT_META_KEY.format(id=report_id), json.dumps(report_info))
            self._add_to_reports_list(report_info)

            logger.info(f"Report generated: {report_id} ({total_new_urls} new URLs, {total_domains} sitemaps)")
            return {"success": True, "report_id": report_id, **report_info}

        except Exception as e:
            logger.error(f"Failed to generate report: {e}")
            return {"success": False, "error": str(e)}

    def get_report(self, report_id: str) -> Optional[Dict[str, Any]]:
        """3.2 Full report payload, or None."""
        try:
            raw = self.kv.get(REPORT_KEY.format(id=report_id))
            return json.loads(raw) if raw else None
        except Exception as e:
            logger.error(f"Failed to read report {report_id}: {e}")
            return None

    def get_report_meta(self, report_id: str) -> Optional[Dict[str, Any]]:
        try:
            raw = self.kv.get(REPORT_META_KEY.format(id=report_id))
            return json.loads(raw) if raw else None
        except Exception as e:
            logger.error(f"Failed to read report metadata {report_id}: {e}")
            return None

    def list_reports(self, limit: Optional[int] = 50) -> List[Dict[str, Any]]:
        """3.3 Report metadata, newest first."""
        try:
            raw = self.kv.get(REPORTS_LIST_KEY)
            reports = json.loads(raw) if raw else []
            if not isinstance(reports, list):
                logger.warning("Report list is not a JSON array, ignoring it")
                return []
            reports.sort(key=lambda r: _parse_timestamp(r.get("timestamp")), reverse=True)
            return reports if limit is None else reports[:limit]
        except Exception as e:
            logger.error(f"Failed to read report list: {e}")
            return []

    def get_domain_reports(self, domain: str, limit: int = 20) -> List[Dict[str, Any]]:
        """3.4 Reports that include at least one change for domain."""
        matching = [
            report for report in self.list_reports(limit=None)
            if any(c.get("domain") == domain for c in report.get("sitemap_changes", []))
        ]
        return matching[:limit]

    # =========================================================================
    # 4.0 LIST MAINTENANCE
    # =========================================================================

    def _add_to_reports_list(self, report_info: Dict[str, Any]) -> None:
        reports = self.list_reports(limit=None)
        reports.insert(0, report_info)

        # 4.1 Cap the list, dropping the oldest reports entirely
        overflow = reports[MAX_REPORTS:]
        reports = reports[:MAX_REPORTS]
        for report in overflow:
            self.delete_report(report.get("id"))

        self.kv.put(REPORTS_LIST_KEY, json.dumps(reports))

    def delete_report(self, report_id: str) -> bool:
        """4.2 Delete a report's payload and metadata (the list is not touched)."""
        try:
            self.kv.delete(REPORT_KEY.format(id=report_id))
            self.kv.delete(REPORT_META_KEY.format(id=report_id))
            logger.info(f"Deleted report: {report_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to delete report {report_id}: {e}")
            return False

    def cleanup_old_reports(self, days_to_keep: int = 30) -> int:
        """
        4.3 Delete reports older than days_to_keep.

        Returns:
            Number of reports deleted
        """
        try:
            cutoff = self.clock() - timedelta(days=days_to_keep)
            reports = self.list_reports(limit=None)
            expired = [r for r in reports if _parse_timestamp(r.get("timestamp")) < cutoff]
            remaining = [r for r in reports if _parse_timestamp(r.get("timestamp")) >= cutoff]

            logger.info(f"Cleaning up old reports: {len(expired)} older than {days_to_keep} days")
            for report in expired:
                self.delete_report(report.get("id"))

            self.kv.put(REPORTS_LIST_KEY, json.dumps(remaining))
            logger.info(f"Cleanup complete, deleted {len(expired)} reports")
            return len(expired)

        except Exception as e:
            logger.error(f"Failed to clean up old reports: {e}")
            return 0

    # =========================================================================
    # 5.0 PREVIEW
    # =========================================================================

    @staticmethod
    def report_preview(batch: ChangeBatch) -> Dict[str, Any]:
        """5.1 Counts, a one-line summary and up to 3 sample URLs per feed."""
        total_new_urls = batch.total_new_urls
        total_domains = len(batch)

        if total_domains == 1:
            change = batch.changes[0]
            summary_text = f"{change.domain}: {len(change.new_urls)} new pages"
        else:
            top = sorted(batch.changes, key=lambda c: len(c.new_urls), reverse=True)[:3]
            top_text = ", ".join(f"{c.domain}({len(c.new_urls)})" for c in top)
            summary_text = f"{total_domains} sitemaps, {total_new_urls} new pages. Top: {top_text}"

        return {
            "total_new_urls": total_new_urls,
            "total_domains": total_domains,
            "summary_text": summary_text,
            "preview": [
                {
                    "domain": c.domain,
                    "new_urls_count": len(c.new_urls),
                    "sample_urls": c.new_urls[:3],
                }
                for c in batch
            ],
        }
