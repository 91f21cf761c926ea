"""
Result types passed between the feed store, the monitor and its collaborators.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any, Iterator


class SnapshotKind(str, Enum):
    """Which stored generation of a feed's content to read."""
    CURRENT = "current"
    PREVIOUS = "previous"
    ARCHIVE = "archive"


@dataclass
class ChangeResult:
    """Outcome of checking one feed (or expanding one sitemap index)."""
    success: bool
    message: str = ""
    new_urls: List[str] = field(default_factory=list)
    archive_key: Optional[str] = None
    skipped: bool = False

    # Populated when the feed turned out to be a sitemap index
    is_index: bool = False
    sub_sitemaps: int = 0
    success_count: int = 0
    error_count: int = 0
    new_feeds_added: int = 0
    child_urls: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RemoveResult:
    success: bool
    error_msg: str = ""


@dataclass
class FeedChange:
    """One changed feed inside a ChangeBatch."""
    url: str
    domain: str
    new_urls: List[str]
    archive_key: Optional[str] = None
    sitemap_content: Optional[str] = None
    child_urls: List[str] = field(default_factory=list)

    def to_dict(self, include_content: bool = False) -> Dict[str, Any]:
        data = asdict(self)
        if not include_content:
            data.pop("sitemap_content")
        return data


@dataclass
class ChangeBatch:
    """Changed feeds from one monitoring pass, in monitoring order."""
    changes: List[FeedChange] = field(default_factory=list)
    checked: int = 0
    skipped: int = 0
    errors: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __iter__(self) -> Iterator[FeedChange]:
        return iter(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    @property
    def total_new_urls(self) -> int:
        return sum(len(change.new_urls) for change in self.changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "checked": self.checked,
            "skipped": self.skipped,
            "errors": self.errors,
            "total_new_urls": self.total_new_urls,
            "changes": [change.to_dict() for change in self.changes],
        }
