"""
1.0 Key-Value Store Module
Generic string key-value storage consumed by the feed store and report manager.

Key features:
- Minimal contract: get / put / delete, values are strings
- MemoryStore for tests and throwaway runs
- FileStore keeps one UTF-8 file per key under a data directory
- Backend failures surface as StorageError; callers decide how to degrade
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from sitemap_relay.errors import StorageError

logger = logging.getLogger(__name__)

# Keys become file names, so keep them to a safe character set
_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.\-]+$")


class KeyValueStore(ABC):
    """
    2.0 Abstract key-value store.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the value stored at key, or None if absent."""

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        """Store value at key, replacing any existing value."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key. Deleting a missing key is not an error."""


class MemoryStore(KeyValueStore):
    """In-process dict-backed store."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def put(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError(f"Value for {key} must be a string, got {type(value).__name__}")
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return sorted(self._data)


class FileStore(KeyValueStore):
    """
    3.0 Directory-backed store.

    Layout:
        output/kv/
            rss_feeds
            sitemap_current_<hash>
            sitemap_dated_<hash>_<YYYYMMDD>
            ...
    """

    def __init__(self, directory: str = "output/kv"):
        """
        3.1 Initialize the store, creating the directory if needed.

        Args:
            directory: Root directory holding one file per key
        """
        self.directory = directory
        os.makedirs(self.directory, exist_ok=True)
        logger.info(f"FileStore initialized with directory: {directory}")

    def _path(self, key: str) -> str:
        if not key or not _SAFE_KEY.match(key):
            raise StorageError(f"Invalid storage key: {key!r}")
        return os.path.join(self.directory, key)

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read()
        except OSError as e:
            raise StorageError(f"Could not read {key}: {e}") from e

    def put(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise StorageError(f"Value for {key} must be a string, got {type(value).__name__}")
        path = self._path(key)
        tmp_path = f"{path}.tmp"
        try:
            # 3.2 Write-then-rename so a crash never leaves a half-written value
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(f"Could not write {key}: {e}") from e
        logger.debug(f"Stored {key} ({len(value):,} chars)")

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            os.remove(path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError(f"Could not delete {key}: {e}") from e
