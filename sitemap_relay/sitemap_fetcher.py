"""
1.0 Sitemap Fetcher Module
Fetches raw sitemap bodies over HTTP for the feed store.

Key features:
- Fixed descriptive user agent on every request
- Configurable timeout
- Session reuse for connection pooling
- Optional transport-level retries (off by default; callers decide when to retry)
- Returns the raw body bytes so .gz sitemaps can be decompressed by the caller
"""

import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from sitemap_relay.config import DEFAULT_USER_AGENT
from sitemap_relay.errors import FetchError
from sitemap_relay.sitemap_parser import decode_xml

logger = logging.getLogger(__name__)


@dataclass
class FetchResponse:
    """Outcome of a completed HTTP exchange (any status code)."""
    url: str
    status_code: int
    content: bytes
    encoding: Optional[str] = None  # charset from Content-Type, if the server sent one

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return decode_xml(self.content, self.encoding)


class SitemapFetcher:
    """
    2.0 SitemapFetcher Class
    Performs GET requests for sitemap URLs.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        2.1 Initialize the SitemapFetcher.

        Args:
            config: Configuration dictionary with optional keys:
                - user_agent: Custom user agent string
                - timeout: Request timeout in seconds (default: 30)
                - max_retries: Transport retry attempts (default: 0)
        """
        # 2.1.1 Extract config values with defaults
        config = config or {}

        self.user_agent = config.get("user_agent", DEFAULT_USER_AGENT)
        if not isinstance(self.user_agent, str) or not self.user_agent.strip():
            self.user_agent = DEFAULT_USER_AGENT
            logger.warning(f"Invalid user_agent in config. Using default: {self.user_agent}")

        self.timeout = config.get("timeout", 30)
        self.max_retries = int(config.get("max_retries", 0))

        # 2.1.2 Create session with retry strategy
        self.session = self._create_session()

        logger.info(
            f"SitemapFetcher initialized: "
            f"User-Agent={self.user_agent[:50]}, "
            f"timeout={self.timeout}s, "
            f"retries={self.max_retries}"
        )

    def _create_session(self) -> requests.Session:
        """
        2.2 Create a requests Session with the user agent and retry adapter.

        Retry strategy (only when max_retries > 0):
        - Retries on: 429 (rate limit), 500, 502, 503, 504 (server errors)
        - Backoff: 1s, 2s, 4s between retries (exponential)

        Returns:
            Configured requests.Session object
        """
        session = requests.Session()

        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
            raise_on_status=False,  # Non-2xx is reported through the status code
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.headers.update({"User-Agent": self.user_agent})

        return session

    def fetch(self, url: str, timeout: Optional[int] = None) -> FetchResponse:
        """
        2.3 Fetch a sitemap URL.

        Args:
            url: The URL of the sitemap to fetch
            timeout: Optional override for request timeout

        Returns:
            FetchResponse carrying the status code and raw body

        Raises:
            FetchError: On invalid URL or transport failure
        """
        # 2.3.1 Validate URL
        if not url or not url.startswith(("http://", "https://")):
            raise FetchError(f"Invalid sitemap URL: {url}")

        timeout = timeout or self.timeout

        logger.info(f"Fetching sitemap: {url}")

        try:
            response = self.session.get(url, timeout=timeout)
        except requests.exceptions.Timeout as e:
            raise FetchError(f"Timeout fetching {url} after {timeout}s") from e
        except requests.exceptions.ConnectionError as e:
            raise FetchError(f"Connection error fetching {url}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise FetchError(f"Request error fetching {url}: {e}") from e

        # 2.3.2 Log outcome, the caller interprets the status
        if 200 <= response.status_code < 300:
            logger.info(
                f"Successfully fetched {url} "
                f"(status={response.status_code}, size={len(response.content):,} bytes)"
            )
        else:
            logger.error(f"Failed to fetch {url}: status={response.status_code}")

        # requests guesses ISO-8859-1 for any text/* without a charset, which is wrong for XML
        content_type = response.headers.get("Content-Type", "").lower()
        encoding = response.encoding if "charset=" in content_type else None

        return FetchResponse(
            url=url,
            status_code=response.status_code,
            content=response.content,
            encoding=encoding,
        )

    def close(self) -> None:
        self.session.close()
