import logging
from typing import List, Optional

from sitemap_relay.sitemap_parser import SitemapExtractor, RegexExtractor

logger = logging.getLogger(__name__)

_default_extractor = RegexExtractor()


def diff(new_content: str, old_content: str, extractor: Optional[SitemapExtractor] = None) -> List[str]:
    """
    Returns the URLs listed in new_content that old_content does not list.

    Order follows new_content. Membership is exact string equality, and a URL
    repeated in new_content is reported as many times as it appears.
    """
    extractor = extractor or _default_extractor
    try:
        new_urls = extractor.extract_locations(new_content)
        old_urls = set(extractor.extract_locations(old_content))
        added = [url for url in new_urls if url not in old_urls]
        logger.info(f"Found {len(added)} new URLs")
        return added
    except Exception as e:
        logger.error(f"Failed to compare sitemaps: {e}")
        return []
