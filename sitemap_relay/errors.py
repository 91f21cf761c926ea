"""Exception types raised at the transport and storage seams."""


class SitemapRelayError(Exception):
    """Base exception for sitemap_relay."""


class ConfigError(SitemapRelayError):
    """Raised when configuration is missing or invalid."""


class FetchError(SitemapRelayError):
    """Raised when a sitemap cannot be fetched (network failure, bad URL)."""


class DecompressionError(SitemapRelayError):
    """Raised when a gzip-compressed sitemap cannot be decoded."""


class StorageError(SitemapRelayError):
    """Raised when the key-value store fails to read, write or delete."""
