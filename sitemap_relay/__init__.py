"""
Sitemap Relay - Source Package

Modules:
- config: Configuration loading and validation
- kv_store: Key-value storage backends (memory, file)
- sitemap_fetcher: HTTP fetching of sitemap bodies
- sitemap_parser: XML extraction for sitemap indexes and urlsets
- change_detector: Added-URL diff between two sitemap versions
- feed_store: Monitored feeds, snapshot rotation and index expansion
- monitor: One check pass over every monitored feed
- reports: Change report storage
- change_log: Monthly CSV change logs
"""

__version__ = "1.0.0"
