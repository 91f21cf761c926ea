import json
import logging
import os
from typing import Dict, List, Optional, Any

logger = logging.getLogger(__name__)

CONFIG_FILE_PATH = "config.json"

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; SitemapRelay/1.0)"

DEFAULT_CONFIG: Dict[str, Any] = {
    "data_directory": "output",
    "storage_directory": None,  # defaults to <data_directory>/kv
    "user_agent": DEFAULT_USER_AGENT,
    "timeout": 30,
    "max_retries": 0,
    "feed_delay": 2.0,
    "index_child_delay": 1.0,
    "parser": "regex",
    "report_retention_days": 30,
    "log_file": "sitemap_relay.log",
}

VALID_PARSERS: List[str] = ["regex", "lxml"]

def load_config(path: str = CONFIG_FILE_PATH) -> Optional[Dict[str, Any]]:
    """Loads the configuration from a JSON file, merged over DEFAULT_CONFIG.

    A missing file is not an error: the defaults are returned so the monitor can
    run against a fresh data directory.
    """
    if not os.path.exists(path):
        logger.warning(f"Configuration file not found: {path}. Using defaults.")
        return dict(DEFAULT_CONFIG)
    try:
        with open(path, 'r') as f:
            config_data = json.load(f)
        logger.info(f"Successfully loaded configuration from {path}")
    except json.JSONDecodeError as e:
        logger.error(f"Error decoding JSON from {path}: {e}")
        return None
    except OSError as e:
        logger.error(f"Could not read configuration file {path}: {e}")
        return None

    if not validate_config(config_data):
        return None
    return {**DEFAULT_CONFIG, **config_data}

def validate_config(config: Dict[str, Any]) -> bool:
    """Validates the structure and content of the configuration."""
    if not isinstance(config, dict):
        logger.error("Configuration must be a dictionary.")
        return False

    for key in ("data_directory", "storage_directory", "log_file"):
        value = config.get(key)
        if value is not None and (not isinstance(value, str) or not value.strip()):
            logger.error(f"'{key}' must be a non-empty string.")
            return False

    for key in ("timeout", "feed_delay", "index_child_delay"):
        if key in config:
            value = config[key]
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                logger.error(f"'{key}' must be a non-negative number, got {value!r}.")
                return False

    for key in ("max_retries", "report_retention_days"):
        if key in config:
            value = config[key]
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                logger.error(f"'{key}' must be a non-negative integer, got {value!r}.")
                return False

    if "parser" in config and config["parser"] not in VALID_PARSERS:
        logger.error(f"'parser' must be one of {VALID_PARSERS}, got {config['parser']!r}.")
        return False

    if "user_agent" in config:
        if not isinstance(config["user_agent"], str) or not config["user_agent"].strip():
            logger.warning("'user_agent' is not a non-empty string. The default will be used.")
            # Not fatal, the fetcher falls back to its default.

    logger.info("Configuration validation successful.")
    return True

def get_storage_directory(config: Dict[str, Any]) -> str:
    """Resolves where the file-backed key-value store lives."""
    storage_dir = config.get("storage_directory")
    if storage_dir:
        return storage_dir
    return os.path.join(config.get("data_directory") or DEFAULT_CONFIG["data_directory"], "kv")
