#!/usr/bin/env python3
"""
Configuration management for AutoFeed.

This module centralizes configuration loading, validation and logging setup.
It reads environment variables (optionally from a .env file) and the
feeds.yaml sources file, and provides a single `config` instance for the
rest of the application.
"""

from os import environ, path, access, R_OK
from typing import Dict, Any
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv


def _setup_global_logger():
    """Setup a single global logger for the entire application.

    Environment Variables:
        LOG_LEVEL: Set log level (DEBUG, INFO, WARNING, ERROR) - defaults to INFO
        LOG_TIMESTAMPS: Enable/disable timestamps in logs (true/false) - defaults to true

    All modules should use get_logger() to create module-specific loggers that
    inherit this configuration.
    """
    level_str = environ.get("LOG_LEVEL", "INFO").upper()
    level_map = {
        "DEBUG": DEBUG,
        "INFO": INFO,
        "WARNING": WARNING,
        "ERROR": ERROR
    }
    level = level_map.get(level_str, INFO)

    show_timestamps = environ.get("LOG_TIMESTAMPS", "true").lower() != "false"
    if show_timestamps:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    else:
        log_format = '%(name)s - %(levelname)s - %(message)s'

    basicConfig(
        level=level,
        format=log_format,
        handlers=[StreamHandler(sys.stdout)],
        force=True
    )

    reconfigure = getattr(sys.stdout, "reconfigure", None)
    if callable(reconfigure):
        reconfigure(line_buffering=True)

    # aiohttp access/client chatter is rarely useful at INFO
    getLogger("aiohttp").setLevel(max(level, WARNING))

    return getLogger("AutoFeed")


def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    Args:
        name: The logger name (e.g., "fetcher", "handler", "publisher")

    Returns:
        A logger named "AutoFeed.{name}"
    """
    return getLogger(f"AutoFeed.{name}")


logger = _setup_global_logger()


class Config:
    """Configuration manager for AutoFeed.

    Sources, in increasing precedence:
    1. Built-in defaults
    2. System environment variables
    3. .env file next to this module (if present)

    Feed sources are read from feeds.yaml:
    ```yaml
    feeds:
      hackernews:
        uri: "autohttps://news.ycombinator.com/newest@span.titleline > a@"
        title: "Hacker News (newest)"
    ```
    """

    def __init__(self):
        self._load_environment()
        self._validate_and_set_config()
        self._load_feed_sources()

    def _load_environment(self):
        """Load environment variables from a .env file if present."""
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path, override=True)
            logger.info(f"Loaded environment variables from {dotenv_path}")

    def _validate_positive_int(self, env_var: str, default: int, min_val: int = 1) -> int:
        """Validate and parse a positive integer environment variable."""
        try:
            value = int(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_positive_float(self, env_var: str, default: float, min_val: float = 0.1) -> float:
        """Validate and parse a positive float environment variable."""
        try:
            value = float(environ.get(env_var, str(default)))
            if value < min_val:
                logger.warning(f"{env_var} must be at least {min_val}, using default {default}")
                return default
            return value
        except (ValueError, TypeError):
            logger.warning(f"Invalid {env_var} value, using default {default}")
            return default

    def _validate_and_set_config(self):
        """Validate and set all configuration values."""
        self.USER_AGENT = environ.get("USER_AGENT", "Mozilla/5.0 (compatible; AutoFeed/1.0)")

        # HTTP request configuration
        self.HTTP_TIMEOUT = self._validate_positive_int("HTTP_TIMEOUT", 30, 5)
        self.MAX_REDIRECTS = self._validate_positive_int("MAX_REDIRECTS", 5, 0)

        # Item enrichment policy (defaults, not invariants)
        self.ENRICH_CONCURRENCY = self._validate_positive_int("ENRICH_CONCURRENCY", 5, 1)
        self.ENRICH_DEADLINE_SECONDS = self._validate_positive_float("ENRICH_DEADLINE_SECONDS", 300.0, 1.0)

        # How many configured sources the CLI reloads at once
        self.SOURCE_CONCURRENCY = self._validate_positive_int("SOURCE_CONCURRENCY", 3, 1)

        base_dir = path.dirname(path.abspath(__file__))
        self.DATA_PATH = environ.get("DATA_PATH", base_dir)
        self.PUBLIC_DIR = environ.get("PUBLIC_DIR", path.join(self.DATA_PATH, "public"))
        self.FEEDS_CONFIG_PATH = environ.get("FEEDS_CONFIG_PATH", path.join(base_dir, "feeds.yaml"))
        self.STATE_PATH = environ.get("STATE_PATH", path.join(self.DATA_PATH, "conditional_get.json"))

    def _safe_read_yaml(self, file_path: str, max_size: int, kind: str) -> Any | None:
        """Safely read a YAML file with consistent validation.

        Args:
            file_path: Path to the YAML file
            max_size: Maximum allowed file size in bytes
            kind: Short label for logging context (e.g. 'feeds')

        Returns:
            Parsed YAML or None on failure.
        """
        try:
            if not path.isfile(file_path):
                logger.warning(f"{kind.capitalize()} file not found at {file_path}")
                return None
            if not access(file_path, R_OK):
                logger.error(f"No read permission for {kind} file at {file_path}")
                return None
            size = path.getsize(file_path)
            if size > max_size:
                logger.error(f"{kind.capitalize()} file too large: {size} bytes (limit: {max_size} bytes)")
                return None
            with open(file_path, 'r') as f:
                data = yaml.safe_load(f)
            if not data:
                logger.warning(f"Empty or invalid YAML in {kind} file {file_path}")
                return None
            return data
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML in {kind} file {file_path}: {e}")
        except OSError as e:
            logger.error(f"Error loading {kind} file {file_path}: {e}")
        return None

    def _load_feed_sources(self) -> None:
        """Populate self.FEED_SOURCES ({slug: {'uri': ..., 'title': ...}}) from feeds.yaml.

        Any failure results in an empty mapping.
        """
        feeds_path = self.FEEDS_CONFIG_PATH
        config_data = self._safe_read_yaml(feeds_path, 5 * 1024 * 1024, 'feeds')
        if not config_data:
            self.FEED_SOURCES = {}
            return

        feeds_section = config_data.get('feeds') if isinstance(config_data, dict) else None
        if not isinstance(feeds_section, dict):
            logger.warning(f"No valid feeds found in {feeds_path}")
            self.FEED_SOURCES = {}
            return

        new_sources: Dict[str, Dict[str, Any]] = {}
        for feed_slug, feed_cfg in feeds_section.items():
            if isinstance(feed_cfg, str):
                feed_cfg = {'uri': feed_cfg}
            if isinstance(feed_cfg, dict) and isinstance(feed_cfg.get('uri'), str) and feed_cfg['uri'].strip():
                new_sources[str(feed_slug)] = {
                    'uri': feed_cfg['uri'].strip(),
                    'title': feed_cfg.get('title'),
                }
                logger.debug(f"Loaded feed {feed_slug}: {feed_cfg['uri']}")
            else:
                logger.warning(f"Skipping invalid feed configuration for '{feed_slug}': {feed_cfg}")

        self.FEED_SOURCES = new_sources
        logger.info(f"Successfully loaded {len(self.FEED_SOURCES)} feeds from {feeds_path}")

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "user_agent": self.USER_AGENT,
            "http_timeout": self.HTTP_TIMEOUT,
            "max_redirects": self.MAX_REDIRECTS,
            "enrich_concurrency": self.ENRICH_CONCURRENCY,
            "enrich_deadline_seconds": self.ENRICH_DEADLINE_SECONDS,
            "source_concurrency": self.SOURCE_CONCURRENCY,
            "public_dir": self.PUBLIC_DIR,
            "feeds_config_path": self.FEEDS_CONFIG_PATH,
            "state_path": self.STATE_PATH,
            "feed_count": len(self.FEED_SOURCES),
        }


# Global configuration instance
config = Config()
