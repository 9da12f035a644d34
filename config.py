#!/usr/bin/env python3
"""
Configuration management for the feed toolkit.

This module centralizes configuration loading, validation, and logging setup.
It handles environment variables, an optional .env file and an optional YAML
settings file, and provides a single `config` object for the rest of the
application.
"""

from os import environ, path, access, R_OK
from typing import Dict, Any
from logging import getLogger, basicConfig, StreamHandler, INFO, DEBUG, WARNING, ERROR
import sys
import yaml
from dotenv import load_dotenv

MEBIBYTE = 1024 * 1024


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
        force=True  # Force reconfiguration if already configured
    )

    # aiohttp access/client chatter is rarely useful at INFO
    getLogger("aiohttp").setLevel(max(level, WARNING))

    return getLogger("FeedToolkit")


def get_logger(name: str):
    """Get a module-specific logger with the unified configuration.

    Args:
        name: The logger name (e.g., "fetcher", "cache", "transport")

    Returns:
        A logger named "FeedToolkit.{name}"

    Example:
        logger = get_logger("mymodule")
        logger.info("This will appear as 'FeedToolkit.mymodule - INFO - ...'")
    """
    return getLogger(f"FeedToolkit.{name}")


logger = _setup_global_logger()


class Config:
    """Configuration manager for the feed toolkit.

    Values are loaded from, in increasing order of precedence:
    1. Environment variables
    2. .env file (if present next to this module)
    3. YAML settings file (if SETTINGS_FILE environment variable is set)

    Example settings.yaml format:
    ```yaml
    CACHE_TTL_SECONDS: 600
    CACHE_FAILURE_TTL_SECONDS: 60
    HTTP_TIMEOUT: 15
    ```
    """

    def __init__(self):
        """Initialize configuration with environment variables and validation."""
        self._load_environment()
        self._validate_and_set_config()

    def _load_environment(self):
        """Load environment variables from .env file and settings file if present."""
        dotenv_path = path.join(path.dirname(path.abspath(__file__)), '.env')
        if path.exists(dotenv_path):
            load_dotenv(dotenv_path)
            logger.info(f"Loaded environment variables from {dotenv_path}")

        self._load_settings_file()

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
        # HTTP request configuration
        self.USER_AGENT = environ.get(
            "USER_AGENT",
            "Mozilla/5.0 (compatible; FeedToolkit/0.1; +https://github.com/feed-toolkit)",
        )
        self.HTTP_TIMEOUT = self._validate_positive_float("HTTP_TIMEOUT", 30.0, 1.0)
        self.MAX_REDIRECTS = self._validate_positive_int("MAX_REDIRECTS", 5, 0)

        # Cache configuration
        self.CACHE_MAX_ENTRIES = self._validate_positive_int("CACHE_MAX_ENTRIES", 100, 1)
        self.CACHE_TTL_SECONDS = self._validate_positive_float("CACHE_TTL_SECONDS", 300.0, 1.0)
        # Failed parses default to the same window as successes
        self.CACHE_FAILURE_TTL_SECONDS = self._validate_positive_float(
            "CACHE_FAILURE_TTL_SECONDS", self.CACHE_TTL_SECONDS, 1.0
        )
        self.CACHE_SWEEP_INTERVAL_SECONDS = self._validate_positive_float("CACHE_SWEEP_INTERVAL_SECONDS", 60.0, 1.0)

        # Feed limits
        self.MAX_FEED_ITEMS = self._validate_positive_int("MAX_FEED_ITEMS", 1000, 1)
        self.MAX_FEED_SIZE_MB = self._validate_positive_int("MAX_FEED_SIZE_MB", 10, 1)
        self.MAX_FEED_SIZE_BYTES = self.MAX_FEED_SIZE_MB * MEBIBYTE
        # Upstream bodies past this are dropped while downloading
        self.MAX_RESPONSE_SIZE_MB = self._validate_positive_int(
            "MAX_RESPONSE_SIZE_MB", 5 * self.MAX_FEED_SIZE_MB, 1
        )
        self.MAX_RESPONSE_SIZE_BYTES = self.MAX_RESPONSE_SIZE_MB * MEBIBYTE

        # URL validation
        self.ALLOW_PRIVATE_URLS = environ.get("ALLOW_PRIVATE_URLS", "false").lower() == "true"

    def _load_settings_file(self):
        """Load environment variable overrides from a YAML settings file.

        If SETTINGS_FILE is set, loads the specified YAML file and sets
        environment variables from it.

        Expected YAML formats (both supported):
        ```yaml
        # Preferred: top-level mapping
        CACHE_TTL_SECONDS: 600

        # Also accepted: nested under `environment`
        # environment:
        #   CACHE_TTL_SECONDS: 600
        ```
        """
        settings_file_path = environ.get("SETTINGS_FILE")
        if not settings_file_path:
            logger.debug("SETTINGS_FILE not set; relying on environment/.env")
            return

        settings = self._safe_read_yaml(settings_file_path, 1 * MEBIBYTE, 'settings')
        if settings is None:
            return

        if not isinstance(settings, dict):
            logger.warning(f"Settings file {settings_file_path} must be a YAML mapping at the top level")
            return

        if isinstance(settings.get('environment'), dict):
            env_vars = settings['environment']
            logger.debug(f"Using 'environment' section from settings file {settings_file_path}")
        else:
            env_vars = settings

        loaded = 0
        for key, value in env_vars.items():
            if isinstance(key, str) and value is not None:
                environ[key] = str(value)
                loaded += 1
                logger.debug(f"Set environment variable {key} from settings file")
            else:
                logger.warning(f"Skipping invalid setting in settings file: {key}={value}")

        logger.info(f"Loaded {loaded} settings from {settings_file_path}")

    def _safe_read_yaml(self, file_path: str, max_size: int, kind: str) -> Any | None:
        """Safely read a YAML file with consistent validation.

        Args:
            file_path: Path to the YAML file
            max_size: Maximum allowed file size in bytes
            kind: Short label for logging context (e.g. 'settings')

        Returns:
            Parsed YAML (mapping/list/primitive) or None on failure.
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

    def get_config_summary(self) -> Dict[str, Any]:
        """Get a summary of current configuration for logging/debugging."""
        return {
            "http_timeout": self.HTTP_TIMEOUT,
            "max_redirects": self.MAX_REDIRECTS,
            "cache_max_entries": self.CACHE_MAX_ENTRIES,
            "cache_ttl_seconds": self.CACHE_TTL_SECONDS,
            "cache_failure_ttl_seconds": self.CACHE_FAILURE_TTL_SECONDS,
            "cache_sweep_interval_seconds": self.CACHE_SWEEP_INTERVAL_SECONDS,
            "max_feed_items": self.MAX_FEED_ITEMS,
            "max_feed_size_mb": self.MAX_FEED_SIZE_MB,
            "max_response_size_mb": self.MAX_RESPONSE_SIZE_MB,
            "allow_private_urls": self.ALLOW_PRIVATE_URLS,
            "settings_file_configured": bool(environ.get("SETTINGS_FILE")),
        }


# Global configuration instance
config = Config()
