# mlm-core/config.py
"""
Configuration management for the MLM core.
Loads from .env, validates critical keys.
"""
import os
import logging
from typing import Any, Dict
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Configuration error exception."""
    pass


class Config:
    """
    Configuration manager with static and dynamic values.

    Usage:
        # Load from .env
        Config.initialize_from_env()

        # Get value
        url = Config.get(Config.DATABASE_URL)

        # Set dynamic value
        Config.set(Config.TIER_METRIC, "directSales")
    """

    # ═══════════════════════════════════════════════════════════════════════
    # CONFIGURATION KEYS
    # ═══════════════════════════════════════════════════════════════════════

    # Database
    DATABASE_URL = "DATABASE_URL"

    # Tier catalog
    TIER_CATALOG_PATH = "TIER_CATALOG_PATH"
    TIER_METRIC = "TIER_METRIC"
    TIER_ALLOW_DOWNGRADE = "TIER_ALLOW_DOWNGRADE"

    # Concurrency
    LOCK_TIMEOUT_SECONDS = "LOCK_TIMEOUT_SECONDS"

    # Tree safety
    MAX_CHAIN_DEPTH = "MAX_CHAIN_DEPTH"

    # ═══════════════════════════════════════════════════════════════════════
    # CRITICAL KEYS (must be present)
    # ═══════════════════════════════════════════════════════════════════════

    CRITICAL_KEYS = [
        DATABASE_URL,
    ]

    TIER_METRICS = ("teamSales", "directSales")

    # ═══════════════════════════════════════════════════════════════════════
    # STORAGE
    # ═══════════════════════════════════════════════════════════════════════

    _config: Dict[str, Any] = {}
    _initialized: bool = False

    # ═══════════════════════════════════════════════════════════════════════
    # METHODS
    # ═══════════════════════════════════════════════════════════════════════

    @classmethod
    def initialize_from_env(cls) -> None:
        """
        Load configuration from .env file and process environment.

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        load_dotenv()

        logger.info("Loading configuration from environment...")

        try:
            # Database
            cls._config[cls.DATABASE_URL] = os.getenv(
                "DATABASE_URL",
                "sqlite:///mlm_core.db"
            )

            # Tier catalog
            cls._config[cls.TIER_CATALOG_PATH] = os.getenv("TIER_CATALOG_PATH") or None

            metric = os.getenv("TIER_METRIC", "teamSales")
            if metric not in cls.TIER_METRICS:
                raise ConfigurationError(
                    f"TIER_METRIC must be one of {cls.TIER_METRICS}, got '{metric}'"
                )
            cls._config[cls.TIER_METRIC] = metric

            cls._config[cls.TIER_ALLOW_DOWNGRADE] = (
                os.getenv("TIER_ALLOW_DOWNGRADE", "false").lower() == "true"
            )

            # Concurrency
            cls._config[cls.LOCK_TIMEOUT_SECONDS] = float(
                os.getenv("LOCK_TIMEOUT_SECONDS", "5")
            )

            # Tree safety
            cls._config[cls.MAX_CHAIN_DEPTH] = int(os.getenv("MAX_CHAIN_DEPTH", "100"))

        except ValueError as e:
            logger.error(f"Failed to parse configuration: {e}")
            raise ConfigurationError(f"Invalid configuration value: {e}") from e

        cls._initialized = True
        logger.info("Configuration loaded from environment")

    @classmethod
    def validate_critical_keys(cls) -> None:
        """
        Validate that all critical configuration keys are present.

        Raises:
            ConfigurationError: If any critical key is missing
        """
        missing = []
        for key in cls.CRITICAL_KEYS:
            if not cls.get(key):
                missing.append(key)

        if missing:
            error_msg = f"Missing critical configuration keys: {', '.join(missing)}"
            logger.critical(error_msg)
            raise ConfigurationError(error_msg)

        logger.info("All critical configuration keys validated")

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return cls._config.get(key, default)

    @classmethod
    def set(cls, key: str, value: Any, source: str = "runtime") -> None:
        """
        Set configuration value (for dynamic updates).

        Args:
            key: Configuration key
            value: New value
            source: Source of the update (for logging)
        """
        cls._config[key] = value
        logger.debug(f"Config updated: {key} = {value} (source: {source})")

    @classmethod
    def get_all(cls) -> Dict[str, Any]:
        """
        Get all configuration values.

        Returns:
            Copy of configuration dictionary
        """
        return cls._config.copy()

    @classmethod
    def is_initialized(cls) -> bool:
        return cls._initialized
