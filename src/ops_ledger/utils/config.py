"""
Configuration management for the Operations Ledger.

This module handles:
- Database URL configuration
- Environment-specific configuration (development vs. production)
- Ledger behaviour settings (batch write mode, lock timeout, stock thresholds)

Every setting can be overridden with an ``OPS_LEDGER_*`` environment variable.
"""

import logging
import os
from decimal import Decimal
from pathlib import Path
from typing import Optional

from .constants import (
    APP_NAME,
    APP_VERSION,
    DATABASE_FILENAME,
    DATABASE_VERSION,
    DEFAULT_LOCK_TIMEOUT_SECONDS,
    DEFAULT_LOW_STOCK_THRESHOLD,
    DEFAULT_MAX_SUGGESTED_LOTS,
    WRITE_MODE_ATOMIC,
    WRITE_MODES,
)

logger = logging.getLogger(__name__)

ENV_ENVIRONMENT = "OPS_LEDGER_ENV"
ENV_DATABASE_URL = "OPS_LEDGER_DATABASE_URL"
ENV_DATA_DIR = "OPS_LEDGER_DATA_DIR"
ENV_BATCH_WRITE_MODE = "OPS_LEDGER_BATCH_WRITE_MODE"
ENV_LOCK_TIMEOUT = "OPS_LEDGER_LOCK_TIMEOUT"
ENV_LOW_STOCK_THRESHOLD = "OPS_LEDGER_LOW_STOCK_THRESHOLD"


class Config:
    """
    Application configuration manager.

    Handles database location, environment settings and the knobs that
    control how production batches are written to the ledger.
    """

    def __init__(self, environment: str = "production"):
        """
        Initialize configuration.

        Args:
            environment: Environment mode - 'production' or 'development'

        Raises:
            ValueError: If OPS_LEDGER_BATCH_WRITE_MODE is not a known mode
        """
        self.environment = environment
        self._app_name = APP_NAME
        self._app_version = APP_VERSION
        self._database_version = DATABASE_VERSION

        data_dir = os.environ.get(ENV_DATA_DIR)
        if data_dir:
            self._base_dir = Path(data_dir)
        elif environment == "development":
            self._base_dir = self._get_project_data_dir()
        else:
            self._base_dir = self._get_user_data_dir()

        self._database_path = self._base_dir / DATABASE_FILENAME
        self._database_url_override = os.environ.get(ENV_DATABASE_URL)

        self.batch_write_mode = os.environ.get(ENV_BATCH_WRITE_MODE, WRITE_MODE_ATOMIC)
        if self.batch_write_mode not in WRITE_MODES:
            raise ValueError(
                f"Invalid batch write mode '{self.batch_write_mode}'. "
                f"Expected one of: {', '.join(WRITE_MODES)}"
            )

        self.lock_timeout_seconds = float(
            os.environ.get(ENV_LOCK_TIMEOUT, DEFAULT_LOCK_TIMEOUT_SECONDS)
        )
        self.low_stock_threshold = Decimal(
            os.environ.get(ENV_LOW_STOCK_THRESHOLD, str(DEFAULT_LOW_STOCK_THRESHOLD))
        )
        self.max_suggested_lots = DEFAULT_MAX_SUGGESTED_LOTS

    def _get_project_data_dir(self) -> Path:
        """
        Get the project's data directory for development.

        Returns:
            Path to project data/ directory
        """
        project_root = Path(__file__).parent.parent.parent.parent
        return project_root / "data"

    def _get_user_data_dir(self) -> Path:
        """
        Get the per-user data directory for production.

        Returns:
            Path to ~/.ops_ledger
        """
        return Path.home() / ".ops_ledger"

    def ensure_directories(self) -> None:
        """Create the data directory if a file-based database is in use."""
        if self._database_url_override is None:
            self._base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def app_name(self) -> str:
        """Application name."""
        return self._app_name

    @property
    def app_version(self) -> str:
        """Application version."""
        return self._app_version

    @property
    def database_version(self) -> str:
        """Database schema version."""
        return self._database_version

    @property
    def database_path(self) -> Path:
        """Full path to the default SQLite database file."""
        return self._database_path

    @property
    def database_url(self) -> str:
        """
        SQLAlchemy database URL.

        Returns:
            The OPS_LEDGER_DATABASE_URL override, or a SQLite URL for database_path
        """
        if self._database_url_override:
            return self._database_url_override
        db_path_str = str(self._database_path).replace("\\", "/")
        return f"sqlite:///{db_path_str}"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    def database_exists(self) -> bool:
        """
        Check if the default database file exists.

        Returns:
            True if database file exists, False otherwise
        """
        return self._database_path.exists()

    def __repr__(self) -> str:
        """String representation of config."""
        return (
            f"Config(environment='{self.environment}', "
            f"database_url='{self.database_url}', "
            f"batch_write_mode='{self.batch_write_mode}')"
        )


_config_instance: Optional[Config] = None


def get_config(environment: Optional[str] = None) -> Config:
    """
    Get the global configuration instance.

    Once created, the singleton's environment cannot be changed by passing
    a different environment argument - this prevents accidental database
    switching mid-session.

    Args:
        environment: Optional environment for initial creation. If None, uses
                    OPS_LEDGER_ENV or defaults to production. Ignored if
                    singleton already exists.

    Returns:
        Config instance
    """
    global _config_instance

    if _config_instance is None:
        if environment is None:
            environment = os.environ.get(ENV_ENVIRONMENT, "production")
        _config_instance = Config(environment)
    elif environment is not None and environment != _config_instance.environment:
        logger.warning(
            f"get_config() called with environment='{environment}' but singleton "
            f"already exists with environment='{_config_instance.environment}'. "
            f"Returning existing singleton to prevent database switching."
        )

    return _config_instance


def reset_config():
    """
    Reset the global configuration instance.

    Useful for testing.
    """
    global _config_instance
    _config_instance = None


def get_database_url() -> str:
    """
    Get the database URL.

    Returns:
        SQLAlchemy database URL string
    """
    return get_config().database_url
