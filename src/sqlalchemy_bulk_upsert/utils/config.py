"""
Configuration management for sqlalchemy-bulk-upsert.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import toml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from sqlalchemy_bulk_upsert.core.matcher import DuplicatePolicy

logger = logging.getLogger(__name__)


class UpsertConfig(BaseModel):
    """Main configuration for sqlalchemy-bulk-upsert."""

    model_config = ConfigDict(validate_assignment=True)

    # Database configuration
    database_url: Optional[str] = None
    echo_sql: bool = False

    # Batching
    chunk_size: int = Field(default=500, gt=0)
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.ERROR
    fetch_inserted_identities: bool = False

    # Timestamp and soft-delete column names used when introspecting tables
    created_column: Optional[str] = "created_at"
    updated_column: Optional[str] = "updated_at"
    deleted_column: Optional[str] = "deleted_at"

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # Custom settings
    custom_settings: Dict[str, Any] = Field(default_factory=dict)


class Config:
    """
    Configuration manager for sqlalchemy-bulk-upsert.

    Sources, lowest precedence first:
    - Default values
    - Configuration file (JSON or TOML)
    - Environment variables, including a ``.env`` file
    """

    CONFIG_FILE_NAMES = [
        "upsert.config.json",
        "upsert.config.toml",
        ".upsertrc",
        ".upsertrc.json",
    ]

    ENV_PREFIX = "BULK_UPSERT_"

    ENV_MAPPING = {
        "DATABASE_URL": "database_url",
        "ECHO_SQL": "echo_sql",
        "CHUNK_SIZE": "chunk_size",
        "DUPLICATE_POLICY": "duplicate_policy",
        "FETCH_INSERTED_IDENTITIES": "fetch_inserted_identities",
        "LOG_LEVEL": "log_level",
        "LOG_FILE": "log_file",
    }

    def __init__(
        self,
        config_file: Optional[str] = None,
        load_env: bool = True,
        configure_logging: bool = True,
    ):
        """
        Initialize the configuration manager.

        Args:
            config_file: Path to configuration file
            load_env: Whether to load from environment variables
            configure_logging: Whether to set up logging from the result
        """
        self._config = UpsertConfig()

        # Load .env file if present
        if load_env:
            load_dotenv()

        if config_file:
            self._load_from_file(config_file)
        else:
            self._auto_discover_config()

        if load_env:
            self._load_from_env()

        if configure_logging:
            self._setup_logging()

    def _auto_discover_config(self) -> None:
        """Auto-discover configuration file in the working directory."""
        for filename in self.CONFIG_FILE_NAMES:
            config_path = Path(filename)
            if config_path.exists():
                logger.info(f"Found configuration file: {filename}")
                self._load_from_file(str(config_path))
                break

    def _load_from_file(self, file_path: str) -> None:
        """
        Load configuration from file.

        Args:
            file_path: Path to configuration file
        """
        path = Path(file_path)

        if not path.exists():
            logger.warning(f"Configuration file not found: {file_path}")
            return

        try:
            if path.suffix == ".toml":
                with open(path) as f:
                    data = toml.load(f)
            else:
                with open(path) as f:
                    data = json.load(f)
        except (json.JSONDecodeError, toml.TomlDecodeError) as e:
            logger.error(f"Error loading configuration from {file_path}: {e}")
            raise ValueError(f"Invalid configuration file {file_path}: {e}") from e

        self._update_config(data.get("bulk_upsert", data))
        logger.info(f"Loaded configuration from {file_path}")

    def _load_from_env(self) -> None:
        """Load configuration from environment variables."""
        for env_var, config_key in self.ENV_MAPPING.items():
            # Check with prefix
            prefixed_var = f"{self.ENV_PREFIX}{env_var}"
            value = os.environ.get(prefixed_var)
            if value is None and env_var == "DATABASE_URL":
                value = os.environ.get(env_var)

            if value:
                setattr(self._config, config_key, value)
                logger.debug(f"Loaded {config_key} from environment variable")

    def _update_config(self, data: Dict[str, Any]) -> None:
        """
        Update configuration with data from dictionary.

        Args:
            data: Configuration data
        """
        for key, value in data.items():
            if key in UpsertConfig.model_fields and key != "custom_settings":
                setattr(self._config, key, value)
            else:
                # Add to custom settings
                self._config.custom_settings[key] = value

    def _setup_logging(self) -> None:
        """Configure logging from the loaded settings."""
        level = getattr(logging, self._config.log_level.upper(), logging.INFO)
        logging.basicConfig(
            level=level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

        if self._config.log_file:
            file_handler = logging.FileHandler(self._config.log_file)
            file_handler.setLevel(level)
            logging.getLogger().addHandler(file_handler)

    @property
    def settings(self) -> UpsertConfig:
        """The validated settings object handed to the engine."""
        return self._config

    @property
    def database_url(self) -> Optional[str]:
        """Get the database URL."""
        return self._config.database_url

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.

        Args:
            key: Configuration key
            default: Default value if not found

        Returns:
            Configuration value or default
        """
        if key in UpsertConfig.model_fields:
            return getattr(self._config, key)

        return self._config.custom_settings.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value.

        Args:
            key: Configuration key
            value: Configuration value
        """
        if key in UpsertConfig.model_fields:
            setattr(self._config, key, value)
        else:
            self._config.custom_settings[key] = value

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert configuration to dictionary.

        Returns:
            Configuration as dictionary
        """
        return self._config.model_dump(mode="json")
