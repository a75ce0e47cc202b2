"""
CLI context manager for edu-bridge.

This module provides the context object that is passed to all CLI commands,
containing the configuration and a factory for the migration service.
"""

from dataclasses import dataclass, field
from pathlib import Path

from edu_migration.client.exceptions import ConfigurationError
from edu_migration.config import MigrationConfig, load_config_from_yaml
from edu_migration.migration.coordinator import MigrationService, ProgressCallback
from edu_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MigrationContext:
    """
    Context object for CLI commands.

    This object holds configuration shared across CLI commands. It is
    passed via Click's context mechanism.

    Attributes:
        config_path: Path to configuration file (None reads EDU_BRIDGE_* variables)
        log_level: Logging level
        log_file: Optional log file path
        config: Loaded migration configuration
    """

    config_path: Path | None = None
    log_level: str = "INFO"
    log_file: Path | None = None

    # Lazy-loaded attributes
    _config: MigrationConfig | None = field(default=None, init=False, repr=False)

    @property
    def config(self) -> MigrationConfig:
        """Get or load migration configuration.

        Raises:
            ConfigurationError: If the file is missing or invalid
        """
        if self._config is None:
            try:
                if self.config_path is None:
                    logger.debug("Loading configuration from environment")
                    self._config = MigrationConfig()
                else:
                    logger.debug("Loading configuration", config_path=str(self.config_path))
                    self._config = load_config_from_yaml(self.config_path)
            except (FileNotFoundError, ValueError) as e:
                raise ConfigurationError(str(e)) from e
            logger.debug("Configuration loaded successfully")

        return self._config

    def create_service(self, progress_callback: ProgressCallback | None = None) -> MigrationService:
        """Create a migration service for the loaded configuration."""
        logger.debug("Creating migration service", url=self.config.backend.url)
        return MigrationService(self.config, progress_callback=progress_callback)
