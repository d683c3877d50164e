"""
CLI context for cci-bridge.

This module provides the context object that is passed to all CLI commands,
holding configuration, the ledger and the factory for the Snyk gateway.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from cci_migration.client.exceptions import ConfigurationError
from cci_migration.client.gateway import RemoteGateway
from cci_migration.client.snyk_client import SnykClient
from cci_migration.config import MigrationConfig, load_config_from_yaml
from cci_migration.migration.ledger import Ledger
from cci_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MigrationContext:
    """
    Context object for CLI commands.

    Attributes:
        config_path: Optional path to a YAML configuration file
        log_level: Console logging level
        log_file: Optional log file path
        gateway_factory: Builds the remote gateway from the configuration;
            defaults to SnykClient
    """

    config_path: Path | None = None
    log_level: str = "WARNING"
    log_file: Path | None = None
    gateway_factory: Callable[[MigrationConfig], RemoteGateway] | None = None

    # Lazy-loaded attributes
    _config: MigrationConfig | None = field(default=None, init=False, repr=False)
    _ledger: Ledger | None = field(default=None, init=False, repr=False)

    @property
    def config(self) -> MigrationConfig:
        """Get or load migration configuration.

        Without a config file, settings come from CCI_BRIDGE_* environment
        variables and defaults.
        """
        if self._config is None:
            if self.config_path is None:
                logger.debug("No configuration file, using environment and defaults")
                self._config = MigrationConfig()
            else:
                logger.debug("Loading configuration", config_path=str(self.config_path))
                try:
                    self._config = load_config_from_yaml(self.config_path)
                except (OSError, ValueError) as e:
                    raise ConfigurationError(f"Failed to load configuration: {e}") from e
                logger.debug("Configuration loaded successfully")

        return self._config

    def apply_overrides(
        self,
        api_token: str | None = None,
        db_path: str | None = None,
        backup_dir: str | None = None,
    ) -> None:
        """Apply command-line values on top of the loaded configuration."""
        if api_token:
            self.config.snyk.token = api_token
        if db_path:
            self.config.state.db_path = db_path
        if backup_dir:
            self.config.paths.backup_dir = backup_dir

    def require_token(self) -> str:
        """Return the API token or fail if none was supplied."""
        token = self.config.snyk.token
        if not token:
            raise ConfigurationError(
                "API token required. Use --api-token or set SNYK_TOKEN."
            )
        return token

    @property
    def ledger(self) -> Ledger:
        """Get or open the migration ledger."""
        if self._ledger is None:
            logger.debug("Opening ledger", db_path=self.config.state.db_path)
            self._ledger = Ledger(self.config.state)

        return self._ledger

    def create_gateway(self) -> RemoteGateway:
        """Build a gateway for one command run.

        The caller owns it and closes it with ``async with`` when supported.
        """
        if self.gateway_factory is not None:
            return self.gateway_factory(self.config)

        logger.debug("Creating Snyk client", endpoint=self.config.snyk.api_endpoint)
        return SnykClient(
            config=self.config.snyk,
            performance=self.config.performance,
            project_type=self.config.gather.project_type,
            log_payloads=self.config.logging.log_payloads,
            max_payload_size=self.config.logging.max_payload_size,
        )

    def close_ledger(self) -> None:
        """Release the ledger so its file can be replaced."""
        if self._ledger is not None:
            self._ledger.close()
            self._ledger = None

    def cleanup(self) -> None:
        """Clean up resources."""
        logger.debug("Cleaning up context resources")
        self.close_ledger()

    def __enter__(self) -> "MigrationContext":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cleanup()
