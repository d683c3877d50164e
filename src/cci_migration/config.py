"""Configuration management for CCI Bridge using Pydantic.

This module provides type-safe configuration models for the Snyk API
connection, the local migration ledger, retry and timeout tuning, and
logging. Values come from (lowest to highest precedence) model defaults,
an optional YAML file, ``CCI_BRIDGE_*`` environment variables and CLI flags.
"""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

DEFAULT_API_ENDPOINT = "api.snyk.io"
DEFAULT_REST_VERSION = "2024-10-15"
COLLECTION_VERSION = "2.0.0"
API_VERSION = "v1"
SUPPORTED_STRATEGIES = ("priority-earliest",)


class SnykConfig(BaseModel):
    """Configuration for the Snyk API connection."""

    token: str = Field(default="", description="Snyk API token")
    api_endpoint: str = Field(
        default=DEFAULT_API_ENDPOINT,
        description="API host (e.g. api.snyk.io, api.eu.snyk.io) or full https:// URL",
    )
    rest_version: str = Field(
        default=DEFAULT_REST_VERSION, description="Version parameter sent to the REST API"
    )
    page_limit: int = Field(default=100, ge=10, le=100, description="Page size for REST listings")
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    timeout: int = Field(default=30, ge=1, le=600, description="API request timeout in seconds")

    @field_validator("api_endpoint")
    @classmethod
    def validate_api_endpoint(cls, v: str) -> str:
        """Reduce the endpoint to a bare host name."""
        v = v.strip()
        if not v:
            raise ValueError("API endpoint cannot be empty")
        for prefix in ("https://", "http://"):
            if v.startswith(prefix):
                v = v[len(prefix) :]
        return v.rstrip("/")


class StateConfig(BaseModel):
    """Ledger (state database) configuration."""

    db_path: str = Field(
        default="./cci-migration.db",
        description="Path to the SQLite ledger file, or a full SQLAlchemy URL",
    )
    busy_timeout: float = Field(
        default=5.0,
        ge=0,
        le=300,
        description="Seconds SQLite waits on a locked database before raising",
    )
    transaction_retry_attempts: int = Field(
        default=3, ge=1, le=10, description="Attempts for a write transaction hitting a lock"
    )
    transaction_retry_backoff: float = Field(
        default=0.5,
        ge=0,
        le=10,
        description="Base backoff in seconds; the n-th retry waits n * backoff",
    )

    @property
    def database_url(self) -> str:
        if self.db_path.startswith(("postgresql://", "sqlite://", "mysql://")):
            return self.db_path
        return f"sqlite:///{self.db_path}"


class PathConfig(BaseModel):
    """Configuration for file paths."""

    backup_dir: str = Field(default="./backups", description="Directory for ledger backups")


class PerformanceConfig(BaseModel):
    """Retry, rate limit and timeout tuning."""

    rate_limit: int = Field(default=10, ge=1, le=50, description="Requests per second limit")
    http_max_connections: int = Field(
        default=20, ge=1, le=200, description="Maximum HTTP connections in the pool"
    )
    retry_attempts: int = Field(
        default=5, ge=1, le=10, description="Attempts for network and 5xx failures"
    )
    retry_backoff_min: int = Field(default=2, ge=1, le=60, description="Minimum retry wait")
    retry_backoff_max: int = Field(default=60, ge=1, le=600, description="Maximum retry wait")
    rate_limit_max_retries: int = Field(
        default=5, ge=0, le=20, description="Retries after a 429 response"
    )
    rate_limit_default_wait: float = Field(
        default=60,
        ge=0,
        le=600,
        description="Seconds to wait after a 429 without a Retry-After header",
    )
    execute_timeout: float = Field(
        default=600,
        gt=0,
        le=86400,
        description="Wall-clock limit in seconds for the execute phase",
    )


class GatherConfig(BaseModel):
    """Collection settings threaded into the gather phase."""

    collection_version: str = Field(
        default=COLLECTION_VERSION, description="Version recorded in collection metadata"
    )
    api_version: str = Field(default=API_VERSION, description="Ignore API version collected from")
    project_type: str = Field(default="sast", description="Project type to collect")


class PlanConfig(BaseModel):
    """Planning settings."""

    strategy: str = Field(
        default="priority-earliest", description="Conflict resolution strategy"
    )
    default_reason: str = Field(
        default="Migrated from SAST ignore",
        description="Reason used when the selected ignore has none",
    )

    @field_validator("strategy")
    @classmethod
    def validate_strategy(cls, v: str) -> str:
        """Validate the resolution strategy."""
        if v not in SUPPORTED_STRATEGIES:
            raise ValueError(f"Strategy must be one of: {', '.join(SUPPORTED_STRATEGIES)}")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="WARNING",
        description="Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    file_level: str = Field(
        default="DEBUG",
        description="File log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    format: str = Field(default="json", description="Log format (json or console)")
    file: str | None = Field(default="logs/cci-migration.log", description="Log file path")
    log_payloads: bool = Field(
        default=False,
        description=(
            "Enable request/response payload logging at DEBUG level. "
            "Tokens are redacted."
        ),
    )
    max_payload_size: int = Field(
        default=10000,
        ge=100,
        le=1000000,
        description="Maximum payload size (characters) to log",
    )

    @field_validator("level", "file_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of: {', '.join(valid_levels)}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "console"]
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Log format must be one of: {', '.join(valid_formats)}")
        return v_lower


class MigrationConfig(BaseSettings):
    """Main migration configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CCI_BRIDGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    snyk: SnykConfig = Field(default_factory=SnykConfig, description="Snyk API configuration")
    state: StateConfig = Field(default_factory=StateConfig, description="Ledger configuration")
    paths: PathConfig = Field(default_factory=PathConfig, description="Path configuration")
    performance: PerformanceConfig = Field(
        default_factory=PerformanceConfig, description="Performance configuration"
    )
    gather: GatherConfig = Field(default_factory=GatherConfig, description="Gather configuration")
    plan: PlanConfig = Field(default_factory=PlanConfig, description="Plan configuration")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # YAML values arrive as init kwargs and rank below the environment
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_config_from_yaml(config_path: str | Path) -> MigrationConfig:
    """Load configuration from YAML file.

    ``CCI_BRIDGE_*`` environment variables take precedence over file values.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        MigrationConfig: Loaded configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file is empty or references a missing variable
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        config_data = yaml.safe_load(f)

    if not config_data:
        raise ValueError(f"Empty configuration file: {config_path}")

    config_data = _expand_env_vars(config_data)

    return MigrationConfig(**config_data)


def _expand_env_vars(data):
    """Recursively expand ``${VAR_NAME}`` values from the environment."""
    if isinstance(data, dict):
        return {k: _expand_env_vars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    if isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        var_name = data[2:-1]
        env_value = os.environ.get(var_name)
        if env_value is None:
            raise ValueError(
                f"Environment variable '{var_name}' not found. "
                f"Please set it in your environment or .env file."
            )
        return env_value
    return data
