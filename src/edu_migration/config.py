"""Configuration management for edu-bridge using Pydantic.

This module provides type-safe configuration models for the backend
connection, throttling and retry tuning, naming rules, the school year and
logging.
"""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackendConfig(BaseModel):
    """Connection to the learning platform backend."""

    url: str = Field(..., description="Backend base URL")
    admin_username: str = Field(default="", description="Service account username")
    admin_password: str = Field(default="", description="Service account password")
    admin_token: str | None = Field(
        default=None, description="Pre-issued admin bearer token (skips admin login)"
    )
    verify_ssl: bool = Field(default=True, description="Verify SSL certificates")
    timeout: int = Field(default=30, ge=1, le=600, description="API request timeout in seconds")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate and normalize URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_admin_credentials(self) -> "BackendConfig":
        """Require either an admin token or an admin username/password pair."""
        if not self.admin_token and not (self.admin_username and self.admin_password):
            raise ValueError(
                "Admin credentials not configured: set admin_token or "
                "admin_username and admin_password"
            )
        return self


class PerformanceConfig(BaseModel):
    """Throttling, concurrency and retry tuning."""

    register_rate: float = Field(
        default=2, gt=0, le=50, description="Registration requests per second"
    )
    login_rate: float = Field(default=2, gt=0, le=50, description="Login requests per second")
    max_concurrent_groups: int = Field(
        default=2,
        ge=1,
        le=50,
        description="Maximum username/display-name groups processed in parallel",
    )
    login_concurrency: int = Field(
        default=5, ge=1, le=50, description="Maximum logins in flight (sends still throttled)"
    )
    max_503_retries: int = Field(
        default=100, ge=1, le=1000, description="Attempts while the backend answers 503"
    )
    retry_delay_ms: int = Field(
        default=500, ge=0, le=60000, description="Delay between retries in milliseconds"
    )
    default_max_retries: int = Field(
        default=3, ge=1, le=10, description="Attempts for generic transient failures"
    )
    role_max_retries: int = Field(
        default=5, ge=1, le=10, description="Attempts for teacher role assignment"
    )
    max_name_suffix: int = Field(
        default=1000,
        ge=1,
        le=100000,
        description="Highest numeric suffix tried when disambiguating a name",
    )
    http_max_connections: int = Field(
        default=50, ge=5, le=200, description="Maximum number of connections in the pool"
    )
    http_max_keepalive_connections: int = Field(
        default=20, ge=1, le=100, description="Maximum number of keepalive connections"
    )

    @property
    def retry_delay(self) -> float:
        """Retry delay in seconds."""
        return self.retry_delay_ms / 1000


class NamingConfig(BaseModel):
    """Display name constraints enforced by the backend."""

    min_display_name_length: int = Field(default=2, ge=1, le=50)
    max_display_name_length: int = Field(default=20, ge=1, le=100)

    @model_validator(mode="after")
    def validate_range(self) -> "NamingConfig":
        """Ensure the length range is not empty."""
        if self.min_display_name_length > self.max_display_name_length:
            raise ValueError("min_display_name_length must not exceed max_display_name_length")
        return self


class SchoolYearConfig(BaseModel):
    """School year used for class naming and class date ranges."""

    year: int = Field(default=2025, ge=2000, le=2100, description="Starting year of the school year")

    @property
    def class_start_date(self) -> str:
        """Class start date (June 1st of the configured year)."""
        return f"{self.year}-06-01T00:00:00.000Z"

    @property
    def class_end_date(self) -> str:
        """Class end date (April 1st of the following year)."""
        return f"{self.year + 1}-04-01T00:00:00.000Z"


class PathConfig(BaseModel):
    """Configuration for file paths."""

    results_dir: str = Field(
        default="output data", description="Directory for migration result snapshots"
    )


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
    file: str | None = Field(default="logs/migration.log", description="Log file path")
    disable_progress: bool = Field(
        default=False, description="Disable progress bars (useful for CI/logging)"
    )
    log_payloads: bool = Field(
        default=False,
        description=(
            "Enable request/response payload logging at DEBUG level. "
            "Passwords and tokens are redacted."
        ),
    )
    max_payload_size: int = Field(
        default=10000,
        ge=100,
        le=1000000,
        description="Maximum payload size (characters) to log before truncation",
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
        env_prefix="EDU_BRIDGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    backend: BackendConfig = Field(..., description="Learning platform backend")
    performance: PerformanceConfig = Field(
        default_factory=PerformanceConfig, description="Performance configuration"
    )
    naming: NamingConfig = Field(default_factory=NamingConfig, description="Naming rules")
    school_year: SchoolYearConfig = Field(
        default_factory=SchoolYearConfig, description="School year configuration"
    )
    paths: PathConfig = Field(default_factory=PathConfig, description="Path configuration")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    write_snapshot: bool = Field(
        default=True, description="Write a JSON audit snapshot after each migration"
    )


def load_config_from_yaml(config_path: str | Path) -> MigrationConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        MigrationConfig: Loaded configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file is invalid
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, encoding="utf-8") as f:
        config_data = yaml.safe_load(f)

    if not config_data:
        raise ValueError(f"Empty configuration file: {config_path}")

    config_data = _expand_env_vars(config_data)

    return MigrationConfig(**config_data)


def _expand_env_vars(data):
    """Recursively expand environment variables in config dict.

    Supports ${VAR_NAME} syntax for environment variable substitution.
    """
    if isinstance(data, dict):
        return {k: _expand_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        if data.startswith("${") and data.endswith("}"):
            var_name = data[2:-1]
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ValueError(
                    f"Environment variable '{var_name}' not found. "
                    f"Please set it in your environment or .env file."
                )
            return env_value
        return data
    else:
        return data


def masked_config_dict(config: MigrationConfig) -> dict:
    """Dump configuration with secrets replaced for display."""
    data = config.model_dump()
    backend = data.get("backend", {})
    for key in ("admin_password", "admin_token"):
        if backend.get(key):
            backend[key] = "********"
    return data
