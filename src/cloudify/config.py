"""
Configuration management for Cloudify

Handles configuration loading from environment variables, .env files
and command-line arguments using Pydantic settings.
"""

import logging
import os
import re
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import MAX_PORT, MIN_PORT

logger = logging.getLogger(__name__)

STATE_BACKENDS = ("memory", "yaml", "postgres")


class CloudifyConfig(BaseSettings):
    """
    Main configuration class for Cloudify.

    Configuration is loaded from:
    1. Environment variables prefixed with ``CLOUDIFY_`` (highest priority)
    2. .env file
    3. Default values (lowest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="CLOUDIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    log_dir: str = Field(
        default="logs",
        description="Directory for log files",
    )
    verbose: bool = Field(
        default=False,
        description="Enable verbose console output",
    )

    # Compose CLI configuration
    compose_command: str = Field(
        default="docker",
        description="Executable that provides the compose subcommand",
    )
    compose_subcommand: str = Field(
        default="compose",
        description="Compose subcommand passed before every invocation",
    )
    working_directory_base: str = Field(
        default="./data/environments",
        description="Base directory for per-environment compose files",
    )
    command_timeout_seconds: int = Field(
        default=300,
        description="Timeout for compose invocations; 0 or less disables it",
    )
    enable_dry_run: bool = Field(
        default=False,
        description="Pass --dry-run to every compose invocation",
    )

    # State configuration
    state_backend: str = Field(
        default="yaml",
        description="State backend (memory, yaml or postgres)",
    )
    state_file: str = Field(
        default=".cloudify/state.yaml",
        description="State file used by the yaml backend",
    )
    database_url: Optional[str] = Field(
        default=None,
        description="PostgreSQL connection URL for the postgres backend",
    )

    # Port allocation
    port_range_start: int = Field(
        default=MIN_PORT,
        description="Lowest host port considered for automatic allocation",
    )
    port_range_end: int = Field(
        default=MAX_PORT,
        description="Highest host port considered for automatic allocation",
    )
    max_port_attempts: int = Field(
        default=20,
        description="Attempts to commit an automatically chosen port",
    )

    # Development configuration
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    test_mode: bool = Field(
        default=False,
        description="Enable test mode",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(valid_levels)}")
        return v.upper()

    @field_validator("state_backend")
    @classmethod
    def validate_state_backend(cls, v: str) -> str:
        """Validate state backend is supported."""
        if v.lower() not in STATE_BACKENDS:
            raise ValueError(f"state_backend must be one of: {', '.join(STATE_BACKENDS)}")
        return v.lower()

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate database URL format if provided."""
        if v is None:
            return v

        if not v.startswith(("postgresql://", "postgres://")):
            raise ValueError(
                "database_url must start with 'postgresql://' or 'postgres://'"
            )

        return v

    @field_validator("compose_command", "compose_subcommand")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("compose command settings cannot be empty")
        return v.strip()

    @field_validator("max_port_attempts")
    @classmethod
    def validate_max_port_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_port_attempts must be at least 1")
        return v

    @model_validator(mode="after")
    def validate_port_range(self) -> "CloudifyConfig":
        """Ensure the allocation range is a non-empty sub-range of [1, 65535]."""
        if not (MIN_PORT <= self.port_range_start <= self.port_range_end <= MAX_PORT):
            raise ValueError(
                f"port range must satisfy {MIN_PORT} <= port_range_start <= "
                f"port_range_end <= {MAX_PORT}"
            )
        if self.state_backend == "postgres" and not self.effective_database_url():
            raise ValueError("database_url is required when state_backend is 'postgres'")
        return self

    @property
    def command_timeout(self) -> Optional[float]:
        """Compose timeout in seconds, or None when disabled."""
        if self.command_timeout_seconds <= 0:
            return None
        return float(self.command_timeout_seconds)

    def effective_database_url(self) -> Optional[str]:
        """Get the effective database URL (explicit or from DATABASE_URL)."""
        if self.database_url:
            return self.database_url

        if "DATABASE_URL" in os.environ:
            logger.info("Using DATABASE_URL from environment")
            return os.environ["DATABASE_URL"]

        return None

    def get_log_dir_path(self) -> Path:
        """Get log directory as Path object."""
        return Path(self.log_dir)

    def get_state_file_path(self) -> Path:
        return Path(self.state_file)

    def get_working_directory_base(self) -> Path:
        return Path(self.working_directory_base)

    def create_directories(self) -> None:
        """Create necessary directories if they don't exist."""
        log_path = self.get_log_dir_path()
        log_path.mkdir(parents=True, exist_ok=True)
        (log_path / "processes").mkdir(exist_ok=True)

    def mask_sensitive_values(self) -> dict[str, str]:
        """Get configuration dict with sensitive values masked."""
        config_dict = self.model_dump()

        if config_dict.get("database_url"):
            config_dict["database_url"] = re.sub(
                r"(postgres(?:ql)?://[^:]+:)[^@]+(@.*)",
                r"\1***\2",
                config_dict["database_url"],
            )

        return config_dict


def load_config(
    config_file: Optional[str] = None,
    cli_overrides: Optional[dict] = None,
) -> CloudifyConfig:
    """
    Load configuration with optional .env file and CLI overrides.

    Args:
        config_file: Optional .env style configuration file
        cli_overrides: CLI argument overrides (None values are ignored)

    Returns:
        Loaded configuration
    """
    settings_kwargs = {}
    if config_file and Path(config_file).exists():
        settings_kwargs["_env_file"] = config_file

    config = CloudifyConfig(**settings_kwargs)

    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    if overrides:
        config_data = config.model_dump()
        config_data.update(overrides)
        config = CloudifyConfig(**config_data)

    config.create_directories()

    return config


def get_default_config() -> CloudifyConfig:
    """
    Get default configuration for development/testing.

    Returns:
        Default configuration instance
    """
    return CloudifyConfig(
        log_level="DEBUG",
        verbose=True,
        debug=True,
        test_mode=True,
        state_backend="memory",
    )
