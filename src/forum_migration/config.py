"""Configuration management for Forum Bridge using Pydantic.

This module provides type-safe configuration models for the migration run:
adapter selection, run policy, paths, performance tuning, state storage and
logging.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BG_COLORS = [
    "#AB4642",
    "#DC9656",
    "#F7CA88",
    "#A1B56C",
    "#86C1B9",
    "#7CAFC2",
    "#BA8BAF",
    "#A16946",
]

DEFAULT_ENVIRONMENT_OVERRIDES: dict[str, Any] = {
    "maintenanceMode": 1,
    "postDelay": 0,
    "initialPostDelay": 0,
    "newbiePostDelay": 0,
    "chatMessageDelay": 0,
    "minimumPostLength": 1,
    "minimumTitleLength": 1,
    "maximumPostLength": 10_000_000,
    "maximumChatMessageLength": 10_000_000,
    "allowGuestHandles": 1,
}


class DuplicateKeyPolicy(str, Enum):
    """What to do when an account's email is already taken on the target."""

    MERGE = "merge"
    SUFFIX = "suffix"
    SKIP = "skip"


class OwnerTakeoverConfig(BaseModel):
    """Map one source account onto the target's administrator account."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=False)
    source_id: str | None = Field(default=None, description="Source account id to take over")
    username: str | None = Field(default=None, description="Source username to take over")
    target_id: str = Field(default="1", description="Target administrator account id")

    def matches(self, source_id: Any, username: str | None) -> bool:
        """Return True if the given source account is the one to take over."""
        if not self.enabled:
            return False
        if self.source_id is not None and source_id is not None:
            if str(self.source_id) == str(source_id):
                return True
        if self.username and username:
            return self.username.lower() == username.lower()
        return False


class PasswordGenConfig(BaseModel):
    """Generated passwords for accounts that have none."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=False)
    chars: str = Field(
        default="{}.-_=+qwertyuiopasdfghjklzxcvbnmQWERTYUIOPASDFGHJKLZXCVBNM1234567890"
    )
    length: int = Field(default=13, ge=6, le=128)


class RunConfig(BaseModel):
    """Settings that stay fixed for the whole run."""

    model_config = ConfigDict(frozen=True)

    duplicate_key_policy: DuplicateKeyPolicy = Field(
        default=DuplicateKeyPolicy.MERGE,
        description="How to handle an account whose email already exists on the target",
    )
    max_duplicate_key_attempts: int = Field(
        default=50, ge=1, le=10_000, description="Upper bound on suffix retries per account"
    )
    auto_confirm_emails: bool = Field(default=True)
    reputation_multiplier: float = Field(default=1, ge=0)
    container_icons: list[str] = Field(default_factory=lambda: ["fa-comment"])
    container_bg_colors: list[str] = Field(default_factory=lambda: list(DEFAULT_BG_COLORS))
    container_text_colors: list[str] = Field(default_factory=lambda: ["#FFFFFF"])
    owner_takeover: OwnerTakeoverConfig = Field(default_factory=OwnerTakeoverConfig)
    password_generation: PasswordGenConfig = Field(default_factory=PasswordGenConfig)
    environment_overrides: dict[str, Any] = Field(
        default_factory=lambda: dict(DEFAULT_ENVIRONMENT_OVERRIDES),
        description="Target settings applied for the duration of the run",
    )
    field_limits: dict[str, int] = Field(
        default_factory=lambda: {
            "username": 255,
            "signature": 255,
            "title": 255,
            "container_name": 255,
            "group_name": 255,
        },
        description="Target field length limits used for truncation",
    )

    @field_validator("container_icons", "container_bg_colors", "container_text_colors")
    @classmethod
    def validate_pool(cls, v: list[str]) -> list[str]:
        """Pools may be empty but must not contain blank entries."""
        if any(not item or not item.strip() for item in v):
            raise ValueError("Cosmetic pools cannot contain empty values")
        return v


class SourceConfig(BaseModel):
    """Source provider selection."""

    adapter: str = Field(
        default="forum_migration.client.source_provider:JsonExportSourceProvider",
        description="Import path 'module:callable' building the source provider",
    )
    export_dir: str = Field(default="exports", description="Directory holding exported JSON")

    @field_validator("adapter")
    @classmethod
    def validate_adapter(cls, v: str) -> str:
        """Validate the import path format."""
        if ":" not in v:
            raise ValueError("Adapter must be given as 'module:callable'")
        return v


class TargetConfig(BaseModel):
    """Target store selection."""

    adapter: str = Field(..., description="Import path 'module:callable' building the store")
    options: dict[str, Any] = Field(default_factory=dict, description="Adapter keyword arguments")

    @field_validator("adapter")
    @classmethod
    def validate_adapter(cls, v: str) -> str:
        """Validate the import path format."""
        if ":" not in v:
            raise ValueError("Adapter must be given as 'module:callable'")
        return v


class PathConfig(BaseModel):
    """Configuration for file paths."""

    base_dir: str = Field(default=".", description="Root directory for migration data")
    environment_backup_file: str = Field(
        default="tmp/environment.backup.json",
        description="Snapshot of the target settings taken before the run",
    )
    tmp_dir: str = Field(default="tmp", description="Scratch directory for decoded blobs")
    upload_dir: str = Field(default="uploads", description="Local blob store root")
    report_dir: str = Field(default="reports", description="Directory for migration reports")


class PerformanceConfig(BaseModel):
    """Performance tuning configuration."""

    batch_size: int = Field(
        default=500, ge=1, le=10_000, description="Items requested per source batch"
    )
    each_limit: int = Field(
        default=10, ge=1, le=100, description="Concurrent operations in fan-out phases"
    )
    purge_batch_size: int = Field(default=100, ge=1, le=10_000)
    cooldown_seconds: float = Field(
        default=5.0, ge=0, description="Pause after group import before containers"
    )
    progress_interval: float = Field(
        default=0.1,
        gt=0,
        le=100,
        description="Minimum percentage gain between two progress events",
    )
    blob_retry_attempts: int = Field(default=3, ge=1, le=10)


class StateConfig(BaseModel):
    """State management configuration."""

    db_path: str = Field(default="./migration_state.db", description="Path to state database file")
    db_url: str | None = Field(
        default=None, description="Full SQLAlchemy URL, overrides db_path when set"
    )

    @property
    def url(self) -> str:
        """SQLAlchemy URL of the state database."""
        return self.db_url or f"sqlite:///{self.db_path}"


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="WARNING",
        description="Console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    file_level: str = Field(default="DEBUG", description="File log level")
    format: str = Field(default="json", description="Log format (json or console)")
    file: str | None = Field(default="logs/migration.log", description="Log file path")
    console_events: list[str] = Field(
        default_factory=lambda: ["warn", "log", "success", "error"],
        description="Event levels mirrored to the console log",
    )
    subscriber_events: list[str] = Field(
        default_factory=lambda: ["warn", "log", "success", "error"],
        description="Event levels forwarded to observers",
    )
    disable_progress: bool = Field(default=False, description="Disable the progress display")

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

    @field_validator("console_events", "subscriber_events")
    @classmethod
    def validate_event_levels(cls, v: list[str]) -> list[str]:
        """Validate event level names."""
        valid = {"warn", "log", "success", "error"}
        unknown = set(v) - valid
        if unknown:
            raise ValueError(f"Unknown event levels: {', '.join(sorted(unknown))}")
        return v


class MigrationConfig(BaseSettings):
    """Main migration configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FORUM_BRIDGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    source: SourceConfig = Field(default_factory=SourceConfig, description="Source provider")
    target: TargetConfig = Field(..., description="Target store")
    run: RunConfig = Field(default_factory=RunConfig, description="Run policy")
    paths: PathConfig = Field(default_factory=PathConfig, description="Path configuration")
    performance: PerformanceConfig = Field(
        default_factory=PerformanceConfig, description="Performance configuration"
    )
    state: StateConfig = Field(default_factory=StateConfig, description="State configuration")
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
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

    with open(config_path) as f:
        config_data = yaml.safe_load(f)

    if not config_data:
        raise ValueError(f"Empty configuration file: {config_path}")

    config_data = _expand_env_vars(config_data)

    return MigrationConfig(**config_data)


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand environment variables in config data.

    Supports ${VAR_NAME} syntax for environment variable substitution.

    Args:
        data: Configuration data (dict, list or scalar)

    Returns:
        Data with expanded environment variables
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
