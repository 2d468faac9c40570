"""
Configuration system using Pydantic for type-safe settings management.

Two kinds of configuration live here:

- ``ConductorSettings``: process-level tunables (database location, loop
  intervals, subprocess limits). Loaded from YAML and/or ``CONDUCTOR_*``
  environment variables at startup.
- ``QueueSettings``: the operator-editable settings record persisted in the
  entity store. The scheduler and worker re-read it on every tick so changes
  take effect without a restart.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from task_conductor.enums import CliTool
from task_conductor.exceptions import ConfigurationError

MIN_CRON_INTERVAL_SECONDS = 30
MAX_CRON_INTERVAL_SECONDS = 3600


class QueueSettings(BaseModel):
    """Persisted queue settings record."""

    cron_interval_seconds: int = Field(
        default=60,
        ge=MIN_CRON_INTERVAL_SECONDS,
        le=MAX_CRON_INTERVAL_SECONDS,
        description="Seconds between scheduler scans",
    )
    base_repos_folder: str = Field(default="", description="Filesystem root holding one directory per repository")
    cli_tool: CliTool = Field(default=CliTool.CLAUDE, description="External tool used for new queue items")
    worker_enabled: bool = Field(default=False, description="Master switch for scanning and execution")

    def to_dict(self) -> dict[str, object]:
        return {
            "cronIntervalSeconds": self.cron_interval_seconds,
            "baseReposFolder": self.base_repos_folder,
            "cliTool": self.cli_tool.value,
            "workerEnabled": self.worker_enabled,
        }


class StoreConfig(BaseModel):
    """Entity store configuration."""

    database_path: str = Field(default=".conductor/tasks.db", description="SQLite database file")
    busy_timeout_ms: int = Field(default=5000, ge=0, description="How long a writer waits on a locked database")


class SchedulerConfig(BaseModel):
    """Queue scheduler configuration."""

    min_interval_seconds: float = Field(
        default=10.0, gt=0, description="Floor applied to the persisted scan interval"
    )


class WorkerConfig(BaseModel):
    """Queue worker configuration."""

    worker_id: str | None = Field(default=None, description="Claim identifier; defaults to the process id")
    poll_interval_seconds: float = Field(default=5.0, gt=0, description="Idle wait between claim attempts")
    process_timeout_seconds: float = Field(default=30 * 60, gt=0, description="Wall-clock limit per run")
    kill_grace_seconds: float = Field(default=5.0, ge=0, description="Wait between SIGTERM and SIGKILL")
    stderr_capture_bytes: int = Field(default=8192, ge=0, description="Diagnostic stderr kept per run")
    error_message_limit: int = Field(default=4096, ge=64, description="Cap on persisted error messages")

    @field_validator("worker_id")
    @classmethod
    def _strip_worker_id(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v

    @property
    def effective_worker_id(self) -> str:
        return self.worker_id or str(os.getpid())


class ConductorSettings(BaseSettings):
    """Main settings for task-conductor.

    Combines the configuration sections and provides loading from YAML files
    with environment variable interpolation.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONDUCTOR_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    log_level: str = Field(default="INFO", description="Minimum log level")
    store: StoreConfig = Field(default_factory=StoreConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)

    @property
    def database_path(self) -> Path:
        return Path(self.store.database_path)

    @classmethod
    def from_yaml(cls, config_path: str) -> ConductorSettings:
        """Load settings from YAML file with environment variable interpolation.

        Supports ${VAR_NAME} and ${VAR_NAME:-default} substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            ConductorSettings instance

        Raises:
            ConfigurationError: If config file is invalid or missing
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file) as f:
                yaml_content = f.read()
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        try:
            return cls(**config_dict)
        except Exception as e:
            raise ConfigurationError(f"Failed to validate configuration: {e}") from e

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Interpolate ${VAR_NAME} placeholders with environment variables.

        Comment lines are left unchanged.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            elif default_value is not None:
                return default_value
            else:
                raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            if line.lstrip().startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))
