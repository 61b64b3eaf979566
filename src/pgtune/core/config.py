"""Configuration management using Pydantic.

Provides:
- Typed tuning overrides loaded from YAML with defaults
- PostgreSQL target version resolution from environment variables
- Configuration initialization and display
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pgtune.core.exceptions import ConfigurationError
from pgtune.core.types import DiskType, OSType, WorkloadType
from pgtune.core.validation import (
    MAX_PG_VERSION,
    MIN_PG_VERSION,
    validate_cpus,
    validate_max_connections,
    validate_memory,
    validate_pg_version,
)


# Default configuration path
DEFAULT_CONFIG_PATH = Path("/etc/pgtune/config.yaml")

# Current PostgreSQL major version, used when nothing else is configured
DEFAULT_PG_VERSION = 18

# Environment variables naming the target version, highest precedence first
VERSION_ENV_VARS = ("TARGET_VERSION", "PG_VERSION", "POSTGRES_VERSION")

OUTPUT_FORMATS = ("table", "json", "yaml")


def _lower(value: object) -> object:
    return value.strip().lower() if isinstance(value, str) else value


class TuningOverrides(BaseModel):
    """Values that replace detected resources or workload defaults.

    Every field is optional; unset fields fall back to detection (resources)
    or to the workload's recommendation (max_connections).
    """

    workload: WorkloadType = WorkloadType.MIXED
    max_connections: Optional[int] = None
    memory: Optional[str] = None  # e.g. "16GB"
    cpus: Optional[int] = None
    disk_type: Optional[DiskType] = None
    disk_device: Optional[str] = None  # e.g. /dev/nvme0n1p1
    os_type: Optional[OSType] = None
    pg_version: Optional[int] = None

    @field_validator("workload", "disk_type", "os_type", mode="before")
    @classmethod
    def normalize_enum(cls, v: object) -> object:
        return _lower(v)

    @field_validator("memory", mode="before")
    @classmethod
    def validate_memory_size(cls, v: object) -> Optional[str]:
        if v is None:
            return None
        validate_memory(v)
        return str(v)

    @field_validator("cpus")
    @classmethod
    def validate_cpu_count(cls, v: Optional[int]) -> Optional[int]:
        return None if v is None else validate_cpus(v)

    @field_validator("max_connections")
    @classmethod
    def validate_connections(cls, v: Optional[int]) -> Optional[int]:
        return None if v is None else validate_max_connections(v)

    @field_validator("pg_version")
    @classmethod
    def validate_version(cls, v: Optional[int]) -> Optional[int]:
        return None if v is None else validate_pg_version(v)

    @property
    def memory_bytes(self) -> Optional[int]:
        """Memory override in bytes, if set."""
        return None if self.memory is None else validate_memory(self.memory)


class OutputConfig(BaseModel):
    """Presentation settings."""

    format: str = "table"

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in OUTPUT_FORMATS:
            raise ValueError(f"Output format must be one of: {list(OUTPUT_FORMATS)}")
        return v


class PgTuneConfig(BaseModel):
    """Root configuration model, loaded from /etc/pgtune/config.yaml."""

    tuning: TuningOverrides = Field(default_factory=TuningOverrides)
    output: OutputConfig = Field(default_factory=OutputConfig)

    @classmethod
    def load(cls, path: Path) -> "PgTuneConfig":
        """Load configuration from YAML file.

        Args:
            path: Path to configuration file

        Returns:
            Loaded configuration

        Raises:
            ConfigurationError: If file not found or invalid
        """
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                hint="Create it with: pgtune config init",
            )

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {path}",
                details=[str(e)],
            ) from e
        except PermissionError:
            raise ConfigurationError(
                f"Cannot read configuration file: {path}",
                hint="Check file permissions or run with sudo",
            )

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping: {path}",
            )

        try:
            return cls(**data)
        except Exception as e:
            raise ConfigurationError(
                f"Invalid configuration: {e}",
                details=[str(e)],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "PgTuneConfig":
        """Load configuration, falling back to defaults if file doesn't exist."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if path.exists():
            return cls.load(path)
        return cls()

    def to_yaml(self) -> str:
        """Convert configuration to YAML string."""
        data = self.model_dump(mode="json", exclude_none=True)
        return yaml.dump(data, default_flow_style=False, sort_keys=False)


class VersionSettings(BaseSettings):
    """Target PostgreSQL version from environment variables."""

    target_version: Optional[str] = Field(None, alias="TARGET_VERSION")
    pg_version: Optional[str] = Field(None, alias="PG_VERSION")
    postgres_version: Optional[str] = Field(None, alias="POSTGRES_VERSION")

    model_config = SettingsConfigDict(extra="ignore")

    @property
    def major_version(self) -> Optional[int]:
        """First parseable major version in precedence order, if any."""
        for raw in (self.target_version, self.pg_version, self.postgres_version):
            major = _parse_major(raw)
            if major is not None:
                return major
        return None


def _parse_major(raw: Optional[str]) -> Optional[int]:
    """Major component of "16", "16.4" or "9.6" style versions.

    Values that do not parse, or fall outside the supported version range,
    give None so the next variable or the default is used.
    """
    if not raw:
        return None
    try:
        major = int(float(raw.strip()))
    except (ValueError, OverflowError):
        return None
    if not MIN_PG_VERSION <= major <= MAX_PG_VERSION:
        return None
    return major


def resolve_pg_version() -> int:
    """Target major version from the environment, or the current default."""
    return VersionSettings().major_version or DEFAULT_PG_VERSION


class AppConfig:
    """Application configuration combining config file and environment.

    This is the main interface for accessing configuration throughout the app.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[PgTuneConfig] = None,
    ) -> None:
        """Initialize application configuration.

        Args:
            config_path: Path to config file (uses default if None)
            config: Pre-loaded config (skips file loading if provided)
        """
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._config = config if config is not None else PgTuneConfig.load_or_default(self.config_path)
        self._versions = VersionSettings()

    @property
    def config(self) -> PgTuneConfig:
        """Get the loaded configuration."""
        return self._config

    @property
    def tuning(self) -> TuningOverrides:
        """Shortcut to tuning overrides."""
        return self._config.tuning

    @property
    def output(self) -> OutputConfig:
        """Shortcut to output settings."""
        return self._config.output

    @property
    def versions(self) -> VersionSettings:
        """Version variables read from the environment."""
        return self._versions

    @property
    def pg_version(self) -> int:
        """Target version: config file, then environment, then default."""
        if self.tuning.pg_version is not None:
            return self.tuning.pg_version
        return self._versions.major_version or DEFAULT_PG_VERSION


def get_example_config() -> str:
    """Generate example configuration file content."""
    return f"""# pgtune configuration
# Values set here override detected resources.
# Command-line flags override values set here.

tuning:
  workload: mixed  # web, oltp, dw, desktop, mixed
  # max_connections: 200  # default depends on workload
  # memory: 16GB  # default: detected (container limit if smaller)
  # cpus: 8  # default: detected (container quota if smaller)
  # disk_type: ssd  # ssd, hdd, san
  # disk_device: /dev/nvme0n1p1  # device probed for the rotational flag
  # os_type: linux  # linux, windows, mac
  # pg_version: {DEFAULT_PG_VERSION}  # default: {", ".join(VERSION_ENV_VARS)} or {DEFAULT_PG_VERSION}

output:
  format: table  # table, json, yaml
"""


def init_config(path: Path, force: bool = False) -> None:
    """Initialize a new configuration file.

    Args:
        path: Path to create config file
        force: Overwrite if exists

    Raises:
        ConfigurationError: If file exists and force is False
    """
    if path.exists() and not force:
        raise ConfigurationError(
            f"Configuration file already exists: {path}",
            hint="Use --force to overwrite",
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_example_config())
    os.chmod(path, 0o644)
