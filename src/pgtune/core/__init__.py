"""Core framework components for pgtune."""

from pgtune.core.exceptions import (
    PgTuneError,
    ConfigurationError,
    ValidationError,
    InvalidOverrideError,
    DetectionError,
)

from pgtune.core.context import ExecutionContext, create_context
from pgtune.core.output import console, Console, Verbosity
from pgtune.core.config import AppConfig, PgTuneConfig, TuningOverrides
from pgtune.core.types import DiskType, HugePages, OSType, WalLevel, WorkloadType

__all__ = [
    # Exceptions
    "PgTuneError",
    "ConfigurationError",
    "ValidationError",
    "InvalidOverrideError",
    "DetectionError",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "AppConfig",
    "PgTuneConfig",
    "TuningOverrides",
    # Types
    "DiskType",
    "HugePages",
    "OSType",
    "WalLevel",
    "WorkloadType",
]
