"""Custom exceptions for pgtune.

All exceptions provide:
- Clear error messages
- Optional hints for resolution
- Optional details for debugging
- Exit codes for proper shell integration
"""

from typing import Optional


class PgTuneError(Exception):
    """Base exception for all pgtune errors.

    Attributes:
        message: Human-readable error description
        hint: Suggested action to resolve the error
        details: Additional context for debugging
        exit_code: Shell exit code (1-127)
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or []

    def __str__(self) -> str:
        return self.message


class ConfigurationError(PgTuneError):
    """Configuration file or settings errors.

    Raised when:
    - Config file not found or unreadable
    - Invalid YAML syntax
    - Invalid configuration values
    """
    exit_code = 2


class ValidationError(PgTuneError):
    """Input validation errors.

    Raised when:
    - Unknown workload, OS or disk type
    - Malformed size strings
    - Unsupported PostgreSQL version
    """
    exit_code = 3


class InvalidOverrideError(ValidationError):
    """A caller-supplied resource override is out of range.

    Raised when:
    - Memory override is zero or negative
    - CPU override is zero or negative
    - max_connections is zero or negative
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: object = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details and field is not None:
            details = [f"{field} = {value!r}"]
        super().__init__(message, hint=hint, details=details)
        self.field = field
        self.value = value


class DetectionError(PgTuneError):
    """Resource detection produced no usable signal.

    Detection itself never raises; this is only used by callers that
    explicitly require a signal (e.g. `pgtune detect --require-container`).
    """
    exit_code = 8
