"""Input validation utilities.

Validates caller-supplied overrides before they reach the calculator, which
assumes pre-validated input:
- Memory sizes (strings with units or byte counts)
- CPU counts
- max_connections
- PostgreSQL major versions

All validators return the validated value or raise InvalidOverrideError.
"""

from typing import Union

from pgtune.core.exceptions import InvalidOverrideError, ValidationError
from pgtune.core.units import parse_size


# PostgreSQL's hard ceiling for max_connections (MAX_BACKENDS)
MAX_CONNECTIONS_LIMIT = 262143

MIN_PG_VERSION = 9
MAX_PG_VERSION = 30


def validate_memory(value: Union[str, int]) -> int:
    """Validate a memory override.

    Args:
        value: Size string such as "16GB" or a byte count

    Returns:
        Memory in bytes

    Raises:
        InvalidOverrideError: If the size is malformed, zero or negative
    """
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise InvalidOverrideError(
            f"Invalid memory value: {value!r}",
            field="memory",
            value=value,
        )

    if isinstance(value, int) and value <= 0:
        raise InvalidOverrideError(
            f"Memory must be positive: {value}",
            field="memory",
            value=value,
        )

    try:
        size = parse_size(value)
    except ValidationError as e:
        raise InvalidOverrideError(
            e.message,
            field="memory",
            value=value,
            hint=e.hint,
        ) from e

    if size <= 0:
        raise InvalidOverrideError(
            f"Memory must be positive: {value}",
            field="memory",
            value=value,
            hint="Use a size such as 512MB or 16GB",
        )
    return size


def validate_cpus(value: int) -> int:
    """Validate a CPU count override.

    Raises:
        InvalidOverrideError: If the count is zero or negative
    """
    if value < 1:
        raise InvalidOverrideError(
            f"CPU count must be at least 1: {value}",
            field="cpus",
            value=value,
        )
    return value


def validate_max_connections(value: int) -> int:
    """Validate a max_connections override.

    Raises:
        InvalidOverrideError: If out of PostgreSQL's accepted range
    """
    if not 1 <= value <= MAX_CONNECTIONS_LIMIT:
        raise InvalidOverrideError(
            f"Invalid max_connections: {value}",
            field="max_connections",
            value=value,
            hint=f"max_connections must be between 1 and {MAX_CONNECTIONS_LIMIT}",
        )
    return value


def validate_pg_version(value: int) -> int:
    """Validate a PostgreSQL major version.

    Raises:
        InvalidOverrideError: If outside the supported range
    """
    if not MIN_PG_VERSION <= value <= MAX_PG_VERSION:
        raise InvalidOverrideError(
            f"Unsupported PostgreSQL version: {value}",
            field="pg_version",
            value=value,
            hint=f"Use a major version between {MIN_PG_VERSION} and {MAX_PG_VERSION}",
        )
    return value
