"""Closed enumerations shared by configuration, detection and tuning.

Every formula branch in the calculator is a table keyed by all members of
these enums, so an unknown value is rejected at parse time instead of
silently falling through to a default.
"""

from enum import Enum
from typing import TypeVar

from pgtune.core.exceptions import ValidationError


_E = TypeVar("_E", bound=Enum)


def parse_enum(enum_cls: type[_E], value: "str | _E", label: str) -> _E:
    """Parse a user-supplied value into a member of enum_cls.

    Raises:
        ValidationError: If the value is not a member
    """
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(str(member.value) for member in enum_cls)
        raise ValidationError(
            f"Invalid {label}: {value!r}",
            hint=f"Valid values: {valid}",
        ) from None


class OSType(str, Enum):
    """Operating system families the tuner distinguishes."""

    LINUX = "linux"
    WINDOWS = "windows"
    MAC = "mac"

    @classmethod
    def parse(cls, value: str) -> "OSType":
        return parse_enum(cls, value, "OS type")


class DiskType(str, Enum):
    """Storage classes the tuner distinguishes."""

    SSD = "ssd"
    HDD = "hdd"
    SAN = "san"

    @classmethod
    def parse(cls, value: str) -> "DiskType":
        return parse_enum(cls, value, "disk type")


class WorkloadType(str, Enum):
    """PostgreSQL workload profiles."""

    WEB = "web"
    OLTP = "oltp"
    DW = "dw"
    DESKTOP = "desktop"
    MIXED = "mixed"

    @classmethod
    def parse(cls, value: str) -> "WorkloadType":
        return parse_enum(cls, value, "workload type")

    @property
    def description(self) -> str:
        """Human-readable description of the workload."""
        descriptions = {
            WorkloadType.WEB: "Web application, many short queries",
            WorkloadType.OLTP: "High concurrency, fast transactions",
            WorkloadType.DW: "Data warehouse, complex queries over large datasets",
            WorkloadType.DESKTOP: "Developer desktop, minimal resource footprint",
            WorkloadType.MIXED: "Balanced workload (general purpose)",
        }
        return descriptions[self]


class WalLevel(str, Enum):
    """Values of wal_level the tuner emits."""

    MINIMAL = "minimal"
    REPLICA = "replica"


class HugePages(str, Enum):
    """Values of huge_pages the tuner emits."""

    OFF = "off"
    TRY = "try"
