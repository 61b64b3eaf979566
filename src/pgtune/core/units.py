"""Byte-size constants, parsing and formatting.

Sizes are always carried as integer byte counts. These helpers only convert
at the edges (config files, CLI flags, display).
"""

import re

from pgtune.core.exceptions import ValidationError


KB = 1024
MB = 1024 * KB
GB = 1024 * MB
TB = 1024 * GB

_SIZE_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)\s*([KMGT]?B)$")

_MULTIPLIERS = {"B": 1, "KB": KB, "MB": MB, "GB": GB, "TB": TB}


def saturating_sub(a: int, b: int) -> int:
    """Subtract without going below zero."""
    return a - b if a > b else 0


def parse_size(value: str | int) -> int:
    """Parse a size such as "128MB", "1.5GB", "512kB" or "1048576" into bytes.

    Plain numbers are taken as bytes. Units are case-insensitive.

    Raises:
        ValidationError: If the value cannot be parsed
    """
    if isinstance(value, int):
        if value < 0:
            raise ValidationError(f"Size cannot be negative: {value}")
        return value

    text = value.strip()
    if not text:
        raise ValidationError("Size cannot be empty")

    if text.isdigit():
        return int(text)

    match = _SIZE_PATTERN.match(text.upper())
    if not match:
        raise ValidationError(
            f"Invalid size: {value!r}",
            hint="Use a number with a unit, e.g. 512MB, 16GB or 1.5TB",
        )

    number = float(match.group(1))
    return int(number * _MULTIPLIERS[match.group(2)])


def format_size(value: int) -> str:
    """Format bytes for humans, e.g. 1.5GB."""
    if value >= TB:
        return f"{value / TB:.1f}TB"
    if value >= GB:
        return f"{value / GB:.1f}GB"
    if value >= MB:
        return f"{value / MB:.1f}MB"
    if value >= KB:
        return f"{value / KB:.1f}kB"
    return f"{value}B"


def format_size_pg(value: int) -> str:
    """Format bytes the way postgresql.conf expects.

    Uses the largest unit that divides the value exactly, falling back to kB
    (PostgreSQL's smallest memory unit) with truncation.
    """
    if value == 0:
        return "0"
    for unit, size in (("TB", TB), ("GB", GB), ("MB", MB)):
        if value >= size and value % size == 0:
            return f"{value // size}{unit}"
    if value >= KB:
        return f"{value // KB}kB"
    return str(value)
