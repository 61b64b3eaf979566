"""PostgreSQL tuning calculator.

Provides:
- TuningConfig, the calculator input built from a resource snapshot
- calculate(), a pure mapping from TuningConfig to TunedParameters
- tune(), calculate() followed by caller-supplied post-processors
- A static parameter table used to render results

The calculator performs no I/O and keeps no state: identical inputs always
produce identical output, and it is safe to call from any thread.
"""

import math
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Optional

from pgtune.core.config import DEFAULT_PG_VERSION, TuningOverrides
from pgtune.core.types import DiskType, HugePages, OSType, WalLevel, WorkloadType
from pgtune.core.units import GB, KB, MB, format_size_pg, saturating_sub
from pgtune.services.resources import SystemInfo


# =============================================================================
# Workload tables
# =============================================================================

# max_connections when the caller does not supply one
RECOMMENDED_MAX_CONNECTIONS = {
    WorkloadType.WEB: 200,
    WorkloadType.OLTP: 300,
    WorkloadType.DW: 40,
    WorkloadType.DESKTOP: 20,
    WorkloadType.MIXED: 100,
}

# (min_wal_size, max_wal_size)
WAL_SIZES = {
    WorkloadType.WEB: (1 * GB, 4 * GB),
    WorkloadType.OLTP: (2 * GB, 8 * GB),
    WorkloadType.DW: (1 * GB, 16 * GB),
    WorkloadType.DESKTOP: (64 * MB, 2 * GB),
    WorkloadType.MIXED: (1 * GB, 4 * GB),
}

# work_mem is the per-process share divided by this
WORK_MEM_DIVISOR = {
    WorkloadType.WEB: 1,
    WorkloadType.OLTP: 1,
    WorkloadType.DW: 2,
    WorkloadType.DESKTOP: 6,
    WorkloadType.MIXED: 2,
}

# effective_cache_size as (numerator, denominator) of memory
EFFECTIVE_CACHE_FRACTION = {
    WorkloadType.WEB: (3, 4),
    WorkloadType.OLTP: (3, 4),
    WorkloadType.DW: (3, 4),
    WorkloadType.DESKTOP: (1, 4),
    WorkloadType.MIXED: (3, 4),
}

# maintenance_work_mem as a divisor of memory
MAINTENANCE_DIVISOR = {
    WorkloadType.WEB: 16,
    WorkloadType.OLTP: 16,
    WorkloadType.DW: 8,
    WorkloadType.DESKTOP: 16,
    WorkloadType.MIXED: 16,
}

STATISTICS_TARGET = {
    WorkloadType.WEB: 100,
    WorkloadType.OLTP: 100,
    WorkloadType.DW: 500,
    WorkloadType.DESKTOP: 100,
    WorkloadType.MIXED: 100,
}

# (wal_level, max_wal_senders); None leaves the server default
WAL_LEVEL = {
    WorkloadType.WEB: (WalLevel.REPLICA, None),
    WorkloadType.OLTP: (WalLevel.REPLICA, None),
    WorkloadType.DW: (WalLevel.REPLICA, None),
    WorkloadType.DESKTOP: (WalLevel.MINIMAL, 0),
    WorkloadType.MIXED: (WalLevel.REPLICA, None),
}

# maintenance_work_mem ceiling; Windows rejects exactly 2GB
MAINTENANCE_WORK_MEM_CEILING = {
    OSType.LINUX: 2 * GB,
    OSType.MAC: 2 * GB,
    OSType.WINDOWS: 2 * GB - 1 * MB,
}

# =============================================================================
# Fixed constants
# =============================================================================

CHECKPOINT_COMPLETION_TARGET = 0.9

# Same for every disk type
RANDOM_PAGE_COST = 4.0
EFFECTIVE_IO_CONCURRENCY = 200

MIN_WORK_MEM = 512 * KB
MIN_WAL_BUFFERS = 1 * MB
MAX_WAL_BUFFERS = 16 * MB
WAL_BUFFERS_ROUND_UP_FROM = 14 * MB

HUGE_PAGES_THRESHOLD = 32 * GB
LOW_MEMORY_THRESHOLD = 256 * MB
HIGH_MEMORY_THRESHOLD = 100 * GB

LOW_MEMORY_WARNING = "WARNING: This tool is not optimal for low memory systems (< 256MB)"
HIGH_MEMORY_WARNING = "WARNING: This tool is not optimal for very high memory systems (> 100GB)"

# Below this many CPUs the parallel settings keep PostgreSQL's defaults
PARALLEL_MIN_CPUS = 4
DEFAULT_MAX_WORKER_PROCESSES = 8
DEFAULT_PARALLEL_PER_GATHER = 2
DEFAULT_MAX_PARALLEL_WORKERS = 8
MAX_PARALLEL_PER_GATHER = 4
MAX_PARALLEL_MAINTENANCE_WORKERS = 4


# =============================================================================
# Data model
# =============================================================================

@dataclass(frozen=True)
class TuningConfig:
    """Calculator input.

    Attributes:
        memory: Effective memory in bytes
        cpus: Effective CPU count
        os_type: Target operating system family
        disk_type: Storage class of the data directory
        pg_version: PostgreSQL major version
        workload: Workload profile
        max_connections: Requested max_connections (workload default if None)
    """

    memory: int
    cpus: int
    os_type: OSType = OSType.LINUX
    disk_type: DiskType = DiskType.SSD
    pg_version: int = DEFAULT_PG_VERSION
    workload: WorkloadType = WorkloadType.MIXED
    max_connections: Optional[int] = None

    @property
    def resolved_max_connections(self) -> int:
        """Requested max_connections, or the workload's recommendation."""
        if self.max_connections:
            return self.max_connections
        return get_recommended_max_connections(self.workload)

    @classmethod
    def from_system_info(
        cls,
        info: SystemInfo,
        overrides: Optional[TuningOverrides] = None,
    ) -> "TuningConfig":
        """Merge a resource snapshot with caller overrides.

        Overrides must already be validated; any field left unset falls back
        to the snapshot's effective value.
        """
        overrides = overrides or TuningOverrides()
        memory = overrides.memory_bytes
        return cls(
            memory=memory if memory is not None else info.effective_memory,
            cpus=overrides.cpus if overrides.cpus is not None else info.effective_cpus,
            os_type=overrides.os_type or info.os_type,
            disk_type=overrides.disk_type or info.disk_type,
            pg_version=(
                overrides.pg_version if overrides.pg_version is not None else info.pg_version
            ),
            workload=overrides.workload,
            max_connections=overrides.max_connections,
        )


@dataclass(frozen=True)
class TunedParameters:
    """Calculated PostgreSQL parameters. All sizes are in bytes."""

    shared_buffers: int
    effective_cache_size: int
    maintenance_work_mem: int
    work_mem: int
    wal_buffers: int
    min_wal_size: int
    max_wal_size: int
    checkpoint_completion_target: float
    random_page_cost: float
    effective_io_concurrency: Optional[int]
    default_statistics_target: int
    max_worker_processes: int
    max_parallel_workers: int
    max_parallel_workers_per_gather: int
    max_parallel_maintenance_workers: Optional[int]
    max_connections: int
    wal_level: WalLevel
    max_wal_senders: Optional[int]
    huge_pages: HugePages
    warnings: list[str] = field(default_factory=list)

    def to_settings(self) -> dict[str, str]:
        """postgresql.conf-style name -> value strings, skipping unset ones."""
        settings = {}
        for spec in PARAMETERS:
            value = getattr(self, spec.field)
            if value is None:
                continue
            settings[spec.name] = spec.render(value)
        return settings

    def to_dict(self) -> dict[str, Any]:
        """Plain-data view (sizes in bytes) suitable for JSON/YAML output."""
        data: dict[str, Any] = {}
        for spec in PARAMETERS:
            value = getattr(self, spec.field)
            if isinstance(value, (WalLevel, HugePages)):
                value = value.value
            data[spec.name] = value
        data["warnings"] = list(self.warnings)
        return data


@dataclass(frozen=True)
class ParameterSpec:
    """Static description of one tuned parameter."""

    field: str
    name: str
    kind: str  # "size", "int", "float" or "enum"
    requires_restart: bool
    description: str

    def render(self, value: Any) -> str:
        """Format a value for postgresql.conf."""
        if self.kind == "size":
            return format_size_pg(value)
        if self.kind == "float":
            return f"{value:g}" if value != int(value) else f"{value:.1f}"
        if self.kind == "enum":
            return value.value
        return str(value)


PARAMETERS: tuple[ParameterSpec, ...] = (
    ParameterSpec("max_connections", "max_connections", "int", True,
                  "Maximum concurrent client connections"),
    ParameterSpec("shared_buffers", "shared_buffers", "size", True,
                  "25% of memory for the shared buffer cache"),
    ParameterSpec("effective_cache_size", "effective_cache_size", "size", False,
                  "Planner estimate of memory available for disk caching"),
    ParameterSpec("maintenance_work_mem", "maintenance_work_mem", "size", False,
                  "Memory for VACUUM, CREATE INDEX, ALTER TABLE"),
    ParameterSpec("work_mem", "work_mem", "size", False,
                  "Per-operation memory for sorts and hashes"),
    ParameterSpec("wal_buffers", "wal_buffers", "size", True,
                  "WAL write buffer, 3% of shared_buffers"),
    ParameterSpec("min_wal_size", "min_wal_size", "size", False,
                  "WAL file retention minimum"),
    ParameterSpec("max_wal_size", "max_wal_size", "size", False,
                  "WAL size that triggers a checkpoint"),
    ParameterSpec("checkpoint_completion_target", "checkpoint_completion_target", "float", False,
                  "Spread checkpoint I/O over the interval"),
    ParameterSpec("random_page_cost", "random_page_cost", "float", False,
                  "Planner cost of a non-sequential page fetch"),
    ParameterSpec("effective_io_concurrency", "effective_io_concurrency", "int", False,
                  "Concurrent I/O requests the storage can handle"),
    ParameterSpec("default_statistics_target", "default_statistics_target", "int", False,
                  "Column statistics detail for the planner"),
    ParameterSpec("max_worker_processes", "max_worker_processes", "int", True,
                  "Background worker process limit"),
    ParameterSpec("max_parallel_workers", "max_parallel_workers", "int", False,
                  "Workers available to parallel queries"),
    ParameterSpec("max_parallel_workers_per_gather", "max_parallel_workers_per_gather", "int", False,
                  "Parallel workers per query node"),
    ParameterSpec("max_parallel_maintenance_workers", "max_parallel_maintenance_workers", "int", False,
                  "Parallel workers for index builds and VACUUM"),
    ParameterSpec("wal_level", "wal_level", "enum", True,
                  "Amount of information written to WAL"),
    ParameterSpec("max_wal_senders", "max_wal_senders", "int", True,
                  "Replication connection limit"),
    ParameterSpec("huge_pages", "huge_pages", "enum", True,
                  "Use huge pages for shared memory"),
)


# A post-processor receives the calculated parameters and the input that
# produced them and returns a (possibly) modified copy.
PostProcessor = Callable[[TunedParameters, TuningConfig], TunedParameters]


# =============================================================================
# Calculation
# =============================================================================

def get_recommended_max_connections(workload: WorkloadType) -> int:
    """Recommended max_connections for a workload."""
    return RECOMMENDED_MAX_CONNECTIONS[workload]


def calculate_shared_buffers(memory: int) -> int:
    """A quarter of memory, rounded down."""
    return memory // 4


def calculate_effective_cache_size(memory: int, workload: WorkloadType) -> int:
    numerator, denominator = EFFECTIVE_CACHE_FRACTION[workload]
    return memory * numerator // denominator


def calculate_maintenance_work_mem(memory: int, workload: WorkloadType, os_type: OSType) -> int:
    return min(memory // MAINTENANCE_DIVISOR[workload], MAINTENANCE_WORK_MEM_CEILING[os_type])


def calculate_wal_buffers(shared_buffers: int) -> int:
    """3% of shared_buffers within [1MB, 16MB]; values from 14MB round up to 16MB."""
    wal_buffers = min(3 * shared_buffers // 100, MAX_WAL_BUFFERS)
    if wal_buffers >= WAL_BUFFERS_ROUND_UP_FROM:
        wal_buffers = MAX_WAL_BUFFERS
    return max(wal_buffers, MIN_WAL_BUFFERS)


def calculate_wal_sizes(workload: WorkloadType) -> tuple[int, int]:
    """(min_wal_size, max_wal_size) for a workload."""
    return WAL_SIZES[workload]


def calculate_parallel_settings(
    cpus: int,
    workload: WorkloadType,
    pg_version: int = DEFAULT_PG_VERSION,
) -> tuple[int, int, int, Optional[int]]:
    """Parallel query settings.

    Returns:
        (max_worker_processes, max_parallel_workers_per_gather,
         max_parallel_workers, max_parallel_maintenance_workers)
    """
    if cpus < PARALLEL_MIN_CPUS:
        return (
            DEFAULT_MAX_WORKER_PROCESSES,
            DEFAULT_PARALLEL_PER_GATHER,
            DEFAULT_MAX_PARALLEL_WORKERS,
            None,
        )

    half = math.ceil(cpus / 2)
    per_gather = half if workload == WorkloadType.DW else min(half, MAX_PARALLEL_PER_GATHER)

    # max_parallel_workers exists from 10, max_parallel_maintenance_workers from 11
    parallel_workers = cpus if pg_version >= 10 else DEFAULT_MAX_PARALLEL_WORKERS
    maintenance = min(half, MAX_PARALLEL_MAINTENANCE_WORKERS) if pg_version >= 11 else None

    return cpus, per_gather, parallel_workers, maintenance


def calculate_work_mem(
    memory: int,
    shared_buffers: int,
    max_connections: int,
    max_worker_processes: int,
    workload: WorkloadType,
) -> int:
    """(memory - shared_buffers) / ((connections + workers) * 3), scaled by workload."""
    processes = (max_connections + max_worker_processes) * 3
    base = saturating_sub(memory, shared_buffers) // max(processes, 1)
    return max(base // WORK_MEM_DIVISOR[workload], MIN_WORK_MEM)


def calculate_huge_pages(memory: int) -> HugePages:
    return HugePages.TRY if memory > HUGE_PAGES_THRESHOLD else HugePages.OFF


def memory_warnings(memory: int) -> list[str]:
    """Advisories for memory sizes the formulas were not designed for."""
    warnings = []
    if memory < LOW_MEMORY_THRESHOLD:
        warnings.append(LOW_MEMORY_WARNING)
    if memory > HIGH_MEMORY_THRESHOLD:
        warnings.append(HIGH_MEMORY_WARNING)
    return warnings


def calculate(config: TuningConfig) -> TunedParameters:
    """Calculate a full parameter set for the given resources and workload.

    Args:
        config: Pre-validated calculator input

    Returns:
        TunedParameters with every field populated
    """
    memory = config.memory
    workload = config.workload
    max_connections = config.resolved_max_connections

    shared_buffers = calculate_shared_buffers(memory)
    min_wal, max_wal = calculate_wal_sizes(workload)
    workers, per_gather, parallel_workers, maintenance_workers = calculate_parallel_settings(
        config.cpus, workload, config.pg_version
    )
    wal_level, max_wal_senders = WAL_LEVEL[workload]

    return TunedParameters(
        warnings=memory_warnings(memory),
        shared_buffers=shared_buffers,
        effective_cache_size=calculate_effective_cache_size(memory, workload),
        maintenance_work_mem=calculate_maintenance_work_mem(memory, workload, config.os_type),
        wal_buffers=calculate_wal_buffers(shared_buffers),
        min_wal_size=min_wal,
        max_wal_size=max_wal,
        checkpoint_completion_target=CHECKPOINT_COMPLETION_TARGET,
        random_page_cost=RANDOM_PAGE_COST,
        effective_io_concurrency=EFFECTIVE_IO_CONCURRENCY,
        default_statistics_target=STATISTICS_TARGET[workload],
        max_worker_processes=workers,
        max_parallel_workers=parallel_workers,
        max_parallel_workers_per_gather=per_gather,
        max_parallel_maintenance_workers=maintenance_workers,
        work_mem=calculate_work_mem(memory, shared_buffers, max_connections, workers, workload),
        max_connections=max_connections,
        wal_level=wal_level,
        max_wal_senders=max_wal_senders,
        huge_pages=calculate_huge_pages(memory),
    )


def tune(
    config: TuningConfig,
    post_processors: Iterable[PostProcessor] = (),
) -> TunedParameters:
    """Calculate parameters, then run post-processors in the given order.

    Each post-processor sees the output of the previous one.
    """
    params = calculate(config)
    for processor in post_processors:
        params = processor(params, config)
    return params


def with_warning(params: TunedParameters, message: str) -> TunedParameters:
    """Copy of params with one more warning appended."""
    return replace(params, warnings=[*params.warnings, message])
