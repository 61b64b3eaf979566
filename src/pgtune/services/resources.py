"""Host and container resource detection.

Provides:
- Host memory and CPU detection (/proc/meminfo, psutil fallback)
- Container limit introspection for cgroup v1 and v2
- Container, OS family and disk type detection

Every probe is best-effort: a missing or unreadable file means "no signal
from this source" and detection moves on to the next fallback. Nothing in
here raises to the caller.
"""

import asyncio
import math
import os
import platform
import re
import socket
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

import psutil

from pgtune.core.config import DEFAULT_PG_VERSION, resolve_pg_version
from pgtune.core.output import console
from pgtune.core.types import DiskType, OSType
from pgtune.core.units import GB, format_size


# Fallback when host memory cannot be determined
DEFAULT_MEMORY = 1 * GB

# cgroup v1 reports "no limit" as LONG_MAX rounded down to the page size.
# Runtimes differ slightly in the exact value, so anything at or above this
# threshold counts as unlimited.
CGROUP_V1_UNLIMITED_THRESHOLD = 0x7FFFFFFFFFFFF000

# Block devices probed for the rotational flag, in order
REPRESENTATIVE_DEVICES = ("sda", "vda", "xvda", "nvme0n1")

# Fragments in PID 1's cgroup/mountinfo that indicate a container
_CGROUP_CONTAINER_MARKERS = ("/docker/", "/kubepods", "/k8s.io/")
_MOUNTINFO_CONTAINER_MARKERS = ("/docker/containers/", "/kubelet/")


@dataclass(frozen=True)
class Resources:
    """CPU and memory capacity, host-wide or container-scoped.

    Zero values mean "unknown" for the host and "no limit" for a container.
    """

    cpus: int = 0
    memory: int = 0  # bytes
    millis: int = 0  # CPU quota in thousandths of a core

    def __str__(self) -> str:
        parts = [f"CPU: {self.cpus}"]
        if self.millis > 0:
            parts.append(f"Quota: {self.millis} millis")
        if self.memory > 0:
            parts.append(f"Memory: {format_size(self.memory)}")
        return " ".join(parts)


@dataclass(frozen=True)
class SystemInfo:
    """Detected system resources."""

    system: Resources
    container: Resources = field(default_factory=Resources)
    os_type: OSType = OSType.LINUX
    disk_type: DiskType = DiskType.SSD
    pg_version: int = DEFAULT_PG_VERSION
    is_container: bool = False
    ip_addresses: tuple[str, ...] = ()

    @property
    def effective_memory(self) -> int:
        """Container memory limit when set and smaller than the host's."""
        limit = self.container.memory
        if 0 < limit < self.system.memory:
            return limit
        return self.system.memory

    @property
    def effective_cpus(self) -> int:
        """Container CPU count when set and smaller than the host's."""
        limit = self.container.cpus
        if 0 < limit < self.system.cpus:
            return limit
        return self.system.cpus

    def to_dict(self) -> dict[str, Any]:
        """Plain-data view suitable for JSON/YAML output."""
        data = asdict(self)
        data["os_type"] = self.os_type.value
        data["disk_type"] = self.disk_type.value
        data["ip_addresses"] = list(self.ip_addresses)
        data["effective_memory"] = self.effective_memory
        data["effective_cpus"] = self.effective_cpus
        return data


class ResourceDetector:
    """Best-effort detector for host and container resources.

    The filesystem roots are injectable so detection can run against a fake
    /proc and cgroup tree.
    """

    def __init__(
        self,
        proc_root: Path = Path("/proc"),
        sys_root: Path = Path("/sys"),
        root: Path = Path("/"),
        system_name: Optional[str] = None,
    ) -> None:
        """Initialize the detector.

        Args:
            proc_root: Mount point of procfs
            sys_root: Mount point of sysfs (cgroups live under fs/cgroup)
            root: Filesystem root used for container marker files
            system_name: Override for platform.system()
        """
        self.proc_root = proc_root
        self.sys_root = sys_root
        self.cgroup_root = sys_root / "fs" / "cgroup"
        self.root = root
        self.system_name = system_name or platform.system()

    def detect(
        self,
        pg_version: Optional[int] = None,
        disk_device: Optional[str] = None,
    ) -> SystemInfo:
        """Detect all system resources.

        Args:
            pg_version: Target PostgreSQL major version (resolved from the
                environment when None)
            disk_device: Block device holding the data directory, if known

        Returns:
            SystemInfo snapshot
        """
        system = Resources(cpus=self.detect_cpu_count(), memory=self.detect_memory())

        container = Resources()
        container_memory = self.detect_container_memory_limit()
        cpu_quota = self.detect_container_cpu_quota()
        if container_memory > 0 or cpu_quota > 0:
            container = Resources(
                cpus=max(1, math.ceil(cpu_quota)) if cpu_quota > 0 else 0,
                memory=container_memory,
                millis=int(cpu_quota * 1000) if cpu_quota > 0 else 0,
            )

        info = SystemInfo(
            system=system,
            container=container,
            os_type=self.detect_os_type(),
            disk_type=self.detect_disk_type(disk_device),
            pg_version=pg_version if pg_version is not None else resolve_pg_version(),
            is_container=self.detect_container(),
            ip_addresses=self.detect_ip_addresses(),
        )
        console.debug(f"System: {info.system}")
        console.debug(f"Container: {info.container}")
        return info

    # ------------------------------------------------------------------
    # Host resources
    # ------------------------------------------------------------------

    def detect_os_type(self) -> OSType:
        """Map the platform name to an OS family (unknown -> linux)."""
        return {
            "Linux": OSType.LINUX,
            "Windows": OSType.WINDOWS,
            "Darwin": OSType.MAC,
        }.get(self.system_name, OSType.LINUX)

    def detect_memory(self) -> int:
        """Get total host memory in bytes. Never returns zero."""
        if self.detect_os_type() == OSType.LINUX:
            memory = self._read_meminfo_total()
        else:
            memory = self._portable_memory()

        if memory <= 0:
            console.debug(f"Host memory unknown, assuming {format_size(DEFAULT_MEMORY)}")
            return DEFAULT_MEMORY
        return memory

    def _read_meminfo_total(self) -> int:
        content = self._read_text(self.proc_root / "meminfo")
        if content is None:
            return 0
        for line in content.splitlines():
            if line.startswith("MemTotal:"):
                # Format: "MemTotal:     16384000 kB"
                parts = line.split()
                try:
                    return int(parts[1]) * 1024
                except (IndexError, ValueError):
                    console.debug(f"Unparseable MemTotal line: {line!r}")
                    return 0
        return 0

    def _portable_memory(self) -> int:
        try:
            return int(psutil.virtual_memory().total)
        except (OSError, RuntimeError) as e:
            console.debug(f"psutil memory probe failed: {e}")
            return 0

    def detect_cpu_count(self) -> int:
        """Get the number of logical processors (at least 1)."""
        count = os.cpu_count()
        return count if count and count > 0 else 1

    def detect_ip_addresses(self) -> tuple[str, ...]:
        """Non-loopback IPv4 addresses of interfaces that are up."""
        try:
            stats = psutil.net_if_stats()
            addrs = psutil.net_if_addrs()
        except (OSError, RuntimeError) as e:
            console.debug(f"Interface probe failed: {e}")
            return ()

        found: list[str] = []
        for name, entries in addrs.items():
            if name in stats and not stats[name].isup:
                continue
            for entry in entries:
                if entry.family != socket.AF_INET:
                    continue
                if entry.address.startswith("127."):
                    continue
                found.append(entry.address)
        return tuple(found)

    # ------------------------------------------------------------------
    # Container detection
    # ------------------------------------------------------------------

    def detect_container(self) -> bool:
        """Check whether we are running inside a container."""
        if (self.root / ".dockerenv").exists():
            return True
        if (self.root / "run" / "secrets" / "kubernetes.io").exists():
            return True
        if os.environ.get("KUBERNETES_SERVICE_HOST"):
            return True

        cgroup = self._read_text(self.proc_root / "1" / "cgroup") or ""
        if any(marker in cgroup for marker in _CGROUP_CONTAINER_MARKERS):
            return True

        mountinfo = self._read_text(self.proc_root / "1" / "mountinfo") or ""
        return any(marker in mountinfo for marker in _MOUNTINFO_CONTAINER_MARKERS)

    # ------------------------------------------------------------------
    # Container memory limit
    # ------------------------------------------------------------------

    def detect_container_memory_limit(self) -> int:
        """Effective container memory limit in bytes (0 = unlimited)."""
        limit = self._cgroup_v2_memory_limit()
        if limit > 0:
            return limit
        return self._cgroup_v1_memory_limit()

    def _is_cgroup_v2(self) -> bool:
        return (self.cgroup_root / "cgroup.controllers").exists()

    def _cgroup_v2_memory_limit(self) -> int:
        """Smallest finite limit from the cgroup root down to our own cgroup.

        Ancestors can impose tighter limits than the leaf, so every level of
        the path is checked.
        """
        if not self._is_cgroup_v2():
            return 0

        current = self.cgroup_root
        levels = [current]
        for part in self._cgroup_v2_path().strip("/").split("/"):
            if not part:
                continue
            current = current / part
            levels.append(current)

        smallest = 0
        for level in levels:
            limit = self.read_memory_limit(level)
            if limit > 0 and (smallest == 0 or limit < smallest):
                smallest = limit
        return smallest

    def read_memory_limit(self, cgroup_dir: Path) -> int:
        """Read one cgroup v2 level; memory.high wins over memory.max.

        Returns:
            Limit in bytes, or 0 when both are unset or "max"
        """
        for name in ("memory.high", "memory.max"):
            value = self._read_cgroup_int(cgroup_dir / name)
            if value > 0:
                return value
        return 0

    def _cgroup_v1_memory_limit(self) -> int:
        path = self._cgroup_v1_path("memory")
        if path is None:
            return 0

        limit = self._read_cgroup_int(
            self.cgroup_root / "memory" / path / "memory.limit_in_bytes"
        )
        if limit >= CGROUP_V1_UNLIMITED_THRESHOLD:
            return 0
        return limit

    # ------------------------------------------------------------------
    # Container CPU quota
    # ------------------------------------------------------------------

    def detect_container_cpu_quota(self) -> float:
        """Container CPU quota in fractional cores (0 = unlimited)."""
        quota = self._cgroup_v2_cpu_quota()
        if quota > 0:
            return quota
        return self._cgroup_v1_cpu_quota()

    def _cgroup_v2_cpu_quota(self) -> float:
        if not self._is_cgroup_v2():
            return 0.0

        own = self.cgroup_root / self._cgroup_v2_path().strip("/")
        for cgroup_dir in dict.fromkeys((own, self.cgroup_root)):
            content = self._read_text(cgroup_dir / "cpu.max")
            if content is None:
                continue
            quota = _parse_cpu_max(content)
            if quota > 0:
                return quota
        return 0.0

    def _cgroup_v1_cpu_quota(self) -> float:
        path = self._cgroup_v1_path("cpu")
        if path is None:
            return 0.0

        cpu_dir = self.cgroup_root / "cpu" / path
        quota_text = self._read_text(cpu_dir / "cpu.cfs_quota_us")
        period_text = self._read_text(cpu_dir / "cpu.cfs_period_us")
        if quota_text is None or period_text is None:
            return 0.0

        try:
            quota = int(quota_text.strip())
            period = int(period_text.strip())
        except ValueError:
            return 0.0

        # -1 means unlimited
        if quota <= 0 or period <= 0:
            return 0.0
        return quota / period

    # ------------------------------------------------------------------
    # /proc/self/cgroup parsing
    # ------------------------------------------------------------------

    def _cgroup_v2_path(self) -> str:
        """Our cgroup path from the unified-hierarchy line ("0::/path")."""
        content = self._read_text(self.proc_root / "self" / "cgroup") or ""
        for line in content.splitlines():
            if line.startswith("0::"):
                return line[3:].strip() or "/"
        return "/"

    def _cgroup_v1_path(self, controller: str) -> Optional[str]:
        """Relative path of a v1 controller hierarchy, or None if absent.

        Lines look like "11:cpu,cpuacct:/docker/abc123".
        """
        content = self._read_text(self.proc_root / "self" / "cgroup")
        if content is None:
            return None

        for line in content.splitlines():
            parts = line.split(":", 2)
            if len(parts) < 3:
                continue
            if controller in parts[1].split(","):
                return parts[2].strip().lstrip("/")
        return None

    # ------------------------------------------------------------------
    # Disk type
    # ------------------------------------------------------------------

    def detect_disk_type(self, device: Optional[str] = None) -> DiskType:
        """Detect SSD vs HDD from the block device rotational flag.

        Args:
            device: Device holding the data directory (e.g. /dev/nvme0n1p1).
                When omitted, the first representative device present is used.

        Returns:
            DiskType.HDD for rotational devices, DiskType.SSD otherwise
        """
        if self.detect_os_type() != OSType.LINUX:
            return DiskType.SSD

        if device:
            base = _extract_base_device(device)
            if base is None:
                console.debug(f"Cannot map {device} to a block device, assuming SSD")
                return DiskType.SSD
            candidates: tuple[str, ...] = (base,)
        else:
            candidates = REPRESENTATIVE_DEVICES

        for name in candidates:
            flag = self._read_text(self.sys_root / "block" / name / "queue" / "rotational")
            if flag is None:
                continue
            # 0 = SSD (non-rotational), 1 = HDD (rotational)
            flag = flag.strip()
            if flag == "1":
                return DiskType.HDD
            if flag == "0":
                return DiskType.SSD
            console.debug(f"Unexpected rotational flag {flag!r} for {name}")
            return DiskType.SSD

        return DiskType.SSD

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------

    def _read_text(self, path: Path) -> Optional[str]:
        try:
            return path.read_text()
        except (OSError, UnicodeDecodeError) as e:
            console.debug(f"No signal from {path}: {e.__class__.__name__}")
            return None

    def _read_cgroup_int(self, path: Path) -> int:
        """Read an integer cgroup file; "max" and garbage read as 0."""
        content = self._read_text(path)
        if content is None:
            return 0
        content = content.strip()
        if content == "max":
            return 0
        try:
            value = int(content)
        except ValueError:
            return 0
        return value if value > 0 else 0


def _parse_cpu_max(content: str) -> float:
    """Parse cgroup v2 cpu.max ("<quota> <period>" or "max <period>")."""
    fields = content.split()
    if len(fields) < 2 or fields[0] == "max":
        return 0.0
    try:
        quota = int(fields[0])
        period = int(fields[1])
    except ValueError:
        return 0.0
    if quota <= 0 or period <= 0:
        return 0.0
    return quota / period


def _extract_base_device(device: str) -> Optional[str]:
    """Extract base block device name from device path.

    Handles:
    - /dev/sda1 -> sda
    - /dev/nvme0n1p1 -> nvme0n1
    - /dev/vda1 -> vda
    - /dev/mapper/* -> None (would need dm-X lookup)
    """
    device = device.replace("/dev/", "")

    if device.startswith("mapper/") or device.startswith("dm-"):
        return None

    nvme_match = re.match(r"(nvme\d+n\d+)", device)
    if nvme_match:
        return nvme_match.group(1)

    trad_match = re.match(r"([a-z]+)", device)
    if trad_match:
        return trad_match.group(1)

    return None


def detect_system_info(
    pg_version: Optional[int] = None,
    disk_device: Optional[str] = None,
) -> SystemInfo:
    """Detect resources of the machine we are running on."""
    return ResourceDetector().detect(pg_version=pg_version, disk_device=disk_device)


async def detect_system_info_async(
    pg_version: Optional[int] = None,
    disk_device: Optional[str] = None,
) -> SystemInfo:
    """Run detection in a worker thread so an event loop is not stalled."""
    return await asyncio.to_thread(detect_system_info, pg_version, disk_device)
