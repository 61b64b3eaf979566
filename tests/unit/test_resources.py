"""Unit tests for host and container resource detection.

Detection runs against a fake /proc, /sys and filesystem root built under
tmp_path, so these tests never depend on the machine running them.
"""

import asyncio
import socket
import pytest
from pathlib import Path
from unittest.mock import Mock, patch

from pgtune.core.config import DEFAULT_PG_VERSION
from pgtune.core.types import DiskType, OSType
from pgtune.core.units import GB, MB
from pgtune.services.resources import (
    CGROUP_V1_UNLIMITED_THRESHOLD,
    DEFAULT_MEMORY,
    ResourceDetector,
    Resources,
    SystemInfo,
    _extract_base_device,
    _parse_cpu_max,
    detect_system_info_async,
)


def write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)


@pytest.fixture
def fake_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Empty proc/sys/root tree with no container hints in the environment."""
    monkeypatch.delenv("KUBERNETES_SERVICE_HOST", raising=False)
    for name in ("proc", "sys", "root"):
        (tmp_path / name).mkdir()
    return tmp_path


@pytest.fixture
def detector(fake_root: Path) -> ResourceDetector:
    return ResourceDetector(
        proc_root=fake_root / "proc",
        sys_root=fake_root / "sys",
        root=fake_root / "root",
        system_name="Linux",
    )


@pytest.fixture
def cgroup_v2(fake_root: Path) -> Path:
    """Unified hierarchy with our process in /kubepods/pod1/ctr."""
    cgroup_root = fake_root / "sys" / "fs" / "cgroup"
    write(cgroup_root / "cgroup.controllers", "cpu memory io\n")
    write(fake_root / "proc" / "self" / "cgroup", "0::/kubepods/pod1/ctr\n")
    leaf = cgroup_root / "kubepods" / "pod1" / "ctr"
    leaf.mkdir(parents=True)
    return leaf


@pytest.fixture
def cgroup_v1(fake_root: Path) -> Path:
    """Legacy hierarchy with memory and cpu controllers under /docker/abc."""
    write(
        fake_root / "proc" / "self" / "cgroup",
        "12:memory:/docker/abc\n4:cpu,cpuacct:/docker/abc\n1:name=systemd:/docker/abc\n",
    )
    return fake_root / "sys" / "fs" / "cgroup"


class TestHostMemory:
    """Tests for host memory detection."""

    def test_meminfo(self, fake_root: Path, detector: ResourceDetector):
        """MemTotal is read in kB and converted to bytes."""
        write(
            fake_root / "proc" / "meminfo",
            "MemTotal:       16384000 kB\nMemFree:         1000000 kB\n",
        )
        assert detector.detect_memory() == 16384000 * 1024

    def test_missing_meminfo_falls_back(self, detector: ResourceDetector):
        """A missing meminfo falls back to 1GB."""
        assert detector.detect_memory() == DEFAULT_MEMORY

    def test_garbage_meminfo_falls_back(self, fake_root: Path, detector: ResourceDetector):
        """An unparseable MemTotal falls back to 1GB."""
        write(fake_root / "proc" / "meminfo", "MemTotal: lots\n")
        assert detector.detect_memory() == DEFAULT_MEMORY

    def test_non_linux_uses_psutil(self, fake_root: Path):
        """Other systems read total memory from psutil."""
        detector = ResourceDetector(proc_root=fake_root / "proc", system_name="Darwin")
        with patch("pgtune.services.resources.psutil.virtual_memory") as mock_vm:
            mock_vm.return_value = Mock(total=8 * GB)
            assert detector.detect_memory() == 8 * GB

    def test_psutil_failure_falls_back(self, fake_root: Path):
        """A psutil failure falls back to 1GB."""
        detector = ResourceDetector(proc_root=fake_root / "proc", system_name="Windows")
        with patch(
            "pgtune.services.resources.psutil.virtual_memory",
            side_effect=OSError("unavailable"),
        ):
            assert detector.detect_memory() == DEFAULT_MEMORY


class TestHostCpu:
    """Tests for CPU count detection."""

    def test_cpu_count(self, detector: ResourceDetector):
        """The CPU count comes from os.cpu_count."""
        with patch("pgtune.services.resources.os.cpu_count", return_value=12):
            assert detector.detect_cpu_count() == 12

    def test_unknown_cpu_count(self, detector: ResourceDetector):
        """An unknown CPU count is treated as 1."""
        with patch("pgtune.services.resources.os.cpu_count", return_value=None):
            assert detector.detect_cpu_count() == 1


class TestOsType:
    """Tests for OS family detection."""

    @pytest.mark.parametrize("name,expected", [
        ("Linux", OSType.LINUX),
        ("Windows", OSType.WINDOWS),
        ("Darwin", OSType.MAC),
        ("FreeBSD", OSType.LINUX),
    ])
    def test_mapping(self, name: str, expected: OSType):
        """Platform names map to OS families, unknown ones to linux."""
        assert ResourceDetector(system_name=name).detect_os_type() == expected


class TestCgroupV2Memory:
    """Tests for cgroup v2 memory limit selection."""

    def test_high_wins_over_max(self, detector: ResourceDetector, cgroup_v2: Path):
        """memory.high is preferred over memory.max."""
        write(cgroup_v2 / "memory.high", f"{2 * GB}\n")
        write(cgroup_v2 / "memory.max", f"{4 * GB}\n")
        assert detector.detect_container_memory_limit() == 2 * GB

    def test_high_unset_uses_max(self, detector: ResourceDetector, cgroup_v2: Path):
        """memory.max is used when memory.high is unset."""
        write(cgroup_v2 / "memory.high", "max\n")
        write(cgroup_v2 / "memory.max", f"{4 * GB}\n")
        assert detector.detect_container_memory_limit() == 4 * GB

    def test_both_max_is_unlimited(self, detector: ResourceDetector, cgroup_v2: Path):
        """No finite value anywhere means unlimited."""
        write(cgroup_v2 / "memory.high", "max\n")
        write(cgroup_v2 / "memory.max", "max\n")
        assert detector.detect_container_memory_limit() == 0

    def test_ancestor_limit_is_tighter(self, detector: ResourceDetector, cgroup_v2: Path):
        """The smallest finite value along the path wins."""
        write(cgroup_v2.parent / "memory.max", f"{1 * GB}\n")
        write(cgroup_v2 / "memory.max", f"{4 * GB}\n")
        assert detector.detect_container_memory_limit() == 1 * GB

    def test_read_memory_limit_single_level(self, detector: ResourceDetector, cgroup_v2: Path):
        """A single directory with memory.high set to max is unlimited."""
        write(cgroup_v2 / "memory.high", "max\n")
        assert detector.read_memory_limit(cgroup_v2) == 0

    def test_not_v2_without_controllers(self, fake_root: Path, detector: ResourceDetector):
        """Without cgroup.controllers the unified hierarchy is not used."""
        write(fake_root / "proc" / "self" / "cgroup", "0::/\n")
        write(fake_root / "sys" / "fs" / "cgroup" / "memory.max", f"{1 * GB}\n")
        assert detector.detect_container_memory_limit() == 0


class TestCgroupV1Memory:
    """Tests for cgroup v1 memory limit."""

    def test_limit(self, detector: ResourceDetector, cgroup_v1: Path):
        """memory.limit_in_bytes is read from the memory controller's cgroup."""
        write(cgroup_v1 / "memory" / "docker" / "abc" / "memory.limit_in_bytes", f"{512 * MB}\n")
        assert detector.detect_container_memory_limit() == 512 * MB

    def test_unlimited_sentinel(self, detector: ResourceDetector, cgroup_v1: Path):
        """The kernel's page-rounded LONG_MAX means unlimited."""
        write(
            cgroup_v1 / "memory" / "docker" / "abc" / "memory.limit_in_bytes",
            "9223372036854771712\n",
        )
        assert detector.detect_container_memory_limit() == 0

    def test_sentinel_threshold_is_inclusive(self, detector: ResourceDetector, cgroup_v1: Path):
        """The unlimited threshold itself counts as unlimited."""
        write(
            cgroup_v1 / "memory" / "docker" / "abc" / "memory.limit_in_bytes",
            f"{CGROUP_V1_UNLIMITED_THRESHOLD}\n",
        )
        assert detector.detect_container_memory_limit() == 0

    def test_no_memory_controller(self, fake_root: Path, detector: ResourceDetector):
        """No memory controller means no limit."""
        write(fake_root / "proc" / "self" / "cgroup", "4:cpu,cpuacct:/docker/abc\n")
        assert detector.detect_container_memory_limit() == 0


class TestCpuQuota:
    """Tests for container CPU quota detection."""

    def test_v2_cpu_max(self, detector: ResourceDetector, cgroup_v2: Path):
        """cpu.max quota divided by period gives fractional cores."""
        write(cgroup_v2 / "cpu.max", "150000 100000\n")
        assert detector.detect_container_cpu_quota() == 1.5

    def test_v2_unlimited(self, detector: ResourceDetector, cgroup_v2: Path):
        """A max quota is unlimited."""
        write(cgroup_v2 / "cpu.max", "max 100000\n")
        assert detector.detect_container_cpu_quota() == 0

    def test_v2_root_fallback(self, fake_root: Path, detector: ResourceDetector, cgroup_v2: Path):
        """The hierarchy root cpu.max is used when the leaf has none."""
        write(fake_root / "sys" / "fs" / "cgroup" / "cpu.max", "200000 100000\n")
        assert detector.detect_container_cpu_quota() == 2.0

    def test_v1_cfs_quota(self, detector: ResourceDetector, cgroup_v1: Path):
        """The CFS quota divided by the period gives fractional cores."""
        cpu_dir = cgroup_v1 / "cpu" / "docker" / "abc"
        write(cpu_dir / "cpu.cfs_quota_us", "250000\n")
        write(cpu_dir / "cpu.cfs_period_us", "100000\n")
        assert detector.detect_container_cpu_quota() == 2.5

    def test_v1_unlimited(self, detector: ResourceDetector, cgroup_v1: Path):
        """A quota of -1 is unlimited."""
        cpu_dir = cgroup_v1 / "cpu" / "docker" / "abc"
        write(cpu_dir / "cpu.cfs_quota_us", "-1\n")
        write(cpu_dir / "cpu.cfs_period_us", "100000\n")
        assert detector.detect_container_cpu_quota() == 0

    @pytest.mark.parametrize("content,expected", [
        ("100000 100000", 1.0),
        ("50000 100000", 0.5),
        ("max 100000", 0.0),
        ("max", 0.0),
        ("", 0.0),
        ("abc 100000", 0.0),
        ("100000 0", 0.0),
    ])
    def test_parse_cpu_max(self, content: str, expected: float):
        """Malformed, unlimited or zero-period cpu.max content gives 0."""
        assert _parse_cpu_max(content) == expected


class TestContainerDetection:
    """Tests for container-ness detection."""

    def test_dockerenv(self, fake_root: Path, detector: ResourceDetector):
        """/.dockerenv marks a container."""
        write(fake_root / "root" / ".dockerenv", "")
        assert detector.detect_container() is True

    def test_kubernetes_env(self, detector: ResourceDetector, monkeypatch: pytest.MonkeyPatch):
        """The Kubernetes service variable marks a container."""
        monkeypatch.setenv("KUBERNETES_SERVICE_HOST", "10.0.0.1")
        assert detector.detect_container() is True

    def test_init_cgroup(self, fake_root: Path, detector: ResourceDetector):
        """A kubepods path in the init process cgroup marks a container."""
        write(fake_root / "proc" / "1" / "cgroup", "0::/kubepods/besteffort/pod1\n")
        assert detector.detect_container() is True

    def test_init_mountinfo(self, fake_root: Path, detector: ResourceDetector):
        """Docker paths in the init process mountinfo mark a container."""
        write(
            fake_root / "proc" / "1" / "mountinfo",
            "1 0 8:1 /var/lib/docker/containers/abc/hosts /etc/hosts rw\n",
        )
        assert detector.detect_container() is True

    def test_bare_host(self, fake_root: Path, detector: ResourceDetector):
        """An init.scope cgroup with no other markers is a bare host."""
        write(fake_root / "proc" / "1" / "cgroup", "0::/init.scope\n")
        assert detector.detect_container() is False


class TestDiskType:
    """Tests for disk type detection."""

    def test_representative_hdd(self, fake_root: Path, detector: ResourceDetector):
        """A rotational sda is reported as HDD."""
        write(fake_root / "sys" / "block" / "sda" / "queue" / "rotational", "1\n")
        assert detector.detect_disk_type() == DiskType.HDD

    def test_first_present_device_wins(self, fake_root: Path, detector: ResourceDetector):
        """The first representative device present decides."""
        write(fake_root / "sys" / "block" / "vda" / "queue" / "rotational", "0\n")
        write(fake_root / "sys" / "block" / "nvme0n1" / "queue" / "rotational", "1\n")
        assert detector.detect_disk_type() == DiskType.SSD

    def test_explicit_partition(self, fake_root: Path, detector: ResourceDetector):
        """A partition resolves to its base device."""
        write(fake_root / "sys" / "block" / "sda" / "queue" / "rotational", "0\n")
        write(fake_root / "sys" / "block" / "sdb" / "queue" / "rotational", "1\n")
        assert detector.detect_disk_type("/dev/sdb1") == DiskType.HDD

    def test_device_mapper_unsupported(self, fake_root: Path, detector: ResourceDetector):
        """Device-mapper paths cannot be resolved and default to SSD."""
        write(fake_root / "sys" / "block" / "sda" / "queue" / "rotational", "1\n")
        assert detector.detect_disk_type("/dev/mapper/vg-data") == DiskType.SSD

    def test_no_signal(self, detector: ResourceDetector):
        """No readable device defaults to SSD."""
        assert detector.detect_disk_type() == DiskType.SSD

    def test_non_linux(self, fake_root: Path):
        """Non-linux systems always report SSD."""
        write(fake_root / "sys" / "block" / "sda" / "queue" / "rotational", "1\n")
        detector = ResourceDetector(sys_root=fake_root / "sys", system_name="Darwin")
        assert detector.detect_disk_type() == DiskType.SSD

    @pytest.mark.parametrize("device,expected", [
        ("/dev/sda1", "sda"),
        ("/dev/nvme0n1p1", "nvme0n1"),
        ("/dev/vda1", "vda"),
        ("xvda", "xvda"),
        ("/dev/mapper/vg-data", None),
        ("/dev/dm-0", None),
    ])
    def test_extract_base_device(self, device: str, expected):
        """Partitions and NVMe namespaces map to their block device."""
        assert _extract_base_device(device) == expected


class TestIpAddresses:
    """Tests for interface address discovery."""

    def test_skips_loopback_ipv6_and_down_interfaces(self, detector: ResourceDetector):
        """Only IPv4 addresses of up, non-loopback interfaces are kept."""
        addrs = {
            "lo": [Mock(family=socket.AF_INET, address="127.0.0.1")],
            "eth0": [
                Mock(family=socket.AF_INET, address="10.0.0.5"),
                Mock(family=socket.AF_INET6, address="fe80::1"),
            ],
            "eth1": [Mock(family=socket.AF_INET, address="10.0.1.5")],
        }
        stats = {"lo": Mock(isup=True), "eth0": Mock(isup=True), "eth1": Mock(isup=False)}

        with patch("psutil.net_if_addrs", return_value=addrs), \
                patch("psutil.net_if_stats", return_value=stats):
            assert detector.detect_ip_addresses() == ("10.0.0.5",)

    def test_interface_query_failure(self, detector: ResourceDetector):
        """A failing interface query gives no addresses."""
        with patch("psutil.net_if_stats", side_effect=OSError("denied")):
            assert detector.detect_ip_addresses() == ()


class TestDetect:
    """Tests for the composed snapshot."""

    @pytest.fixture(autouse=True)
    def no_interfaces(self):
        with patch.object(ResourceDetector, "detect_ip_addresses", return_value=()):
            yield

    def test_container_snapshot(self, fake_root: Path, detector: ResourceDetector, cgroup_v2: Path):
        """Container limits become the effective resources."""
        write(fake_root / "proc" / "meminfo", f"MemTotal: {64 * 1024 * 1024} kB\n")
        write(cgroup_v2 / "memory.max", f"{4 * GB}\n")
        write(cgroup_v2 / "cpu.max", "150000 100000\n")
        write(fake_root / "root" / ".dockerenv", "")

        with patch("pgtune.services.resources.os.cpu_count", return_value=16):
            info = detector.detect(pg_version=16)

        assert info.system == Resources(cpus=16, memory=64 * GB)
        assert info.container == Resources(cpus=2, memory=4 * GB, millis=1500)
        assert info.effective_memory == 4 * GB
        assert info.effective_cpus == 2
        assert info.is_container is True
        assert info.pg_version == 16
        assert info.os_type == OSType.LINUX

    def test_bare_host_snapshot(self, fake_root: Path, detector: ResourceDetector):
        """Without limits the host resources are effective."""
        write(fake_root / "proc" / "meminfo", f"MemTotal: {8 * 1024 * 1024} kB\n")

        with patch("pgtune.services.resources.os.cpu_count", return_value=4):
            info = detector.detect(pg_version=17)

        assert info.container == Resources()
        assert info.effective_memory == 8 * GB
        assert info.effective_cpus == 4
        assert info.is_container is False

    def test_version_from_environment(
        self,
        detector: ResourceDetector,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """The target version falls back to the environment."""
        for name in ("TARGET_VERSION", "PG_VERSION", "POSTGRES_VERSION"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("PG_VERSION", "15.3")

        assert detector.detect().pg_version == 15

    def test_overflowing_version_does_not_fail_detection(
        self,
        detector: ResourceDetector,
        monkeypatch: pytest.MonkeyPatch,
    ):
        """An unusable version variable falls back to the default."""
        for name in ("TARGET_VERSION", "PG_VERSION", "POSTGRES_VERSION"):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv("TARGET_VERSION", "inf")

        assert detector.detect().pg_version == DEFAULT_PG_VERSION

    def test_quota_millis_truncated(self, detector: ResourceDetector, cgroup_v2: Path):
        """Quota thousandths are truncated, not rounded."""
        write(cgroup_v2 / "cpu.max", "99999 100000\n")

        info = detector.detect(pg_version=16)

        assert info.container.millis == 999
        assert info.container.cpus == 1

    def test_async_detection(self):
        """The async wrapper runs detection in a thread."""
        expected = SystemInfo(system=Resources(cpus=2, memory=2 * GB))
        with patch(
            "pgtune.services.resources.detect_system_info",
            return_value=expected,
        ) as mock_detect:
            info = asyncio.run(detect_system_info_async(pg_version=16))

        assert info is expected
        mock_detect.assert_called_once_with(16, None)


class TestSystemInfo:
    """Tests for effective resource selection."""

    def test_larger_container_limit_ignored(self):
        """A container limit above the host value does not raise resources."""
        info = SystemInfo(
            system=Resources(cpus=4, memory=8 * GB),
            container=Resources(cpus=8, memory=16 * GB),
        )
        assert info.effective_memory == 8 * GB
        assert info.effective_cpus == 4

    def test_to_dict(self):
        """The snapshot serializes to plain values."""
        info = SystemInfo(
            system=Resources(cpus=4, memory=8 * GB),
            ip_addresses=("10.0.0.5",),
        )
        data = info.to_dict()

        assert data["system"] == {"cpus": 4, "memory": 8 * GB, "millis": 0}
        assert data["os_type"] == "linux"
        assert data["disk_type"] == "ssd"
        assert data["ip_addresses"] == ["10.0.0.5"]
        assert data["effective_memory"] == 8 * GB

    def test_resources_str(self):
        """Resources render memory, CPUs and millis."""
        text = str(Resources(cpus=2, memory=4 * GB, millis=1500))
        assert "CPU: 2" in text
        assert "1500 millis" in text
        assert "4.0GB" in text
