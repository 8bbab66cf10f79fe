"""Counter sources: where raw OS counters come from.

The engine only talks to the CounterSource interface. PsutilCounterSource
gets every counter psutil exposes from psutil and reads files directly only
for what psutil leaves out: the extra /proc/net/dev columns, the fan
enable/level files under /sys/class/hwmon and the /proc/cpuinfo model name.

Sources never raise for a single unreadable entity. A process that exits
between listing and reading, or whose counters are not accessible, is left
out of that poll's list.
"""

import os
import platform
import socket
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

import psutil
import structlog

from hostdash.models import (
    CpuTicks,
    DiskTotals,
    FanInfo,
    HostInfo,
    MemoryTotals,
    NetInterfaceSnapshot,
    ProcessSample,
    ProcessState,
    SwapTotals,
)

log = structlog.get_logger()

# psutil sensor groups tried in order for the CPU temperature.
PSUTIL_TEMP_SENSORS = ("coretemp", "k10temp", "cpu_thermal", "x86_pkg_temp", "acpitz")

# /proc/net/dev columns psutil.net_io_counters() does not report, by index.
_NET_DEV_EXTRA_FIELDS = {
    4: "rx_fifo",
    5: "rx_frame",
    6: "rx_compressed",
    7: "rx_multicast",
    12: "tx_fifo",
    13: "tx_colls",
    14: "tx_carrier",
    15: "tx_compressed",
}


class SensorLookup:
    """
    Lazily discovered sensor location.

    Three states: not yet looked up, found (``value`` holds the location), or
    looked up and absent (``value`` is None). Discovery runs at most once;
    ``mark_missing`` moves a found sensor to absent after it stops reading.
    """

    def __init__(self, finder: Callable[[], object | None]) -> None:
        self._finder = finder
        self._resolved = False
        self._value: object | None = None

    @property
    def resolved(self) -> bool:
        return self._resolved

    @property
    def value(self) -> object | None:
        """Resolve on first access and return the location or None."""
        if not self._resolved:
            self._value = self._finder()
            self._resolved = True
            log.debug("sensor_resolved", location=str(self._value) if self._value else None)
        return self._value

    def mark_missing(self) -> None:
        self._resolved = True
        self._value = None


class CounterSource(ABC):
    """Supplies raw cumulative counters for one host."""

    @abstractmethod
    def read_system_cpu_ticks(self) -> CpuTicks | None:
        """Cumulative idle and total CPU time since boot, None if unreadable."""

    @abstractmethod
    def read_process_list(self) -> list[ProcessSample]:
        """Counters for every process that could be read."""

    @abstractmethod
    def read_memory_totals(self) -> MemoryTotals:
        """Physical memory totals; zero totals mean unsupported."""

    @abstractmethod
    def read_swap_totals(self) -> SwapTotals:
        """Swap totals; ``total_kb`` is None when the platform cannot say."""

    @abstractmethod
    def read_network_interfaces(self) -> dict[str, NetInterfaceSnapshot]:
        """Counters per interface name."""

    @abstractmethod
    def read_disk_totals(self, path: str = "/") -> DiskTotals | None:
        """Usage of the filesystem holding ``path``, None if unavailable."""

    def read_fan_info(self) -> FanInfo | None:
        """Fan status, None when the host exposes no fan."""
        return None

    def read_temperature_c(self) -> float | None:
        """CPU temperature in Celsius, None when no sensor is available."""
        return None

    def logical_cpu_count(self) -> int:
        return psutil.cpu_count(logical=True) or 1

    def read_host_info(self) -> HostInfo:
        return HostInfo(
            os_name=platform.system() or "Other",
            user=os.environ.get("USER") or os.environ.get("USERNAME") or "Unknown",
            hostname=socket.gethostname() or "Unknown",
            cpu_model=platform.processor() or "Unknown CPU",
            logical_cpus=self.logical_cpu_count(),
        )


def _read_int(path: Path) -> int:
    """Read an integer from a one-value sysfs file; -1 when unreadable."""
    try:
        return int(path.read_text().split()[0])
    except (OSError, ValueError, IndexError):
        return -1


def _ipv4_addresses() -> dict[str, str]:
    addresses: dict[str, str] = {}
    try:
        for name, addrs in psutil.net_if_addrs().items():
            for addr in addrs:
                if addr.family == socket.AF_INET:
                    addresses[name] = addr.address
                    break
    except OSError:
        log.debug("net_if_addrs_unavailable")
    return addresses


class PsutilCounterSource(CounterSource):
    """
    Reads counters through psutil.

    Handles AccessDenied and ZombieProcess errors by leaving the process out.

    Args:
        proc_root: Where /proc lives, for the extra network columns and the
            CPU model name.
        sys_root: Where /sys lives, for fan enable and level files.
    """

    # Attributes to fetch per process in one pass
    PROCESS_ATTRS = ["pid", "name", "status", "cpu_times", "memory_info"]

    def __init__(self, proc_root: str = "/proc", sys_root: str = "/sys") -> None:
        self._proc = Path(proc_root)
        self._sys = Path(sys_root)
        self._temp_sensor = SensorLookup(self._find_temp_sensor)
        self._fan_sensor = SensorLookup(self._find_fan_sensor)
        self._fan_dir = SensorLookup(self._find_fan_dir)

    # CPU

    def read_system_cpu_ticks(self) -> CpuTicks | None:
        try:
            times = psutil.cpu_times()._asdict()
        except OSError:
            log.warning("cpu_times_unreadable", exc_info=True)
            return None
        # guest time is already counted in user/nice
        times.pop("guest", None)
        times.pop("guest_nice", None)
        idle = times.get("idle", 0.0) + times.get("iowait", 0.0)
        return CpuTicks(idle=idle, total=sum(times.values()), timestamp=time.monotonic())

    def read_process_list(self) -> list[ProcessSample]:
        processes: list[ProcessSample] = []
        for proc in psutil.process_iter(attrs=self.PROCESS_ATTRS):
            try:
                with proc.oneshot():
                    info = proc.info
                    cpu_times = info.get("cpu_times")
                    if cpu_times is None:
                        # Access denied for the counters we need
                        continue
                    mem_info = info.get("memory_info")
                    processes.append(
                        ProcessSample(
                            pid=info["pid"],
                            name=info.get("name") or "unknown",
                            state=ProcessState.from_code(info.get("status") or "?"),
                            cpu_ticks=cpu_times.user + cpu_times.system,
                            rss_kb=mem_info.rss // 1024 if mem_info else 0,
                        )
                    )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        return processes

    # Memory

    def read_memory_totals(self) -> MemoryTotals:
        mem = psutil.virtual_memory()
        return MemoryTotals(total_kb=mem.total // 1024, available_kb=mem.available // 1024)

    def read_swap_totals(self) -> SwapTotals:
        swap = psutil.swap_memory()
        if swap.total <= 0:
            return SwapTotals(total_kb=None, used_kb=swap.used // 1024)
        return SwapTotals(total_kb=swap.total // 1024, free_kb=swap.free // 1024)

    # Network and disk

    def read_network_interfaces(self) -> dict[str, NetInterfaceSnapshot]:
        addresses = _ipv4_addresses()
        extras = self._read_net_dev_extras()
        interfaces: dict[str, NetInterfaceSnapshot] = {}
        for name, io in psutil.net_io_counters(pernic=True).items():
            interfaces[name] = NetInterfaceSnapshot(
                name=name,
                rx_bytes=io.bytes_recv,
                rx_packets=io.packets_recv,
                rx_errs=io.errin,
                rx_drop=io.dropin,
                tx_bytes=io.bytes_sent,
                tx_packets=io.packets_sent,
                tx_errs=io.errout,
                tx_drop=io.dropout,
                ipv4=addresses.get(name),
                **extras.get(name, {}),
            )
        return interfaces

    def _read_net_dev_extras(self) -> dict[str, dict[str, int]]:
        """fifo, frame, compressed, multicast, colls and carrier per interface."""
        try:
            lines = (self._proc / "net" / "dev").read_text().splitlines()
        except OSError:
            # Not Linux; those columns stay zero.
            return {}

        extras: dict[str, dict[str, int]] = {}
        # Two header lines.
        for line in lines[2:]:
            name, sep, rest = line.partition(":")
            if not sep:
                continue
            columns = rest.split()
            try:
                extras[name.strip()] = {
                    field: int(columns[index]) for index, field in _NET_DEV_EXTRA_FIELDS.items()
                }
            except (ValueError, IndexError):
                log.debug("net_dev_line_skipped", line=line)
        return extras

    def read_disk_totals(self, path: str = "/") -> DiskTotals | None:
        try:
            usage = psutil.disk_usage(path)
        except OSError:
            log.debug("disk_usage_failed", path=path)
            return None
        return DiskTotals(
            total=usage.total,
            used=usage.used,
            free=usage.total - usage.used,
            available=usage.free,
        )

    # Sensors

    def _find_temp_sensor(self) -> str | None:
        if not hasattr(psutil, "sensors_temperatures"):
            return None
        temps = psutil.sensors_temperatures()
        for key in PSUTIL_TEMP_SENSORS:
            if temps.get(key):
                return key
        return next((k for k, v in temps.items() if v), None)

    def read_temperature_c(self) -> float | None:
        key = self._temp_sensor.value
        if key is None:
            return None
        readings = psutil.sensors_temperatures().get(key)
        if not readings:
            log.info("thermal_sensor_lost", sensor=key)
            self._temp_sensor.mark_missing()
            return None
        return float(readings[0].current)

    def _find_fan_sensor(self) -> str | None:
        if not hasattr(psutil, "sensors_fans"):
            return None
        return next((k for k, v in psutil.sensors_fans().items() if v), None)

    def _find_fan_dir(self) -> Path | None:
        """The hwmon directory whose driver name matches the psutil fan group."""
        key = self._fan_sensor.value
        if key is None:
            return None
        try:
            hwmons = sorted(p for p in (self._sys / "class" / "hwmon").iterdir() if p.is_dir())
        except OSError:
            return None
        for hwmon in hwmons:
            try:
                if (hwmon / "name").read_text().strip() == key:
                    return hwmon
            except OSError:
                continue
        return None

    def read_fan_info(self) -> FanInfo | None:
        key = self._fan_sensor.value
        if key is None:
            return None
        readings = psutil.sensors_fans().get(key)
        if not readings:
            log.info("fan_sensor_lost", sensor=key)
            self._fan_sensor.mark_missing()
            return None

        speed = max(int(readings[0].current), 0)
        active = speed > 0
        level = 0

        base = self._fan_dir.value
        if base is not None:
            enable = next((base / n for n in ("fan1_enable", "fan1_status") if (base / n).exists()), None)
            if enable is not None:
                active = _read_int(enable) == 1
            level_path = next(
                (base / n for n in ("fan1_level", "pwm1", "pwm1_enable") if (base / n).exists()),
                None,
            )
            if level_path is not None:
                level = max(_read_int(level_path), 0)

        return FanInfo(active=active, speed_rpm=speed, level=level)

    def read_host_info(self) -> HostInfo:
        info = super().read_host_info()
        cpu_model = info.cpu_model
        try:
            with (self._proc / "cpuinfo").open() as f:
                for line in f:
                    if line.startswith("model name"):
                        cpu_model = line.split(":", 1)[1].strip()
                        break
        except OSError:
            pass
        return HostInfo(
            os_name=info.os_name,
            user=info.user,
            hostname=info.hostname,
            cpu_model=cpu_model,
            logical_cpus=info.logical_cpus,
        )


def default_source() -> CounterSource:
    """The counter source for this host."""
    return PsutilCounterSource()
