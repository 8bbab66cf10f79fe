"""Data models for hostdash."""

from dataclasses import dataclass
from enum import Enum

# Out-of-range value reported when a platform cannot supply a metric.
UNKNOWN = -1.0


class ProcessState(Enum):
    """Scheduling state of a process."""

    RUNNING = "Running"
    SLEEPING = "Sleeping"
    WAITING = "Waiting"
    STOPPED = "Stopped"
    ZOMBIE = "Zombie"
    UNKNOWN = "Unknown"

    @classmethod
    def from_code(cls, code: str) -> "ProcessState":
        """Map a kernel state letter or a psutil status string to a state."""
        return _STATE_CODES.get(code, cls.UNKNOWN)

    @property
    def letter(self) -> str:
        """Single-letter code shown in the process table."""
        return _STATE_LETTERS[self]


_STATE_CODES = {
    "R": ProcessState.RUNNING,
    "S": ProcessState.SLEEPING,
    "I": ProcessState.SLEEPING,
    "D": ProcessState.WAITING,
    "W": ProcessState.WAITING,
    "T": ProcessState.STOPPED,
    "t": ProcessState.STOPPED,
    "Z": ProcessState.ZOMBIE,
    # psutil status strings
    "running": ProcessState.RUNNING,
    "sleeping": ProcessState.SLEEPING,
    "idle": ProcessState.SLEEPING,
    "disk-sleep": ProcessState.WAITING,
    "waiting": ProcessState.WAITING,
    "waking": ProcessState.WAITING,
    "stopped": ProcessState.STOPPED,
    "tracing-stop": ProcessState.STOPPED,
    "zombie": ProcessState.ZOMBIE,
    "dead": ProcessState.ZOMBIE,
}

_STATE_LETTERS = {
    ProcessState.RUNNING: "R",
    ProcessState.SLEEPING: "S",
    ProcessState.WAITING: "D",
    ProcessState.STOPPED: "T",
    ProcessState.ZOMBIE: "Z",
    ProcessState.UNKNOWN: "?",
}


@dataclass(slots=True, frozen=True)
class CpuTicks:
    """Cumulative system CPU time since boot."""

    idle: float
    total: float
    timestamp: float = 0.0  # monotonic seconds


@dataclass(slots=True, frozen=True)
class ProcessSample:
    """Raw counters for one process, read during a single poll."""

    pid: int
    name: str
    state: ProcessState
    cpu_ticks: float  # user + system time, same unit as CpuTicks
    rss_kb: int = 0


@dataclass(slots=True, frozen=True)
class MemoryTotals:
    """Physical memory totals in KiB."""

    total_kb: int
    available_kb: int


@dataclass(slots=True, frozen=True)
class SwapTotals:
    """Swap totals in KiB.

    Platforms that only report paged-out bytes leave ``total_kb`` as None and
    fill ``used_kb`` instead of ``free_kb``.
    """

    total_kb: int | None
    free_kb: int | None = None
    used_kb: int | None = None


@dataclass(slots=True, frozen=True)
class DiskTotals:
    """Filesystem usage in bytes."""

    total: int
    used: int
    free: int
    available: int


@dataclass(slots=True, frozen=True)
class NetInterfaceSnapshot:
    """Cumulative counters for one network interface."""

    name: str
    rx_bytes: int = 0
    rx_packets: int = 0
    rx_errs: int = 0
    rx_drop: int = 0
    rx_fifo: int = 0
    rx_frame: int = 0
    rx_compressed: int = 0
    rx_multicast: int = 0
    tx_bytes: int = 0
    tx_packets: int = 0
    tx_errs: int = 0
    tx_drop: int = 0
    tx_fifo: int = 0
    tx_colls: int = 0
    tx_carrier: int = 0
    tx_compressed: int = 0
    ipv4: str | None = None


@dataclass(slots=True, frozen=True)
class FanInfo:
    """Fan status as reported by a hardware monitor."""

    active: bool
    speed_rpm: int
    level: int


@dataclass(slots=True, frozen=True)
class HostInfo:
    """Static facts about the host."""

    os_name: str
    user: str
    hostname: str
    cpu_model: str
    logical_cpus: int


@dataclass(slots=True, frozen=True)
class TaskCounts:
    """Number of processes per scheduling state."""

    total: int = 0
    running: int = 0
    sleeping: int = 0
    waiting: int = 0
    stopped: int = 0
    zombie: int = 0


@dataclass(slots=True)
class ProcessRecord:
    """Tracked state of a process across polls."""

    pid: int
    name: str
    state: ProcessState
    last_cpu_ticks: float
    cpu_percent: float = 0.0  # 0.0 - 100.0 * core_count
    mem_percent: float = 0.0

    def copy(self) -> "ProcessRecord":
        """Return a detached copy safe to hand to the renderer."""
        return ProcessRecord(
            pid=self.pid,
            name=self.name,
            state=self.state,
            last_cpu_ticks=self.last_cpu_ticks,
            cpu_percent=self.cpu_percent,
            mem_percent=self.mem_percent,
        )
