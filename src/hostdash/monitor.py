"""System monitoring engine for hostdash."""

import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from queue import Queue

import structlog

from hostdash.config import MIN_POLL_RATE, MonitorConfig
from hostdash.metrics import (
    SwapUsage,
    byte_rate,
    disk_used_percent,
    memory_used_percent,
    swap_usage,
    system_cpu_percent,
)
from hostdash.models import (
    UNKNOWN,
    CpuTicks,
    DiskTotals,
    FanInfo,
    HostInfo,
    MemoryTotals,
    NetInterfaceSnapshot,
    ProcessRecord,
    ProcessSample,
    SwapTotals,
    TaskCounts,
)
from hostdash.processes import ProcessTable
from hostdash.scheduler import SamplingScheduler, StreamView
from hostdash.sources import CounterSource, default_source

log = structlog.get_logger()


@dataclass(slots=True, frozen=True)
class RawSample:
    """Every counter read during one poll, before any arithmetic."""

    timestamp: float
    cpu: CpuTicks | None  # None when the CPU counters could not be read
    processes: tuple[ProcessSample, ...]
    memory: MemoryTotals
    swap: SwapTotals
    network: Mapping[str, NetInterfaceSnapshot]
    disk: DiskTotals | None = None
    fan: FanInfo | None = None
    temperature_c: float | None = None


@dataclass(slots=True, frozen=True)
class InterfaceRates:
    """Transfer rates of one interface in bytes per second."""

    rx: float
    tx: float


@dataclass(slots=True, frozen=True)
class SystemSnapshot:
    """Snapshot of overall system state handed to the renderer."""

    timestamp: float
    cpu_percent: float
    memory_percent: float  # UNKNOWN when the platform reports no total
    memory_total_kb: int
    memory_used_kb: int
    swap: SwapUsage
    disk_percent: float  # UNKNOWN when the filesystem could not be read
    disk: DiskTotals | None
    temperature_c: float | None
    fan: FanInfo | None
    network: tuple[NetInterfaceSnapshot, ...]
    network_rates: dict[str, InterfaceRates]
    processes: list[ProcessRecord]  # filtered by the table's current filter
    selection: frozenset[int]
    task_counts: TaskCounts
    history: dict[str, StreamView]
    paused: bool
    host: HostInfo | None = None
    filter_text: str = ""
    cpu_recomputed: bool = False


class SystemMonitor:
    """
    System monitor that turns raw counters into percentages and history.

    Each poll has two phases: every counter is read into an immutable
    RawSample, then all metrics are computed against the previous baselines
    and only afterwards are the baselines replaced. The resulting
    SystemSnapshot is pushed to a thread-safe Queue.

    ``start`` runs polls in a daemon thread. That thread is the only one that
    polls; UI commands (pause, filter, selection) take the same lock.
    """

    def __init__(
        self,
        update_queue: Queue[SystemSnapshot],
        poll_rate: float | None = None,
        source: CounterSource | None = None,
        config: MonitorConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the SystemMonitor.

        Args:
            update_queue: Thread-safe queue to push updates to.
            poll_rate: How often to poll the system (in seconds). Overrides
                the config value when given.
            source: Where counters come from. Defaults to psutil.
            config: Monitor settings. Defaults to MonitorConfig().
            clock: Monotonic time function, injectable for tests.
        """
        self._config = config or MonitorConfig()
        self._queue = update_queue
        self._poll_rate = self._config.poll_rate
        if poll_rate is not None:
            self.poll_rate = poll_rate
        self._source = source or default_source()
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.RLock()

        self.scheduler = SamplingScheduler(
            history_size=self._config.history_size,
            process_min_interval=self._config.process_min_interval,
        )
        self._table = ProcessTable(self._source.logical_cpu_count(), gate=self.scheduler.process_gate)
        self._host: HostInfo | None = None

        # Baselines from the previous poll
        self._prev_cpu: CpuTicks | None = None
        self._prev_network: Mapping[str, NetInterfaceSnapshot] = {}
        self._prev_time: float | None = None

        self._latest: SystemSnapshot | None = None

    @property
    def poll_rate(self) -> float:
        """Get the current poll rate."""
        return self._poll_rate

    @poll_rate.setter
    def poll_rate(self, value: float) -> None:
        """Set the poll rate."""
        self._poll_rate = max(MIN_POLL_RATE, value)

    @property
    def is_running(self) -> bool:
        """Check if the monitor thread is running."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def source(self) -> CounterSource:
        return self._source

    @property
    def process_table(self) -> ProcessTable:
        return self._table

    def start(self) -> None:
        """Start the monitoring thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="SystemMonitor",
        )
        self._thread.start()
        log.info("monitor_started", poll_rate=self._poll_rate, source=type(self._source).__name__)

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the monitoring thread.

        Args:
            timeout: How long to wait for thread to stop (seconds).
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
            log.info("monitor_stopped")

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            try:
                self._queue.put(self.poll())
            except Exception:
                # Keep the loop alive; the next poll is the retry
                log.exception("poll_failed")

            # Wait for poll_rate seconds or until stop is requested
            self._stop_event.wait(timeout=self._poll_rate)

    def poll(self) -> SystemSnapshot:
        """Run one full poll synchronously and return the new snapshot."""
        if self.scheduler.paused:
            frozen = self.view()
            if frozen is not None:
                return frozen
        # Counters are read outside the lock; only apply() touches engine state.
        return self.apply(self.collect())

    def collect(self) -> RawSample:
        """Phase one: read every counter from the source."""
        source = self._source
        now = self._clock()
        return RawSample(
            timestamp=now,
            cpu=source.read_system_cpu_ticks(),
            processes=tuple(source.read_process_list()),
            memory=source.read_memory_totals(),
            swap=source.read_swap_totals(),
            network=dict(source.read_network_interfaces()),
            disk=source.read_disk_totals(self._config.disk_path),
            fan=source.read_fan_info(),
            temperature_c=source.read_temperature_c(),
        )

    def apply(self, raw: RawSample) -> SystemSnapshot:
        """Phase two: derive metrics against the old baselines, then commit."""
        with self._lock:
            if self._host is None:
                self._host = self._source.read_host_info()

            if raw.cpu is None:
                # Last value stays on screen; the baseline is kept for the next read.
                log.debug("cpu_sample_skipped")
                cpu_percent = self._latest.cpu_percent if self._latest is not None else 0.0
            elif self._prev_cpu is None:
                cpu_percent = 0.0
            else:
                cpu_percent = system_cpu_percent(
                    self._prev_cpu.idle,
                    self._prev_cpu.total,
                    raw.cpu.idle,
                    raw.cpu.total,
                )

            memory_percent = memory_used_percent(raw.memory.total_kb, raw.memory.available_kb)
            swap = swap_usage(raw.swap.total_kb, free_kb=raw.swap.free_kb, used_kb=raw.swap.used_kb)
            disk_percent = UNKNOWN
            if raw.disk is not None:
                disk_percent = disk_used_percent(raw.disk.used, raw.disk.available)
            rates = self._network_rates(raw)

            recomputed = False
            if not self.scheduler.paused:
                recomputed = self._table.update(
                    raw.processes,
                    total_ticks=raw.cpu.total if raw.cpu is not None else None,
                    memory_total_kb=raw.memory.total_kb,
                    now=raw.timestamp,
                )

            self._record_history(cpu_percent, memory_percent, swap, raw, rates)

            if raw.cpu is not None:
                self._prev_cpu = raw.cpu
            self._prev_network = raw.network
            self._prev_time = raw.timestamp

            self._latest = SystemSnapshot(
                timestamp=raw.timestamp,
                cpu_percent=cpu_percent,
                memory_percent=memory_percent,
                memory_total_kb=raw.memory.total_kb,
                memory_used_kb=max(raw.memory.total_kb - raw.memory.available_kb, 0),
                swap=swap,
                disk_percent=disk_percent,
                disk=raw.disk,
                temperature_c=raw.temperature_c,
                fan=raw.fan,
                network=tuple(raw.network[name] for name in sorted(raw.network)),
                network_rates=rates,
                processes=self._table.visible(),
                selection=self._table.selection,
                task_counts=self._table.state_counts(),
                history=self.scheduler.views(),
                paused=self.scheduler.paused,
                host=self._host,
                filter_text=self._table.filter_text,
                cpu_recomputed=recomputed,
            )
            return self._latest

    def _network_rates(self, raw: RawSample) -> dict[str, InterfaceRates]:
        rates: dict[str, InterfaceRates] = {}
        elapsed = raw.timestamp - self._prev_time if self._prev_time is not None else 0.0
        for name, iface in raw.network.items():
            prev = self._prev_network.get(name)
            if prev is None:
                rates[name] = InterfaceRates(rx=0.0, tx=0.0)
                continue
            rates[name] = InterfaceRates(
                rx=byte_rate(prev.rx_bytes, iface.rx_bytes, elapsed),
                tx=byte_rate(prev.tx_bytes, iface.tx_bytes, elapsed),
            )
        return rates

    def _record_history(
        self,
        cpu_percent: float,
        memory_percent: float,
        swap: SwapUsage,
        raw: RawSample,
        rates: dict[str, InterfaceRates],
    ) -> None:
        scheduler = self.scheduler
        if raw.cpu is not None:
            scheduler.record("cpu", cpu_percent)
        if memory_percent != UNKNOWN:
            scheduler.record("memory", memory_percent)
        if swap.percent is not None:
            scheduler.record("swap", swap.percent)
        if raw.temperature_c is not None:
            scheduler.record("thermal", raw.temperature_c)
        if raw.fan is not None:
            scheduler.record("fan", raw.fan.speed_rpm)
        scheduler.record("net_rx", sum(r.rx for r in rates.values()))
        scheduler.record("net_tx", sum(r.tx for r in rates.values()))

    def view(self) -> SystemSnapshot | None:
        """
        Latest snapshot refreshed with the current pause, filter and selection.

        Reads no counters. Returns None before the first poll.
        """
        with self._lock:
            if self._latest is None:
                return None
            return replace(
                self._latest,
                processes=self._table.visible(),
                selection=self._table.selection,
                history=self.scheduler.views(),
                paused=self.scheduler.paused,
                filter_text=self._table.filter_text,
                cpu_recomputed=False,
            )

    # Commands from the UI

    def toggle_pause(self) -> bool:
        """Pause or resume sampling and return the new pause state."""
        with self._lock:
            return self.scheduler.toggle_pause()

    def set_filter(self, text: str) -> None:
        with self._lock:
            self._table.set_filter(text)

    def toggle_selection(self, pid: int) -> bool:
        with self._lock:
            return self._table.toggle_selection(pid)

    def get_history(self, name: str) -> list[float]:
        """Get the history of one metric stream for graph rendering."""
        with self._lock:
            return self.scheduler.stream(name).buffer.snapshot()

    def stream_view(self, name: str) -> StreamView:
        with self._lock:
            return self.scheduler.view(name)

    def toggle_stream_pause(self, name: str) -> bool:
        """Pause or resume one graph and return its new pause state."""
        with self._lock:
            paused = not self.scheduler.stream(name).paused
            self.scheduler.set_stream_paused(name, paused)
            return paused

    def set_stream_fps(self, name: str, fps: int) -> int:
        """Set a graph's refresh rate and return the value after clamping."""
        with self._lock:
            self.scheduler.set_fps(name, fps)
            return self.scheduler.stream(name).fps

    def set_stream_y_scale(self, name: str, y_scale: float) -> float:
        """Set a graph's y-scale and return the value after clamping."""
        with self._lock:
            self.scheduler.set_y_scale(name, y_scale)
            return self.scheduler.stream(name).y_scale
