"""Shared fixtures for hostdash tests."""

from collections.abc import Iterator

import pytest

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
from hostdash.sources import CounterSource


class FakeCounterSource(CounterSource):
    """Counter source driven entirely by test-controlled attributes."""

    def __init__(self, cpu_count: int = 4) -> None:
        self.cpu_count = cpu_count
        self.cpu: CpuTicks | None = CpuTicks(idle=0, total=0)
        self.processes: list[ProcessSample] = []
        self.memory = MemoryTotals(total_kb=16_000_000, available_kb=8_000_000)
        self.swap = SwapTotals(total_kb=2_000_000, free_kb=1_500_000)
        self.network: dict[str, NetInterfaceSnapshot] = {}
        self.disk: DiskTotals | None = DiskTotals(total=100, used=40, free=60, available=60)
        self.fan: FanInfo | None = None
        self.temperature: float | None = None
        self.reads = 0

    def read_system_cpu_ticks(self) -> CpuTicks | None:
        self.reads += 1
        return self.cpu

    def read_process_list(self) -> list[ProcessSample]:
        return list(self.processes)

    def read_memory_totals(self) -> MemoryTotals:
        return self.memory

    def read_swap_totals(self) -> SwapTotals:
        return self.swap

    def read_network_interfaces(self) -> dict[str, NetInterfaceSnapshot]:
        return dict(self.network)

    def read_disk_totals(self, path: str = "/") -> DiskTotals | None:
        return self.disk

    def read_fan_info(self) -> FanInfo | None:
        return self.fan

    def read_temperature_c(self) -> float | None:
        return self.temperature

    def logical_cpu_count(self) -> int:
        return self.cpu_count

    def read_host_info(self) -> HostInfo:
        return HostInfo(
            os_name="Linux",
            user="tester",
            hostname="testhost",
            cpu_model="Test CPU",
            logical_cpus=self.cpu_count,
        )


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def proc(pid: int, ticks: float, name: str = "", state: str = "S", rss_kb: int = 0) -> ProcessSample:
    """Shorthand for a ProcessSample."""
    return ProcessSample(
        pid=pid,
        name=name or f"proc{pid}",
        state=ProcessState.from_code(state),
        cpu_ticks=ticks,
        rss_kb=rss_kb,
    )


@pytest.fixture
def fake_source() -> FakeCounterSource:
    return FakeCounterSource()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def proc_tree(tmp_path) -> Iterator:
    """A minimal fake /proc and /sys tree."""
    proc_root = tmp_path / "proc"
    sys_root = tmp_path / "sys"
    proc_root.mkdir()
    sys_root.mkdir()
    yield proc_root, sys_root
