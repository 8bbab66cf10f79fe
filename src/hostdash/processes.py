"""Per-process CPU and memory tracking across polls."""

from collections.abc import Iterable
from enum import Enum

import structlog

from hostdash.models import ProcessRecord, ProcessSample, ProcessState, TaskCounts
from hostdash.scheduler import IntervalGate

log = structlog.get_logger()


class SortKey(Enum):
    """Sort keys for the process table."""

    CPU = "cpu"
    MEM = "mem"
    PID = "pid"
    NAME = "name"


_SORT_FUNCS = {
    SortKey.CPU: lambda r: r.cpu_percent,
    SortKey.MEM: lambda r: r.mem_percent,
    SortKey.PID: lambda r: r.pid,
    SortKey.NAME: lambda r: r.name.lower(),
}


def sort_records(
    records: list[ProcessRecord], key: SortKey = SortKey.CPU, reverse: bool = True
) -> list[ProcessRecord]:
    """Order records by ``key``."""
    return sorted(records, key=_SORT_FUNCS[key], reverse=reverse)


class ProcessTable:
    """
    Tracks every live process by pid and derives its CPU and memory share.

    CPU percent is the process tick delta over the system tick delta for the
    same interval, multiplied by the logical CPU count so that one saturated
    core reads as 100%. A multi-threaded process can exceed 100.

    The table only ever sees the processes handed to ``update``; a pid that is
    missing from a poll is dropped, and if it shows up again later it starts
    over from a fresh baseline.
    """

    def __init__(self, cpu_count: int, gate: IntervalGate | None = None) -> None:
        """
        Initialize the ProcessTable.

        Args:
            cpu_count: Number of logical CPUs used to normalize percentages.
            gate: Limits how often CPU percentages are recomputed.
                Defaults to a 0.5 second gate.
        """
        self._cpu_count = max(1, cpu_count)
        self._gate = gate if gate is not None else IntervalGate()
        self._records: dict[int, ProcessRecord] = {}
        self._selection: set[int] = set()
        self._filter = ""
        self._last_total_ticks: float | None = None

    @property
    def cpu_count(self) -> int:
        return self._cpu_count

    @property
    def filter_text(self) -> str:
        return self._filter

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, pid: object) -> bool:
        return pid in self._records

    def update(
        self,
        samples: Iterable[ProcessSample],
        total_ticks: float | None,
        memory_total_kb: int,
        now: float,
    ) -> bool:
        """
        Fold one poll's process samples into the table.

        Args:
            samples: Every process readable during this poll.
            total_ticks: System-wide cumulative CPU ticks for this poll, or
                None when they could not be read. That poll is then treated
                like one inside the gate interval.
            memory_total_kb: Physical memory size for the memory percentage.
            now: Monotonic time of the poll.

        Returns:
            True if CPU percentages were recomputed, False if the previous
            values were kept.
        """
        current: dict[int, ProcessSample] = {s.pid: s for s in samples}

        for pid in self._records.keys() - current.keys():
            del self._records[pid]
            self._selection.discard(pid)

        recompute = total_ticks is not None and self._gate.ready(now)
        delta_system: float | None = None
        if recompute and self._last_total_ticks is not None:
            delta_system = total_ticks - self._last_total_ticks

        # All percentages are computed against the old baselines first.
        cpu: dict[int, float] = {}
        for pid, sample in current.items():
            record = self._records.get(pid)
            if record is None:
                continue
            if sample.cpu_ticks < record.last_cpu_ticks or sample.name != record.name:
                log.debug(
                    "process_baseline_reset",
                    pid=pid,
                    last_ticks=record.last_cpu_ticks,
                    ticks=sample.cpu_ticks,
                )
                cpu[pid] = 0.0
            elif recompute:
                cpu[pid] = self._cpu_percent(sample.cpu_ticks - record.last_cpu_ticks, delta_system)

        # Then baselines move.
        for pid, sample in current.items():
            mem_percent = self._mem_percent(sample.rss_kb, memory_total_kb)
            record = self._records.get(pid)
            if record is None:
                self._records[pid] = ProcessRecord(
                    pid=pid,
                    name=sample.name,
                    state=sample.state,
                    last_cpu_ticks=sample.cpu_ticks,
                    cpu_percent=0.0,
                    mem_percent=mem_percent,
                )
                continue

            record.name = sample.name
            record.state = sample.state
            record.mem_percent = mem_percent
            if pid in cpu:
                record.cpu_percent = cpu[pid]
                record.last_cpu_ticks = sample.cpu_ticks

        if recompute:
            self._last_total_ticks = total_ticks
            self._gate.mark(now)
        return recompute

    def _cpu_percent(self, delta_proc: float, delta_system: float | None) -> float:
        if delta_system is None or delta_system <= 0:
            return 0.0
        return delta_proc / delta_system * 100.0 * self._cpu_count

    @staticmethod
    def _mem_percent(rss_kb: int, memory_total_kb: int) -> float:
        if memory_total_kb <= 0:
            return 0.0
        return rss_kb * 100.0 / memory_total_kb

    def get(self, pid: int) -> ProcessRecord | None:
        """Copy of the record for ``pid``, or None if it is not tracked."""
        record = self._records.get(pid)
        return record.copy() if record is not None else None

    def records(self) -> list[ProcessRecord]:
        """Copies of every tracked record, ignoring the filter."""
        return [r.copy() for r in self._records.values()]

    # Filtering

    def set_filter(self, text: str) -> None:
        """Show only processes whose name or pid contains ``text``."""
        self._filter = text.strip().lower()

    def matches(self, record: ProcessRecord) -> bool:
        if not self._filter:
            return True
        return self._filter in record.name.lower() or self._filter in str(record.pid)

    def visible(self) -> list[ProcessRecord]:
        """Copies of the records that pass the current filter."""
        return [r.copy() for r in self._records.values() if self.matches(r)]

    def sorted_records(self, key: SortKey = SortKey.CPU, reverse: bool = True) -> list[ProcessRecord]:
        """Visible records ordered by ``key``."""
        return sort_records(self.visible(), key, reverse)

    # Selection

    @property
    def selection(self) -> frozenset[int]:
        return frozenset(self._selection)

    def is_selected(self, pid: int) -> bool:
        return pid in self._selection

    def select(self, pid: int) -> None:
        """Select a tracked pid; untracked pids are ignored."""
        if pid in self._records:
            self._selection.add(pid)

    def deselect(self, pid: int) -> None:
        self._selection.discard(pid)

    def toggle_selection(self, pid: int) -> bool:
        """Flip selection of ``pid`` and return whether it is now selected."""
        if pid in self._selection:
            self._selection.discard(pid)
            return False
        self.select(pid)
        return pid in self._selection

    def clear_selection(self) -> None:
        self._selection.clear()

    def state_counts(self) -> TaskCounts:
        """Number of tracked processes in each scheduling state."""
        counts = dict.fromkeys(ProcessState, 0)
        for record in self._records.values():
            counts[record.state] += 1
        return TaskCounts(
            total=len(self._records),
            running=counts[ProcessState.RUNNING],
            sleeping=counts[ProcessState.SLEEPING],
            waiting=counts[ProcessState.WAITING],
            stopped=counts[ProcessState.STOPPED],
            zombie=counts[ProcessState.ZOMBIE],
        )
