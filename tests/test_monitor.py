"""Tests for the SystemMonitor class."""

from queue import Queue

import pytest

from conftest import FakeClock, FakeCounterSource, proc
from hostdash.config import MonitorConfig
from hostdash.models import UNKNOWN, CpuTicks, FanInfo, MemoryTotals, NetInterfaceSnapshot, SwapTotals
from hostdash.monitor import SystemMonitor, SystemSnapshot


def make_monitor(source: FakeCounterSource, clock: FakeClock, **config) -> SystemMonitor:
    queue: Queue[SystemSnapshot] = Queue()
    return SystemMonitor(queue, source=source, config=MonitorConfig(**config), clock=clock)


class TestSystemSnapshot:
    """Tests for SystemSnapshot."""

    def test_system_snapshot_uses_slots(self, fake_source, fake_clock):
        """Test SystemSnapshot uses __slots__ for memory efficiency."""
        snapshot = make_monitor(fake_source, fake_clock).poll()
        # Slots-based dataclasses don't have __dict__
        assert not hasattr(snapshot, "__dict__")

    def test_host_info_is_attached(self, fake_source, fake_clock):
        """Test the snapshot carries host facts."""
        snapshot = make_monitor(fake_source, fake_clock).poll()
        assert snapshot.host.hostname == "testhost"
        assert snapshot.host.logical_cpus == 4


class TestSystemMonitor:
    """Tests for SystemMonitor lifecycle."""

    def test_monitor_creation(self, fake_source):
        """Test SystemMonitor can be instantiated."""
        queue: Queue[SystemSnapshot] = Queue()
        monitor = SystemMonitor(queue, source=fake_source)

        assert monitor.poll_rate == 2.0
        assert not monitor.is_running
        assert monitor.view() is None

    def test_monitor_custom_poll_rate(self, fake_source):
        """Test SystemMonitor with custom poll rate."""
        queue: Queue[SystemSnapshot] = Queue()
        monitor = SystemMonitor(queue, poll_rate=1.0, source=fake_source)

        assert monitor.poll_rate == 1.0

    def test_poll_rate_minimum(self, fake_source):
        """Test poll rate has a minimum value."""
        queue: Queue[SystemSnapshot] = Queue()
        monitor = SystemMonitor(queue, source=fake_source)

        monitor.poll_rate = 0.01  # Very small value
        assert monitor.poll_rate >= 0.1  # Should be clamped to minimum

    def test_monitor_start_stop(self, fake_source):
        """Test SystemMonitor can be started and stopped."""
        queue: Queue[SystemSnapshot] = Queue()
        monitor = SystemMonitor(queue, poll_rate=0.1, source=fake_source)

        monitor.start()
        assert monitor.is_running

        monitor.stop()
        assert not monitor.is_running

    def test_monitor_start_idempotent(self, fake_source):
        """Test starting an already running monitor is safe."""
        queue: Queue[SystemSnapshot] = Queue()
        monitor = SystemMonitor(queue, poll_rate=0.1, source=fake_source)

        monitor.start()
        thread1 = monitor._thread

        monitor.start()  # Should not create a new thread
        thread2 = monitor._thread

        assert thread1 is thread2
        monitor.stop()

    def test_monitor_collects_data(self, fake_source):
        """Test SystemMonitor collects and queues data."""
        queue: Queue[SystemSnapshot] = Queue()
        monitor = SystemMonitor(queue, poll_rate=0.1, source=fake_source)

        monitor.start()

        try:
            snapshot1 = queue.get(timeout=2.0)
            snapshot2 = queue.get(timeout=2.0)
            assert isinstance(snapshot1, SystemSnapshot)
            assert isinstance(snapshot2, SystemSnapshot)
            assert snapshot1.memory_total_kb == 16_000_000
        finally:
            monitor.stop()

    def test_loop_survives_source_errors(self):
        """Test a failing poll is logged and the loop keeps running."""

        class FlakySource(FakeCounterSource):
            calls = 0

            def read_system_cpu_ticks(self):
                FlakySource.calls += 1
                if FlakySource.calls == 1:
                    raise RuntimeError("boom")
                return super().read_system_cpu_ticks()

        queue: Queue[SystemSnapshot] = Queue()
        monitor = SystemMonitor(queue, poll_rate=0.1, source=FlakySource())
        monitor.start()
        try:
            assert isinstance(queue.get(timeout=2.0), SystemSnapshot)
            assert monitor.is_running
        finally:
            monitor.stop()

    def test_daemon_thread(self, fake_source):
        """Test monitor thread is a daemon thread."""
        queue: Queue[SystemSnapshot] = Queue()
        monitor = SystemMonitor(queue, poll_rate=0.1, source=fake_source)

        monitor.start()

        try:
            assert monitor._thread is not None
            assert monitor._thread.daemon is True
            assert monitor._thread.name == "SystemMonitor"
        finally:
            monitor.stop()


class TestPoll:
    """Tests for metric derivation across polls."""

    def test_first_poll_reports_zero_cpu(self, fake_source, fake_clock):
        """Test there is no CPU percentage without a baseline."""
        fake_source.cpu = CpuTicks(idle=100, total=1000)
        snapshot = make_monitor(fake_source, fake_clock).poll()
        assert snapshot.cpu_percent == 0.0

    def test_system_cpu_from_deltas(self, fake_source, fake_clock):
        """Test CPU percentage comes from idle and total tick deltas."""
        monitor = make_monitor(fake_source, fake_clock)
        fake_source.cpu = CpuTicks(idle=100, total=1000)
        monitor.poll()
        fake_clock.advance(1)
        fake_source.cpu = CpuTicks(idle=200, total=1300)
        snapshot = monitor.poll()
        assert snapshot.cpu_percent == pytest.approx(66.6667, rel=1e-4)
        assert monitor.get_history("cpu") == [0.0, pytest.approx(66.6667, rel=1e-4)]

    def test_unreadable_cpu_keeps_baseline(self, fake_source, fake_clock):
        """Test a failed CPU read records nothing and the next poll spans both intervals."""
        monitor = make_monitor(fake_source, fake_clock)
        fake_source.cpu = CpuTicks(idle=100, total=200)
        monitor.poll()
        fake_clock.advance(1)
        fake_source.cpu = CpuTicks(idle=150, total=300)
        assert monitor.poll().cpu_percent == pytest.approx(50.0)

        fake_clock.advance(1)
        fake_source.cpu = None
        skipped = monitor.poll()
        assert skipped.cpu_percent == pytest.approx(50.0)
        assert monitor.get_history("cpu") == [0.0, pytest.approx(50.0)]

        fake_clock.advance(1)
        fake_source.cpu = CpuTicks(idle=200, total=450)
        assert monitor.poll().cpu_percent == pytest.approx(66.6667, rel=1e-4)
        assert monitor.get_history("cpu") == [0.0, pytest.approx(50.0), pytest.approx(66.6667, rel=1e-4)]

    def test_unreadable_cpu_keeps_process_baseline(self, fake_source, fake_clock):
        """Test process percentages are not recomputed without system ticks."""
        monitor = make_monitor(fake_source, fake_clock)
        fake_source.cpu = CpuTicks(idle=0, total=1000)
        fake_source.processes = [proc(1, 0)]
        monitor.poll()

        fake_clock.advance(1)
        fake_source.cpu = None
        fake_source.processes = [proc(1, 100)]
        snapshot = monitor.poll()
        assert not snapshot.cpu_recomputed
        assert snapshot.processes[0].cpu_percent == 0.0

        fake_clock.advance(1)
        fake_source.cpu = CpuTicks(idle=0, total=2000)
        fake_source.processes = [proc(1, 200)]
        snapshot = monitor.poll()
        assert snapshot.cpu_recomputed
        assert snapshot.processes[0].cpu_percent == pytest.approx(200 / 1000 * 100 * 4)

    def test_process_cpu_uses_previous_system_baseline(self, fake_source, fake_clock):
        """Test process percentages use the system delta from before the poll."""
        monitor = make_monitor(fake_source, fake_clock)
        fake_source.cpu = CpuTicks(idle=0, total=1000)
        fake_source.processes = [proc(1, 0)]
        monitor.poll()

        fake_clock.advance(1)
        fake_source.cpu = CpuTicks(idle=0, total=2000)
        fake_source.processes = [proc(1, 100)]
        snapshot = monitor.poll()
        (record,) = snapshot.processes
        assert snapshot.cpu_recomputed
        assert record.cpu_percent == pytest.approx(100 / 1000 * 100 * 4)

    def test_memory(self, fake_source, fake_clock):
        """Test memory percentage and used size."""
        snapshot = make_monitor(fake_source, fake_clock).poll()
        assert snapshot.memory_percent == pytest.approx(50.0)
        assert snapshot.memory_used_kb == 8_000_000

    def test_memory_unsupported(self, fake_source, fake_clock):
        """Test a zero memory total reports UNKNOWN and records no history."""
        fake_source.memory = MemoryTotals(total_kb=0, available_kb=0)
        monitor = make_monitor(fake_source, fake_clock)
        snapshot = monitor.poll()
        assert snapshot.memory_percent == UNKNOWN
        assert monitor.get_history("memory") == []

    def test_swap_with_unknown_total(self, fake_source, fake_clock):
        """Test swap without a total reports used size and no percentage."""
        fake_source.swap = SwapTotals(total_kb=None, used_kb=256_000)
        monitor = make_monitor(fake_source, fake_clock)
        snapshot = monitor.poll()
        assert snapshot.swap.percent is None
        assert snapshot.swap.used_kb == 256_000
        assert monitor.get_history("swap") == []

    def test_swap_percent(self, fake_source, fake_clock):
        """Test swap percentage when the total is known."""
        snapshot = make_monitor(fake_source, fake_clock).poll()
        assert snapshot.swap.percent == pytest.approx(25.0)

    def test_disk(self, fake_source, fake_clock):
        """Test disk percentage and an unreadable filesystem."""
        monitor = make_monitor(fake_source, fake_clock)
        assert monitor.poll().disk_percent == pytest.approx(40.0)
        fake_source.disk = None
        assert monitor.poll().disk_percent == UNKNOWN

    def test_no_thermal_data(self, fake_source, fake_clock):
        """Test a missing sensor records nothing rather than a made-up value."""
        monitor = make_monitor(fake_source, fake_clock)
        snapshot = monitor.poll()
        assert snapshot.temperature_c is None
        assert monitor.get_history("thermal") == []

        fake_source.temperature = 48.5
        monitor.poll()
        assert monitor.get_history("thermal") == [48.5]

    def test_fan(self, fake_source, fake_clock):
        """Test fan speed is recorded when a fan exists."""
        fake_source.fan = FanInfo(active=True, speed_rpm=2400, level=3)
        monitor = make_monitor(fake_source, fake_clock)
        snapshot = monitor.poll()
        assert snapshot.fan.speed_rpm == 2400
        assert monitor.get_history("fan") == [2400.0]

    def test_network_rates(self, fake_source, fake_clock):
        """Test per-interface rates from byte deltas over elapsed time."""
        monitor = make_monitor(fake_source, fake_clock)
        fake_source.network = {"eth0": NetInterfaceSnapshot("eth0", rx_bytes=1000, tx_bytes=500)}
        first = monitor.poll()
        assert first.network_rates["eth0"].rx == 0.0

        fake_clock.advance(2)
        fake_source.network = {"eth0": NetInterfaceSnapshot("eth0", rx_bytes=5000, tx_bytes=1500)}
        second = monitor.poll()
        assert second.network_rates["eth0"].rx == pytest.approx(2000.0)
        assert second.network_rates["eth0"].tx == pytest.approx(500.0)
        assert monitor.get_history("net_rx")[-1] == pytest.approx(2000.0)

    def test_network_counter_reset(self, fake_source, fake_clock):
        """Test a counter that goes backwards reads as zero rate."""
        monitor = make_monitor(fake_source, fake_clock)
        fake_source.network = {"eth0": NetInterfaceSnapshot("eth0", rx_bytes=5000)}
        monitor.poll()
        fake_clock.advance(1)
        fake_source.network = {"eth0": NetInterfaceSnapshot("eth0", rx_bytes=10)}
        assert monitor.poll().network_rates["eth0"].rx == 0.0

    def test_task_counts(self, fake_source, fake_clock):
        """Test task counts follow process states."""
        fake_source.processes = [proc(1, 0, state="R"), proc(2, 0, state="S"), proc(3, 0, state="Z")]
        counts = make_monitor(fake_source, fake_clock).poll().task_counts
        assert (counts.total, counts.running, counts.sleeping, counts.zombie) == (3, 1, 1, 1)


class TestPause:
    """Tests for pausing the monitor."""

    def test_pause_freezes_everything(self, fake_source, fake_clock):
        """Test a paused monitor reads no counters and changes no history."""
        monitor = make_monitor(fake_source, fake_clock)
        fake_source.processes = [proc(1, 0)]
        monitor.poll()
        fake_clock.advance(1)
        fake_source.cpu = CpuTicks(idle=50, total=100)
        fake_source.processes = [proc(1, 10)]
        before = monitor.poll()

        assert monitor.toggle_pause() is True
        reads = fake_source.reads
        fake_clock.advance(1)
        fake_source.cpu = CpuTicks(idle=50, total=200)
        fake_source.processes = [proc(1, 90), proc(2, 0)]
        paused = monitor.poll()

        assert fake_source.reads == reads
        assert paused.paused
        assert paused.cpu_percent == before.cpu_percent
        assert [r.pid for r in paused.processes] == [1]
        assert paused.processes[0].cpu_percent == before.processes[0].cpu_percent
        assert len(before.history["cpu"].samples) == 2
        assert tuple(monitor.get_history("cpu")) == before.history["cpu"].samples

    def test_resume_continues_from_paused_baselines(self, fake_source, fake_clock):
        """Test the first poll after resuming measures against the pre-pause counters."""
        monitor = make_monitor(fake_source, fake_clock)
        fake_source.cpu = CpuTicks(idle=0, total=100)
        monitor.poll()
        monitor.toggle_pause()
        monitor.poll()
        monitor.toggle_pause()

        fake_clock.advance(1)
        fake_source.cpu = CpuTicks(idle=50, total=200)
        snapshot = monitor.poll()
        assert not snapshot.paused
        assert snapshot.cpu_percent == pytest.approx(50.0)
        assert len(monitor.get_history("cpu")) == 2


class TestCommands:
    """Tests for UI commands."""

    def test_filter(self, fake_source, fake_clock):
        """Test the filter narrows the processes in the view."""
        fake_source.processes = [proc(1, 0, name="bash"), proc(2, 0, name="sshd")]
        monitor = make_monitor(fake_source, fake_clock)
        monitor.poll()
        monitor.set_filter("ssh")
        view = monitor.view()
        assert [r.name for r in view.processes] == ["sshd"]
        assert view.filter_text == "ssh"

    def test_selection(self, fake_source, fake_clock):
        """Test selection toggles and is reflected in the view."""
        fake_source.processes = [proc(1, 0), proc(2, 0)]
        monitor = make_monitor(fake_source, fake_clock)
        monitor.poll()
        assert monitor.toggle_selection(2) is True
        assert monitor.view().selection == frozenset({2})
        assert monitor.toggle_selection(2) is False
        assert monitor.toggle_selection(99) is False
        assert monitor.view().selection == frozenset()

    def test_stream_pause(self, fake_source, fake_clock):
        """Test a paused graph keeps its history while others grow."""
        monitor = make_monitor(fake_source, fake_clock)
        monitor.poll()
        assert monitor.toggle_stream_pause("memory") is True
        monitor.poll()
        assert len(monitor.get_history("memory")) == 1
        assert len(monitor.get_history("cpu")) == 2
        assert monitor.stream_view("memory").paused

        assert monitor.toggle_stream_pause("memory") is False
        monitor.poll()
        assert len(monitor.get_history("memory")) == 2

    def test_stream_fps(self, fake_source, fake_clock):
        """Test graph refresh rates are clamped."""
        monitor = make_monitor(fake_source, fake_clock)
        assert monitor.set_stream_fps("cpu", 30) == 30
        assert monitor.set_stream_fps("cpu", 1000) == 144
        assert monitor.set_stream_fps("cpu", 0) == 1
        assert monitor.stream_view("cpu").fps == 1

    def test_stream_y_scale(self, fake_source, fake_clock):
        """Test y-scale is clamped to the graph's range."""
        monitor = make_monitor(fake_source, fake_clock)
        assert monitor.set_stream_y_scale("cpu", 150.0) == 150.0
        assert monitor.set_stream_y_scale("cpu", 500.0) == 200.0
        assert monitor.set_stream_y_scale("thermal", 5.0) == 30.0
        assert monitor.stream_view("thermal").y_scale == 30.0
