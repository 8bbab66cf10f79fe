"""hostdash - Main Textual application."""

import argparse
from queue import Empty, Queue

import structlog
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, Vertical
from textual.widgets import DataTable, Footer, Input, Sparkline, Static, TabbedContent, TabPane

from hostdash.config import MonitorConfig
from hostdash.logs import configure_logging
from hostdash.metrics import format_bytes, transfer_fraction
from hostdash.models import UNKNOWN, NetInterfaceSnapshot, ProcessRecord
from hostdash.monitor import SystemMonitor, SystemSnapshot
from hostdash.processes import SortKey, sort_records
from hostdash.scheduler import StreamView
from hostdash.sources import CounterSource

log = structlog.get_logger()

BAR_WIDTH = 20


def render_bar(percent: float, color: str) -> str:
    """Render a 20-cell usage bar for a percentage."""
    bar_len = int(max(percent, 0.0) / 5)
    bar_len = min(bar_len, BAR_WIDTH)  # Cap at 20 chars
    # Use escaped brackets for the bar container
    return f"\\[[{color}]" + "█" * bar_len + f"[/{color}][dim]" + "░" * (BAR_WIDTH - bar_len) + "[/dim]]"


def describe_memory(snapshot: SystemSnapshot) -> str:
    if snapshot.memory_percent == UNKNOWN:
        return "Mem  This OS is not currently supported for RAM monitoring."
    used_mb = snapshot.memory_used_kb / 1024
    total_mb = snapshot.memory_total_kb / 1024
    return (
        f"Mem  {render_bar(snapshot.memory_percent, 'cyan')} "
        f"{used_mb:.1f} MB / {total_mb:.1f} MB ({snapshot.memory_percent:.1f}%)"
    )


def describe_swap(snapshot: SystemSnapshot) -> str:
    swap = snapshot.swap
    used_mb = swap.used_kb / 1024
    if swap.percent is None:
        return f"Swp  Used: {used_mb:.1f} MB (Total swap unknown)"
    return (
        f"Swp  {render_bar(swap.percent, 'yellow')} "
        f"{used_mb:.1f} MB / {swap.total_kb / 1024:.1f} MB ({swap.percent:.1f}%)"
    )


def describe_disk(snapshot: SystemSnapshot) -> str:
    if snapshot.disk is None or snapshot.disk_percent == UNKNOWN:
        return "Disk Failed to get disk stats."
    gib = 1024**3
    disk = snapshot.disk
    return (
        f"Disk {render_bar(snapshot.disk_percent, 'magenta')} "
        f"{disk.used / gib:.1f} GB / {disk.total / gib:.1f} GB ({snapshot.disk_percent:.1f}%), "
        f"{disk.available / gib:.1f} GB available"
    )


def describe_sensors(snapshot: SystemSnapshot) -> str:
    if snapshot.temperature_c is None:
        temp = "Temp: No thermal data available."
    else:
        temp = f"Temp: {snapshot.temperature_c:.1f} °C"
    if snapshot.fan is None:
        fan = "Fan: not detected"
    else:
        status = "Active" if snapshot.fan.active else "Inactive"
        fan = f"Fan: {status}, {snapshot.fan.speed_rpm} RPM, level {snapshot.fan.level}"
    return f"{temp}   {fan}"


class HeaderStats(Static):
    """Header widget showing host, CPU, memory, disk and sensor statistics."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 7;
        padding: 0 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize HeaderStats."""
        super().__init__(*args, **kwargs)
        self._snapshot: SystemSnapshot | None = None

    def update_stats(self, snapshot: SystemSnapshot) -> None:
        """Update the statistics from a system snapshot."""
        self._snapshot = snapshot
        self.update(self.render_text())

    def render_text(self) -> str:
        snapshot = self._snapshot
        if snapshot is None:
            return "Loading system info..."

        lines = []
        if snapshot.host is not None:
            host = snapshot.host
            lines.append(
                f"{host.os_name}  {host.user}@{host.hostname}  {host.cpu_model} ({host.logical_cpus} CPUs)"
            )
        tasks = snapshot.task_counts
        lines.append(
            f"Tasks: {tasks.total} total, {tasks.running} running, {tasks.sleeping} sleeping, "
            f"{tasks.waiting} waiting, {tasks.stopped} stopped, {tasks.zombie} zombie"
        )
        paused = "  [reverse] PAUSED [/reverse]" if snapshot.paused else ""
        lines.append(f"CPU  {render_bar(snapshot.cpu_percent, 'green')} {snapshot.cpu_percent:5.1f}%{paused}")
        lines.append(describe_memory(snapshot))
        lines.append(describe_swap(snapshot))
        lines.append(describe_disk(snapshot))
        lines.append(describe_sensors(snapshot))
        return "\n".join(lines)


class MetricGraph(Vertical):
    """Rolling graph of one metric stream."""

    DEFAULT_CSS = """
    MetricGraph {
        height: 4;
        width: 1fr;
    }
    MetricGraph Sparkline {
        height: 2;
    }
    MetricGraph.selected {
        background: $boost;
    }
    """

    def __init__(self, stream: str, label: str, unit: str = "%", **kwargs) -> None:
        super().__init__(**kwargs)
        self.stream = stream
        self._label = label
        self._unit = unit

    def compose(self) -> ComposeResult:
        yield Static(f"{self._label}: -", classes="graph-label")
        yield Sparkline([], summary_function=max)

    def update_view(self, view: StreamView) -> None:
        """Redraw from a stream view."""
        if not view.samples:
            text = f"{self._label}: no data"
        elif self._unit == "B/s":
            text = f"{self._label}: {format_bytes(view.latest)}/s"
        else:
            text = f"{self._label}: {view.latest:.1f}{self._unit}"
        scale = "auto" if view.y_range is None and view.y_scale <= 0 else f"{view.y_scale:g}"
        text += f"  {view.fps} fps, y {scale}"
        if view.paused:
            text += " (paused)"
        self.query_one(".graph-label", Static).update(text)
        samples = list(view.samples)
        # Pin the top of the graph to the y-scale when one is set.
        if view.y_scale > 0 and samples:
            samples = [min(s, view.y_scale) for s in samples]
        self.query_one(Sparkline).data = samples


USAGE_BAR_WIDTH = 10

RX_COLUMNS = (
    ("rx_bytes", "Bytes"),
    ("rx_packets", "Packets"),
    ("rx_errs", "Errs"),
    ("rx_drop", "Drop"),
    ("rx_fifo", "FIFO"),
    ("rx_frame", "Frame"),
    ("rx_compressed", "Compressed"),
    ("rx_multicast", "Multicast"),
)

TX_COLUMNS = (
    ("tx_bytes", "Bytes"),
    ("tx_packets", "Packets"),
    ("tx_errs", "Errs"),
    ("tx_drop", "Drop"),
    ("tx_fifo", "FIFO"),
    ("tx_colls", "Colls"),
    ("tx_carrier", "Carrier"),
    ("tx_compressed", "Compressed"),
)

OVERVIEW_COLUMNS = (
    ("iface", "Interface"),
    ("ipv4", "IPv4"),
    ("rx_rate", "RX/s"),
    ("tx_rate", "TX/s"),
    ("rx_usage", "RX usage"),
    ("tx_usage", "TX usage"),
)


def usage_bar(total_bytes: int) -> str:
    """Plain-text bar for a cumulative byte count against the 2 GB ceiling."""
    fraction = transfer_fraction(total_bytes)
    filled = int(fraction * USAGE_BAR_WIDTH)
    return "█" * filled + "░" * (USAGE_BAR_WIDTH - filled) + f" {fraction * 100:.0f}%"


class NetworkTable(Container):
    """Per-interface network counters and rates in three tabs."""

    DEFAULT_CSS = """
    NetworkTable {
        height: auto;
        max-height: 12;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._interfaces: set[str] = set()

    def compose(self) -> ComposeResult:
        with TabbedContent(id="network-tabs"):
            with TabPane("Overview", id="net-overview"):
                yield DataTable(id="network-table", show_cursor=False)
            with TabPane("Receive", id="net-rx"):
                yield DataTable(id="network-rx-table", show_cursor=False)
            with TabPane("Transmit", id="net-tx"):
                yield DataTable(id="network-tx-table", show_cursor=False)

    def on_mount(self) -> None:
        for table_id, columns in (
            ("network-table", OVERVIEW_COLUMNS),
            ("network-rx-table", (("iface", "Interface"),) + RX_COLUMNS),
            ("network-tx-table", (("iface", "Interface"),) + TX_COLUMNS),
        ):
            table = self.query_one(f"#{table_id}", DataTable)
            for key, label in columns:
                table.add_column(label, key=key)

    def update_interfaces(self, snapshot: SystemSnapshot) -> None:
        overview: dict[str, tuple[str, ...]] = {}
        received: dict[str, tuple[str, ...]] = {}
        sent: dict[str, tuple[str, ...]] = {}
        for iface in snapshot.network:
            rates = snapshot.network_rates.get(iface.name)
            overview[iface.name] = (
                iface.name,
                iface.ipv4 or "-",
                f"{format_bytes(rates.rx)}/s" if rates else "-",
                f"{format_bytes(rates.tx)}/s" if rates else "-",
                usage_bar(iface.rx_bytes),
                usage_bar(iface.tx_bytes),
            )
            received[iface.name] = (iface.name,) + self._counters(iface, RX_COLUMNS)
            sent[iface.name] = (iface.name,) + self._counters(iface, TX_COLUMNS)

        self._sync("network-table", [k for k, _ in OVERVIEW_COLUMNS], overview)
        self._sync("network-rx-table", ["iface"] + [k for k, _ in RX_COLUMNS], received)
        self._sync("network-tx-table", ["iface"] + [k for k, _ in TX_COLUMNS], sent)
        self._interfaces = set(overview)

    @staticmethod
    def _counters(iface: NetInterfaceSnapshot, columns) -> tuple[str, ...]:
        values = []
        for field, _ in columns:
            value = getattr(iface, field)
            values.append(format_bytes(value) if field.endswith("_bytes") else str(value))
        return tuple(values)

    def _sync(self, table_id: str, keys: list[str], rows: dict[str, tuple[str, ...]]) -> None:
        """Add, update in place and remove rows keyed by interface name."""
        table = self.query_one(f"#{table_id}", DataTable)
        for name in self._interfaces - rows.keys():
            table.remove_row(name)
        for name, row in rows.items():
            if name in self._interfaces:
                for key, value in zip(keys, row):
                    table.update_cell(name, key, value)
            else:
                table.add_row(*row, key=name)


class ProcessList(Container):
    """Container for the process data table."""

    DEFAULT_CSS = """
    ProcessList {
        height: 1fr;
        border: solid $primary;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ProcessList."""
        super().__init__(*args, **kwargs)
        self._current_pids: set[int] = set()
        self._sort_key: SortKey = SortKey.CPU
        self._sort_reverse: bool = True  # Default: descending for CPU

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        current_index = keys.index(self._sort_key)
        next_index = (current_index + 1) % len(keys)
        self._sort_key = keys[next_index]
        # Set sort order based on key
        self._sort_reverse = self._sort_key in (SortKey.CPU, SortKey.MEM)
        return self._sort_key

    def compose(self) -> ComposeResult:
        """Compose the process table."""
        yield DataTable(id="process-table", cursor_type="row")

    def on_mount(self) -> None:
        """Add the columns once mounted."""
        table = self.query_one("#process-table", DataTable)
        table.add_column(" ", key="sel", width=1)
        table.add_column("PID", key="pid", width=8)
        table.add_column("Name", key="name", width=24)
        table.add_column("S", key="state", width=3)
        table.add_column("CPU%", key="cpu", width=8)
        table.add_column("MEM%", key="mem", width=8)

    def update_processes(self, processes: list[ProcessRecord], selection: frozenset[int]) -> None:
        """
        Update the process table with new data.

        Rows are rebuilt in sorted order whenever the set of pids changes;
        otherwise cells are updated in place.
        """
        table = self.query_one("#process-table", DataTable)
        sorted_processes = self._sort_processes(processes)
        new_pids = [proc.pid for proc in sorted_processes]

        if set(new_pids) != self._current_pids:
            table.clear()
            for proc in sorted_processes:
                table.add_row(*self._row(proc, selection), key=str(proc.pid))
        else:
            for proc in sorted_processes:
                for key, value in zip(("sel", "pid", "name", "state", "cpu", "mem"), self._row(proc, selection)):
                    table.update_cell(str(proc.pid), key, value)

        self._current_pids = set(new_pids)

    def _sort_processes(self, processes: list[ProcessRecord]) -> list[ProcessRecord]:
        """Sort processes based on the current sort key."""
        return sort_records(processes, self._sort_key, self._sort_reverse)

    @staticmethod
    def _row(proc: ProcessRecord, selection: frozenset[int]) -> tuple[str, ...]:
        return (
            "*" if proc.pid in selection else "",
            str(proc.pid),
            proc.name[:24],
            proc.state.letter,
            f"{proc.cpu_percent:.2f}%",
            f"{proc.mem_percent:.2f}%",
        )


class HostdashApp(App):
    """Main hostdash application."""

    TITLE = "hostdash"
    SUB_TITLE = "Live host resource dashboard"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
    }

    #graphs {
        height: auto;
    }

    #process-filter {
        display: none;
    }

    #process-filter.visible {
        display: block;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("p", "pause", "Pause"),
        ("f6", "sort", "Sort"),
        ("slash", "search", "Filter"),
        ("escape", "clear_filter", "Clear filter"),
        ("g", "next_graph", "Next graph"),
        ("space", "toggle_graph_pause", "Pause graph"),
        ("plus", "y_scale_up", "Y+"),
        ("minus", "y_scale_down", "Y-"),
        ("right_square_bracket", "fps_up", "FPS+"),
        ("left_square_bracket", "fps_down", "FPS-"),
    ]

    # Y-scale keys move a twentieth of the stream's range per press.
    Y_SCALE_STEPS = 20
    FPS_STEP = 10

    GRAPHS = (
        ("cpu", "CPU", "%"),
        ("memory", "Memory", "%"),
        ("swap", "Swap", "%"),
        ("thermal", "Temperature", " °C"),
        ("fan", "Fan", " RPM"),
        ("net_rx", "RX", "B/s"),
        ("net_tx", "TX", "B/s"),
    )

    def __init__(
        self,
        config: MonitorConfig | None = None,
        source: CounterSource | None = None,
    ) -> None:
        """Initialize the HostdashApp."""
        super().__init__()
        self._config = config or MonitorConfig()
        self._update_queue: Queue[SystemSnapshot] = Queue()
        self._monitor = SystemMonitor(self._update_queue, config=self._config, source=source)
        self._graph_index = 0

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield HeaderStats(id="header-stats")
        with Horizontal(id="graphs"):
            for stream, label, unit in self.GRAPHS:
                yield MetricGraph(stream, label, unit, id=f"graph-{stream}")
        yield NetworkTable()
        yield Input(placeholder="Filter by name or PID", id="process-filter")
        yield ProcessList()
        yield Footer()

    def on_mount(self) -> None:
        """Start the system monitor when the app is mounted."""
        self.query(MetricGraph).first().add_class("selected")
        self._monitor.start()
        # Set up a timer to poll the queue for updates
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Check the queue for system updates and refresh the UI."""
        # Drain the queue to get the most recent snapshot
        snapshot = None
        while True:
            try:
                snapshot = self._update_queue.get_nowait()
            except Empty:
                break

        if snapshot is not None:
            self._update_ui(snapshot)

    def _update_ui(self, snapshot: SystemSnapshot) -> None:
        """Update the UI with the new system snapshot."""
        self.query_one("#header-stats", HeaderStats).update_stats(snapshot)
        for graph in self.query(MetricGraph):
            view = snapshot.history.get(graph.stream)
            if view is not None:
                graph.update_view(view)
        self.query_one(NetworkTable).update_interfaces(snapshot)
        self.query_one(ProcessList).update_processes(snapshot.processes, snapshot.selection)

    def _refresh_from_monitor(self) -> None:
        """Redraw from the monitor's current state without waiting for a poll."""
        snapshot = self._monitor.view()
        if snapshot is not None:
            self._update_ui(snapshot)

    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        """Toggle selection of the chosen process row."""
        if event.data_table.id != "process-table" or event.row_key.value is None:
            return
        self._monitor.toggle_selection(int(event.row_key.value))
        self._refresh_from_monitor()

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id == "process-filter":
            self._monitor.set_filter(event.value)
            self._refresh_from_monitor()

    def action_pause(self) -> None:
        """Pause or resume every graph and the process table."""
        paused = self._monitor.toggle_pause()
        self.notify("Paused" if paused else "Resumed")
        self._refresh_from_monitor()

    def action_sort(self) -> None:
        """Handle sort action - cycle through sort keys."""
        process_list = self.query_one(ProcessList)
        new_sort_key = process_list.cycle_sort()
        self.notify(f"Sort: {new_sort_key.value.upper()}")
        self._refresh_from_monitor()

    def action_search(self) -> None:
        """Show and focus the process filter."""
        filter_input = self.query_one("#process-filter", Input)
        filter_input.add_class("visible")
        filter_input.focus()

    def action_clear_filter(self) -> None:
        filter_input = self.query_one("#process-filter", Input)
        filter_input.value = ""
        filter_input.remove_class("visible")
        self._monitor.set_filter("")
        self._refresh_from_monitor()

    # Graph controls

    @property
    def selected_stream(self) -> str:
        """Stream of the graph the pause, y-scale and fps keys act on."""
        return self.GRAPHS[self._graph_index][0]

    def action_next_graph(self) -> None:
        graphs = list(self.query(MetricGraph))
        graphs[self._graph_index].remove_class("selected")
        self._graph_index = (self._graph_index + 1) % len(graphs)
        graphs[self._graph_index].add_class("selected")
        self.notify(f"Graph: {self.GRAPHS[self._graph_index][1]}")

    def action_toggle_graph_pause(self) -> None:
        paused = self._monitor.toggle_stream_pause(self.selected_stream)
        self.notify(f"{self.selected_stream}: {'paused' if paused else 'resumed'}")
        self._refresh_from_monitor()

    def action_y_scale_up(self) -> None:
        self._step_y_scale(1)

    def action_y_scale_down(self) -> None:
        self._step_y_scale(-1)

    def _step_y_scale(self, direction: int) -> None:
        stream = self.selected_stream
        view = self._monitor.stream_view(stream)
        if view.y_range is None:
            self.notify(f"{stream}: y-scale follows the data")
            return
        low, high = view.y_range
        step = (high - low) / self.Y_SCALE_STEPS
        self._monitor.set_stream_y_scale(stream, view.y_scale + direction * step)
        self._refresh_from_monitor()

    def action_fps_up(self) -> None:
        self._step_fps(1)

    def action_fps_down(self) -> None:
        self._step_fps(-1)

    def _step_fps(self, direction: int) -> None:
        stream = self.selected_stream
        view = self._monitor.stream_view(stream)
        self._monitor.set_stream_fps(stream, view.fps + direction * self.FPS_STEP)
        self._refresh_from_monitor()

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._monitor.stop()
        self.exit()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="hostdash", description="Live host resource dashboard.")
    parser.add_argument("--poll-rate", type=float, help="seconds between polls (default 2.0)")
    parser.add_argument("--history-size", type=int, help="samples kept per graph (default 100)")
    parser.add_argument("--disk-path", help="filesystem shown in the disk line (default /)")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--log-file", help="write logs to this file instead of stderr")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Entry point for hostdash application."""
    args = parse_args(argv)
    config = MonitorConfig.from_env().with_overrides(
        poll_rate=args.poll_rate,
        history_size=args.history_size,
        disk_path=args.disk_path,
        log_level=args.log_level.upper() if args.log_level else None,
        log_file=args.log_file,
    )
    configure_logging(config.log_level, config.log_file)
    log.info("starting", poll_rate=config.poll_rate, history_size=config.history_size)
    app = HostdashApp(config)
    app.run()


if __name__ == "__main__":
    main()
