"""Pause state, per-stream graph controls and recomputation gating."""

from dataclasses import dataclass, field

import structlog

from hostdash.history import HistoryBuffer

log = structlog.get_logger()

# Process CPU percentages are never recomputed faster than this.
PROCESS_MIN_INTERVAL = 0.5


class IntervalGate:
    """Allows an action at most once per ``min_interval`` seconds."""

    def __init__(self, min_interval: float = PROCESS_MIN_INTERVAL) -> None:
        self._min_interval = min_interval
        self._last: float | None = None

    @property
    def min_interval(self) -> float:
        return self._min_interval

    @property
    def last_fired(self) -> float | None:
        """Time of the last successful run, None before the first."""
        return self._last

    def ready(self, now: float) -> bool:
        """True when enough time has passed since the last run."""
        return self._last is None or now - self._last >= self._min_interval

    def mark(self, now: float) -> None:
        """Record a successful run at ``now``."""
        self._last = now

    def reset(self) -> None:
        self._last = None


@dataclass(slots=True)
class MetricStream:
    """
    History and display controls for one graphed metric.

    ``fps`` and ``y_scale`` are display intent only. The renderer reads them;
    sampling ignores them.
    """

    name: str
    buffer: HistoryBuffer
    fps: int = 60
    y_scale: float = 100.0
    y_range: tuple[float, float] | None = None  # None: the graph scales itself
    paused: bool = False


@dataclass(slots=True, frozen=True)
class StreamView:
    """Read-only copy of a stream handed to the renderer."""

    name: str
    samples: tuple[float, ...]
    latest: float
    fps: int
    y_scale: float
    y_range: tuple[float, float] | None
    paused: bool


MIN_FPS = 1
MAX_FPS = 144

# Initial y-scale and its adjustable range per stream. A zero scale with no
# range means the graph follows its own maximum.
DEFAULT_STREAMS: dict[str, tuple[float, tuple[float, float] | None]] = {
    "cpu": (100.0, (10.0, 200.0)),
    "memory": (100.0, (10.0, 200.0)),
    "swap": (100.0, (10.0, 200.0)),
    "thermal": (100.0, (30.0, 120.0)),
    "fan": (8000.0, (100.0, 16000.0)),
    "net_rx": (0.0, None),
    "net_tx": (0.0, None),
}


@dataclass
class SamplingScheduler:
    """
    Shared timing state for every graphed metric.

    When paused, no stream accepts samples and the process table is not
    updated. The process gate applies regardless of the refresh rate.
    """

    history_size: int = 100
    process_min_interval: float = PROCESS_MIN_INTERVAL
    paused: bool = False
    streams: dict[str, MetricStream] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.process_gate = IntervalGate(self.process_min_interval)
        for name, (y_scale, y_range) in DEFAULT_STREAMS.items():
            if name not in self.streams:
                self.register(name, y_scale=y_scale, y_range=y_range)

    def register(
        self,
        name: str,
        fps: int = 60,
        y_scale: float = 100.0,
        y_range: tuple[float, float] | None = None,
    ) -> MetricStream:
        """Create a stream, or return the existing one with that name."""
        if name in self.streams:
            return self.streams[name]
        stream = MetricStream(
            name=name,
            buffer=HistoryBuffer(self.history_size),
            fps=fps,
            y_scale=y_scale,
            y_range=y_range,
        )
        stream.buffer.paused = self.paused
        self.streams[name] = stream
        return stream

    def stream(self, name: str) -> MetricStream:
        return self.streams[name]

    def record(self, name: str, value: float) -> None:
        """Push a sample into a stream's history, honoring pause."""
        self.streams[name].buffer.push(value)

    def pause(self) -> None:
        self._set_paused(True)

    def resume(self) -> None:
        self._set_paused(False)

    def toggle_pause(self) -> bool:
        """Flip the global pause flag and return the new value."""
        self._set_paused(not self.paused)
        return self.paused

    def set_stream_paused(self, name: str, paused: bool) -> None:
        """Pause or resume a single stream independently of the others."""
        stream = self.streams[name]
        stream.paused = paused
        stream.buffer.paused = self.paused or paused

    def set_fps(self, name: str, fps: int) -> None:
        self.streams[name].fps = max(MIN_FPS, min(int(fps), MAX_FPS))

    def set_y_scale(self, name: str, y_scale: float) -> None:
        """Set the top of a graph, clamped to the stream's range."""
        stream = self.streams[name]
        if stream.y_range is None:
            stream.y_scale = max(float(y_scale), 0.0)
            return
        low, high = stream.y_range
        stream.y_scale = max(low, min(float(y_scale), high))

    def view(self, name: str) -> StreamView:
        stream = self.streams[name]
        return StreamView(
            name=name,
            samples=tuple(stream.buffer.snapshot()),
            latest=stream.buffer.latest(),
            fps=stream.fps,
            y_scale=stream.y_scale,
            y_range=stream.y_range,
            paused=self.paused or stream.paused,
        )

    def views(self) -> dict[str, StreamView]:
        return {name: self.view(name) for name in self.streams}

    def _set_paused(self, paused: bool) -> None:
        self.paused = paused
        for stream in self.streams.values():
            stream.buffer.paused = paused or stream.paused
        log.debug("sampling_paused" if paused else "sampling_resumed")
