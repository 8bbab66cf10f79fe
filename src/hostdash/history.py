"""Bounded history series feeding the graphs."""

from collections import deque


class HistoryBuffer:
    """
    Fixed-capacity FIFO of samples for one metric stream.

    Samples are kept oldest to newest. While paused, pushes are dropped but
    stored samples stay readable.
    """

    def __init__(self, max_samples: int = 100) -> None:
        if max_samples < 1:
            raise ValueError(f"max_samples must be positive, got {max_samples}")
        self._samples: deque[float] = deque(maxlen=max_samples)
        self._paused = False

    def __len__(self) -> int:
        return len(self._samples)

    @property
    def capacity(self) -> int:
        """Maximum number of samples kept."""
        return self._samples.maxlen or 0

    @property
    def paused(self) -> bool:
        return self._paused

    @paused.setter
    def paused(self, value: bool) -> None:
        self._paused = bool(value)

    def push(self, value: float) -> None:
        """Append a sample, evicting the oldest one at capacity."""
        if self._paused:
            return
        self._samples.append(float(value))

    def snapshot(self) -> list[float]:
        """Copy of the samples, oldest first."""
        return list(self._samples)

    def latest(self) -> float:
        """Most recent sample, or 0.0 when empty."""
        return self._samples[-1] if self._samples else 0.0

    def clear(self) -> None:
        self._samples.clear()
