"""Derived metrics computed from pairs of cumulative counter readings.

Every function here is pure. Ratios are guarded so that a zero or negative
denominator resolves to 0.0 (or the UNKNOWN sentinel where the platform gave
nothing to divide by), never to inf or NaN.
"""

from dataclasses import dataclass

from hostdash.models import UNKNOWN

BYTE_UNITS = ("B", "KB", "MB", "GB")

# Cumulative transfer that fills a usage bar.
TRANSFER_CEILING = 2 * 1024**3


def system_cpu_percent(
    prev_idle: float,
    prev_total: float,
    curr_idle: float,
    curr_total: float,
) -> float:
    """
    Busy share of all CPU time between two readings, in percent.

    Not clamped: skew between the idle and total reads can push the value
    slightly outside [0, 100].
    """
    delta_total = curr_total - prev_total
    delta_idle = curr_idle - prev_idle
    if delta_total <= 0:
        return 0.0
    return 100.0 * (delta_total - delta_idle) / delta_total


def memory_used_percent(total_kb: int, available_kb: int) -> float:
    """Used physical memory in percent, or UNKNOWN when no total is reported."""
    if total_kb <= 0:
        return UNKNOWN
    used = total_kb - available_kb
    return 100.0 * used / total_kb


def swap_used_percent(total_kb: int | None, free_kb: int) -> float:
    """Used swap in percent, or UNKNOWN when the total is zero or unknown."""
    if not total_kb or total_kb <= 0:
        return UNKNOWN
    return 100.0 * (total_kb - free_kb) / total_kb


@dataclass(slots=True, frozen=True)
class SwapUsage:
    """Swap usage; ``percent`` is None whenever the total is not known."""

    used_kb: int
    total_kb: int | None
    percent: float | None

    @property
    def total_known(self) -> bool:
        return self.total_kb is not None and self.total_kb > 0


def swap_usage(
    total_kb: int | None,
    free_kb: int | None = None,
    used_kb: int | None = None,
) -> SwapUsage:
    """
    Build a SwapUsage from whichever counters the platform reports.

    Args:
        total_kb: Swap size, None or 0 when the platform cannot report it.
        free_kb: Free swap, used when the total is known.
        used_kb: Used swap, for platforms that only report paged-out bytes.
    """
    if used_kb is None:
        if total_kb and free_kb is not None:
            used_kb = max(total_kb - free_kb, 0)
        else:
            used_kb = 0

    if not total_kb or total_kb <= 0:
        return SwapUsage(used_kb=used_kb, total_kb=None, percent=None)

    return SwapUsage(
        used_kb=used_kb,
        total_kb=total_kb,
        percent=100.0 * used_kb / total_kb,
    )


def disk_used_percent(used: int, available: int) -> float:
    """Used share of the space visible to unprivileged users, in percent."""
    visible = used + available
    if visible <= 0:
        return 0.0
    return 100.0 * used / visible


def humanize_bytes(size: float) -> tuple[float, str]:
    """
    Scale a byte count to the largest unit that keeps it at or above 1.

    GB is the top unit and has no upper bound.
    """
    value = float(size)
    for unit in BYTE_UNITS[:-1]:
        if value < 1024:
            return value, unit
        value /= 1024
    return value, BYTE_UNITS[-1]


def format_bytes(size: float) -> str:
    """Format a byte count as e.g. '1.50 KB'."""
    value, unit = humanize_bytes(size)
    return f"{value:.2f} {unit}"


def byte_rate(prev_bytes: int, curr_bytes: int, elapsed: float) -> float:
    """Bytes per second between two cumulative readings."""
    if elapsed <= 0 or curr_bytes < prev_bytes:
        return 0.0
    return (curr_bytes - prev_bytes) / elapsed


def transfer_fraction(total_bytes: int, ceiling: int = TRANSFER_CEILING) -> float:
    """Fraction of ``ceiling`` consumed, clamped to [0, 1] for usage bars."""
    if ceiling <= 0:
        return 0.0
    return min(max(total_bytes / ceiling, 0.0), 1.0)
