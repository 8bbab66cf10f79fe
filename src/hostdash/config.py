"""Runtime configuration for hostdash."""

import os
from dataclasses import dataclass, replace

import structlog

log = structlog.get_logger()

MIN_POLL_RATE = 0.1


@dataclass(slots=True, frozen=True)
class MonitorConfig:
    """Settings shared by the monitor and the UI."""

    poll_rate: float = 2.0  # seconds between polls
    history_size: int = 100  # samples kept per graph
    process_min_interval: float = 0.5  # seconds between process CPU recomputations
    disk_path: str = "/"
    log_level: str = "WARNING"
    log_file: str | None = None

    def __post_init__(self) -> None:
        if self.poll_rate < MIN_POLL_RATE:
            object.__setattr__(self, "poll_rate", MIN_POLL_RATE)
        if self.history_size < 1:
            raise ValueError(f"history_size must be positive, got {self.history_size}")

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "MonitorConfig":
        """Build a config from HOSTDASH_* environment variables."""
        env = os.environ if environ is None else environ
        config = cls()
        overrides: dict[str, object] = {}
        for name, key, parse in (
            ("HOSTDASH_POLL_RATE", "poll_rate", float),
            ("HOSTDASH_HISTORY_SIZE", "history_size", int),
        ):
            if name not in env:
                continue
            try:
                value = parse(env[name])
            except ValueError:
                value = None
            if value is None or (key == "history_size" and value < 1):
                log.warning("invalid_environment_value", variable=name, value=env[name])
                continue
            overrides[key] = value
        if "HOSTDASH_DISK_PATH" in env:
            overrides["disk_path"] = env["HOSTDASH_DISK_PATH"]
        if "HOSTDASH_LOG_LEVEL" in env:
            overrides["log_level"] = env["HOSTDASH_LOG_LEVEL"].upper()
        if "HOSTDASH_LOG_FILE" in env:
            overrides["log_file"] = env["HOSTDASH_LOG_FILE"]
        return replace(config, **overrides)

    def with_overrides(self, **overrides: object) -> "MonitorConfig":
        """Copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
