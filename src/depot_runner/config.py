"""Runtime configuration for worker supervision."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass

# Variables the supervisor sets in the worker environment.
ENGINE_ENV = "DEPOT_RUNNER_ENGINE"
PARENT_POLL_ENV = "DEPOT_RUNNER_PARENT_POLL_SECONDS"
DEFAULT_MAX_DOWNLOADS_ENV = "DEPOT_RUNNER_DEFAULT_MAX_DOWNLOADS"

_LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"})


@dataclass(slots=True)
class RunnerSettings:
    """Settings for spawning and supervising worker processes."""

    python_executable: str = sys.executable
    # package.module:factory resolved inside the worker
    engine_factory: str | None = None
    kill_grace_seconds: float = 5.0
    drain_grace_seconds: float = 2.0
    exit_poll_seconds: float = 0.05
    parent_poll_seconds: float = 0.5
    stream_limit_bytes: int = 1 << 20
    default_max_downloads: int = 8
    diagnostic_tail_lines: int = 20
    inherit_environment: bool = True
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, engine_factory: str | None = None) -> RunnerSettings:
        """Load settings from ``DEPOT_RUNNER_*`` environment variables."""

        return cls(
            python_executable=os.getenv("DEPOT_RUNNER_PYTHON", sys.executable),
            engine_factory=engine_factory or os.getenv("DEPOT_RUNNER_ENGINE") or None,
            kill_grace_seconds=float(os.getenv("DEPOT_RUNNER_KILL_GRACE_SECONDS", "5.0")),
            drain_grace_seconds=float(os.getenv("DEPOT_RUNNER_DRAIN_GRACE_SECONDS", "2.0")),
            exit_poll_seconds=float(os.getenv("DEPOT_RUNNER_EXIT_POLL_SECONDS", "0.05")),
            parent_poll_seconds=float(os.getenv("DEPOT_RUNNER_PARENT_POLL_SECONDS", "0.5")),
            stream_limit_bytes=int(os.getenv("DEPOT_RUNNER_STREAM_LIMIT_BYTES", str(1 << 20))),
            default_max_downloads=int(os.getenv("DEPOT_RUNNER_DEFAULT_MAX_DOWNLOADS", "8")),
            diagnostic_tail_lines=int(os.getenv("DEPOT_RUNNER_DIAGNOSTIC_TAIL_LINES", "20")),
            inherit_environment=_env_bool("DEPOT_RUNNER_INHERIT_ENVIRONMENT", default=True),
            log_level=os.getenv("DEPOT_RUNNER_LOG_LEVEL", "WARNING").strip().upper(),
        )

    def validate(self) -> None:
        """Raise ``ValueError`` if any setting is out of range."""

        if not self.python_executable.strip():
            raise ValueError("DEPOT_RUNNER_PYTHON must not be empty.")
        if self.engine_factory is not None and ":" not in self.engine_factory:
            raise ValueError(
                "DEPOT_RUNNER_ENGINE must look like 'package.module:factory', "
                f"got {self.engine_factory!r}.",
            )
        if self.kill_grace_seconds <= 0:
            raise ValueError("DEPOT_RUNNER_KILL_GRACE_SECONDS must be > 0.")
        if self.drain_grace_seconds < 0:
            raise ValueError("DEPOT_RUNNER_DRAIN_GRACE_SECONDS must be >= 0.")
        if self.exit_poll_seconds <= 0:
            raise ValueError("DEPOT_RUNNER_EXIT_POLL_SECONDS must be > 0.")
        if self.parent_poll_seconds <= 0:
            raise ValueError("DEPOT_RUNNER_PARENT_POLL_SECONDS must be > 0.")
        if self.stream_limit_bytes < 1024:  # noqa: PLR2004
            raise ValueError("DEPOT_RUNNER_STREAM_LIMIT_BYTES must be >= 1024.")
        if self.default_max_downloads <= 0:
            raise ValueError("DEPOT_RUNNER_DEFAULT_MAX_DOWNLOADS must be a positive integer.")
        if self.diagnostic_tail_lines < 0:
            raise ValueError("DEPOT_RUNNER_DIAGNOSTIC_TAIL_LINES must be >= 0.")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"Invalid DEPOT_RUNNER_LOG_LEVEL: {self.log_level!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
