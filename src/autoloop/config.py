"""Runtime configuration for the task loop."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from autoloop.engines.registry import SUPPORTED_ENGINES

TELEMETRY_LEVELS = ("anonymous", "full")


@dataclass(slots=True)
class EngineSettings:
    """Which CLI agent to run and how."""

    name: str = "claude"
    model: str | None = None
    extra_args: tuple[str, ...] = ()
    streaming: bool = True


@dataclass(slots=True)
class TaskSettings:
    """Task file and write-batching settings."""

    task_file: Path = Path("PRD.md")
    flush_interval_seconds: float = 1.0
    shutdown_budget_seconds: float = 5.0


@dataclass(slots=True)
class LoopSettings:
    """Iteration and retry limits."""

    max_iterations: int = 0
    max_retries: int = 3
    retry_delay_seconds: float = 5.0


@dataclass(slots=True)
class TelemetrySettings:
    """Optional session webhook."""

    webhook_url: str = ""
    level: str = "anonymous"
    timeout_seconds: float = 10.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    engine: EngineSettings = field(default_factory=EngineSettings)
    tasks: TaskSettings = field(default_factory=TaskSettings)
    loop: LoopSettings = field(default_factory=LoopSettings)
    telemetry: TelemetrySettings = field(default_factory=TelemetrySettings)
    sync_issue: int | None = None

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from `AUTOLOOP_*` environment variables."""

        return cls(
            engine=EngineSettings(
                name=os.getenv("AUTOLOOP_ENGINE", "claude").strip().lower(),
                model=os.getenv("AUTOLOOP_MODEL", "").strip() or None,
                extra_args=tuple(shlex.split(os.getenv("AUTOLOOP_ENGINE_ARGS", ""))),
                streaming=_env_bool("AUTOLOOP_STREAMING", default=True),
            ),
            tasks=TaskSettings(
                task_file=Path(os.getenv("AUTOLOOP_TASK_FILE", "PRD.md")),
                flush_interval_seconds=_env_float("AUTOLOOP_FLUSH_INTERVAL_SECONDS", 1.0),
                shutdown_budget_seconds=_env_float("AUTOLOOP_SHUTDOWN_BUDGET_SECONDS", 5.0),
            ),
            loop=LoopSettings(
                max_iterations=_env_int("AUTOLOOP_MAX_ITERATIONS", 0),
                max_retries=_env_int("AUTOLOOP_MAX_RETRIES", 3),
                retry_delay_seconds=_env_float("AUTOLOOP_RETRY_DELAY_SECONDS", 5.0),
            ),
            telemetry=TelemetrySettings(
                webhook_url=os.getenv("AUTOLOOP_TELEMETRY_WEBHOOK_URL", "").strip(),
                level=os.getenv("AUTOLOOP_TELEMETRY_LEVEL", "anonymous").strip().lower(),
                timeout_seconds=_env_float("AUTOLOOP_TELEMETRY_TIMEOUT_SECONDS", 10.0),
            ),
            sync_issue=_env_optional_int("AUTOLOOP_SYNC_ISSUE"),
        )

    def validate(self) -> None:
        """Raise `ValueError` describing the first invalid setting."""

        if self.engine.name not in SUPPORTED_ENGINES:
            raise ValueError(
                f"Unsupported AUTOLOOP_ENGINE {self.engine.name!r}. "
                f"Expected one of: {', '.join(SUPPORTED_ENGINES)}.",
            )
        if self.tasks.flush_interval_seconds < 0:
            raise ValueError("AUTOLOOP_FLUSH_INTERVAL_SECONDS must be >= 0.")
        if self.tasks.shutdown_budget_seconds < 0:
            raise ValueError("AUTOLOOP_SHUTDOWN_BUDGET_SECONDS must be >= 0.")
        if self.loop.max_iterations < 0:
            raise ValueError("AUTOLOOP_MAX_ITERATIONS must be >= 0.")
        if self.loop.max_retries < 0:
            raise ValueError("AUTOLOOP_MAX_RETRIES must be >= 0.")
        if self.loop.retry_delay_seconds < 0:
            raise ValueError("AUTOLOOP_RETRY_DELAY_SECONDS must be >= 0.")
        if self.telemetry.level not in TELEMETRY_LEVELS:
            raise ValueError(
                f"Invalid AUTOLOOP_TELEMETRY_LEVEL {self.telemetry.level!r}. "
                f"Expected one of: {', '.join(TELEMETRY_LEVELS)}.",
            )
        if self.telemetry.timeout_seconds <= 0:
            raise ValueError("AUTOLOOP_TELEMETRY_TIMEOUT_SECONDS must be > 0.")
        if self.sync_issue is not None and self.sync_issue <= 0:
            raise ValueError("AUTOLOOP_SYNC_ISSUE must be a positive issue number.")


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


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_optional_int(name: str) -> int | None:
    value = os.getenv(name, "").strip()
    if not value:
        return None
    return _env_int(name, 0)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from error
