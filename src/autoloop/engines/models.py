"""Value types shared by engine adapters and their callers."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

ProgressCallback = Callable[[str], None]


class EngineErrorKind(str, Enum):
    """Normalized failure classes reported on `AIResult.error_kind`."""

    STRUCTURED = "structured"
    AUTHENTICATION = "authentication"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    TOOL_ERROR = "tool_error"
    PROCESS_EXIT = "process_exit"
    SPAWN_FAILED = "spawn_failed"


@dataclass(frozen=True, slots=True)
class EngineOptions:
    """Per-call overrides; `None`/empty means the adapter default."""

    model_override: str | None = None
    engine_args: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class AIResult:
    """Outcome of one engine invocation."""

    success: bool
    response: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost: str | None = None
    duration_ms: int = 0
    error: str | None = None
    error_kind: EngineErrorKind | None = None


@dataclass(frozen=True, slots=True)
class EngineError:
    """Classified failure detected in tool output."""

    kind: EngineErrorKind
    message: str


@dataclass(frozen=True, slots=True)
class UsageReport:
    """Token and cost accounting parsed from tool output."""

    input_tokens: int = 0
    output_tokens: int = 0
    cost: str | None = None
