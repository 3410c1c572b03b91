"""Engine lookup by CLI-facing name."""

from __future__ import annotations

from collections.abc import Sequence

from autoloop.engines.base import BaseEngine
from autoloop.engines.claude import ClaudeEngine
from autoloop.engines.codex import CodexEngine
from autoloop.engines.copilot import CopilotEngine
from autoloop.engines.gemini import GeminiEngine

ENGINE_CLASSES: dict[str, type[BaseEngine]] = {
    "claude": ClaudeEngine,
    "codex": CodexEngine,
    "copilot": CopilotEngine,
    "gemini": GeminiEngine,
}
SUPPORTED_ENGINES = tuple(sorted(ENGINE_CLASSES))


def create_engine(name: str, *, command: Sequence[str] | None = None) -> BaseEngine:
    """Instantiate the adapter registered under `name`."""

    normalized = name.strip().lower()
    try:
        engine_class = ENGINE_CLASSES[normalized]
    except KeyError as error:
        raise ValueError(
            f"Unsupported engine {name!r}. Expected one of: {', '.join(SUPPORTED_ENGINES)}",
        ) from error
    return engine_class(command=command)
