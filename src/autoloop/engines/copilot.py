"""GitHub Copilot CLI adapter."""

from __future__ import annotations

from autoloop.engines.base import BaseEngine
from autoloop.engines.detection import TextErrorRules
from autoloop.engines.models import EngineOptions

# Matches current Copilot CLI chatter; revisit when its output format changes.
_NOISE_PREFIXES: tuple[str, ...] = ("?", "❯")
_NOISE_FRAGMENTS: tuple[str, ...] = ("Thinking...", "Working on it...")


class CopilotEngine(BaseEngine):
    """Runs `copilot` in non-interactive mode.

    Copilot prints plain-text errors, sometimes with exit code 0, and does not
    report token usage in programmatic mode.
    """

    name = "GitHub Copilot"
    cli_command = "copilot"
    error_rules = TextErrorRules(
        authentication_patterns=("no authentication", "not authenticated"),
        authentication_message=(
            "GitHub Copilot CLI is not authenticated. Run 'copilot' and use '/login' "
            "to authenticate, or set COPILOT_GITHUB_TOKEN environment variable."
        ),
        rate_limit_patterns=("rate limit", "too many requests"),
        rate_limit_message="GitHub Copilot rate limit exceeded. Please wait and try again.",
        network_patterns=("network error", "connection refused"),
        network_message=(
            "Network error connecting to GitHub Copilot. Check your internet connection."
        ),
        generic_error_message="GitHub Copilot CLI returned an error",
    )

    def build_args(self, prompt: str, options: EngineOptions, *, streaming: bool) -> list[str]:
        # `--stream=on` uses `=` so the value is never split off as a separate argument.
        args = ["--yolo", "--stream=on", "-p", prompt]
        if options.model_override:
            args.extend(["--model", options.model_override])
        args.extend(options.engine_args)
        return args

    def is_noise_line(self, line: str) -> bool:
        if line.startswith(_NOISE_PREFIXES):
            return True
        return any(fragment in line for fragment in _NOISE_FRAGMENTS)
