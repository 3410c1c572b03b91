"""OpenAI Codex CLI adapter."""

from __future__ import annotations

import re

from autoloop.engines.base import BaseEngine
from autoloop.engines.detection import TextErrorRules
from autoloop.engines.models import EngineOptions, UsageReport
from autoloop.engines.usage import extract_token_usage

_TIMESTAMP_PREFIX = re.compile(r"^\[\d{4}-\d{2}-\d{2}T[^\]]*\]")
_NOISE_PREFIXES: tuple[str, ...] = (
    "workdir:",
    "model:",
    "provider:",
    "approval:",
    "sandbox:",
    "reasoning effort:",
    "reasoning summaries:",
    "session id:",
    "--------",
    "tokens used",
    "thinking",
    "OpenAI Codex",
)
_COUNTER_LINE = re.compile(r"^[\d,]+$")


class CodexEngine(BaseEngine):
    """Runs `codex exec`; the prompt is positional, not `-p` (that flag selects a profile)."""

    name = "Codex"
    cli_command = "codex"
    error_rules = TextErrorRules(
        authentication_patterns=("not logged in", "invalid api key", "401 unauthorized"),
        authentication_message="Codex CLI is not authenticated. Run 'codex login'.",
        rate_limit_patterns=("rate limit", "too many requests", "usage limit"),
        rate_limit_message="Codex rate limit exceeded. Please wait and try again.",
        network_patterns=("network error", "connection refused", "stream disconnected"),
        network_message="Network error connecting to Codex. Check your internet connection.",
        generic_error_message="Codex CLI returned an error",
    )

    def build_args(self, prompt: str, options: EngineOptions, *, streaming: bool) -> list[str]:
        args = ["exec", "--full-auto"]
        if options.model_override:
            args.extend(["--model", options.model_override])
        args.extend(options.engine_args)
        args.extend(["--", prompt])
        return args

    def is_noise_line(self, line: str) -> bool:
        if _COUNTER_LINE.match(line):
            return True
        text = _TIMESTAMP_PREFIX.sub("", line).strip()
        if not text:
            return True
        return text.startswith(_NOISE_PREFIXES) or text in {"codex", "exec", "user"}

    def extract_usage(self, output: str) -> UsageReport:
        usage = extract_token_usage(output)
        return UsageReport(input_tokens=usage.input_tokens, output_tokens=usage.output_tokens)
