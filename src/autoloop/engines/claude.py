"""Claude Code CLI adapter (stream-json output)."""

from __future__ import annotations

from autoloop.engines.base import DEFAULT_RESPONSE, BaseEngine
from autoloop.engines.detection import (
    TextErrorRules,
    detect_text_error,
    iter_json_objects,
    non_json_text,
)
from autoloop.engines.models import EngineError, EngineErrorKind, EngineOptions, UsageReport


class ClaudeEngine(BaseEngine):
    """Runs `claude -p` with newline-delimited JSON events.

    The final `{"type": "result"}` event carries the answer, token usage and
    cost; everything before it is tool traffic used for step detection.
    """

    name = "Claude Code"
    cli_command = "claude"
    error_rules = TextErrorRules(
        authentication_patterns=("invalid api key", "please run /login", "not authenticated"),
        authentication_message=(
            "Claude Code is not authenticated. Run 'claude' and use '/login', "
            "or set ANTHROPIC_API_KEY."
        ),
        rate_limit_patterns=("rate limit", "usage limit", "too many requests", "overloaded"),
        rate_limit_message="Claude rate or usage limit reached. Please wait and try again.",
        network_patterns=("network error", "connection refused", "econnrefused"),
        network_message="Network error connecting to Claude. Check your internet connection.",
        generic_error_message="Claude Code returned an error",
    )

    def build_args(self, prompt: str, options: EngineOptions, *, streaming: bool) -> list[str]:
        args = [
            "--dangerously-skip-permissions",
            "--verbose",
            "--output-format",
            "stream-json",
            "-p",
            prompt,
        ]
        if options.model_override:
            args.extend(["--model", options.model_override])
        args.extend(options.engine_args)
        return args

    def check_tool_errors(self, output: str) -> EngineError | None:
        result = _result_event(output)
        if result is not None and result.get("is_error"):
            message = str(result.get("result") or "").strip()
            classified = detect_text_error(message, self.error_rules)
            if classified is not None and classified.kind is not EngineErrorKind.TOOL_ERROR:
                return classified
            return EngineError(
                EngineErrorKind.TOOL_ERROR,
                message or self.error_rules.generic_error_message,
            )
        # Assistant text may legitimately mention "rate limit" etc.; only scan raw lines.
        return detect_text_error(non_json_text(output), self.error_rules)

    def parse_output(self, output: str) -> str:
        result = _result_event(output)
        if result is not None:
            text = result.get("result")
            if isinstance(text, str) and text.strip():
                return text.strip()

        chunks: list[str] = []
        for event in iter_json_objects(output):
            if event.get("type") != "assistant":
                continue
            message = event.get("message")
            content = message.get("content") if isinstance(message, dict) else None
            if not isinstance(content, list):
                continue
            for item in content:
                if isinstance(item, dict) and item.get("type") == "text":
                    text = item.get("text")
                    if isinstance(text, str) and text.strip():
                        chunks.append(text.strip())
        return "\n".join(chunks) or DEFAULT_RESPONSE

    def extract_usage(self, output: str) -> UsageReport:
        result = _result_event(output)
        if result is None:
            return UsageReport()
        usage = result.get("usage")
        usage = usage if isinstance(usage, dict) else {}
        cost_usd = result.get("total_cost_usd")
        return UsageReport(
            input_tokens=_as_int(usage.get("input_tokens")),
            output_tokens=_as_int(usage.get("output_tokens")),
            cost=f"${cost_usd:.4f}" if isinstance(cost_usd, (int, float)) else None,
        )


def _result_event(output: str) -> dict[str, object] | None:
    found: dict[str, object] | None = None
    for event in iter_json_objects(output):
        if event.get("type") == "result":
            found = event
    return found


def _as_int(value: object) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    return 0
