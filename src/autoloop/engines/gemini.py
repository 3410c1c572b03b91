"""Gemini CLI adapter (stream-json output)."""

from __future__ import annotations

from autoloop.engines.base import BaseEngine
from autoloop.engines.detection import (
    TextErrorRules,
    detect_text_error,
    iter_json_objects,
    non_json_text,
)
from autoloop.engines.models import EngineError, EngineOptions, UsageReport
from autoloop.engines.usage import extract_token_usage


class GeminiEngine(BaseEngine):
    name = "Gemini CLI"
    cli_command = "gemini"
    error_rules = TextErrorRules(
        authentication_patterns=("gemini_api_key", "not authenticated", "login required"),
        authentication_message=(
            "Gemini CLI is not authenticated. Run 'gemini' to log in or set GEMINI_API_KEY."
        ),
        rate_limit_patterns=(
            "rate limit",
            "resource_exhausted",
            "quota exceeded",
            "429 too many requests",
        ),
        rate_limit_message="Gemini rate limit or quota exceeded. Please wait and try again.",
        network_patterns=("network error", "connection refused", "fetch failed"),
        network_message="Network error connecting to Gemini. Check your internet connection.",
        generic_error_message="Gemini CLI returned an error",
    )

    def build_args(self, prompt: str, options: EngineOptions, *, streaming: bool) -> list[str]:
        args = ["--yolo", "--output-format", "stream-json", "-p", prompt]
        if options.model_override:
            args.extend(["--model", options.model_override])
        args.extend(options.engine_args)
        return args

    def check_tool_errors(self, output: str) -> EngineError | None:
        return detect_text_error(non_json_text(output), self.error_rules)

    def parse_output(self, output: str) -> str:
        chunks: list[str] = []
        saw_events = False
        for event in iter_json_objects(output):
            saw_events = True
            if event.get("type") != "message" or event.get("role") != "assistant":
                continue
            content = event.get("content")
            if isinstance(content, str):
                chunks.append(content)
        text = "".join(chunks).strip()
        if text:
            return text
        if saw_events:
            return super().parse_output(non_json_text(output))
        return super().parse_output(output)

    def extract_usage(self, output: str) -> UsageReport:
        usage = extract_token_usage(output)
        return UsageReport(input_tokens=usage.input_tokens, output_tokens=usage.output_tokens)
