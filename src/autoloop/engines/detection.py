"""Error and progress-step detection shared by all engine adapters.

Tool output formats are undocumented and drift between releases, so every
helper here is best-effort: a line that does not parse is simply skipped.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator
from dataclasses import dataclass

from autoloop.engines.models import EngineError, EngineErrorKind, ProgressCallback

UNKNOWN_ERROR = "Unknown error"
COMMAND_ERROR_MAX_CHARS = 2_000

STEP_READING = "Reading code"
STEP_IMPLEMENTING = "Implementing"
STEP_WRITING_TESTS = "Writing tests"
STEP_TESTING = "Testing"
STEP_LINTING = "Linting"
STEP_STAGING = "Staging"
STEP_COMMITTING = "Committing"

_READ_TOOLS = frozenset({"read", "read_file", "view", "glob", "grep", "ls", "list_directory"})
_WRITE_TOOLS = frozenset(
    {"write", "edit", "multiedit", "write_file", "replace", "str_replace", "create", "apply_patch"},
)
_SHELL_TOOLS = frozenset({"bash", "shell", "run_shell_command", "execute_command", "exec"})

_LINT_COMMAND_MARKERS: tuple[str, ...] = ("lint", "ruff", "eslint", "biome", "flake8", "mypy")
_TEST_COMMAND_MARKERS: tuple[str, ...] = (
    "pytest",
    "jest",
    "vitest",
    "bun test",
    "npm test",
    "npm run test",
    "go test",
    "cargo test",
    "unittest",
)
_TEST_PATH = re.compile(
    r"(^|[/\\])(tests?|__tests__|spec)[/\\]|(^|[/\\])test_[^/\\]*$|[._-](test|spec)\.\w+$",
    re.IGNORECASE,
)

_TEXT_STEP_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bgit commit\b|\bcommitting\b", re.IGNORECASE), STEP_COMMITTING),
    (re.compile(r"\bgit add\b|\bstaging\b", re.IGNORECASE), STEP_STAGING),
    (re.compile(r"\blint(?:ing|er)?\b|\beslint\b|\bruff\b", re.IGNORECASE), STEP_LINTING),
    (
        re.compile(r"\b(?:writing|adding|creating) (?:unit |new )?tests?\b", re.IGNORECASE),
        STEP_WRITING_TESTS,
    ),
    (re.compile(r"\btests?\b|\btesting\b|\bpytest\b|\bjest\b", re.IGNORECASE), STEP_TESTING),
    (
        re.compile(r"\bimplement\w*|\bediting\b|\bmodifying\b|\bupdating\b", re.IGNORECASE),
        STEP_IMPLEMENTING,
    ),
    (
        re.compile(r"\breading\b|\banaly[sz]ing\b|\bexploring\b|\bsearching\b", re.IGNORECASE),
        STEP_READING,
    ),
)

_ERROR_LINE = re.compile(r"(?:^|\n)error:[ \t]*([^\n]*)", re.IGNORECASE)
# Per-call tool failures the agent can recover from; never fatal on their own.
_TOOL_TRAFFIC_TYPES = frozenset({"tool_result", "tool_use", "user"})


@dataclass(frozen=True, slots=True)
class TextErrorRules:
    """Plain-text error vocabulary of one CLI tool."""

    authentication_patterns: tuple[str, ...] = ("not authenticated", "unauthorized")
    authentication_message: str = "CLI is not authenticated."
    rate_limit_patterns: tuple[str, ...] = ("rate limit", "too many requests")
    rate_limit_message: str = "Rate limit exceeded. Please wait and try again."
    network_patterns: tuple[str, ...] = ("network error", "connection refused")
    network_message: str = "Network error. Check your internet connection."
    generic_error_message: str = "CLI returned an error"


def check_for_errors(output: str) -> str | None:
    """Return the message of the first JSON error payload found in `output`."""

    for line in output.splitlines():
        event = try_load_json_object(line)
        if event is None:
            continue
        message = _structured_error_message(event)
        if message is not None:
            return message
    return None


def detect_text_error(output: str, rules: TextErrorRules) -> EngineError | None:
    """Classify plain-text tool errors: auth, rate limit, network, then `error:` lines."""

    lowered = output.lower()
    if _first_match(lowered, rules.authentication_patterns) is not None:
        return EngineError(EngineErrorKind.AUTHENTICATION, rules.authentication_message)
    if _first_match(lowered, rules.rate_limit_patterns) is not None:
        return EngineError(EngineErrorKind.RATE_LIMIT, rules.rate_limit_message)
    if _first_match(lowered, rules.network_patterns) is not None:
        return EngineError(EngineErrorKind.NETWORK, rules.network_message)

    match = _ERROR_LINE.search(output.strip())
    if match is None:
        return None
    message = match.group(1).strip()
    return EngineError(EngineErrorKind.TOOL_ERROR, message or rules.generic_error_message)


def format_command_error(exit_code: int, output: str) -> str:
    """Human-readable message for a non-zero exit without a recognizable error."""

    text = output.strip()
    if not text:
        return f"Command failed with exit code {exit_code}"
    if len(text) > COMMAND_ERROR_MAX_CHARS:
        text = "..." + text[-COMMAND_ERROR_MAX_CHARS:]
    return f"Command failed with exit code {exit_code}: {text}"


def detect_step_from_output(line: str) -> str | None:
    """Map one line of streamed output to a coarse step label."""

    stripped = line.strip()
    if not stripped:
        return None
    event = try_load_json_object(stripped)
    if event is not None:
        for tool_name, tool_input in _iter_tool_calls(event):
            step = _step_for_tool(tool_name, tool_input)
            if step is not None:
                return step
        return None
    for pattern, step in _TEXT_STEP_RULES:
        if pattern.search(stripped):
            return step
    return None


class StepTracker:
    """Forward step changes to a progress callback, collapsing repeats."""

    def __init__(self, on_progress: ProgressCallback) -> None:
        self._on_progress = on_progress
        self.current_step: str | None = None

    def feed(self, line: str) -> None:
        step = detect_step_from_output(line)
        if step is None or step == self.current_step:
            return
        self.current_step = step
        self._on_progress(step)


def try_load_json_object(raw: str) -> dict[str, object] | None:
    text = raw.strip()
    if not text.startswith("{"):
        return None
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def iter_json_objects(output: str) -> Iterator[dict[str, object]]:
    """Yield every line of `output` that is a JSON object, in order."""

    for line in output.splitlines():
        event = try_load_json_object(line)
        if event is not None:
            yield event


def non_json_text(output: str) -> str:
    """Drop lines that are JSON events, keeping stray plain-text diagnostics."""

    return "\n".join(
        line for line in output.splitlines() if try_load_json_object(line) is None
    )


def _structured_error_message(event: dict[str, object]) -> str | None:
    if event.get("type") == "error":
        return _error_text(event.get("error")) or _error_text(event.get("message")) or UNKNOWN_ERROR
    if event.get("type") in _TOOL_TRAFFIC_TYPES:
        return None
    if event.get("error"):
        return _error_text(event["error"]) or UNKNOWN_ERROR
    return None


def _error_text(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if isinstance(value, dict):
        message = value.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()
    return None


def _iter_tool_calls(event: dict[str, object]) -> Iterator[tuple[str, dict[str, object]]]:
    name = event.get("tool") or event.get("tool_name") or event.get("name")
    if isinstance(name, str):
        yield name, _as_dict(event.get("input") or event.get("parameters") or event.get("args"))

    message = event.get("message")
    if not isinstance(message, dict):
        return
    content = message.get("content")
    if not isinstance(content, list):
        return
    for item in content:
        if not isinstance(item, dict) or item.get("type") != "tool_use":
            continue
        item_name = item.get("name")
        if isinstance(item_name, str):
            yield item_name, _as_dict(item.get("input"))


def _step_for_tool(tool_name: str, tool_input: dict[str, object]) -> str | None:
    lowered = tool_name.lower()
    if lowered in _SHELL_TOOLS:
        command = tool_input.get("command")
        if isinstance(command, list):
            command = " ".join(str(part) for part in command)
        return _step_for_command(str(command or ""))
    if lowered in _WRITE_TOOLS:
        file_path = str(tool_input.get("file_path") or tool_input.get("path") or "")
        return STEP_WRITING_TESTS if _TEST_PATH.search(file_path) else STEP_IMPLEMENTING
    if lowered in _READ_TOOLS:
        return STEP_READING
    return None


def _step_for_command(command: str) -> str | None:
    lowered = command.lower()
    if "git commit" in lowered:
        return STEP_COMMITTING
    if "git add" in lowered:
        return STEP_STAGING
    if _first_match(lowered, _LINT_COMMAND_MARKERS) is not None:
        return STEP_LINTING
    if _first_match(lowered, _TEST_COMMAND_MARKERS) is not None:
        return STEP_TESTING
    return None


def _as_dict(value: object) -> dict[str, object]:
    return value if isinstance(value, dict) else {}


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
