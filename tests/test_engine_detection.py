from __future__ import annotations

import json

import allure
import pytest

from autoloop.engines.detection import (
    STEP_COMMITTING,
    STEP_IMPLEMENTING,
    STEP_LINTING,
    STEP_READING,
    STEP_STAGING,
    STEP_TESTING,
    STEP_WRITING_TESTS,
    StepTracker,
    TextErrorRules,
    check_for_errors,
    detect_step_from_output,
    detect_text_error,
    format_command_error,
)
from autoloop.engines.models import EngineErrorKind

pytestmark = [
    allure.epic("Engines"),
    allure.feature("Output Detection"),
]

RULES = TextErrorRules(
    authentication_patterns=("not authenticated",),
    authentication_message="auth needed",
    rate_limit_patterns=("rate limit",),
    rate_limit_message="slow down",
    network_patterns=("connection refused",),
    network_message="offline",
    generic_error_message="tool failed",
)


@pytest.mark.parametrize(
    ("output", "expected"),
    [
        ('{"type": "error", "error": {"message": "boom"}}', "boom"),
        ('{"type": "error", "message": "bad request"}', "bad request"),
        ('{"type": "error"}', "Unknown error"),
        ('noise\n{"error": "quota gone"}\n', "quota gone"),
        ('{"error": {"code": 7}}', "Unknown error"),
    ],
)
def test_check_for_errors_finds_structured_errors(output: str, expected: str) -> None:
    assert check_for_errors(output) == expected


@pytest.mark.parametrize(
    "output",
    [
        '{"type": "result", "error": null}',
        '{"type": "tool_result", "status": "error", "error": {"message": "File not found"}}',
        '{"type": "user", "error": "tool failed"}',
        "plain text error: nope",
        "[1, 2]",
        "{broken",
    ],
)
def test_check_for_errors_ignores_non_errors(output: str) -> None:
    assert check_for_errors(output) is None


def test_check_for_errors_returns_first_match() -> None:
    output = "\n".join(
        [json.dumps({"error": "first"}), json.dumps({"type": "error", "message": "second"})],
    )

    assert check_for_errors(output) == "first"


@pytest.mark.parametrize(
    ("output", "kind", "message"),
    [
        ("Error: Not Authenticated", EngineErrorKind.AUTHENTICATION, "auth needed"),
        ("hit the RATE LIMIT", EngineErrorKind.RATE_LIMIT, "slow down"),
        ("connect: connection refused", EngineErrorKind.NETWORK, "offline"),
        ("Error: disk full\n", EngineErrorKind.TOOL_ERROR, "disk full"),
        (
            "working\nerror:   permission denied  \nmore",
            EngineErrorKind.TOOL_ERROR,
            "permission denied",
        ),
        ("error:", EngineErrorKind.TOOL_ERROR, "tool failed"),
    ],
)
def test_detect_text_error_priority(output: str, kind: EngineErrorKind, message: str) -> None:
    error = detect_text_error(output, RULES)

    assert error is not None
    assert error.kind is kind
    assert error.message == message


@pytest.mark.parametrize("output", ["All good", "no errors: found", "  the error: is mid-line"])
def test_detect_text_error_ignores_clean_output(output: str) -> None:
    assert detect_text_error(output, RULES) is None


def test_format_command_error_truncates_to_tail() -> None:
    output = "x" * 2500 + "END"

    message = format_command_error(2, output)

    assert message.startswith("Command failed with exit code 2: ...")
    assert message.endswith("END")
    assert len(message) == len("Command failed with exit code 2: ...") + 2000


def test_format_command_error_without_output() -> None:
    assert format_command_error(1, "  \n") == "Command failed with exit code 1"


@pytest.mark.parametrize(
    ("line", "step"),
    [
        ("Reading code...", STEP_READING),
        ("Implementing feature", STEP_IMPLEMENTING),
        ("Tests passed", STEP_TESTING),
        ("Writing unit tests for parser", STEP_WRITING_TESTS),
        ("Running eslint", STEP_LINTING),
        ("git add -A", STEP_STAGING),
        ("git commit -m 'feat'", STEP_COMMITTING),
        ("Hello there", None),
        ("   ", None),
    ],
)
def test_detect_step_from_text(line: str, step: str | None) -> None:
    assert detect_step_from_output(line) == step


@pytest.mark.parametrize(
    ("event", "step"),
    [
        ({"type": "tool_use", "tool": "Read", "input": {"file_path": "src/app.py"}}, STEP_READING),
        ({"tool_name": "write_file", "parameters": {"path": "src/app.py"}}, STEP_IMPLEMENTING),
        ({"tool": "Edit", "input": {"file_path": "tests/test_app.py"}}, STEP_WRITING_TESTS),
        ({"tool": "Write", "input": {"file_path": "src/app.spec.ts"}}, STEP_WRITING_TESTS),
        ({"tool": "Bash", "input": {"command": "uv run pytest -q"}}, STEP_TESTING),
        ({"tool": "Bash", "input": {"command": "ruff check ."}}, STEP_LINTING),
        ({"tool": "shell", "input": {"command": ["git", "commit", "-m", "x"]}}, STEP_COMMITTING),
        ({"tool": "Bash", "input": {"command": "ls"}}, None),
        ({"type": "result", "result": "Tests passed"}, None),
    ],
)
def test_detect_step_from_tool_events(event: dict[str, object], step: str | None) -> None:
    assert detect_step_from_output(json.dumps(event)) == step


def test_detect_step_from_assistant_tool_use_blocks() -> None:
    event = {
        "type": "assistant",
        "message": {
            "content": [
                {"type": "text", "text": "Let me look"},
                {"type": "tool_use", "name": "Grep", "input": {"pattern": "def"}},
            ],
        },
    }

    assert detect_step_from_output(json.dumps(event)) == STEP_READING


def test_step_tracker_collapses_repeats() -> None:
    steps: list[str] = []
    tracker = StepTracker(steps.append)

    for line in ["Reading code", "reading more", "", "Implementing it", "Tests passed", "tests ok"]:
        tracker.feed(line)

    assert steps == [STEP_READING, STEP_IMPLEMENTING, STEP_TESTING]
    assert tracker.current_step == STEP_TESTING
