from __future__ import annotations

import json
import sys
from pathlib import Path

import allure
import pytest

from autoloop.engines import AIResult, EngineErrorKind, EngineOptions, create_engine
from autoloop.engines.claude import ClaudeEngine
from autoloop.engines.codex import CodexEngine
from autoloop.engines.copilot import CopilotEngine
from autoloop.engines.gemini import GeminiEngine
from autoloop.engines.registry import SUPPORTED_ENGINES

pytestmark = [
    allure.epic("Engines"),
    allure.feature("CLI Adapters"),
]


def _python_engine(script: str) -> CopilotEngine:
    return CopilotEngine(command=[sys.executable, "-c", script], os_name="posix")


def _run(engine: CopilotEngine, tmp_path: Path, *, streaming: bool = False) -> AIResult:
    steps: list[str] = []
    if streaming:
        return engine.execute_streaming("do the task", str(tmp_path), steps.append)
    return engine.execute("do the task", str(tmp_path))


@pytest.mark.parametrize("exit_code", [0, 1])
def test_plain_text_error_wins_regardless_of_exit_code(tmp_path: Path, exit_code: int) -> None:
    engine = _python_engine(
        f"import sys; print('Working on it...'); print('Error: disk full'); sys.exit({exit_code})",
    )

    result = _run(engine, tmp_path)

    assert not result.success
    assert result.error == "disk full"
    assert result.error_kind is EngineErrorKind.TOOL_ERROR


def test_successful_run_filters_noise_and_reports_duration_cost(tmp_path: Path) -> None:
    engine = _python_engine(
        "print('? Loading'); print('Thinking...'); print('Added the login form'); print('')",
    )

    result = _run(engine, tmp_path)

    assert result.success
    assert result.response == "Added the login form"
    assert result.error is None
    assert result.input_tokens == 0
    assert result.output_tokens == 0
    assert result.cost is None or result.cost == f"duration:{result.duration_ms}"


def test_empty_output_uses_default_response(tmp_path: Path) -> None:
    result = _run(_python_engine("pass"), tmp_path)

    assert result.success
    assert result.response == "Task completed"


def test_streaming_reports_collapsed_steps(tmp_path: Path) -> None:
    engine = _python_engine(
        "print('Reading code...'); print('Reading more code'); "
        "print('Implementing feature'); print('Tests passed')",
    )
    steps: list[str] = []

    result = engine.execute_streaming("do the task", str(tmp_path), steps.append)

    assert result.success
    assert steps == ["Reading code", "Implementing", "Testing"]
    assert "Tests passed" in result.response


def test_nonzero_exit_without_recognized_error(tmp_path: Path) -> None:
    engine = _python_engine("import sys; print('partial work'); sys.exit(3)")

    result = _run(engine, tmp_path)

    assert not result.success
    assert result.error_kind is EngineErrorKind.PROCESS_EXIT
    assert result.error == "Command failed with exit code 3: partial work"


def test_structured_error_takes_priority(tmp_path: Path) -> None:
    payload = json.dumps({"type": "error", "error": {"message": "model overloaded"}})
    engine = _python_engine(f"print({payload!r}); print('Error: disk full')")

    result = _run(engine, tmp_path, streaming=True)

    assert result.error == "model overloaded"
    assert result.error_kind is EngineErrorKind.STRUCTURED


def test_authentication_error_uses_tool_specific_message(tmp_path: Path) -> None:
    result = _run(_python_engine("print('Error: No authentication information found.')"), tmp_path)

    assert result.error_kind is EngineErrorKind.AUTHENTICATION
    assert "COPILOT_GITHUB_TOKEN" in (result.error or "")


@pytest.mark.parametrize("streaming", [False, True])
def test_missing_binary_is_a_spawn_failure(tmp_path: Path, streaming: bool) -> None:
    engine = CopilotEngine(command=["autoloop-missing-binary-for-tests"])

    result = _run(engine, tmp_path, streaming=streaming)

    assert not result.success
    assert result.error_kind is EngineErrorKind.SPAWN_FAILED
    assert result.error == (
        "GitHub Copilot CLI not found: autoloop-missing-binary-for-tests. "
        "Is it installed and on PATH?"
    )


def test_prompt_is_passed_flattened(tmp_path: Path) -> None:
    engine = _python_engine("import sys; print(sys.argv[sys.argv.index('-p') + 1])")

    result = engine.execute("first line\nsecond   line", str(tmp_path))

    assert result.response == "first line second line"


def test_copilot_args() -> None:
    engine = CopilotEngine(os_name="posix")

    argv = engine.command_line(
        "do it",
        EngineOptions(model_override="gpt-5", engine_args=("--allow-all-tools",)),
    )

    assert argv == [
        "copilot",
        "--yolo",
        "--stream=on",
        "-p",
        "do it",
        "--model",
        "gpt-5",
        "--allow-all-tools",
    ]


def test_claude_args() -> None:
    argv = ClaudeEngine(os_name="posix").command_line("do it", streaming=True)

    assert argv == [
        "claude",
        "--dangerously-skip-permissions",
        "--verbose",
        "--output-format",
        "stream-json",
        "-p",
        "do it",
    ]


def test_codex_args_put_prompt_after_separator() -> None:
    argv = CodexEngine(os_name="posix").command_line(
        "-rf everything",
        EngineOptions(model_override="o4", engine_args=("--skip-git-repo-check",)),
    )

    assert argv == [
        "codex",
        "exec",
        "--full-auto",
        "--model",
        "o4",
        "--skip-git-repo-check",
        "--",
        "-rf everything",
    ]


def test_gemini_args() -> None:
    argv = GeminiEngine(os_name="posix").command_line("do it")

    assert argv == ["gemini", "--yolo", "--output-format", "stream-json", "-p", "do it"]


def _claude_stream(*events: dict[str, object]) -> str:
    return "\n".join(json.dumps(event) for event in events)


def test_claude_result_event_supplies_response_usage_and_cost() -> None:
    output = _claude_stream(
        {"type": "system", "subtype": "init"},
        {
            "type": "assistant",
            "message": {"content": [{"type": "text", "text": "We hit a rate limit earlier"}]},
        },
        {
            "type": "result",
            "is_error": False,
            "result": "Implemented the parser",
            "usage": {"input_tokens": 1200, "output_tokens": 340},
            "total_cost_usd": 0.01234,
        },
    )

    result = ClaudeEngine().build_result(output=output, exit_code=0, duration_ms=900)

    assert result.success
    assert result.response == "Implemented the parser"
    assert (result.input_tokens, result.output_tokens) == (1200, 340)
    assert result.cost == "$0.0123"
    assert result.duration_ms == 900


def test_claude_falls_back_to_assistant_text() -> None:
    output = _claude_stream(
        {"type": "assistant", "message": {"content": [{"type": "text", "text": "Part one"}]}},
        {"type": "assistant", "message": {"content": [{"type": "text", "text": "Part two"}]}},
    )

    result = ClaudeEngine().build_result(output=output, exit_code=0, duration_ms=50)

    assert result.response == "Part one\nPart two"
    assert result.cost == "duration:50"


def test_claude_error_result_is_classified() -> None:
    output = _claude_stream(
        {"type": "result", "is_error": True, "result": "Claude AI usage limit reached"},
    )

    result = ClaudeEngine().build_result(output=output, exit_code=1, duration_ms=10)

    assert result.error_kind is EngineErrorKind.RATE_LIMIT


def test_claude_plain_error_result_is_tool_error() -> None:
    output = _claude_stream({"type": "result", "is_error": True, "result": "Tool crashed"})

    result = ClaudeEngine().build_result(output=output, exit_code=0, duration_ms=10)

    assert result.error_kind is EngineErrorKind.TOOL_ERROR
    assert result.error == "Tool crashed"


def test_gemini_joins_assistant_messages_and_reads_usage() -> None:
    output = _claude_stream(
        {"type": "init", "model": "gemini-2.5-pro"},
        {"type": "message", "role": "user", "content": "do it"},
        {"type": "message", "role": "assistant", "content": "Done ", "delta": True},
        {"type": "message", "role": "assistant", "content": "and tested.", "delta": True},
        {"type": "result", "stats": {"input_tokens": 800, "output_tokens": 120}},
    )

    result = GeminiEngine().build_result(output=output, exit_code=0, duration_ms=10)

    assert result.success
    assert result.response == "Done and tested."
    assert (result.input_tokens, result.output_tokens) == (800, 120)


def test_codex_drops_banner_and_reads_tokens_used() -> None:
    output = "\n".join(
        [
            "OpenAI Codex v0.46.0 (research preview)",
            "--------",
            "workdir: /repo",
            "model: gpt-5-codex",
            "--------",
            "[2025-01-01T10:00:00] codex",
            "Refactored the parser and added tests.",
            "tokens used",
            "12,345",
        ],
    )

    result = CodexEngine().build_result(output=output, exit_code=0, duration_ms=10)

    assert result.success
    assert result.response == "Refactored the parser and added tests."
    assert result.input_tokens == 0
    assert result.output_tokens == 12345


def test_registry_creates_each_engine() -> None:
    assert SUPPORTED_ENGINES == ("claude", "codex", "copilot", "gemini")
    assert isinstance(create_engine(" Copilot "), CopilotEngine)
    assert isinstance(create_engine("claude"), ClaudeEngine)


def test_registry_rejects_unknown_engine() -> None:
    with pytest.raises(ValueError, match="Unsupported engine 'cursor'"):
        create_engine("cursor")


def test_gemini_numbers_containing_429_are_not_rate_limits() -> None:
    output = "\n".join(
        [
            "Finished in 1429 ms",
            json.dumps({"type": "message", "role": "assistant", "content": "All done."}),
        ],
    )

    result = GeminiEngine().build_result(output=output, exit_code=0, duration_ms=10)

    assert result.success
    assert result.response == "All done."


def test_gemini_http_429_is_a_rate_limit() -> None:
    result = GeminiEngine().build_result(
        output="Request failed: 429 Too Many Requests",
        exit_code=1,
        duration_ms=10,
    )

    assert result.error_kind is EngineErrorKind.RATE_LIMIT


def test_gemini_recovered_tool_failure_is_not_fatal() -> None:
    output = _claude_stream(
        {
            "type": "tool_result",
            "tool_id": "read-1",
            "status": "error",
            "error": {"type": "file_not_found", "message": "File not found: a.py"},
        },
        {"type": "message", "role": "assistant", "content": "Created a.py instead."},
        {"type": "result", "status": "success"},
    )

    result = GeminiEngine().build_result(output=output, exit_code=0, duration_ms=10)

    assert result.success
    assert result.response == "Created a.py instead."


@pytest.mark.parametrize("streaming", [False, True])
def test_prompt_with_nul_byte_fails_without_raising(tmp_path: Path, streaming: bool) -> None:
    engine = _python_engine("print('unreachable')")
    steps: list[str] = []

    if streaming:
        result = engine.execute_streaming("fix \x00 bug", str(tmp_path), steps.append)
    else:
        result = engine.execute("fix \x00 bug", str(tmp_path))

    assert not result.success
    assert result.error_kind is EngineErrorKind.SPAWN_FAILED
    assert "failed to start" in (result.error or "")


@pytest.mark.parametrize("streaming", [False, True])
def test_missing_work_dir_is_reported_as_such(tmp_path: Path, streaming: bool) -> None:
    missing = tmp_path / "nope"

    result = _run(_python_engine("print('unreachable')"), missing, streaming=streaming)

    assert result.error_kind is EngineErrorKind.SPAWN_FAILED
    assert result.error == (
        f"GitHub Copilot cannot start: working directory does not exist: {missing}"
    )
