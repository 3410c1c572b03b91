"""Engine interface and the shared execute/stream pipeline."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from autoloop.engines.detection import (
    StepTracker,
    TextErrorRules,
    check_for_errors,
    detect_text_error,
    format_command_error,
)
from autoloop.engines.models import (
    AIResult,
    EngineError,
    EngineErrorKind,
    EngineOptions,
    ProgressCallback,
    UsageReport,
)
from autoloop.engines.process import run_command, run_command_streaming
from autoloop.engines.sanitization import sanitize_prompt

logger = logging.getLogger(__name__)

DEFAULT_RESPONSE = "Task completed"


class AIEngine(Protocol):
    """Uniform contract implemented by every CLI agent adapter."""

    name: str

    def execute(
        self,
        prompt: str,
        work_dir: str,
        options: EngineOptions | None = None,
    ) -> AIResult:
        """Run the tool to completion and return one aggregated result."""

    def execute_streaming(
        self,
        prompt: str,
        work_dir: str,
        on_progress: ProgressCallback,
        options: EngineOptions | None = None,
    ) -> AIResult:
        """Like `execute`, reporting step changes while output streams in."""


class BaseEngine:
    """Template for adapters: subclasses supply args, error vocabulary and parsing.

    Failures never raise out of `execute`/`execute_streaming`; they come back
    as `AIResult(success=False, error=..., error_kind=...)`.
    """

    name = "engine"
    cli_command = ""
    error_rules = TextErrorRules()

    def __init__(self, command: Sequence[str] | None = None, *, os_name: str | None = None) -> None:
        self._command: tuple[str, ...] = tuple(command) if command else (self.cli_command,)
        self._os_name = os_name

    def build_args(self, prompt: str, options: EngineOptions, *, streaming: bool) -> list[str]:
        """Return tool arguments for an already sanitized prompt."""

        raise NotImplementedError

    def is_noise_line(self, line: str) -> bool:
        """Whether a stripped, non-empty output line is UI chatter."""

        return False

    def parse_output(self, output: str) -> str:
        lines = [
            line.rstrip()
            for line in output.splitlines()
            if line.strip() and not self.is_noise_line(line.strip())
        ]
        return "\n".join(lines) or DEFAULT_RESPONSE

    def extract_usage(self, output: str) -> UsageReport:
        return UsageReport()

    def check_tool_errors(self, output: str) -> EngineError | None:
        return detect_text_error(output, self.error_rules)

    def sanitize(self, prompt: str) -> str:
        return sanitize_prompt(prompt, os_name=self._os_name)

    def command_line(
        self,
        prompt: str,
        options: EngineOptions | None = None,
        *,
        streaming: bool = False,
    ) -> list[str]:
        args = self.build_args(
            self.sanitize(prompt),
            options or EngineOptions(),
            streaming=streaming,
        )
        return [*self._command, *args]

    def execute(
        self,
        prompt: str,
        work_dir: str,
        options: EngineOptions | None = None,
    ) -> AIResult:
        argv = self.command_line(prompt, options)
        started = time.monotonic()
        if not Path(work_dir).is_dir():
            return self._missing_work_dir(work_dir, started)
        try:
            completed = run_command(argv, work_dir)
        except (OSError, ValueError) as error:
            return self._spawn_failure(argv[0], error, started)
        return self.build_result(
            output=completed.stdout + completed.stderr,
            exit_code=completed.exit_code,
            duration_ms=_elapsed_ms(started),
        )

    def execute_streaming(
        self,
        prompt: str,
        work_dir: str,
        on_progress: ProgressCallback,
        options: EngineOptions | None = None,
    ) -> AIResult:
        argv = self.command_line(prompt, options, streaming=True)
        tracker = StepTracker(on_progress)
        output_lines: list[str] = []

        def _on_line(line: str) -> None:
            output_lines.append(line)
            tracker.feed(line)

        started = time.monotonic()
        if not Path(work_dir).is_dir():
            return self._missing_work_dir(work_dir, started)
        try:
            exit_code = run_command_streaming(argv, work_dir, _on_line)
        except (OSError, ValueError) as error:
            return self._spawn_failure(argv[0], error, started)
        return self.build_result(
            output="\n".join(output_lines),
            exit_code=exit_code,
            duration_ms=_elapsed_ms(started),
        )

    def build_result(self, *, output: str, exit_code: int, duration_ms: int) -> AIResult:
        """Classify captured output into exactly one success or failure result."""

        structured = check_for_errors(output)
        if structured is not None:
            return _failure(EngineErrorKind.STRUCTURED, structured, duration_ms)

        tool_error = self.check_tool_errors(output)
        if tool_error is not None:
            return _failure(tool_error.kind, tool_error.message, duration_ms)

        response = self.parse_output(output)
        if exit_code != 0:
            return AIResult(
                success=False,
                response=response,
                duration_ms=duration_ms,
                error=format_command_error(exit_code, output),
                error_kind=EngineErrorKind.PROCESS_EXIT,
            )

        usage = self.extract_usage(output)
        cost = usage.cost
        if cost is None and duration_ms > 0:
            cost = f"duration:{duration_ms}"
        return AIResult(
            success=True,
            response=response,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            cost=cost,
            duration_ms=duration_ms,
        )

    def _spawn_failure(
        self,
        command_head: str,
        error: OSError | ValueError,
        started: float,
    ) -> AIResult:
        if isinstance(error, FileNotFoundError):
            message = f"{self.name} CLI not found: {command_head}. Is it installed and on PATH?"
        else:
            message = f"{self.name} CLI failed to start: {error}"
        logger.warning("Engine spawn failed: engine=%s error=%s", self.name, error)
        return _failure(EngineErrorKind.SPAWN_FAILED, message, _elapsed_ms(started))

    def _missing_work_dir(self, work_dir: str, started: float) -> AIResult:
        message = f"{self.name} cannot start: working directory does not exist: {work_dir}"
        logger.warning("Engine spawn skipped: engine=%s missing work_dir=%s", self.name, work_dir)
        return _failure(EngineErrorKind.SPAWN_FAILED, message, _elapsed_ms(started))


def _failure(kind: EngineErrorKind, message: str, duration_ms: int) -> AIResult:
    return AIResult(
        success=False,
        response="",
        duration_ms=duration_ms,
        error=message,
        error_kind=kind,
    )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
