"""Sequential task loop: next task -> engine -> mark complete."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from autoloop.engines import AIEngine, AIResult, EngineErrorKind, EngineOptions
from autoloop.tasks import CachedTaskSource, Task

logger = logging.getLogger(__name__)

NON_RETRYABLE_ERRORS = frozenset({EngineErrorKind.AUTHENTICATION, EngineErrorKind.SPAWN_FAILED})


@dataclass(slots=True)
class LoopRunSummary:
    """Aggregate counters for CLI reporting and telemetry."""

    iterations: int = 0
    succeeded: int = 0
    failed: int = 0
    retried: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0
    stop_reason: str = "not_started"
    last_error: str | None = None
    last_prompt: str | None = None
    last_response: str | None = None
    completed_task_ids: list[str] = field(default_factory=list)


class TaskLoop:
    """Runs one engine call at a time until no tasks remain or a task fails for good."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        source: CachedTaskSource,
        engine: AIEngine,
        work_dir: Path,
        options: EngineOptions | None = None,
        streaming: bool = True,
        max_iterations: int = 0,
        max_retries: int = 3,
        retry_delay_seconds: float = 5.0,
        task_file: Path | None = None,
        on_progress: Callable[[Task, str], None] | None = None,
        on_task_complete: Callable[[Task, AIResult], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.source = source
        self.engine = engine
        self.work_dir = work_dir
        self.options = options or EngineOptions()
        self.streaming = streaming
        self.max_iterations = max_iterations
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self.task_file = task_file
        self.on_progress = on_progress
        self.on_task_complete = on_task_complete
        self._sleep = sleep

    def run(self) -> LoopRunSummary:
        """Loop until done; pending completions are always flushed before returning."""

        summary = LoopRunSummary()
        try:
            while True:
                if self.max_iterations and summary.iterations >= self.max_iterations:
                    summary.stop_reason = "max_iterations"
                    return summary
                task = self.source.get_next_task()
                if task is None:
                    summary.stop_reason = "complete"
                    return summary
                if not self.run_task(task, summary):
                    summary.stop_reason = "task_failed"
                    return summary
        finally:
            self.source.flush()

    def run_task(self, task: Task, summary: LoopRunSummary) -> bool:
        """Execute `task` with retries; mark it complete on success."""

        summary.iterations += 1
        prompt = build_task_prompt(task, task_file=self.task_file)
        summary.last_prompt = prompt
        logger.info("Starting task %s: %s", task.id, task.title)

        result = self._execute_with_retries(task, prompt, summary)
        summary.last_response = result.response
        if not result.success:
            summary.failed += 1
            summary.last_error = result.error
            logger.error("Task %s failed: %s", task.id, result.error)
            return False

        self.source.mark_complete(task.id)
        summary.succeeded += 1
        summary.completed_task_ids.append(task.id)
        logger.info(
            "Task %s completed: tokens_in=%d tokens_out=%d duration_ms=%d",
            task.id,
            result.input_tokens,
            result.output_tokens,
            result.duration_ms,
        )
        if self.on_task_complete is not None:
            self.on_task_complete(task, result)
        return True

    def _execute_with_retries(self, task: Task, prompt: str, summary: LoopRunSummary) -> AIResult:
        attempt = 0
        while True:
            result = self._execute(task, prompt)
            summary.input_tokens += result.input_tokens
            summary.output_tokens += result.output_tokens
            summary.duration_ms += result.duration_ms
            if result.success:
                return result
            if result.error_kind in NON_RETRYABLE_ERRORS or attempt >= self.max_retries:
                return result
            attempt += 1
            summary.retried += 1
            logger.warning(
                "Task %s attempt %d failed (%s); retrying in %.1fs",
                task.id,
                attempt,
                result.error_kind.value if result.error_kind else "unknown",
                self.retry_delay_seconds,
            )
            if self.retry_delay_seconds > 0:
                self._sleep(self.retry_delay_seconds)

    def _execute(self, task: Task, prompt: str) -> AIResult:
        work_dir = str(self.work_dir)
        if not self.streaming:
            return self.engine.execute(prompt, work_dir, self.options)

        def _on_step(step: str) -> None:
            logger.debug("Task %s step: %s", task.id, step)
            if self.on_progress is not None:
                self.on_progress(task, step)

        return self.engine.execute_streaming(prompt, work_dir, _on_step, self.options)


def build_task_prompt(task: Task, *, task_file: Path | None = None) -> str:
    """Instructions sent to the agent for one task."""

    lines = [f"Task: {task.title}", ""]
    if task_file is not None:
        lines.append(f"This task comes from {task_file}. Do not edit that file.")
    lines.extend(
        [
            "1. Implement the task in the current project.",
            "2. Add or update tests covering the change.",
            "3. Run the tests and linters and fix any failures.",
            "4. Keep changes focused on this task only.",
        ],
    )
    return "\n".join(lines)
