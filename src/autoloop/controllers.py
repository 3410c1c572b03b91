"""Controllers for autoloop CLI commands."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from pathlib import Path

from autoloop.config import Settings
from autoloop.engines import AIEngine, AIResult, EngineOptions, create_engine
from autoloop.engines.registry import ENGINE_CLASSES, SUPPORTED_ENGINES
from autoloop.issue_sync import sync_prd_to_issue
from autoloop.loop import LoopRunSummary, TaskLoop
from autoloop.tasks import (
    CachedTaskSource,
    ShutdownCoordinator,
    Task,
    create_task_source,
    with_cache,
)
from autoloop.telemetry import TelemetrySession, send_telemetry_webhook


@dataclass(slots=True)
class RunCommand:
    """CLI input for the task loop; `None` fields fall back to settings."""

    task_file: Path | None = None
    work_dir: Path = Path()
    engine: str | None = None
    model: str | None = None
    engine_args: tuple[str, ...] = ()
    streaming: bool | None = None
    max_iterations: int | None = None
    max_retries: int | None = None
    flush_interval_seconds: float | None = None
    sync_issue: int | None = None


@dataclass(slots=True)
class TasksCommand:
    """CLI input for listing tasks."""

    task_file: Path | None = None
    work_dir: Path = Path()
    group: int | None = None


@dataclass(slots=True)
class CommandResult:
    lines: list[str] = field(default_factory=list)
    success: bool = True


class LoopCliController:
    """Builds collaborators from settings and runs CLI commands."""

    def __init__(
        self,
        *,
        settings_loader: Callable[[], Settings] = Settings.from_env,
        engine_factory: Callable[[str], AIEngine] = create_engine,
        coordinator_factory: Callable[[float], ShutdownCoordinator] | None = None,
    ) -> None:
        self._settings_loader = settings_loader
        self._engine_factory = engine_factory
        self._coordinator_factory = coordinator_factory or (
            lambda budget: ShutdownCoordinator(budget_seconds=budget)
        )

    def run(self, command: RunCommand, *, emit: Callable[[str], None]) -> CommandResult:
        settings = self._resolve_settings(command)
        task_path = _resolve_task_path(command.work_dir, settings.tasks.task_file)
        engine = self._engine_factory(settings.engine.name)
        coordinator = self._coordinator_factory(settings.tasks.shutdown_budget_seconds)
        source = with_cache(
            create_task_source(task_path),
            coordinator=coordinator,
            flush_interval_seconds=settings.tasks.flush_interval_seconds,
        )
        coordinator.install()
        try:
            emit(
                f"Running {engine.name} on {task_path} "
                f"({source.count_remaining()} task(s) remaining)",
            )
            loop = TaskLoop(
                source=source,
                engine=engine,
                work_dir=command.work_dir,
                options=EngineOptions(
                    model_override=settings.engine.model,
                    engine_args=settings.engine.extra_args,
                ),
                streaming=settings.engine.streaming,
                max_iterations=settings.loop.max_iterations,
                max_retries=settings.loop.max_retries,
                retry_delay_seconds=settings.loop.retry_delay_seconds,
                task_file=settings.tasks.task_file,
                on_progress=lambda task, step: emit(f"  [{task.id}] {step}"),
                on_task_complete=self._completion_hook(
                    source=source,
                    settings=settings,
                    task_path=task_path,
                    work_dir=command.work_dir,
                    emit=emit,
                ),
            )
            summary = loop.run()
        finally:
            # Ids left pending by a failed final flush get one exit write before unhooking.
            if source.has_pending_writes():
                coordinator.flush_all()
            coordinator.uninstall()

        self._send_telemetry(settings, summary)
        return CommandResult(
            lines=render_summary_lines(summary),
            success=summary.stop_reason != "task_failed",
        )

    def tasks(self, command: TasksCommand) -> CommandResult:
        settings = self._settings_loader()
        task_file = command.task_file or settings.tasks.task_file
        task_path = _resolve_task_path(command.work_dir, task_file)
        source = create_task_source(task_path)
        coordinator = ShutdownCoordinator()
        cached = with_cache(source, coordinator=coordinator, flush_interval_seconds=0)
        try:
            tasks = (
                cached.get_tasks_in_group(command.group)
                if command.group is not None
                else cached.get_all_tasks()
            )
            lines = [
                f"{task_path}: {cached.count_remaining()} remaining, "
                f"{cached.count_completed()} completed",
            ]
            lines.extend(_render_task(task) for task in tasks)
        finally:
            cached.close()
        return CommandResult(lines=lines)

    def engines(self) -> CommandResult:
        return CommandResult(
            lines=[
                f"{name}: {ENGINE_CLASSES[name].name} (`{ENGINE_CLASSES[name].cli_command}`)"
                for name in SUPPORTED_ENGINES
            ],
        )

    def _resolve_settings(self, command: RunCommand) -> Settings:
        settings = self._settings_loader()
        engine = settings.engine
        tasks = settings.tasks
        loop = settings.loop
        settings = replace(
            settings,
            engine=replace(
                engine,
                name=(command.engine or engine.name).strip().lower(),
                model=command.model or engine.model,
                extra_args=command.engine_args or engine.extra_args,
                streaming=engine.streaming if command.streaming is None else command.streaming,
            ),
            tasks=replace(
                tasks,
                task_file=command.task_file or tasks.task_file,
                flush_interval_seconds=(
                    tasks.flush_interval_seconds
                    if command.flush_interval_seconds is None
                    else command.flush_interval_seconds
                ),
            ),
            loop=replace(
                loop,
                max_iterations=(
                    loop.max_iterations
                    if command.max_iterations is None
                    else command.max_iterations
                ),
                max_retries=(
                    loop.max_retries if command.max_retries is None else command.max_retries
                ),
            ),
            sync_issue=command.sync_issue or settings.sync_issue,
        )
        settings.validate()
        return settings

    def _completion_hook(  # noqa: PLR0913
        self,
        *,
        source: CachedTaskSource,
        settings: Settings,
        task_path: Path,
        work_dir: Path,
        emit: Callable[[str], None],
    ) -> Callable[[Task, AIResult], None]:
        def _on_complete(task: Task, result: AIResult) -> None:
            emit(f"Done [{task.id}] {task.title}")
            if settings.sync_issue is None:
                return
            source.flush()
            sync_prd_to_issue(task_path, settings.sync_issue, work_dir)

        return _on_complete

    def _send_telemetry(self, settings: Settings, summary: LoopRunSummary) -> None:
        if not settings.telemetry.webhook_url:
            return
        session = TelemetrySession(
            engine=settings.engine.name,
            mode="streaming" if settings.engine.streaming else "batch",
            task_count=summary.iterations,
            success_count=summary.succeeded,
            failed_count=summary.failed,
            total_tokens_in=summary.input_tokens,
            total_tokens_out=summary.output_tokens,
            total_duration_ms=summary.duration_ms,
            prompt=summary.last_prompt,
            response=summary.last_response,
        )
        send_telemetry_webhook(
            session,
            webhook_url=settings.telemetry.webhook_url,
            level=settings.telemetry.level,
            timeout_seconds=settings.telemetry.timeout_seconds,
        )


def render_summary_lines(summary: LoopRunSummary) -> list[str]:
    lines = [
        f"Stop reason: {summary.stop_reason}",
        f"Tasks: succeeded={summary.succeeded} failed={summary.failed} "
        f"retried={summary.retried}",
        f"Tokens: in={summary.input_tokens} out={summary.output_tokens}",
        f"Engine time: {summary.duration_ms / 1000:.1f}s",
    ]
    if summary.last_error:
        lines.append(f"Last error: {summary.last_error}")
    return lines


def _render_task(task: Task) -> str:
    group = f" (group {task.parallel_group})" if task.parallel_group else ""
    return f"- [{task.id}] {task.title}{group}"


def _resolve_task_path(work_dir: Path, task_file: Path) -> Path:
    return task_file if task_file.is_absolute() else work_dir / task_file
