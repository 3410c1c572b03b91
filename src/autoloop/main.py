"""CLI entrypoint for autoloop."""

import logging
from pathlib import Path

import rich_click as click

from autoloop import __version__
from autoloop.controllers import CommandResult, LoopCliController, RunCommand, TasksCommand
from autoloop.engines.registry import SUPPORTED_ENGINES
from autoloop.tasks import TaskSourceError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = LoopCliController()

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="autoloop")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def autoloop(verbose: bool) -> None:
    """Run a CLI coding agent over a task list until every task is done."""

    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=_LOG_FORMAT)


@autoloop.command("run")
@click.option(
    "--task-file",
    type=click.Path(path_type=Path),
    default=None,
    help="Markdown checklist or YAML task file (default: AUTOLOOP_TASK_FILE or PRD.md).",
)
@click.option(
    "--work-dir",
    type=click.Path(path_type=Path, file_okay=False, exists=True),
    default=Path(),
    show_default=True,
    help="Directory the agent runs in.",
)
@click.option(
    "--engine",
    type=click.Choice(SUPPORTED_ENGINES, case_sensitive=False),
    default=None,
    help="CLI agent to drive (default: AUTOLOOP_ENGINE or claude).",
)
@click.option("--model", default=None, help="Model override passed to the engine.")
@click.option(
    "--engine-arg",
    "engine_args",
    multiple=True,
    help="Extra raw argument appended to the engine command. Can be repeated.",
)
@click.option(
    "--stream/--no-stream",
    "streaming",
    default=None,
    help="Report progress steps while the agent runs.",
)
@click.option(
    "--max-iterations",
    type=click.IntRange(min=0),
    default=None,
    help="Stop after this many tasks (0 = unlimited).",
)
@click.option(
    "--max-retries",
    type=click.IntRange(min=0),
    default=None,
    help="Retries per task before the loop stops.",
)
@click.option(
    "--flush-interval",
    "flush_interval_seconds",
    type=click.FloatRange(min=0),
    default=None,
    help="Seconds to batch task completions before writing (0 = only at the end).",
)
@click.option(
    "--sync-issue",
    type=click.IntRange(min=1),
    default=None,
    help="GitHub issue number to mirror the task file into after each task.",
)
def run(  # noqa: PLR0913
    task_file: Path | None,
    work_dir: Path,
    engine: str | None,
    model: str | None,
    engine_args: tuple[str, ...],
    streaming: bool | None,
    max_iterations: int | None,
    max_retries: int | None,
    flush_interval_seconds: float | None,
    sync_issue: int | None,
) -> None:
    """Work through the task file with the selected engine."""

    result = _invoke(
        lambda: CONTROLLER.run(
            RunCommand(
                task_file=task_file,
                work_dir=work_dir,
                engine=engine,
                model=model,
                engine_args=engine_args,
                streaming=streaming,
                max_iterations=max_iterations,
                max_retries=max_retries,
                flush_interval_seconds=flush_interval_seconds,
                sync_issue=sync_issue,
            ),
            emit=click.echo,
        ),
    )
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException("Task loop stopped on a failed task.")


@autoloop.command("tasks")
@click.option("--task-file", type=click.Path(path_type=Path), default=None, help="Task file.")
@click.option(
    "--work-dir",
    type=click.Path(path_type=Path, file_okay=False, exists=True),
    default=Path(),
    show_default=True,
    help="Directory relative task file paths resolve against.",
)
@click.option("--group", type=int, default=None, help="Only show one parallel group (YAML).")
def tasks(task_file: Path | None, work_dir: Path, group: int | None) -> None:
    """List remaining tasks."""

    result = _invoke(
        lambda: CONTROLLER.tasks(TasksCommand(task_file=task_file, work_dir=work_dir, group=group)),
    )
    _emit_lines(result.lines)


@autoloop.command("engines")
def engines() -> None:
    """List supported engines."""

    _emit_lines(CONTROLLER.engines().lines)


def _invoke(action) -> CommandResult:
    try:
        return action()
    except (ValueError, TaskSourceError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    autoloop()
