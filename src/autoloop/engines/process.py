"""Foreground subprocess execution for CLI agents."""

from __future__ import annotations

import shutil
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass


@dataclass(slots=True)
class CommandOutput:
    """Captured result of a completed child process."""

    stdout: str
    stderr: str
    exit_code: int


def run_command(argv: Sequence[str], work_dir: str) -> CommandOutput:
    """Run `argv` in `work_dir` to completion, capturing both streams.

    Raises `OSError` (including `FileNotFoundError`) when the process cannot
    be started; callers convert that into a failed result.
    """

    completed = subprocess.run(  # noqa: S603
        _resolve_argv(argv),
        cwd=work_dir,
        stdin=subprocess.DEVNULL,
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
        check=False,
    )
    return CommandOutput(
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
        exit_code=completed.returncode,
    )


def run_command_streaming(
    argv: Sequence[str],
    work_dir: str,
    on_line: Callable[[str], None],
) -> int:
    """Run `argv`, feeding merged stdout/stderr to `on_line` one line at a time."""

    process = subprocess.Popen(  # noqa: S603
        _resolve_argv(argv),
        cwd=work_dir,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        encoding="utf-8",
        errors="replace",
        bufsize=1,
    )
    try:
        if process.stdout is not None:
            for raw_line in process.stdout:
                on_line(raw_line.rstrip("\r\n"))
    except BaseException:
        _terminate_process(process)
        raise
    finally:
        if process.stdout is not None:
            process.stdout.close()
    return process.wait()


def _resolve_argv(argv: Sequence[str]) -> list[str]:
    args = list(argv)
    if not args:
        raise FileNotFoundError("empty command")
    # Resolves .cmd/.exe shims on Windows; no-op for absolute paths elsewhere.
    args[0] = shutil.which(args[0]) or args[0]
    return args


def _terminate_process(process: subprocess.Popen[str]) -> None:
    if process.poll() is not None:
        return
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
