"""Markdown checklist task source (`- [ ] task` lines)."""

from __future__ import annotations

import re
from pathlib import Path

from autoloop.tasks.base import Task, TaskSourceError
from autoloop.tasks.storage import atomic_write_text, read_text_exact

_CHECKBOX_LINE = re.compile(
    r"^(?P<prefix>\s*[-*]\s+\[)(?P<mark>[ xX])(?P<suffix>\]\s+)(?P<title>.*\S)",
)


class MarkdownTaskSource:
    """Reads checklist items from a PRD-style markdown file.

    A task id is the 1-based line number of its checklist item at read time.
    The agent may edit the file between a read and the write, so
    `mark_complete` treats the line number as a hint: it flips the item with
    the title that was read under that id, nearest to the line it was read from.
    """

    source_type = "markdown"
    supports_groups = False

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._titles: dict[str, str] = {}

    def get_all_tasks(self) -> list[Task]:
        return [task for task in self._parse() if not task.completed]

    def get_next_task(self) -> Task | None:
        tasks = self.get_all_tasks()
        return tasks[0] if tasks else None

    def mark_complete(self, task_id: str) -> None:
        lines = self._read_lines()
        index = self._locate(task_id, lines)
        match = _CHECKBOX_LINE.match(lines[index])
        if match is None:
            raise TaskSourceError(f"Line {task_id} of {self.path} is not a checklist item")
        if match.group("mark") != " ":
            return
        lines[index] = (
            f"{match.group('prefix')}x{match.group('suffix')}"
            f"{lines[index][match.end('suffix') :]}"
        )
        atomic_write_text(self.path, "".join(lines))

    def count_remaining(self) -> int:
        return len(self.get_all_tasks())

    def count_completed(self) -> int:
        return sum(1 for task in self._parse() if task.completed)

    def _parse(self) -> list[Task]:
        tasks: list[Task] = []
        for line_no, line in enumerate(self._read_lines(), start=1):
            match = _CHECKBOX_LINE.match(line)
            if match is None:
                continue
            tasks.append(
                Task(
                    id=str(line_no),
                    title=match.group("title").strip(),
                    completed=match.group("mark") != " ",
                ),
            )
        self._titles = {task.id: task.title for task in tasks}
        return tasks

    def _locate(self, task_id: str, lines: list[str]) -> int:
        hint = _line_number(task_id) - 1
        expected = self._titles.get(task_id)
        if expected is None:
            if not 0 <= hint < len(lines):
                raise TaskSourceError(f"Markdown task id out of range: {task_id!r}")
            return hint

        candidates = [
            index
            for index, line in enumerate(lines)
            if _checklist_title(line) == expected
        ]
        if not candidates:
            raise TaskSourceError(
                f"Task {task_id!r} ({expected!r}) is no longer a checklist item in {self.path}",
            )
        return min(candidates, key=lambda index: abs(index - hint))

    def _read_lines(self) -> list[str]:
        try:
            return read_text_exact(self.path).splitlines(keepends=True)
        except FileNotFoundError as error:
            raise TaskSourceError(f"Task file not found: {self.path}") from error


def _checklist_title(line: str) -> str | None:
    match = _CHECKBOX_LINE.match(line)
    return match.group("title").strip() if match else None


def _line_number(task_id: str) -> int:
    try:
        return int(task_id)
    except ValueError as error:
        raise TaskSourceError(f"Invalid markdown task id: {task_id!r}") from error
