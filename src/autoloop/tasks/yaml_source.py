"""YAML task file source with parallel groups.

Expected layout::

    tasks:
      - title: Add login form
        parallel_group: 1
      - title: Add signup form
        parallel_group: 1
        completed: true
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from autoloop.tasks.base import Task, TaskSourceError
from autoloop.tasks.storage import atomic_write_text


class YamlTaskSource:
    """Task source backed by a `tasks:` list in a YAML document."""

    source_type = "yaml"
    supports_groups = True

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def get_all_tasks(self) -> list[Task]:
        return [task for task in self._parse(self._load()) if not task.completed]

    def get_next_task(self) -> Task | None:
        tasks = self.get_all_tasks()
        return tasks[0] if tasks else None

    def mark_complete(self, task_id: str) -> None:
        document = self._load()
        entries = _task_entries(document, self.path)
        for task, entry in zip(self._parse(document), entries, strict=True):
            if task.id != task_id:
                continue
            if task.completed:
                return
            entry["completed"] = True
            atomic_write_text(
                self.path,
                yaml.safe_dump(document, sort_keys=False, allow_unicode=True),
            )
            return
        raise TaskSourceError(f"Unknown task id {task_id!r} in {self.path}")

    def count_remaining(self) -> int:
        return len(self.get_all_tasks())

    def count_completed(self) -> int:
        return sum(1 for task in self._parse(self._load()) if task.completed)

    def get_tasks_in_group(self, group: int) -> list[Task]:
        return [task for task in self.get_all_tasks() if (task.parallel_group or 0) == group]

    def get_parallel_group(self, title: str) -> int:
        for task in self._parse(self._load()):
            if task.title == title:
                return task.parallel_group or 0
        return 0

    def _load(self) -> dict[str, Any]:
        try:
            raw = self.path.read_text("utf-8")
        except FileNotFoundError as error:
            raise TaskSourceError(f"Task file not found: {self.path}") from error
        try:
            document = yaml.safe_load(raw) or {}
        except yaml.YAMLError as error:
            raise TaskSourceError(f"Invalid YAML in {self.path}: {error}") from error
        if not isinstance(document, dict):
            raise TaskSourceError(f"{self.path} must contain a mapping with a 'tasks' list")
        return document

    def _parse(self, document: dict[str, Any]) -> list[Task]:
        tasks: list[Task] = []
        for position, entry in enumerate(_task_entries(document, self.path), start=1):
            title = str(entry.get("title") or "").strip()
            if not title:
                raise TaskSourceError(f"Task #{position} in {self.path} has no title")
            group = entry.get("parallel_group")
            tasks.append(
                Task(
                    id=str(entry.get("id") or position),
                    title=title,
                    completed=bool(entry.get("completed", False)),
                    parallel_group=int(group) if group is not None else None,
                ),
            )
        return tasks


def _task_entries(document: dict[str, Any], path: Path) -> list[dict[str, Any]]:
    entries = document.get("tasks") or []
    if not isinstance(entries, list) or not all(isinstance(item, dict) for item in entries):
        raise TaskSourceError(f"'tasks' in {path} must be a list of mappings")
    return entries
