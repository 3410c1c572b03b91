"""Task source interfaces and errors."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class Task:
    """One work item parsed from a task file."""

    id: str
    title: str
    completed: bool = False
    parallel_group: int | None = None


class TaskSourceError(RuntimeError):
    """Base class for task source failures."""


class UnsupportedOperationError(TaskSourceError):
    """An optional capability was requested from a source that lacks it."""


class BackendWriteError(TaskSourceError):
    """Writing a completion to the wrapped source failed."""

    def __init__(self, message: str, *, task_id: str) -> None:
        super().__init__(message)
        self.task_id = task_id


class TaskSource(Protocol):
    """Ordered task list with completion tracking."""

    @property
    def source_type(self) -> str:
        """Short backend identifier, for example `markdown`."""

    @property
    def supports_groups(self) -> bool:
        """Whether the source also implements `GroupedTaskSource`."""

    def get_all_tasks(self) -> list[Task]:
        """Return incomplete tasks in file order."""

    def get_next_task(self) -> Task | None:
        """Return the first incomplete task, if any."""

    def mark_complete(self, task_id: str) -> None:
        """Durably mark `task_id` complete; repeating the call is harmless."""

    def count_remaining(self) -> int:
        """Number of incomplete tasks."""

    def count_completed(self) -> int:
        """Number of tasks already marked complete."""


class GroupedTaskSource(TaskSource, Protocol):
    """Extended interface for sources that know parallel groups.

    Implementations declare `supports_groups = True`; callers check that flag
    instead of inspecting types.
    """

    def get_tasks_in_group(self, group: int) -> list[Task]:
        """Incomplete tasks belonging to `group`."""

    def get_parallel_group(self, title: str) -> int:
        """Parallel group of the task titled `title` (0 when ungrouped)."""
