"""Task sources and the caching decorator used by the loop."""

from __future__ import annotations

from pathlib import Path

from autoloop.tasks.base import (
    BackendWriteError,
    GroupedTaskSource,
    Task,
    TaskSource,
    TaskSourceError,
    UnsupportedOperationError,
)
from autoloop.tasks.cached import CachedTaskSource, with_cache
from autoloop.tasks.markdown import MarkdownTaskSource
from autoloop.tasks.shutdown import ShutdownCoordinator
from autoloop.tasks.yaml_source import YamlTaskSource

__all__ = [
    "BackendWriteError",
    "CachedTaskSource",
    "GroupedTaskSource",
    "MarkdownTaskSource",
    "ShutdownCoordinator",
    "Task",
    "TaskSource",
    "TaskSourceError",
    "UnsupportedOperationError",
    "YamlTaskSource",
    "create_task_source",
    "with_cache",
]


def create_task_source(path: Path) -> TaskSource:
    """Pick a backend by file suffix: `.yaml`/`.yml` or markdown otherwise."""

    if Path(path).suffix.lower() in {".yaml", ".yml"}:
        return YamlTaskSource(path)
    return MarkdownTaskSource(path)
