"""Caching, write-batching decorator over any task source.

Backends such as the markdown source re-read and rewrite the whole file on
every call. `CachedTaskSource` loads the list once, answers reads from memory,
records completions in a pending set that reads filter out immediately, and
writes them to the wrapped source in batches:

* the first `mark_complete` after an idle period arms a single debounce timer;
  later calls ride along with it;
* `flush()` writes everything pending and drops the cache, since the backend
  may renumber or reorder tasks when it writes;
* on interpreter exit or SIGINT/SIGTERM the injected `ShutdownCoordinator`
  gives each instance one best-effort chance to write what is still pending.

A pending id only leaves the pending set after the wrapped source accepted
the write.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Protocol, cast

from autoloop.tasks.base import (
    BackendWriteError,
    GroupedTaskSource,
    Task,
    TaskSource,
    UnsupportedOperationError,
)
from autoloop.tasks.shutdown import ShutdownCoordinator

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_INTERVAL_SECONDS = 1.0


class FlushTimer(Protocol):
    daemon: bool

    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], FlushTimer]


class CachedTaskSource:
    """`TaskSource` decorator with an in-memory cache and debounced writes."""

    def __init__(
        self,
        inner: TaskSource,
        *,
        coordinator: ShutdownCoordinator,
        flush_interval_seconds: float = DEFAULT_FLUSH_INTERVAL_SECONDS,
        timer_factory: TimerFactory = threading.Timer,
    ) -> None:
        if flush_interval_seconds < 0:
            raise ValueError("flush_interval_seconds must be >= 0.")
        self._inner = inner
        self._coordinator = coordinator
        self.flush_interval_seconds = flush_interval_seconds
        self._timer_factory = timer_factory
        self._cached_tasks: list[Task] | None = None
        # dict as an insertion-ordered set: completions are written in call order.
        self._pending: dict[str, None] = {}
        self._timer: FlushTimer | None = None
        self._lock = threading.RLock()
        self._shutdown_flushed = False
        coordinator.register(self)

    @property
    def inner(self) -> TaskSource:
        return self._inner

    @property
    def source_type(self) -> str:
        return self._inner.source_type

    @property
    def supports_groups(self) -> bool:
        return self._inner.supports_groups

    def get_all_tasks(self) -> list[Task]:
        with self._lock:
            if self._cached_tasks is None:
                self._cached_tasks = list(self._inner.get_all_tasks())
            return [task for task in self._cached_tasks if task.id not in self._pending]

    def get_next_task(self) -> Task | None:
        tasks = self.get_all_tasks()
        return tasks[0] if tasks else None

    def mark_complete(self, task_id: str) -> None:
        with self._lock:
            self._pending[task_id] = None
            self._schedule_flush()

    def count_remaining(self) -> int:
        return len(self.get_all_tasks())

    def count_completed(self) -> int:
        # May double count an id the backend already persisted; single writer per run.
        with self._lock:
            return self._inner.count_completed() + len(self._pending)

    def get_tasks_in_group(self, group: int) -> list[Task]:
        grouped = self._grouped_inner("get_tasks_in_group")
        with self._lock:
            tasks = grouped.get_tasks_in_group(group)
            return [task for task in tasks if task.id not in self._pending]

    def get_parallel_group(self, title: str) -> int:
        return self._grouped_inner("get_parallel_group").get_parallel_group(title)

    def flush(self) -> None:
        """Write pending completions to the wrapped source.

        Stops at the first failed write and raises `BackendWriteError`; ids not
        yet written stay pending for the next attempt.
        """

        with self._lock:
            self._cancel_timer()
            if not self._pending:
                return
            written = 0
            try:
                for task_id in list(self._pending):
                    try:
                        self._inner.mark_complete(task_id)
                    except Exception as error:
                        raise BackendWriteError(
                            f"Failed to write completion for task {task_id!r}: {error}",
                            task_id=task_id,
                        ) from error
                    del self._pending[task_id]
                    written += 1
            finally:
                if written:
                    self._cached_tasks = None
            logger.debug("Flushed %d task completion(s) to %s", written, self.source_type)

    def invalidate_cache(self) -> None:
        """Drop the cached task list; pending completions are kept."""

        with self._lock:
            self._cached_tasks = None

    def has_pending_writes(self) -> bool:
        with self._lock:
            return bool(self._pending)

    def flush_on_shutdown(self, *, deadline: float | None = None) -> None:
        """Best-effort synchronous write during process teardown; runs once."""

        with self._lock:
            if self._shutdown_flushed:
                return
            self._shutdown_flushed = True
            self._cancel_timer()
            for task_id in list(self._pending):
                if deadline is not None and time.monotonic() > deadline:
                    logger.warning(
                        "Shutdown flush budget exhausted; %d completion(s) not written",
                        len(self._pending),
                    )
                    return
                try:
                    self._inner.mark_complete(task_id)
                except Exception:  # noqa: BLE001
                    logger.warning("Shutdown flush could not write task %s", task_id, exc_info=True)
                    continue
                del self._pending[task_id]

    def close(self) -> None:
        """Flush and detach from the shutdown coordinator."""

        try:
            self.flush()
        finally:
            self._coordinator.unregister(self)

    def _grouped_inner(self, operation: str) -> GroupedTaskSource:
        if not self._inner.supports_groups:
            raise UnsupportedOperationError(
                f"{self._inner.source_type} task source does not support {operation}",
            )
        return cast(GroupedTaskSource, self._inner)

    def _schedule_flush(self) -> None:
        if self.flush_interval_seconds == 0:
            return
        if self._timer is not None:
            return
        timer = self._timer_factory(self.flush_interval_seconds, self._on_timer)
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer(self) -> None:
        if self._timer is None:
            return
        self._timer.cancel()
        self._timer = None

    def _on_timer(self) -> None:
        with self._lock:
            self._timer = None
        try:
            self.flush()
        except BackendWriteError:
            logger.exception("Background flush of task completions failed")


def with_cache(
    source: TaskSource,
    *,
    coordinator: ShutdownCoordinator,
    flush_interval_seconds: float = DEFAULT_FLUSH_INTERVAL_SECONDS,
) -> CachedTaskSource:
    """Wrap `source` in a `CachedTaskSource` registered with `coordinator`."""

    return CachedTaskSource(
        source,
        coordinator=coordinator,
        flush_interval_seconds=flush_interval_seconds,
    )
