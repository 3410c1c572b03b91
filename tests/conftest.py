"""Shared test fixtures."""

from __future__ import annotations

import pytest

from autoloop.tasks import ShutdownCoordinator, Task

from .fakes import FakeTaskSource, TimerRecorder


class RecordingSignalModule:
    """Minimal `signal` module double that records installed handlers."""

    SIGINT = 2
    SIGTERM = 15

    def __init__(self) -> None:
        self.handlers: dict[int, object] = {
            self.SIGINT: "default-int",
            self.SIGTERM: "default-term",
        }

    def getsignal(self, signum: int) -> object:
        return self.handlers[signum]

    def signal(self, signum: int, handler: object) -> object:
        previous = self.handlers[signum]
        self.handlers[signum] = handler
        return previous


@pytest.fixture()
def coordinator() -> ShutdownCoordinator:
    """Coordinator that is never installed into the real process."""

    return ShutdownCoordinator()


@pytest.fixture()
def timers() -> TimerRecorder:
    return TimerRecorder()


@pytest.fixture()
def two_tasks() -> FakeTaskSource:
    return FakeTaskSource([Task(id="a", title="Task A"), Task(id="b", title="Task B")])


@pytest.fixture()
def signal_module() -> RecordingSignalModule:
    return RecordingSignalModule()
