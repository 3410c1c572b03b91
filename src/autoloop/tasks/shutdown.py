"""Coordinated best-effort flush of buffered task state at process exit.

One `ShutdownCoordinator` is created by the entry point and handed to every
`CachedTaskSource`. Installing it hooks interpreter exit plus SIGINT/SIGTERM;
on any of them each registered member gets a single chance to persist its
pending completions. Durability here is best-effort only: a hard kill
(SIGKILL, power loss) bypasses every hook.
"""

from __future__ import annotations

import atexit
import logging
import signal
import sys
import time
from collections.abc import Callable
from types import ModuleType
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_BUDGET_SECONDS = 5.0
SIGINT_EXIT_CODE = 130
SIGTERM_EXIT_CODE = 143


class ShutdownParticipant(Protocol):
    def flush_on_shutdown(self, *, deadline: float | None = None) -> None:
        """Persist buffered state once; never raise."""


class ShutdownCoordinator:
    """Owns the member registry and the process exit hooks."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        budget_seconds: float = DEFAULT_BUDGET_SECONDS,
        signal_module: ModuleType = signal,
        register_atexit: Callable[[Callable[[], None]], object] = atexit.register,
        unregister_atexit: Callable[[Callable[[], None]], object] = atexit.unregister,
        exit_func: Callable[[int], object] = sys.exit,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.budget_seconds = budget_seconds
        self._signal = signal_module
        self._register_atexit = register_atexit
        self._unregister_atexit = unregister_atexit
        self._exit = exit_func
        self._clock = clock
        self._members: list[ShutdownParticipant] = []
        self._installed = False
        self._previous_handlers: dict[int, object] = {}

    @property
    def installed(self) -> bool:
        return self._installed

    @property
    def members(self) -> tuple[ShutdownParticipant, ...]:
        return tuple(self._members)

    def register(self, member: ShutdownParticipant) -> None:
        if any(existing is member for existing in self._members):
            return
        self._members.append(member)

    def unregister(self, member: ShutdownParticipant) -> None:
        self._members = [existing for existing in self._members if existing is not member]

    def flush_all(self) -> None:
        """Give every member one bounded chance to persist; swallow failures."""

        deadline = self._clock() + self.budget_seconds if self.budget_seconds > 0 else None
        for member in list(self._members):
            try:
                member.flush_on_shutdown(deadline=deadline)
            except Exception:  # noqa: BLE001
                logger.warning("Shutdown flush failed for %r", member, exc_info=True)

    def install(self) -> None:
        """Hook interpreter exit and termination signals; safe to call repeatedly."""

        if self._installed:
            return
        self._installed = True
        self._register_atexit(self.flush_all)
        for signal_name in ("SIGINT", "SIGTERM"):
            signum = getattr(self._signal, signal_name, None)
            if signum is None:
                continue
            try:
                previous = self._signal.getsignal(signum)
                self._signal.signal(signum, self._handle_signal)
            except ValueError:
                # Signal handlers can only be installed in main thread.
                logger.debug("Cannot install %s handler outside the main thread", signal_name)
                continue
            self._previous_handlers[int(signum)] = previous

    def uninstall(self) -> None:
        if not self._installed:
            return
        self._installed = False
        self._unregister_atexit(self.flush_all)
        for signum, previous in self._previous_handlers.items():
            try:
                self._signal.signal(signum, previous)
            except (TypeError, ValueError):
                pass
        self._previous_handlers.clear()

    def _handle_signal(self, signum: int, _frame: object | None) -> None:
        self.flush_all()
        self._exit(exit_code_for_signal(signum, signal_module=self._signal))


def exit_code_for_signal(signum: int, *, signal_module: ModuleType = signal) -> int:
    if signum == getattr(signal_module, "SIGINT", None):
        return SIGINT_EXIT_CODE
    if signum == getattr(signal_module, "SIGTERM", None):
        return SIGTERM_EXIT_CODE
    return 128 + int(signum)
