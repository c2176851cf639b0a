"""Releases the run lock when the process is interrupted or terminated."""

from __future__ import annotations

import logging
import os
import signal
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator

from .locking import release_lock

logger = logging.getLogger(__name__)

EXIT_CODES = {
    signal.SIGINT: 130,
    signal.SIGTERM: 143,
}


class LockSignalHandler:
    """Handles SIGINT/SIGTERM for the lifetime of a run.

    The first signal releases the lock and exits with the conventional code for
    that signal. ``stop`` restores the previous handlers. A single guard makes
    the two paths mutually exclusive, so the lock is released at most once here
    and ``stop`` after a signal (or a second ``stop``) does nothing.
    """

    def __init__(
        self,
        lock_path: Path,
        *,
        release: Callable[[Path], None] = release_lock,
        exit: Callable[[int], None] = os._exit,
    ) -> None:
        self._lock_path = Path(lock_path)
        self._release = release
        self._exit = exit
        self._guard = threading.Lock()
        self._fired = False
        self._previous: dict[signal.Signals, object] = {}
        self._installed = False

    @property
    def fired(self) -> bool:
        return self._fired

    def install(self) -> None:
        for signum in EXIT_CODES:
            self._previous[signum] = signal.getsignal(signum)
            signal.signal(signum, self._handle)
        self._installed = True

    def stop(self) -> None:
        # Handlers go back first so a signal arriving meanwhile is still handled.
        if self._guard.locked():
            return
        self._restore()
        self._guard.acquire(blocking=False)

    def _restore(self) -> None:
        if not self._installed:
            return
        for signum, previous in self._previous.items():
            try:
                signal.signal(signum, previous)
            except (TypeError, ValueError):
                signal.signal(signum, signal.SIG_DFL)
        self._installed = False

    def _handle(self, signum: int, _frame: object | None) -> None:
        if not self._guard.acquire(blocking=False):
            return
        self._fired = True
        for other in EXIT_CODES:
            signal.signal(other, signal.SIG_IGN)

        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        logger.warning("Received %s; releasing lock", name, extra={"lock_path": str(self._lock_path)})

        try:
            self._release(self._lock_path)
        except OSError as exc:
            print(f"Warning: failed to release lock: {exc}", file=sys.stderr)

        for stream in (sys.stdout, sys.stderr):
            try:
                stream.flush()
            except (OSError, ValueError):
                pass
        self._exit(EXIT_CODES.get(signum, 1))


@contextmanager
def deferred_signals() -> Iterator[None]:
    """Hold SIGINT/SIGTERM for the calling thread until the block exits.

    Signals raised meanwhile stay pending and are delivered, to whatever
    handler is installed by then, when the block exits.
    """

    if not hasattr(signal, "pthread_sigmask"):
        yield
        return
    previous = signal.pthread_sigmask(signal.SIG_BLOCK, list(EXIT_CODES))
    try:
        yield
    finally:
        signal.pthread_sigmask(signal.SIG_SETMASK, previous)


def install_lock_signal_handler(
    lock_path: Path,
    *,
    release: Callable[[Path], None] = release_lock,
    exit: Callable[[int], None] = os._exit,
) -> Callable[[], None]:
    """Install the lock cleanup handler and return the function that disables it."""

    handler = LockSignalHandler(lock_path, release=release, exit=exit)
    try:
        handler.install()
    except ValueError:
        # Signal handlers can only be installed in the main thread.
        logger.warning("Signal handlers unavailable outside the main thread; lock cleanup disabled")
        return lambda: None
    return handler.stop


__all__ = ["EXIT_CODES", "LockSignalHandler", "deferred_signals", "install_lock_signal_handler"]
