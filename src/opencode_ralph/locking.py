"""Single-writer lock for a working directory with stale-owner recovery."""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)

MAX_ACQUIRE_ATTEMPTS = 2


class LockError(RuntimeError):
    """Raised when the lock cannot be taken."""


class LockContentionError(LockError):
    """Raised when another live (or unidentifiable) run owns the lock."""

    def __init__(self, path: Path, owner_pid: int | None) -> None:
        self.path = Path(path)
        self.owner_pid = owner_pid
        if owner_pid is None:
            message = f"lock file {path} exists; another run may be active"
        else:
            message = f"lock file {path} exists (pid {owner_pid}); another run may be active"
        super().__init__(message)


class ProcessLiveness(enum.Enum):
    ALIVE = "alive"
    DEAD = "dead"
    UNKNOWN = "unknown"


def probe_process(pid: int) -> ProcessLiveness:
    """Probe ``pid`` with signal 0."""

    if pid <= 0:
        return ProcessLiveness.DEAD
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return ProcessLiveness.DEAD
    except PermissionError:
        # Exists but belongs to another user.
        return ProcessLiveness.ALIVE
    except OSError:
        return ProcessLiveness.UNKNOWN
    return ProcessLiveness.ALIVE


@dataclass(frozen=True, slots=True)
class LockHandle:
    path: Path
    pid: int
    replaced_stale: bool = False


def read_lock_owner(path: Path) -> int | None:
    """Return the pid recorded in the lock, or ``None`` if it is missing or unparsable."""

    try:
        content = Path(path).read_text(encoding="utf-8")
    except OSError:
        return None
    fields = content.split()
    if not fields:
        return None
    try:
        pid = int(fields[0])
    except ValueError:
        return None
    return pid if pid > 0 else None


def _write_lock_exclusive(path: Path, pid: int) -> None:
    fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(f"{pid}\n")
    except OSError as exc:
        path.unlink(missing_ok=True)
        raise LockError(f"writing lock pid to {path}: {exc}") from exc


def acquire_lock(
    path: Path,
    *,
    pid: int | None = None,
    probe: Callable[[int], ProcessLiveness] = probe_process,
) -> LockHandle:
    """Create the lock for ``pid`` (default: this process).

    A lock whose owner is confirmed dead is removed and creation retried; any
    other existing lock raises :class:`LockContentionError`.
    """

    path = Path(path)
    owner = os.getpid() if pid is None else pid
    replaced_stale = False

    for _ in range(MAX_ACQUIRE_ATTEMPTS):
        try:
            _write_lock_exclusive(path, owner)
        except FileExistsError:
            pass
        except OSError as exc:
            raise LockError(f"creating lock file {path}: {exc}") from exc
        else:
            return LockHandle(path=path, pid=owner, replaced_stale=replaced_stale)

        holder = read_lock_owner(path)
        if holder is None:
            raise LockContentionError(path, None)

        liveness = probe(holder)
        if liveness is not ProcessLiveness.DEAD:
            raise LockContentionError(path, holder)

        logger.info("Removing stale lock", extra={"path": str(path), "stale_pid": holder})
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise LockError(f"removing stale lock {path}: {exc}") from exc
        replaced_stale = True

    raise LockError(f"unable to acquire lock {path}")


def release_lock(path: Path) -> None:
    """Remove the lock; a missing lock is not an error."""

    Path(path).unlink(missing_ok=True)


__all__ = [
    "LockContentionError",
    "LockError",
    "LockHandle",
    "MAX_ACQUIRE_ATTEMPTS",
    "ProcessLiveness",
    "acquire_lock",
    "probe_process",
    "read_lock_owner",
    "release_lock",
]
