from __future__ import annotations

import os
import signal
import threading
import time
from pathlib import Path

import pytest

from opencode_ralph.signals import LockSignalHandler, deferred_signals, install_lock_signal_handler

pytestmark = pytest.mark.usefixtures("restore_signals")


def make_lock(tmp_path: Path) -> Path:
    lock = tmp_path / "lock"
    lock.write_text(f"{os.getpid()}\n", encoding="utf-8")
    return lock


def wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate() and time.monotonic() < deadline:
        time.sleep(0.01)


@pytest.mark.parametrize(("signum", "expected"), [(signal.SIGINT, 130), (signal.SIGTERM, 143)])
def test_signal_releases_lock_and_exits(tmp_path: Path, signum: int, expected: int) -> None:
    lock = make_lock(tmp_path)
    codes: list[int] = []

    install_lock_signal_handler(lock, exit=codes.append)
    os.kill(os.getpid(), signum)
    wait_for(lambda: bool(codes))

    assert codes == [expected]
    assert not lock.exists()


def test_second_signal_is_ignored(tmp_path: Path) -> None:
    lock = make_lock(tmp_path)
    codes: list[int] = []
    releases: list[Path] = []

    handler = LockSignalHandler(lock, release=releases.append, exit=codes.append)
    handler.install()
    handler._handle(signal.SIGTERM, None)
    handler._handle(signal.SIGINT, None)

    assert codes == [143]
    assert releases == [lock]
    assert signal.getsignal(signal.SIGINT) == signal.SIG_IGN


def test_stop_after_signal_is_noop(tmp_path: Path) -> None:
    lock = make_lock(tmp_path)
    releases: list[Path] = []

    handler = LockSignalHandler(lock, release=releases.append, exit=lambda code: None)
    handler.install()
    handler._handle(signal.SIGINT, None)
    handler.stop()
    handler.stop()

    assert releases == [lock]
    assert handler.fired


def test_stop_restores_previous_handlers(tmp_path: Path) -> None:
    lock = make_lock(tmp_path)
    previous = signal.getsignal(signal.SIGTERM)
    codes: list[int] = []

    stop = install_lock_signal_handler(lock, exit=codes.append)
    assert signal.getsignal(signal.SIGTERM) != previous

    stop()
    stop()

    assert signal.getsignal(signal.SIGTERM) == previous
    assert codes == []
    assert lock.exists()


def test_release_failure_does_not_block_exit(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    lock = make_lock(tmp_path)
    codes: list[int] = []

    def broken_release(path: Path) -> None:
        raise PermissionError("read-only")

    handler = LockSignalHandler(lock, release=broken_release, exit=codes.append)
    handler.install()
    handler._handle(signal.SIGINT, None)

    assert codes == [130]
    assert "failed to release lock" in capsys.readouterr().err


def test_signal_during_stop_is_still_handled(tmp_path: Path) -> None:
    lock = make_lock(tmp_path)
    codes: list[int] = []
    releases: list[Path] = []

    handler = LockSignalHandler(lock, release=releases.append, exit=codes.append)
    handler.install()
    restore = handler._restore

    def interrupted_restore() -> None:
        handler._handle(signal.SIGINT, None)
        restore()

    handler._restore = interrupted_restore
    handler.stop()

    assert codes == [130]
    assert releases == [lock]
    assert handler.fired


def test_signal_after_stop_reaches_previous_handler(tmp_path: Path) -> None:
    lock = make_lock(tmp_path)
    received: list[int] = []
    codes: list[int] = []
    signal.signal(signal.SIGTERM, lambda signum, frame: received.append(signum))

    stop = install_lock_signal_handler(lock, exit=codes.append)
    stop()
    os.kill(os.getpid(), signal.SIGTERM)
    wait_for(lambda: bool(received))

    assert received == [signal.SIGTERM]
    assert codes == []
    assert lock.exists()


@pytest.mark.skipif(not hasattr(signal, "pthread_sigmask"), reason="requires pthread_sigmask")
def test_deferred_signals_are_delivered_on_exit() -> None:
    received: list[int] = []
    signal.signal(signal.SIGTERM, lambda signum, frame: received.append(signum))

    with deferred_signals():
        assert signal.SIGTERM in signal.pthread_sigmask(signal.SIG_BLOCK, [])
        signal.pthread_kill(threading.get_ident(), signal.SIGTERM)
        time.sleep(0.05)
        assert received == []
    wait_for(lambda: bool(received))

    assert received == [signal.SIGTERM]
    assert signal.SIGTERM not in signal.pthread_sigmask(signal.SIG_BLOCK, [])
