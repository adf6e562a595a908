"""Commit locks: serialize commit validation and apply per repository.

``location_lock`` covers threads of one process; ``repo_lock`` adds an
advisory lock on ``submitrepo.lock`` inside the repository directory so
commits are also serialized across processes.
"""

from __future__ import annotations

import os
import threading
from contextlib import contextmanager

LOCK_FILE = "submitrepo.lock"

_thread_locks: dict[str, threading.Lock] = {}
_thread_locks_guard = threading.Lock()


def _get_thread_lock(key: str) -> threading.Lock:
    with _thread_locks_guard:
        return _thread_locks.setdefault(key, threading.Lock())


if os.name == "nt":
    import msvcrt

    def _lock_file(fd: int) -> None:
        msvcrt.locking(fd, msvcrt.LK_LOCK, 1)

    def _unlock_file(fd: int) -> None:
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    def _lock_file(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_EX)

    def _unlock_file(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_UN)


@contextmanager
def location_lock(location: str):
    """Hold the in-process lock for *location* (no filesystem access)."""
    with _get_thread_lock(f"loc:{location}"):
        yield


@contextmanager
def repo_lock(repo_path: str):
    """Hold the in-process and file locks of the repository directory *repo_path*."""
    with _get_thread_lock(os.path.normcase(os.path.realpath(repo_path))):
        fd = os.open(os.path.join(repo_path, LOCK_FILE), os.O_CREAT | os.O_RDWR)
        try:
            _lock_file(fd)
            try:
                yield
            finally:
                _unlock_file(fd)
        finally:
            os.close(fd)
