"""
Lock management for phaseflow.

One flock per epic serializes read-snapshot -> compute -> apply so two
actors can't lose each other's updates. Different epics lock
independently.
"""

import fcntl
import os
import time
from contextlib import contextmanager
from pathlib import Path


class LockTimeout(Exception):
    """Lock acquisition timed out."""


@contextmanager
def _acquire_lock(lock_file: Path, timeout: float, lock_name: str, poll_interval: float = 0.1):
    """
    Acquire an exclusive file lock, yield, release on exit.

    Lock files are never deleted: unlinking one while another process
    waits on it lets two processes hold "exclusive" locks on different
    inodes with the same path.
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    fd = open(lock_file, 'w')
    start = time.monotonic()

    try:
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() - start > timeout:
                    raise LockTimeout(f"Could not acquire {lock_name} within {timeout}s")
                time.sleep(poll_interval)

        fd.write(f"{os.getpid()}\n")
        fd.flush()
        try:
            yield
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        fd.close()


@contextmanager
def epic_lock(data_dir: Path, epic_id: str, timeout: float = 60):
    """Acquire the per-epic lock."""
    lock_file = Path(data_dir) / "locks" / f"{epic_id}.lock"
    with _acquire_lock(lock_file, timeout, f"lock for {epic_id}"):
        yield


@contextmanager
def registry_lock(data_dir: Path, timeout: float = 60):
    """Acquire the lock guarding phases.json and ID allocation."""
    lock_file = Path(data_dir) / "locks" / "registry.lock"
    with _acquire_lock(lock_file, timeout, "registry lock"):
        yield
