"""Cross-process locking around store writes.

The extension host, the CLI, and the MCP server may all save the same store.
Each save holds an exclusive OS-level lock on a sibling ``.lock`` file so that
the primary write and the backup refresh of one save are never interleaved
with another process's save.
"""

import contextlib
import os
import sys
import time
from collections.abc import Generator
from pathlib import Path

try:
    import fcntl  # Unix
except ImportError:
    fcntl = None  # type: ignore[assignment]

try:
    import msvcrt  # Windows
except ImportError:
    msvcrt = None  # type: ignore[assignment]


class LockTimeout(Exception):  # noqa: N818
    """Raised when the store lock cannot be acquired in time."""

    pass


def lock_path_for(path: Path) -> Path:
    """Lock file used to guard writes to path."""
    return path.with_name(path.name + ".lock")


@contextlib.contextmanager
def exclusive_lock(path: Path, timeout: float = 5.0) -> Generator[None, None, None]:
    """
    Hold an exclusive lock on the lock file guarding ``path``.

    Uses flock on Unix and msvcrt.locking on Windows. Acquisition is
    non-blocking with backoff until ``timeout`` elapses.

    Args:
        path: File whose writers should be serialised
        timeout: Maximum seconds to wait for the lock (default 5.0)

    Raises:
        LockTimeout: If the lock cannot be acquired within timeout
        OSError: If the lock file cannot be opened

    Example:
        >>> with exclusive_lock(store_file):
        ...     atomic_write_json(data, store_file)
    """
    lock_file_path = lock_path_for(path)
    lock_file_path.parent.mkdir(parents=True, exist_ok=True)

    # Append mode creates the lock file without truncating it
    with open(lock_file_path, "a+", encoding="utf-8") as lock_file:
        fd = lock_file.fileno()
        _acquire(fd, timeout)
        try:
            yield
        finally:
            _release(fd)


def _try_lock(fd: int) -> bool:
    try:
        if sys.platform == "win32":
            os.lseek(fd, 0, os.SEEK_SET)
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)  # type: ignore[attr-defined]
        else:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        # BlockingIOError on Unix, PermissionError/OSError on Windows
        return False
    return True


def _acquire(fd: int, timeout: float) -> None:
    start_time = time.monotonic()
    attempt = 0
    while not _try_lock(fd):
        elapsed = time.monotonic() - start_time
        if elapsed >= timeout:
            raise LockTimeout(f"Failed to acquire store lock after {timeout:.1f} seconds")
        # Exponential backoff capped at 100ms
        time.sleep(min(0.005 * (2**attempt), 0.1))
        attempt += 1


def _release(fd: int) -> None:
    try:
        if sys.platform == "win32":
            os.lseek(fd, 0, os.SEEK_SET)
            msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)  # type: ignore[attr-defined]
        else:
            fcntl.flock(fd, fcntl.LOCK_UN)
    except OSError:
        # Closing the descriptor releases the lock anyway
        pass
