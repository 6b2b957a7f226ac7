"""
Exclusive instance lock keyed by the backup destination.

Uses an advisory fcntl.flock on a lock file inside the destination. The
kernel drops the lock when the holding process exits, so a crashed daemon
never leaves a stale lock behind.
"""

import fcntl
import os
from typing import Optional


class LockError(Exception):
    """Raised when the lock file cannot be opened or written."""
    pass


class InstanceLock:
    """
    Non-blocking exclusive lock on a lock file.

    The lock file also records the pid of the holding process.
    """

    def __init__(self, path: str):
        """
        Initialize instance lock.

        Args:
            path: Lock file path (created if missing)
        """
        self.path = path
        self._fd = None

    @property
    def is_held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> bool:
        """
        Try to take the lock without blocking.

        Returns:
            True if the lock was taken, False if another holder has it

        Raises:
            LockError: If the lock file cannot be opened
        """
        if self._fd is not None:
            return True

        try:
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise LockError(f"Failed to open lock file {self.path}: {e}")

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            return False
        except OSError as e:
            os.close(fd)
            raise LockError(f"Failed to lock {self.path}: {e}")

        self._fd = fd
        return True

    def write_pid(self, pid: int):
        """
        Record the pid of the process holding the lock.

        Raises:
            LockError: If the lock is not held or the file cannot be written
        """
        if self._fd is None:
            raise LockError("Lock not held")

        try:
            os.ftruncate(self._fd, 0)
            os.pwrite(self._fd, f"{pid}\n".encode(), 0)
        except OSError as e:
            raise LockError(f"Failed to write pid to {self.path}: {e}")

    def read_pid(self) -> Optional[int]:
        """Read the pid recorded in the lock file, if any."""
        try:
            with open(self.path, 'r') as f:
                content = f.read().strip()
        except OSError:
            return None

        return int(content) if content.isdigit() else None

    def close(self):
        """
        Close this process's descriptor without unlocking.

        The lock stays held by any forked child that inherited it.
        """
        if self._fd is not None:
            os.close(self._fd)
            self._fd = None

    def release(self):
        """Unlock and close the lock file."""
        if self._fd is None:
            return

        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
        return False
