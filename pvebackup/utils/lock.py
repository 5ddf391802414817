"""
Single-run lock.

Two overlapping runs would race on the intermediate storage and on the
remote snapshot name, so each run holds an exclusive flock on LOCK_FILE.
"""

import fcntl
import os


class LockError(Exception):
    """Raised when the lock is held by another process."""
    pass


class RunLock:
    """
    Non-blocking exclusive file lock.
    """

    def __init__(self, path: str):
        self.path = path
        self._fd = None

    def acquire(self):
        """
        Take the lock.

        Raises:
            LockError: If another process holds it or the file cannot be opened
        """
        lock_dir = os.path.dirname(self.path)
        try:
            if lock_dir:
                os.makedirs(lock_dir, exist_ok=True)
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise LockError(f"Cannot open lock file {self.path}: {e}")

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            os.close(fd)
            raise LockError(f"Another backup run is in progress (lock held: {self.path})")

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd

    def release(self):
        if self._fd is not None:
            try:
                fcntl.flock(self._fd, fcntl.LOCK_UN)
            finally:
                os.close(self._fd)
                self._fd = None

    @property
    def is_held(self) -> bool:
        return self._fd is not None
