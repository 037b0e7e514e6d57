"""
Run-level mutual exclusion.

Two overlapping runs would corrupt each other's backups and target
directories, so every run holds an exclusive advisory lock for its whole
lifetime. The lock is a ``flock`` on a lock file; the kernel releases it if
the process dies, so a crashed run never leaves a stale lock behind.
"""

from __future__ import annotations

import fcntl
import os
from pathlib import Path
from types import TracebackType

from platform_updater.errors import LockError
from platform_updater.logging import get_logger

logger = get_logger(__name__)


class RunLock:
    """
    Exclusive, non-blocking advisory lock held for one update run.

    Example:
        >>> with RunLock(Path("/var/www/platform/updater.lock")):
        ...     orchestrator.run()
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        """Whether this instance currently holds the lock."""
        return self._fd is not None

    def acquire(self) -> None:
        """
        Take the lock without waiting.

        Raises:
            LockError: If another run holds the lock or the file cannot be opened.
        """
        if self._fd is not None:
            return

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        except OSError as e:
            raise LockError(
                f"Cannot open run lock: {self.path}",
                details={"path": str(self.path), "error": str(e)},
            ) from e

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as e:
            holder = _read_holder(fd)
            os.close(fd)
            raise LockError(
                "Another update run is in progress",
                details={"path": str(self.path), "holder_pid": holder},
            ) from e

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        logger.debug("Acquired run lock", extra={"path": str(self.path)})

    def release(self) -> None:
        """Release the lock if held."""
        if self._fd is None:
            return
        try:
            os.ftruncate(self._fd, 0)
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug("Released run lock", extra={"path": str(self.path)})

    def __enter__(self) -> RunLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


def _read_holder(fd: int) -> int | None:
    try:
        os.lseek(fd, 0, os.SEEK_SET)
        text = os.read(fd, 32).decode().strip()
        return int(text) if text else None
    except (OSError, ValueError):
        return None
