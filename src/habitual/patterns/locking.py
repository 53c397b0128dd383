"""Advisory lock serializing writes to the knowledge repository.

Whatever mutates the on-disk mirror (this package's RepositoryWriter, and
the external sync that commits and pushes the directory) takes the same
lock, so a push never sees a half-written tree.

POSIX only (fcntl).
"""

from __future__ import annotations

import errno
import fcntl
import os
import time
from collections.abc import Generator
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import Protocol

from habitual.core.errors import PersistenceError, SecurityError
from habitual.core.logging import get_logger

_logger = get_logger("patterns.locking")

DEFAULT_POLL_INTERVAL = 0.05


class RepositoryLock(Protocol):
    """Scoped exclusive access to the knowledge repository.

    ``hold()`` acquires on entry and releases on every exit path.
    """

    def hold(self) -> AbstractContextManager[None]: ...


class FileRepositoryLock:
    """``fcntl.flock`` on a lock file, acquired with a bounded wait.

    flock locks belong to the open file description, so two holders in the
    same process exclude each other just like two processes do.

    Attributes:
        path: The lock file. Never followed if it is a symlink.
        timeout_seconds: Maximum wait before giving up.
        poll_interval: Sleep between non-blocking attempts.
    """

    def __init__(
        self,
        path: Path,
        timeout_seconds: float = 10.0,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        self.path = path
        self.timeout_seconds = timeout_seconds
        self.poll_interval = poll_interval

    def _open(self) -> int:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            return os.open(
                str(self.path),
                os.O_RDWR | os.O_CREAT | os.O_NOFOLLOW | os.O_CLOEXEC,
                0o600,
            )
        except OSError as e:
            if e.errno == errno.ELOOP:
                _logger.warning("symlink_refused", path=str(self.path), role="lock_file")
                raise SecurityError(
                    f"lock file is a symlink (possible attack): {self.path}",
                    path=self.path,
                ) from e
            raise PersistenceError(f"cannot open lock file {self.path}: {e}") from e

    def _acquire(self, fd: int) -> None:
        deadline = time.monotonic() + self.timeout_seconds
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    _logger.warning(
                        "repository_lock_timeout",
                        path=str(self.path),
                        timeout_seconds=self.timeout_seconds,
                    )
                    raise PersistenceError(
                        f"timed out after {self.timeout_seconds}s waiting for "
                        f"repository lock {self.path}",
                        transient=True,
                    ) from None
                time.sleep(self.poll_interval)
            except OSError as e:
                raise PersistenceError(
                    f"cannot lock {self.path}: {e}"
                ) from e

    @contextmanager
    def hold(self) -> Generator[None, None, None]:
        """Hold the lock for the duration of the block.

        Raises:
            PersistenceError: transient=True when the wait times out.
            SecurityError: If the lock file is a symlink.
        """
        fd = self._open()
        try:
            self._acquire(fd)
            _logger.debug("repository_lock_acquired", path=str(self.path))
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
                _logger.debug("repository_lock_released", path=str(self.path))
        finally:
            os.close(fd)


__all__ = ["DEFAULT_POLL_INTERVAL", "FileRepositoryLock", "RepositoryLock"]
