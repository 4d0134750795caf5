"""
Process Lock for the ghr-installer Package Database

A single advisory lock file serializes every mutation of the package
database across concurrent invocations on the same host. Ownership is an
exclusive `flock` on the file, which the kernel drops when the holder exits,
so a lock left behind by a dead process is reclaimed by the next acquirer
without deleting anything. The file also carries the holder's PID for
error messages.
"""

import fcntl
import os
from typing import Optional

from ghr_installer.exceptions import DatabaseError, LockBusyError
from ghr_installer.log_utils import logger

from .interfaces import Pathish

# Reopens allowed when a releasing holder unlinked the path under us.
MAX_OPEN_ATTEMPTS = 3


def is_process_alive(pid: int) -> bool:
    """
    Probe whether `pid` refers to a running process.

    Uses signal 0, which performs the permission and existence checks without
    delivering anything. A process owned by another user still counts as alive.
    """
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def _parse_pid(content: str) -> Optional[int]:
    try:
        return int(content.strip())
    except ValueError:
        return None


class PidLock:
    """
    Exclusive lock file guarded by `flock(LOCK_EX | LOCK_NB)`.

    Every acquisition opens its own file description, so a second PidLock on
    the same path fails with LockBusyError even inside one process. The PID
    is written only after the flock is taken; a reader that finds the file
    empty therefore never mistakes a holder that is still starting up for a
    stale one.
    """

    def __init__(self, lock_path: Pathish):
        self.lock_path = os.fspath(lock_path)
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def read_holder_pid(self) -> Optional[int]:
        """PID recorded in the lock file, or None if absent or unparseable."""
        try:
            with open(self.lock_path, "r", encoding="utf-8") as f:
                return _parse_pid(f.read())
        except OSError:
            return None

    def _open(self) -> int:
        try:
            return os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise DatabaseError(
                "Could not create lock file", path=self.lock_path, details=str(e)
            ) from e

    def _is_current_file(self, fd: int) -> bool:
        try:
            path_stat = os.stat(self.lock_path)
        except FileNotFoundError:
            return False
        fd_stat = os.fstat(fd)
        return (fd_stat.st_dev, fd_stat.st_ino) == (path_stat.st_dev, path_stat.st_ino)

    def _record_owner(self, fd: int) -> None:
        previous = _parse_pid(os.pread(fd, 64, 0).decode("utf-8", "replace"))
        if previous is not None and previous != os.getpid():
            if is_process_alive(previous):
                logger.debug(
                    "Lock %s names PID %s, which no longer holds it",
                    self.lock_path,
                    previous,
                )
            else:
                logger.warning(
                    "Reclaimed stale lock %s (holder %s is not running)",
                    self.lock_path,
                    previous,
                )
        os.ftruncate(fd, 0)
        os.pwrite(fd, f"{os.getpid()}\n".encode("utf-8"), 0)
        os.fsync(fd)

    def acquire(self) -> None:
        """
        Take the lock for this process.

        Raises:
            LockBusyError: Another open lock holds the file.
            DatabaseError: The lock file could not be created or locked.
        """
        if self._fd is not None:
            return

        for _attempt in range(MAX_OPEN_ATTEMPTS):
            fd = self._open()
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                os.close(fd)
                raise LockBusyError(self.read_holder_pid(), path=self.lock_path) from None
            except OSError as e:
                os.close(fd)
                raise DatabaseError(
                    "Could not lock file", path=self.lock_path, details=str(e)
                ) from e

            if not self._is_current_file(fd):
                os.close(fd)
                continue

            try:
                self._record_owner(fd)
            except OSError as e:
                os.close(fd)
                raise DatabaseError(
                    "Could not write lock file", path=self.lock_path, details=str(e)
                ) from e
            self._fd = fd
            logger.debug("Acquired lock %s", self.lock_path)
            return

        raise DatabaseError("Could not acquire lock", path=self.lock_path)

    def release(self) -> None:
        """Remove the lock file and drop the flock if this process holds it."""
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            # Unlink before dropping the flock.
            os.remove(self.lock_path)
            logger.debug("Released lock %s", self.lock_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Could not remove lock file {self.lock_path}: {e}")
        finally:
            os.close(fd)

    def __enter__(self) -> "PidLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
