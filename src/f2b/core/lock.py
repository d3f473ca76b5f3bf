"""Host-wide run lock.

Every provisioning run mutates host-global state (firewall tables,
/etc/fail2ban, the daemon), so only one run may hold the lock at a time.
"""

import fcntl
import os
from pathlib import Path
from types import TracebackType
from typing import Optional

from f2b.core.exceptions import RunLockError


class RunLock:
    """Exclusive, non-blocking flock on a lock file.

    Usage:
        with RunLock(Path("/run/f2b.lock")):
            provision()
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._fd: Optional[int] = None

    def acquire(self) -> None:
        """Take the lock.

        Raises:
            RunLockError: If another process holds the lock or the file
                cannot be opened
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as e:
            raise RunLockError(
                f"Cannot open lock file: {self.path}",
                details=[str(e)],
            ) from e

        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            holder = self._read_holder()
            raise RunLockError(
                "Another f2b run is in progress on this host",
                hint="Wait for it to finish, then run again",
                details=[f"Lock held by PID {holder}"] if holder else None,
            )

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd

    def release(self) -> None:
        """Release the lock (no-op if not held)."""
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def _read_holder(self) -> Optional[str]:
        try:
            return self.path.read_text().strip() or None
        except OSError:
            return None

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()
