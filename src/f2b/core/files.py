"""Atomic file writes.

A configuration file is either completely written or left untouched,
so an interrupted run never leaves a half-written jail.local behind.
"""

import contextlib
import os
import secrets
from pathlib import Path
from typing import Generator


CONFIG_FILE_PERMS = 0o644


class AtomicFileWriter:
    """Atomic file writer using temp file and rename."""

    def __init__(
        self,
        target_path: Path,
        permissions: int = CONFIG_FILE_PERMS,
    ) -> None:
        """Initialize atomic writer.

        Args:
            target_path: Final destination path
            permissions: File permissions to set
        """
        self.target_path = Path(target_path)
        self.permissions = permissions

    @contextlib.contextmanager
    def open(self, mode: str = "w") -> Generator:
        """Open for atomic writing.

        Usage:
            with AtomicFileWriter(path).open() as f:
                f.write("content")
            # File is atomically replaced here
        """
        self.target_path.parent.mkdir(mode=0o755, parents=True, exist_ok=True)

        # Same directory so the rename stays on one filesystem
        random_suffix = secrets.token_hex(8)
        tmp_path = self.target_path.with_name(
            f".{self.target_path.name}.tmp_{random_suffix}"
        )

        success = False
        fd = None

        try:
            fd = os.open(
                tmp_path,
                os.O_WRONLY | os.O_CREAT | os.O_EXCL,
                self.permissions,
            )

            with os.fdopen(fd, mode) as f:
                fd = None  # fdopen takes ownership
                yield f
                f.flush()
                os.fsync(f.fileno())

            # umask may have masked the requested mode
            os.chmod(tmp_path, self.permissions)

            os.replace(tmp_path, self.target_path)
            success = True

        finally:
            if fd is not None:
                os.close(fd)
            if not success and tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass


def write_atomic(path: Path, content: str, permissions: int = CONFIG_FILE_PERMS) -> None:
    """Write text content to path atomically."""
    with AtomicFileWriter(path, permissions=permissions).open() as f:
        f.write(content)
