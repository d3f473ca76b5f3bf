"""Writes a resolved policy to the fail2ban configuration directory.

Provides:
- Backup of every existing target before it is overwritten
- Atomic writes (temp file + rename)
- Removal of managed jail.d files that no longer have content
- Dry-run rendering to the console
"""

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from f2b.core.audit import AuditEventType, AuditLogger, get_audit_logger
from f2b.core.context import ExecutionContext
from f2b.core.exceptions import ConfigWriteError
from f2b.core.files import write_atomic
from f2b.policy.models import EffectivePolicy
from f2b.policy.serializer import (
    BLOCKLIST_FILE,
    JAIL_D,
    MANAGED_HEADER,
    PolicySerializer,
)


BACKUP_SUFFIX = ".backup"


@dataclass
class WrittenPaths:
    """What a write pass did on disk."""
    written: list[Path] = field(default_factory=list)
    backups: list[Path] = field(default_factory=list)
    removed: list[Path] = field(default_factory=list)

    @property
    def jail_local(self) -> Optional[Path]:
        for path in self.written:
            if path.name == "jail.local":
                return path
        return None


def backup_path(path: Path) -> Path:
    return path.with_name(path.name + BACKUP_SUFFIX)


def is_managed(path: Path) -> bool:
    """True if the file starts with the f2b managed header."""
    try:
        with open(path) as f:
            return MANAGED_HEADER in f.readline()
    except OSError:
        return False


class ConfigWriter:
    """Serializes an EffectivePolicy and writes it safely.

    A target is backed up at most once per writer instance, so the
    .backup file always holds the content from before this run even when
    remediation rewrites the same file.
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        fail2ban_dir: Path,
        serializer: Optional[PolicySerializer] = None,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        self.ctx = ctx
        self.fail2ban_dir = fail2ban_dir
        self.serializer = serializer or PolicySerializer(fail2ban_dir / BLOCKLIST_FILE)
        self.audit = audit or get_audit_logger()
        self._seen: set[Path] = set()

    def write(self, policy: EffectivePolicy) -> WrittenPaths:
        """Write every artifact of the policy.

        Args:
            policy: Resolved policy

        Returns:
            WrittenPaths listing written, backed-up and removed files

        Raises:
            ConfigWriteError: If a backup, write or removal fails. A failed
                backup aborts before its target is touched.
        """
        artifacts = self.serializer.render(policy)
        result = WrittenPaths()

        if self.ctx.dry_run:
            for relative, content in artifacts.items():
                path = self.fail2ban_dir / relative
                self.ctx.console.dry_run_msg(f"write {path}")
                self.ctx.console.code(content, "ini", title=str(path))
            return result

        for relative, content in artifacts.items():
            path = self.fail2ban_dir / relative
            self._backup(path, result)
            try:
                write_atomic(path, content)
            except OSError as e:
                self.audit.log_failure(
                    AuditEventType.CONFIG_WRITE, "file", str(path), str(e),
                )
                raise ConfigWriteError(
                    f"Failed to write {path}",
                    path=str(path),
                    details=[str(e)],
                    hint="Check that the fail2ban directory is writable",
                ) from e
            result.written.append(path)
            self.ctx.console.verbose(f"Wrote {path}")
            self.audit.log_success(AuditEventType.CONFIG_WRITE, "file", str(path))

        self._prune(set(result.written), result)
        return result

    def _backup(self, path: Path, result: WrittenPaths) -> None:
        if path in self._seen:
            return
        self._seen.add(path)

        if not path.exists():
            return

        target = backup_path(path)
        try:
            shutil.copy2(path, target)
        except OSError as e:
            self.audit.log_failure(
                AuditEventType.CONFIG_BACKUP, "file", str(path), str(e),
            )
            raise ConfigWriteError(
                f"Failed to back up {path}",
                path=str(path),
                details=[str(e)],
                hint="Nothing was overwritten; fix the problem and run again",
            ) from e

        result.backups.append(target)
        self.ctx.console.verbose(f"Backed up {path} to {target.name}")
        self.audit.log_success(
            AuditEventType.CONFIG_BACKUP, "file", str(path),
            parameters={"backup": str(target)},
        )

    def _prune(self, keep: set[Path], result: WrittenPaths) -> None:
        """Remove managed jail.d files that were not written this pass."""
        jail_d = self.fail2ban_dir / JAIL_D
        if not jail_d.is_dir():
            return

        for path in sorted(jail_d.glob("*.local")):
            if path in keep or not is_managed(path):
                continue
            self._backup(path, result)
            try:
                path.unlink()
            except OSError as e:
                raise ConfigWriteError(
                    f"Failed to remove stale file {path}",
                    path=str(path),
                    details=[str(e)],
                ) from e
            result.removed.append(path)
            self.ctx.console.verbose(f"Removed stale {path}")
            self.audit.log_success(AuditEventType.CONFIG_PRUNE, "file", str(path))
