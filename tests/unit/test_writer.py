"""Unit tests for writing policy files."""

from pathlib import Path
from unittest.mock import patch

import pytest

from f2b.core.audit import AuditLogger
from f2b.core.exceptions import ConfigWriteError
from f2b.policy.generator import PolicyGenerator
from f2b.policy.models import (
    Duration,
    EnhancedSettings,
    FirewallState,
    OperatorAnswers,
)
from f2b.policy.resolver import OverrideResolver
from f2b.policy.serializer import MANAGED_HEADER
from f2b.services.writer import ConfigWriter, backup_path, is_managed


def build(fail2ban_dir: Path, **kwargs):
    kwargs.setdefault("hostname", "web01")
    answers = OperatorAnswers(**kwargs)
    generator = PolicyGenerator(fail2ban_dir)
    defaults, jails = generator.generate(FirewallState.UFW, answers)
    return OverrideResolver().resolve(
        defaults, jails, generator.override_layers(answers),
        blocklist=generator.blocklist(answers),
    )


STRICT = EnhancedSettings(ban_time=Duration("1h"), max_retry=3)


@pytest.fixture
def etc(tmp_path: Path) -> Path:
    path = tmp_path / "fail2ban"
    path.mkdir()
    return path


@pytest.fixture
def writer(ctx, etc) -> ConfigWriter:
    return ConfigWriter(ctx, etc, audit=AuditLogger(enabled=False))


class TestWrite:
    """Tests for ConfigWriter.write."""
    def test_writes_jail_local(self, writer, etc):
        """A baseline policy should write only a managed jail.local."""
        result = writer.write(build(etc))

        jail_local = etc / "jail.local"
        assert result.written == [jail_local]
        assert result.jail_local == jail_local
        assert result.backups == []
        assert jail_local.read_text().startswith(f"# {MANAGED_HEADER}")

    def test_writes_service_file_and_blocklist(self, writer, etc):
        """Strict and blocklist answers should write jail.d and blocklist files."""
        result = writer.write(build(etc, enhanced=STRICT, blocklist=["198.51.100.7"]))

        assert etc / "jail.d" / "sshd.local" in result.written
        assert "198.51.100.7" in (etc / "ip.blocklist.d" / "custom.conf").read_text()
        assert (etc / "filter.d" / "custom-blocklist.conf").exists()

    def test_same_policy_same_bytes(self, ctx, etc):
        """Writing an identical policy twice leaves identical files."""
        ConfigWriter(ctx, etc, audit=AuditLogger(enabled=False)).write(build(etc))
        first = (etc / "jail.local").read_bytes()
        ConfigWriter(ctx, etc, audit=AuditLogger(enabled=False)).write(build(etc))
        assert (etc / "jail.local").read_bytes() == first


class TestBackup:
    """Tests for backing up existing configuration."""
    def test_backup_before_overwrite(self, writer, etc):
        """An existing jail.local should be copied to .backup first."""
        original = "[DEFAULT]\nbantime = 1d\n"
        (etc / "jail.local").write_text(original)

        result = writer.write(build(etc))

        backup = backup_path(etc / "jail.local")
        assert backup.name == "jail.local.backup"
        assert result.backups == [backup]
        assert backup.read_text() == original
        assert (etc / "jail.local").read_text() != original

    def test_backup_once_per_writer(self, writer, etc):
        """A second write in the same run keeps the pre-run backup."""
        original = "[DEFAULT]\nbantime = 1d\n"
        (etc / "jail.local").write_text(original)

        writer.write(build(etc))
        second = writer.write(build(etc, enhanced=STRICT))

        assert second.backups == []
        assert backup_path(etc / "jail.local").read_text() == original

    def test_first_write_not_backed_up_later(self, writer, etc):
        """A file created by this writer is not backed up on rewrite."""
        writer.write(build(etc))
        writer.write(build(etc, enhanced=STRICT))
        assert not backup_path(etc / "jail.local").exists()

    def test_backup_failure_aborts(self, writer, etc):
        """A failed backup should abort and leave the original file."""
        original = "[DEFAULT]\n"
        (etc / "jail.local").write_text(original)

        with patch("f2b.services.writer.shutil.copy2", side_effect=OSError("disk full")):
            with pytest.raises(ConfigWriteError) as exc_info:
                writer.write(build(etc))

        assert "back up" in exc_info.value.message
        assert (etc / "jail.local").read_text() == original

    def test_write_failure(self, writer, etc):
        """A failed write should raise ConfigWriteError with exit code 7."""
        with patch("f2b.services.writer.write_atomic", side_effect=OSError("read-only")):
            with pytest.raises(ConfigWriteError) as exc_info:
                writer.write(build(etc))
        assert exc_info.value.exit_code == 7


class TestPrune:
    """Tests for removing stale jail.d files."""
    def test_stale_managed_file_removed(self, writer, etc):
        """A managed jail.d file with nothing left to hold should be removed."""
        writer.write(build(etc, enhanced=STRICT))
        stale = etc / "jail.d" / "sshd.local"
        assert stale.exists()

        result = writer.write(build(etc))

        assert result.removed == [stale]
        assert not stale.exists()

    def test_unmanaged_file_kept(self, writer, etc):
        """Files without the managed header should never be removed."""
        own = etc / "jail.d" / "custom.local"
        own.parent.mkdir()
        own.write_text("[postfix]\nenabled = true\n")

        result = writer.write(build(etc))

        assert result.removed == []
        assert own.exists()

    def test_is_managed(self, etc):
        """is_managed should look for the header line."""
        managed = etc / "a.local"
        managed.write_text(f"# {MANAGED_HEADER}\n")
        other = etc / "b.local"
        other.write_text("[sshd]\n")

        assert is_managed(managed)
        assert not is_managed(other)
        assert not is_managed(etc / "missing.local")


class TestDryRun:
    """Tests for dry-run writes."""
    def test_nothing_written(self, dry_ctx, etc):
        """A dry run should leave the directory empty."""
        writer = ConfigWriter(dry_ctx, etc, audit=AuditLogger(enabled=False))
        result = writer.write(build(etc, blocklist=["198.51.100.7"]))

        assert result.written == []
        assert list(etc.iterdir()) == []
