"""Shared fixtures."""

from pathlib import Path
from typing import Generator

import pytest

from f2b.core.audit import configure_audit_logger
from f2b.core.context import ExecutionContext


@pytest.fixture(autouse=True)
def disable_audit(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep tests from appending to the host audit log."""
    for name in ("F2B_FAIL2BAN_DIR", "F2B_LOCK_PATH", "F2B_AUDIT_LOG"):
        monkeypatch.delenv(name, raising=False)
    configure_audit_logger(enabled=False)
    yield
    configure_audit_logger(enabled=False)


@pytest.fixture
def ctx(tmp_path: Path) -> ExecutionContext:
    """Execution context pointing at a config file that does not exist."""
    return ExecutionContext(config_path=tmp_path / "config.yaml")


@pytest.fixture
def dry_ctx(tmp_path: Path) -> ExecutionContext:
    return ExecutionContext(dry_run=True, config_path=tmp_path / "config.yaml")
