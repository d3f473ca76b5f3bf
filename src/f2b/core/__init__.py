"""Core framework components for the f2b provisioning tool."""

from f2b.core.exceptions import (
    F2BError,
    PrivilegeError,
    FirewallAbsent,
    ConfigurationError,
    ValidationError,
    ExecutionError,
    PackageInstallError,
    ConfigWriteError,
    ServiceError,
    RunLockError,
    VerificationInconclusive,
)

from f2b.core.context import ExecutionContext, create_context
from f2b.core.output import console, Console, Verbosity
from f2b.core.config import AppConfig, ToolConfig
from f2b.core.audit import AuditLogger, AuditEvent, AuditEventType, AuditResult, get_audit_logger
from f2b.core.executor import CommandExecutor, CommandResult
from f2b.core.lock import RunLock

__all__ = [
    # Exceptions
    "F2BError",
    "PrivilegeError",
    "FirewallAbsent",
    "ConfigurationError",
    "ValidationError",
    "ExecutionError",
    "PackageInstallError",
    "ConfigWriteError",
    "ServiceError",
    "RunLockError",
    "VerificationInconclusive",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "AppConfig",
    "ToolConfig",
    # Audit
    "AuditLogger",
    "AuditEvent",
    "AuditEventType",
    "AuditResult",
    "get_audit_logger",
    # Executor
    "CommandExecutor",
    "CommandResult",
    # Locking
    "RunLock",
]
