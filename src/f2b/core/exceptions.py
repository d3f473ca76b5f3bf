"""Custom exceptions for the f2b provisioning tool.

All exceptions provide:
- Clear error messages
- Optional hints for resolution
- Optional details for debugging
- Exit codes for proper shell integration
"""

from typing import Optional


class F2BError(Exception):
    """Base exception for all f2b errors.

    Attributes:
        message: Human-readable error description
        hint: Suggested action to resolve the error
        details: Additional context for debugging
        exit_code: Shell exit code (0-127)
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or []

    def __str__(self) -> str:
        return self.message


class PrivilegeError(F2BError):
    """Not running with elevated rights.

    Raised before any host mutation takes place.
    """
    exit_code = 1


class FirewallAbsent(F2BError):
    """No packet-filtering front-end is available.

    Raised when neither ufw nor firewalld is present and the
    operator declines to continue without one.
    """
    exit_code = 1


class ConfigurationError(F2BError):
    """Configuration file or settings errors.

    Raised when:
    - Config file unreadable
    - Invalid YAML syntax
    - Invalid configuration values
    """
    exit_code = 2


class ValidationError(F2BError):
    """Input validation errors.

    Raised when:
    - Invalid CIDR notation or address
    - Invalid fail2ban duration
    - Override layer references an unknown field
    """
    exit_code = 3


class ExecutionError(F2BError):
    """Command execution failures.

    Raised when:
    - Shell command returns non-zero exit code
    - Command times out
    """
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not details:
            details = []
        if return_code is not None:
            details.append(f"Exit code: {return_code}")
        if stderr:
            details.append(f"Error output: {stderr.strip()}")
        super().__init__(message, hint=hint, details=details)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


class PackageInstallError(ExecutionError):
    """Package manager failure.

    Fatal while installing. During verification it is reported as a warning.
    """
    exit_code = 6


class ConfigWriteError(F2BError):
    """Filesystem failure while backing up or writing configuration.

    Raised when:
    - A backup copy cannot be created
    - A configuration artifact cannot be written
    - A stale managed file cannot be removed
    """
    exit_code = 7

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.path = path


class ServiceError(F2BError):
    """Systemd or ban daemon service errors.

    Raised when:
    - Start/restart fails
    - fail2ban-client cannot reach the daemon
    """
    exit_code = 8

    def __init__(
        self,
        message: str,
        *,
        service: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.service = service


class RunLockError(F2BError):
    """Another provisioning run holds the host lock."""
    exit_code = 9


class VerificationInconclusive(F2BError):
    """The probe did not produce a ban after the remediation retry.

    Reported to the operator as a warning; the run still completes.
    """
    exit_code = 0

    def __init__(
        self,
        message: str,
        *,
        jail: Optional[str] = None,
        address: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details)
        self.jail = jail
        self.address = address
