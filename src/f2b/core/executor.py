"""Command execution for external tools.

Provides:
- Safe command execution with output capture
- Dry-run mode support
- apt helpers that fail with PackageInstallError
"""

import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from f2b.core.context import ExecutionContext
from f2b.core.exceptions import ExecutionError, PackageInstallError


APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


@dataclass
class CommandResult:
    """Result of a command execution."""
    command: list[str]
    return_code: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        """Check if command succeeded."""
        return self.return_code == 0


class CommandExecutor:
    """Safe command execution with dry-run support and output capture.

    Features:
    - Dry-run mode shows what would happen
    - Output capture for processing
    - Timeout support
    """

    def __init__(self, ctx: ExecutionContext) -> None:
        self.ctx = ctx

    def run(
        self,
        command: list[str],
        *,
        description: Optional[str] = None,
        check: bool = True,
        capture: bool = True,
        timeout: Optional[int] = None,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Path] = None,
        mutating: bool = True,
    ) -> CommandResult:
        """Execute a command.

        Args:
            command: Command as list of strings
            description: Human-readable description for logging
            check: Raise exception on non-zero exit
            capture: Capture stdout/stderr
            timeout: Command timeout in seconds
            env: Additional environment variables
            cwd: Working directory
            mutating: If False the command is read-only and also runs in dry-run

        Returns:
            CommandResult with output

        Raises:
            ExecutionError: If command fails and check=True
        """
        if description:
            self.ctx.console.step(description)

        cmd_display = shlex.join(command)
        self.ctx.console.debug(f"Running: {cmd_display}")

        if self.ctx.dry_run and mutating:
            self.ctx.console.dry_run_msg(f"run {cmd_display}")
            return CommandResult(command=command, return_code=0, stdout="", stderr="")

        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)

        try:
            result = subprocess.run(
                command,
                capture_output=capture,
                text=True,
                timeout=timeout,
                env=run_env,
                cwd=cwd,
            )
        except subprocess.TimeoutExpired:
            raise ExecutionError(
                f"Command timed out after {timeout}s: {description or cmd_display}",
                command=cmd_display,
            )
        except FileNotFoundError:
            raise ExecutionError(
                f"Command not found: {command[0]}",
                command=cmd_display,
                hint=f"Install the package providing {command[0]}",
            )

        cmd_result = CommandResult(
            command=command,
            return_code=result.returncode,
            stdout=result.stdout if capture else "",
            stderr=result.stderr if capture else "",
        )

        if check and result.returncode != 0:
            raise ExecutionError(
                f"Command failed: {description or cmd_display}",
                command=cmd_display,
                return_code=result.returncode,
                stderr=result.stderr if capture else None,
            )

        return cmd_result

    def which(self, program: str) -> bool:
        """Check if a program is on PATH."""
        return shutil.which(program) is not None

    def apt_update(self) -> CommandResult:
        """Refresh apt package lists.

        Raises:
            PackageInstallError: If apt-get update fails
        """
        try:
            return self.run(
                ["apt-get", "update", "-y"],
                description="Updating package lists",
                env=APT_ENV,
            )
        except ExecutionError as e:
            raise PackageInstallError(
                "Failed to update apt package lists",
                command=e.command,
                details=e.details,
                hint="Check network connectivity and /etc/apt/sources.list",
            ) from e

    def apt_install(
        self,
        packages: list[str],
        *,
        description: Optional[str] = None,
    ) -> CommandResult:
        """Install packages via apt.

        Raises:
            PackageInstallError: If installation fails
        """
        desc = description or f"Installing {', '.join(packages)}"
        try:
            return self.run(
                ["apt-get", "install", "-y", "--no-install-recommends"] + packages,
                description=desc,
                env=APT_ENV,
            )
        except ExecutionError as e:
            raise PackageInstallError(
                f"Failed to install {', '.join(packages)}",
                command=e.command,
                details=e.details,
                hint="Run 'apt-get install " + " ".join(packages) + "' manually to see the full error",
            ) from e
