"""Systemd service abstraction.

Provides a safe interface for the unit operations a provisioning run
needs: checking state, enabling and restarting daemons.
"""

from typing import Optional

from f2b.core.context import ExecutionContext
from f2b.core.executor import CommandExecutor
from f2b.core.exceptions import ExecutionError, ServiceError


class SystemdService:
    """Safe interface for managing systemd services.

    All mutating operations respect dry-run mode.
    """

    def __init__(self, ctx: ExecutionContext, executor: CommandExecutor) -> None:
        """Initialize systemd service manager.

        Args:
            ctx: Execution context
            executor: Command executor
        """
        self.ctx = ctx
        self.executor = executor

    def is_active(self, service: str) -> bool:
        """Check if a service is active (running).

        Args:
            service: Service name

        Returns:
            True if service is active
        """
        result = self.executor.run(
            ["systemctl", "is-active", "--quiet", service],
            check=False,
            mutating=False,
        )
        return result.success

    def exists(self, service: str) -> bool:
        """Check if a service unit file is installed."""
        result = self.executor.run(
            ["systemctl", "list-unit-files", "--no-pager", f"{service}.service"],
            check=False,
            mutating=False,
        )
        return f"{service}.service" in result.stdout

    def restart(self, service: str, *, description: Optional[str] = None) -> None:
        """Restart a service.

        Args:
            service: Service name
            description: Optional description for logging

        Raises:
            ServiceError: If service fails to restart
        """
        desc = description or f"Restarting {service}"
        self.ctx.console.step(desc)

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(f"systemctl restart {service}")
            return

        try:
            self.executor.run(["systemctl", "restart", service])
        except ExecutionError as e:
            raise ServiceError(
                f"Failed to restart {service}",
                service=service,
                details=e.details,
                hint=f"Check logs: journalctl -xeu {service}",
            ) from e

    def enable(
        self,
        service: str,
        *,
        start: bool = False,
        description: Optional[str] = None,
    ) -> None:
        """Enable a service to start on boot.

        Args:
            service: Service name
            start: Also start the service now
            description: Optional description for logging

        Raises:
            ServiceError: If systemctl refuses
        """
        desc = description or f"Enabling {service}"
        self.ctx.console.step(desc)

        args = ["systemctl", "enable"]
        if start:
            args.append("--now")
        args.append(service)

        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg(" ".join(args))
            return

        try:
            self.executor.run(args)
        except ExecutionError as e:
            raise ServiceError(
                f"Failed to enable {service}",
                service=service,
                details=e.details,
                hint=f"Check logs: journalctl -xeu {service}",
            ) from e
