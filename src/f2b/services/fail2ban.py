"""fail2ban-client wrapper.

Provides:
- Reload with systemd restart fallback
- Jail status parsing (banned IP list)
- Manual ban / unban
"""

from dataclasses import dataclass, field
from typing import Optional

from f2b.core.context import ExecutionContext
from f2b.core.executor import CommandExecutor
from f2b.core.exceptions import ExecutionError, ServiceError
from f2b.services.systemd import SystemdService


FAIL2BAN_SERVICE = "fail2ban"
CLIENT = "fail2ban-client"


@dataclass
class JailStatus:
    """Parsed output of `fail2ban-client status <jail>`."""
    jail: str
    currently_failed: int = 0
    total_failed: int = 0
    currently_banned: int = 0
    total_banned: int = 0
    banned_ips: list[str] = field(default_factory=list)
    file_list: list[str] = field(default_factory=list)

    def is_banned(self, address: str) -> bool:
        return address in self.banned_ips


def _to_int(value: str) -> int:
    try:
        return int(value.strip())
    except ValueError:
        return 0


def parse_jail_status(jail: str, output: str) -> JailStatus:
    """Parse the tree printed by fail2ban-client status.

    Example input:
        Status for the jail: sshd
        |- Filter
        |  |- Currently failed: 0
        |  `- File list:        /var/log/auth.log
        `- Actions
           |- Currently banned: 1
           `- Banned IP list:   203.0.113.5
    """
    status = JailStatus(jail=jail)
    for raw in output.splitlines():
        line = raw.lstrip(" |`-\t")
        if ":" not in line:
            continue
        key, _, value = line.partition(":")
        key = key.strip().lower()
        if key == "currently failed":
            status.currently_failed = _to_int(value)
        elif key == "total failed":
            status.total_failed = _to_int(value)
        elif key == "currently banned":
            status.currently_banned = _to_int(value)
        elif key == "total banned":
            status.total_banned = _to_int(value)
        elif key == "banned ip list":
            status.banned_ips = value.split()
        elif key == "file list":
            status.file_list = value.split()
    return status


class Fail2banClient:
    """Talks to the running fail2ban daemon."""

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        systemd: SystemdService,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.systemd = systemd

    def reload(self) -> None:
        """Reload the configuration, restarting the daemon if reload fails.

        Raises:
            ServiceError: If the restart fallback fails too
        """
        result = self.executor.run(
            [CLIENT, "reload"],
            description="Reloading fail2ban",
            check=False,
        )
        if not result.success:
            self.ctx.console.warn("fail2ban-client reload failed, restarting the service")
            self.restart()

    def restart(self) -> None:
        """Restart the daemon through systemd."""
        self.systemd.restart(FAIL2BAN_SERVICE, description="Restarting fail2ban")

    def status(self, jail: str) -> JailStatus:
        """Query one jail.

        Raises:
            ServiceError: If the daemon does not know the jail or is down
        """
        result = self.executor.run(
            [CLIENT, "status", jail],
            check=False,
            mutating=False,
        )
        if not result.success:
            raise ServiceError(
                f"Cannot read status of jail '{jail}'",
                service=FAIL2BAN_SERVICE,
                details=[result.stderr.strip()] if result.stderr.strip() else None,
                hint=f"Check the jail with: fail2ban-client status {jail}",
            )
        return parse_jail_status(jail, result.stdout)

    def banned_ips(self, jail: str) -> list[str]:
        return self.status(jail).banned_ips

    def ban(self, jail: str, address: str) -> None:
        """Ban an address (or CIDR range) in a jail.

        Raises:
            ExecutionError: If fail2ban-client rejects the request
        """
        self.executor.run(
            [CLIENT, "set", jail, "banip", address],
            description=f"Banning {address} in {jail}",
        )

    def unban(self, jail: str, address: str) -> bool:
        """Lift a ban. Returns False when the daemon refused."""
        try:
            self.executor.run(
                [CLIENT, "set", jail, "unbanip", address],
                description=f"Unbanning {address} in {jail}",
            )
        except ExecutionError as e:
            self.ctx.console.warn(f"Could not unban {address}: {e.message}")
            return False
        return True

    def version(self) -> Optional[str]:
        result = self.executor.run([CLIENT, "--version"], check=False, mutating=False)
        if not result.success or not result.stdout.strip():
            return None
        return result.stdout.strip().splitlines()[0]
