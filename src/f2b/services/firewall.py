"""Packet-filtering front-end detection and activation.

Probes ufw before firewalld. A front-end that is installed but inactive
is enabled, with the SSH port opened first so the operator's session
survives.
"""

import os
from pathlib import Path
from typing import Optional

from f2b.core.context import ExecutionContext
from f2b.core.executor import CommandExecutor
from f2b.policy.generator import DEFAULT_SSH_PORT
from f2b.policy.models import FirewallState
from f2b.services.systemd import SystemdService


SSHD_CONFIG_PATH = Path("/etc/ssh/sshd_config")
MIN_PORT = 1
MAX_PORT = 65535

FAIL2BAN_CHAIN_PREFIX = "f2b-"


def detect_ssh_port(sshd_config: Path = SSHD_CONFIG_PATH) -> int:
    """Detect SSH port from sshd_config.

    Returns:
        Detected SSH port or DEFAULT_SSH_PORT
    """
    try:
        if not sshd_config.exists():
            return DEFAULT_SSH_PORT

        for line in sshd_config.read_text().splitlines():
            line = line.strip()
            if line.startswith("#"):
                continue
            if line.lower().startswith("port "):
                parts = line.split()
                if len(parts) >= 2:
                    port = int(parts[1])
                    if MIN_PORT <= port <= MAX_PORT:
                        return port
    except (OSError, ValueError):
        pass

    return DEFAULT_SSH_PORT


def get_ssh_client_ip() -> Optional[str]:
    """IP address of the current SSH client, from SSH_CONNECTION."""
    ssh_conn = os.environ.get("SSH_CONNECTION")
    if ssh_conn:
        parts = ssh_conn.split()
        if parts:
            return parts[0]
    return None


def fail2ban_chains(iptables_output: str) -> str:
    """Keep only the f2b-* chain blocks of `iptables -L -n` output."""
    kept: list[str] = []
    in_chain = False
    for line in iptables_output.splitlines():
        if line.startswith("Chain "):
            in_chain = line.split()[1].startswith(FAIL2BAN_CHAIN_PREFIX)
        if in_chain:
            kept.append(line)
    return "\n".join(kept)


class FirewallDetector:
    """Finds, and if needed activates, the host firewall front-end.

    Example:
        detector = FirewallDetector(ctx, executor, systemd)
        state = detector.detect()
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        executor: CommandExecutor,
        systemd: SystemdService,
        sshd_config: Path = SSHD_CONFIG_PATH,
    ) -> None:
        self.ctx = ctx
        self.executor = executor
        self.systemd = systemd
        self.sshd_config = sshd_config
        self.activated = False

    @property
    def ssh_port(self) -> int:
        return detect_ssh_port(self.sshd_config)

    def detect(self) -> FirewallState:
        """Detect the active front-end, enabling an inactive one.

        Returns:
            UFW, FIREWALLD, or NONE when neither tool is installed

        Raises:
            ExecutionError: If enabling the front-end fails
        """
        self.ctx.console.step("Detecting firewall")

        if self.executor.which("ufw"):
            if not self._ufw_active():
                self._enable_ufw()
            self.ctx.console.success("Firewall: UFW")
            return FirewallState.UFW

        if self.executor.which("firewall-cmd"):
            if not self.systemd.is_active("firewalld"):
                self._enable_firewalld()
            self.ctx.console.success("Firewall: FirewallD")
            return FirewallState.FIREWALLD

        self.ctx.console.warn("No firewall front-end (ufw or firewalld) found")
        return FirewallState.NONE

    def install_ufw(self) -> FirewallState:
        """Install ufw and enable it with SSH allowed.

        Raises:
            PackageInstallError: If apt fails
        """
        self.executor.apt_install(["ufw"], description="Installing ufw")
        self._enable_ufw()
        return FirewallState.UFW

    def show_rules(self, state: FirewallState) -> str:
        """Current front-end rules plus the fail2ban chains."""
        sections: list[str] = []

        if state is FirewallState.UFW:
            result = self.executor.run(
                ["ufw", "status", "verbose"], check=False, mutating=False,
            )
            sections.append(result.stdout.strip())
        elif state is FirewallState.FIREWALLD:
            result = self.executor.run(
                ["firewall-cmd", "--list-all"], check=False, mutating=False,
            )
            sections.append(result.stdout.strip())

        result = self.executor.run(["iptables", "-L", "-n"], check=False, mutating=False)
        chains = fail2ban_chains(result.stdout)
        if chains:
            sections.append(chains)

        return "\n\n".join(section for section in sections if section)

    def _ufw_active(self) -> bool:
        result = self.executor.run(["ufw", "status"], check=False, mutating=False)
        return "Status: active" in result.stdout

    def _enable_ufw(self) -> None:
        port = self.ssh_port
        self.ctx.console.warn("UFW is installed but inactive")
        self.executor.run(
            ["ufw", "allow", f"{port}/tcp"],
            description=f"Allowing SSH ({port}/tcp) through UFW",
        )
        self.executor.run(["ufw", "--force", "enable"], description="Enabling UFW")
        self.activated = True

    def _enable_firewalld(self) -> None:
        port = self.ssh_port
        self.ctx.console.warn("FirewallD is installed but inactive")
        # Offline rules apply before the daemon starts filtering
        self.executor.run(
            ["firewall-offline-cmd", "--add-service=ssh"],
            description="Allowing SSH through FirewallD",
        )
        if port != DEFAULT_SSH_PORT:
            self.executor.run(["firewall-offline-cmd", f"--add-port={port}/tcp"])
        self.systemd.enable("firewalld", start=True, description="Starting FirewallD")
        self.executor.run(["firewall-cmd", "--reload"], description="Reloading FirewallD")
        self.activated = True
