"""Detection of installed network services.

Only used to decide which optional jails are offered to the operator;
a jail is never enabled without an explicit opt-in.
"""

from dataclasses import dataclass, field

from f2b.core.executor import CommandExecutor
from f2b.policy.generator import ServiceJail, get_service_jails
from f2b.services.systemd import SystemdService


# server -> (binary, systemd unit)
KNOWN_SERVERS: dict[str, tuple[str, str]] = {
    "apache": ("apache2", "apache2"),
    "nginx": ("nginx", "nginx"),
    "vsftpd": ("vsftpd", "vsftpd"),
}


@dataclass
class DiscoveredServices:
    """Servers found on the host and the jails they make available."""
    servers: set[str] = field(default_factory=set)

    def suggestions(self, category: str) -> list[ServiceJail]:
        return get_service_jails(category, self.servers)

    @property
    def http_auth(self) -> list[ServiceJail]:
        return self.suggestions("http-auth")

    @property
    def bad_bots(self) -> list[ServiceJail]:
        return self.suggestions("bad-bots")

    @property
    def ftp(self) -> list[ServiceJail]:
        return self.suggestions("ftp")


class ServiceDiscovery:
    """Looks for web and FTP servers by binary or unit file."""

    def __init__(self, executor: CommandExecutor, systemd: SystemdService) -> None:
        self.executor = executor
        self.systemd = systemd

    def discover(self) -> DiscoveredServices:
        found = DiscoveredServices()
        for server, (binary, unit) in KNOWN_SERVERS.items():
            if self.executor.which(binary) or self.systemd.exists(unit):
                found.servers.add(server)
        return found
