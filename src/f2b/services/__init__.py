"""Service abstractions for interacting with the host and the ban daemon."""

from f2b.services.systemd import SystemdService
from f2b.services.firewall import FirewallDetector
from f2b.services.fail2ban import Fail2banClient
from f2b.services.writer import ConfigWriter
from f2b.services.verification import VerificationRunner

__all__ = [
    "SystemdService",
    "FirewallDetector",
    "Fail2banClient",
    "ConfigWriter",
    "VerificationRunner",
]
