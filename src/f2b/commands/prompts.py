"""Interactive operator questions.

All questions are asked before anything is generated, in a fixed order,
and collected into an OperatorAnswers value. Invalid input is reported
and asked again instead of aborting the run.
"""

import ipaddress
from typing import Callable, Optional, TypeVar

from f2b.core.exceptions import ValidationError
from f2b.core.output import Console
from f2b.core.validation import (
    parse_cidr_list,
    validate_address,
    validate_email,
    validate_max_retry,
)
from f2b.policy.models import Duration, EnhancedSettings, OperatorAnswers
from f2b.services.discovery import DiscoveredServices
from f2b.services.firewall import get_ssh_client_ip


T = TypeVar("T")

MAX_ATTEMPTS = 5


def covered_by(address: str, cidrs: list[str]) -> bool:
    """True if the address falls inside any of the ranges."""
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    for cidr in cidrs:
        try:
            if ip in ipaddress.ip_network(cidr, strict=False):
                return True
        except ValueError:
            continue
    return False


def parse_int(value: str) -> int:
    try:
        number = int(value.strip())
    except ValueError:
        raise ValidationError(f"Not a number: {value}")
    return validate_max_retry(number)


class InteractiveAnswerProvider:
    """Asks the operator for everything a run needs.

    Args:
        console: Console used for prompts and messages
        services: Detected servers, deciding which optional jails are offered
        ssh_port: Detected SSH port, used for the SSH jail
    """

    def __init__(
        self,
        console: Console,
        services: Optional[DiscoveredServices] = None,
        ssh_port: int = 22,
    ) -> None:
        self.console = console
        self.services = services or DiscoveredServices()
        self.ssh_port = ssh_port

    def ask_install_firewall(self) -> bool:
        self.console.warn("No firewall detected. fail2ban needs one to block connections effectively.")
        return self.console.confirm("Install UFW (Uncomplicated Firewall)?")

    def ask_continue_without_firewall(self) -> bool:
        self.console.warn("Without a firewall, bans may not be enforced")
        return self.console.confirm("Continue anyway?")

    def gather(self) -> OperatorAnswers:
        """Ask every question in order and return the answers."""
        answers = OperatorAnswers(ssh_port=self.ssh_port)

        self.console.section("Trusted IPs")
        answers.trusted_cidrs = self._trusted_cidrs()

        self.console.section("Enhanced security")
        answers.enhanced = self._enhanced()

        self.console.section("Service protection")
        answers.protected_jails = self._service_jails()

        self.console.section("Custom blocklist")
        answers.blocklist = self._blocklist()

        self.console.section("Verification")
        answers.probe_address = self._probe_address(answers.trusted_cidrs)

        return answers

    def _ask_valid(
        self,
        prompt: str,
        parse: Callable[[str], T],
        default: str = "",
    ) -> T:
        """Ask until parse() accepts the answer.

        Raises:
            ValidationError: After MAX_ATTEMPTS rejected answers
        """
        attempt = 1
        while True:
            raw = self.console.ask(prompt, default=default)
            try:
                return parse(raw)
            except ValidationError as e:
                if attempt >= MAX_ATTEMPTS:
                    raise
                self.console.error(e.message)
                if e.hint:
                    self.console.hint(e.hint)
            attempt += 1

    def _trusted_cidrs(self) -> list[str]:
        cidrs: list[str] = []
        if self.console.confirm("Specify trusted IPs that fail2ban should ignore?"):
            cidrs = self._ask_valid(
                "Trusted IPs/ranges (space or comma separated, e.g. 192.168.1.0/24)",
                parse_cidr_list,
            )

        client_ip = get_ssh_client_ip()
        if client_ip and not covered_by(client_ip, cidrs):
            self.console.warn(
                f"Your SSH client address {client_ip} is not trusted and can be banned"
            )
            if self.console.confirm(f"Add {client_ip} to the trusted list?"):
                cidrs.append(client_ip)

        return cidrs

    def _enhanced(self) -> Optional[EnhancedSettings]:
        if not self.console.confirm("Configure enhanced security settings?"):
            return None

        defaults = EnhancedSettings()
        ban_time = self._ask_valid(
            "Ban time (24h recommended, -1 for permanent)",
            lambda v: Duration.parse(v, allow_permanent=True),
            default=str(defaults.ban_time),
        )
        if ban_time.is_permanent:
            self.console.info("Bans will be permanent")

        max_retry = self._ask_valid(
            "Maximum retry attempts",
            parse_int,
            default=str(defaults.max_retry),
        )
        find_time = self._ask_valid(
            "Find time (30m recommended)",
            Duration.parse,
            default=str(defaults.find_time),
        )
        aggressive = self.console.confirm(
            "Use the aggressive ban action? It bans all ports, not only the attacked one"
        )

        alert_email = None
        if self.console.confirm("Send e-mail alerts on bans?"):
            alert_email = self._ask_valid("Alert e-mail address", validate_email)

        persistent = self.console.confirm("Keep bans across restarts (persistent database)?")

        return EnhancedSettings(
            ban_time=ban_time,
            max_retry=max_retry,
            find_time=find_time,
            aggressive=aggressive,
            alert_email=alert_email,
            persistent=persistent,
        )

    def _service_jails(self) -> list[str]:
        chosen: list[str] = []
        offers = [
            ("HTTP authentication", self.services.http_auth),
            ("bad bots", self.services.bad_bots),
            ("FTP", self.services.ftp),
        ]
        for label, jails in offers:
            if not jails:
                continue
            names = ", ".join(jail.display_name for jail in jails)
            if self.console.confirm(f"Protect {label} ({names})?"):
                chosen.extend(jail.name for jail in jails)

        if not any(jails for _, jails in offers):
            self.console.info("No web or FTP servers detected")
        return chosen

    def _blocklist(self) -> list[str]:
        if not self.console.confirm("Configure a custom IP blocklist?"):
            return []
        return self._ask_valid(
            "Addresses or ranges to always ban (comma separated)",
            parse_cidr_list,
        )

    def _probe_address(self, trusted: list[str]) -> Optional[str]:
        if not self.console.confirm("Verify the SSH jail with a simulated attack?"):
            return None

        def parse(value: str) -> str:
            address = validate_address(value)
            if covered_by(address, ["127.0.0.0/8", "::1/128"] + trusted):
                raise ValidationError(
                    f"{address} is in the ignore list and would never be banned",
                    hint="Use an address outside the trusted ranges, e.g. 203.0.113.7",
                )
            return address

        return self._ask_valid("Probe address to impersonate", parse, default="203.0.113.7")
