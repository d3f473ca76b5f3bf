"""Policy generation from firewall state and operator answers.

Turns what the operator asked for into a default policy, a set of
service-scoped jails and the override layers that sit on top of them.
Nothing here touches the host; detection results arrive as arguments.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

from f2b.core.config import DEFAULT_FAIL2BAN_DIR
from f2b.core.exceptions import ValidationError
from f2b.core.validation import validate_cidr, validate_email, validate_port
from f2b.policy.models import (
    LOOPBACK_CIDR,
    BanAction,
    BlocklistEntry,
    Duration,
    FirewallState,
    JailDefinition,
    LayerRank,
    OperatorAnswers,
    OverrideLayer,
    PolicyDefaults,
)


SSH_JAIL = "sshd"
BLOCKLIST_JAIL = "custom-blocklist"
BLOCKLIST_FILTER = "custom-blocklist"

DEFAULT_SSH_PORT = 22
SSH_LOG_PATHS = (Path("/var/log/auth.log"), Path("/var/log/secure"))
PERSIST_DB_PATH = Path("/var/lib/fail2ban/fail2ban.sqlite3")
ALERT_MTA = "sendmail"
ALERT_ACTION = "%(action_mwl)s"


@dataclass
class ServiceJail:
    """Catalog entry for an optional protected service."""

    name: str
    display_name: str
    category: str          # http-auth, bad-bots, ftp
    server: str            # apache, nginx, vsftpd
    ports: tuple[str, ...]
    filter_id: str
    log_paths: tuple[Path, ...]
    max_retry: Optional[int] = None
    ban_time: Optional[Duration] = None

    def to_jail(self) -> JailDefinition:
        return JailDefinition(
            name=self.name,
            enabled=True,
            ports=self.ports,
            filter_id=self.filter_id,
            log_paths=self.log_paths,
            max_retry=self.max_retry,
            ban_time=self.ban_time,
        )


# =============================================================================
# Service Registry
# =============================================================================

SERVICE_JAILS: dict[str, ServiceJail] = {
    "apache-auth": ServiceJail(
        name="apache-auth",
        display_name="Apache authentication",
        category="http-auth",
        server="apache",
        ports=("http", "https"),
        filter_id="apache-auth",
        log_paths=(Path("/var/log/apache2/*error.log"),),
    ),
    "apache-badbots": ServiceJail(
        name="apache-badbots",
        display_name="Apache bad bots",
        category="bad-bots",
        server="apache",
        ports=("http", "https"),
        filter_id="apache-badbots",
        log_paths=(Path("/var/log/apache2/*access.log"),),
        max_retry=1,
        ban_time=Duration("48h"),
    ),
    "nginx-http-auth": ServiceJail(
        name="nginx-http-auth",
        display_name="Nginx authentication",
        category="http-auth",
        server="nginx",
        ports=("http", "https"),
        filter_id="nginx-http-auth",
        log_paths=(Path("/var/log/nginx/error.log"),),
    ),
    "vsftpd": ServiceJail(
        name="vsftpd",
        display_name="vsftpd",
        category="ftp",
        server="vsftpd",
        ports=("ftp", "ftp-data", "ftps", "ftps-data"),
        filter_id="vsftpd",
        log_paths=(Path("/var/log/vsftpd.log"),),
    ),
}


def get_service_jails(category: str, servers: set[str]) -> list[ServiceJail]:
    """Catalog entries of a category whose server software is installed."""
    return [
        svc for svc in SERVICE_JAILS.values()
        if svc.category == category and svc.server in servers
    ]


def ssh_port_spec(port: int) -> str:
    """fail2ban port value for the SSH jail."""
    validate_port(port)
    return "ssh" if port == DEFAULT_SSH_PORT else str(port)


class PolicyGenerator:
    """Builds the generated (rank 0) policy and the operator layers."""

    def __init__(self, fail2ban_dir: Path = DEFAULT_FAIL2BAN_DIR) -> None:
        self.fail2ban_dir = fail2ban_dir

    @property
    def blocklist_file(self) -> Path:
        """Address list the blocklist jail reads."""
        return self.fail2ban_dir / "ip.blocklist.d" / "custom.conf"

    def generate(
        self,
        state: FirewallState,
        answers: OperatorAnswers,
    ) -> tuple[PolicyDefaults, list[JailDefinition]]:
        """Build the default policy and jail list.

        Args:
            state: Detected firewall front-end
            answers: Operator answers gathered up front

        Returns:
            (defaults, jails) with sshd first and the blocklist jail last

        Raises:
            ValidationError: If an answer is malformed
        """
        defaults = self._build_defaults(state, answers)

        jails = [self._ssh_jail(answers)]
        for name in self._protected_jail_names(answers):
            jails.append(SERVICE_JAILS[name].to_jail())

        if answers.blocklist:
            jails.append(self._blocklist_jail())

        return defaults, jails

    def blocklist(self, answers: OperatorAnswers) -> list[BlocklistEntry]:
        """Validated, de-duplicated blocklist entries."""
        entries: list[BlocklistEntry] = []
        seen: set[str] = set()
        for address in answers.blocklist:
            address = validate_cidr(address)
            if address not in seen:
                seen.add(address)
                entries.append(BlocklistEntry(address=address))
        return entries

    def override_layers(
        self,
        answers: OperatorAnswers,
        local: Optional[Mapping[str, Mapping[str, Any]]] = None,
        jails: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> list[OverrideLayer]:
        """Layers stacked on the generated policy.

        Args:
            answers: Operator answers (enhanced settings give the strict SSH layer)
            local: Configured jail.local overrides ({target: {field: value}})
            jails: Configured per-jail overrides ({jail: {field: value}})

        Returns:
            Layers in application order
        """
        layers: list[OverrideLayer] = []

        if local:
            layers.append(OverrideLayer.from_mapping(LayerRank.LOCAL, "config-local", local))

        if jails:
            layers.append(OverrideLayer.from_mapping(LayerRank.SERVICE, "config-jails", jails))

        if answers.enhanced is not None:
            enhanced = answers.enhanced
            layers.append(
                OverrideLayer(rank=LayerRank.SERVICE, name="sshd-strict").add(
                    SSH_JAIL,
                    max_retry=enhanced.max_retry,
                    find_time=enhanced.find_time,
                    ban_time=enhanced.ban_time,
                )
            )

        return layers

    def _build_defaults(self, state: FirewallState, answers: OperatorAnswers) -> PolicyDefaults:
        ignore_list = [LOOPBACK_CIDR]
        for cidr in answers.trusted_cidrs:
            cidr = validate_cidr(cidr)
            if cidr not in ignore_list:
                ignore_list.append(cidr)

        values: dict[str, Any] = {
            "ignore_list": tuple(ignore_list),
            "firewall": state,
        }

        enhanced = answers.enhanced
        if enhanced is not None:
            if enhanced.aggressive:
                values["ban_action"] = BanAction.ALLPORTS
            if enhanced.persistent:
                values["persist_path"] = PERSIST_DB_PATH
            if enhanced.alert_email:
                values["dest_email"] = validate_email(enhanced.alert_email)
                values["sender"] = f"fail2ban@{answers.hostname}"
                values["mta"] = ALERT_MTA
                values["action"] = ALERT_ACTION

        return PolicyDefaults(**values)

    def _ssh_jail(self, answers: OperatorAnswers) -> JailDefinition:
        return JailDefinition(
            name=SSH_JAIL,
            enabled=True,
            ports=(ssh_port_spec(answers.ssh_port),),
            filter_id="sshd",
            log_paths=SSH_LOG_PATHS,
            max_retry=5,
            find_time=Duration("10m"),
            ban_time=Duration("10m"),
        )

    def _blocklist_jail(self) -> JailDefinition:
        return JailDefinition(
            name=BLOCKLIST_JAIL,
            enabled=True,
            filter_id=BLOCKLIST_FILTER,
            log_paths=(self.blocklist_file,),
            ban_action=BanAction.ALLPORTS,
            max_retry=1,
            ban_time=Duration.permanent(),
        )

    def _protected_jail_names(self, answers: OperatorAnswers) -> list[str]:
        unknown = [name for name in answers.protected_jails if name not in SERVICE_JAILS]
        if unknown:
            raise ValidationError(
                f"Unknown service jail: {', '.join(unknown)}",
                hint=f"Known jails: {', '.join(SERVICE_JAILS)}",
            )
        # Catalog order keeps output stable regardless of answer order
        return [name for name in SERVICE_JAILS if name in answers.protected_jails]

