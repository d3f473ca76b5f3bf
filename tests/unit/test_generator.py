"""Unit tests for policy generation."""

from pathlib import Path

import pytest

from f2b.core.exceptions import ValidationError
from f2b.policy.generator import (
    BLOCKLIST_JAIL,
    PERSIST_DB_PATH,
    SERVICE_JAILS,
    SSH_JAIL,
    PolicyGenerator,
    get_service_jails,
    ssh_port_spec,
)
from f2b.policy.models import (
    Backend,
    BanAction,
    Duration,
    EnhancedSettings,
    FirewallState,
    LayerRank,
    OperatorAnswers,
)


@pytest.fixture
def generator(tmp_path: Path) -> PolicyGenerator:
    return PolicyGenerator(tmp_path)


def answers(**kwargs) -> OperatorAnswers:
    kwargs.setdefault("hostname", "web01")
    return OperatorAnswers(**kwargs)


class TestBaseline:
    """Operator declines every optional step."""

    def test_defaults(self, generator):
        """Should produce the conservative defaults."""
        defaults, _ = generator.generate(FirewallState.UFW, answers())
        assert defaults.ignore_list == ("127.0.0.1/8",)
        assert defaults.ban_time == Duration("10m")
        assert defaults.find_time == Duration("10m")
        assert defaults.max_retry == 5
        assert defaults.ban_action is BanAction.MULTIPORT
        assert defaults.backend is Backend.AUTO
        assert defaults.persist_path is None
        assert defaults.dest_email is None
        assert defaults.firewall is FirewallState.UFW

    def test_only_ssh_jail(self, generator):
        """Only the SSH jail should be emitted."""
        _, jails = generator.generate(FirewallState.UFW, answers())
        assert [j.name for j in jails] == [SSH_JAIL]

        sshd = jails[0]
        assert sshd.enabled is True
        assert sshd.ports == ("ssh",)
        assert sshd.filter_id == "sshd"
        assert sshd.log_paths == (Path("/var/log/auth.log"), Path("/var/log/secure"))
        assert sshd.max_retry == 5
        assert sshd.find_time == Duration("10m")
        assert sshd.ban_time == Duration("10m")

    def test_no_override_layers(self, generator):
        """Baseline answers should add no override layers."""
        assert generator.override_layers(answers()) == []


class TestTrustedAddresses:
    """Tests for building the ignore list."""
    def test_loopback_first_and_deduplicated(self, generator):
        """Loopback should come first and duplicates should be dropped."""
        defaults, _ = generator.generate(
            FirewallState.NONE,
            answers(trusted_cidrs=["192.168.1.0/24", "127.0.0.1/8", "192.168.1.0/24"]),
        )
        assert defaults.ignore_list == ("127.0.0.1/8", "192.168.1.0/24")

    def test_invalid_cidr(self, generator):
        """An invalid trusted range should raise ValidationError."""
        with pytest.raises(ValidationError):
            generator.generate(FirewallState.NONE, answers(trusted_cidrs=["bogus"]))


class TestEnhanced:
    """Enhanced security answers."""

    def test_aggressive_action(self, generator):
        """Aggressive mode should ban on all ports."""
        enhanced = EnhancedSettings(aggressive=True)
        defaults, _ = generator.generate(FirewallState.UFW, answers(enhanced=enhanced))
        assert defaults.ban_action is BanAction.ALLPORTS

    def test_persistence_keeps_backend(self, generator):
        """Persistence sets the database path but leaves the backend alone."""
        enhanced = EnhancedSettings(persistent=True)
        defaults, _ = generator.generate(FirewallState.UFW, answers(enhanced=enhanced))
        assert defaults.persist_path == PERSIST_DB_PATH
        assert defaults.backend is Backend.AUTO

    def test_email_alerts(self, generator):
        """An alert address should set the mail action fields."""
        enhanced = EnhancedSettings(alert_email="ops@example.com")
        defaults, _ = generator.generate(FirewallState.UFW, answers(enhanced=enhanced))
        assert defaults.dest_email == "ops@example.com"
        assert defaults.sender == "fail2ban@web01"
        assert defaults.mta == "sendmail"
        assert defaults.action == "%(action_mwl)s"

    def test_strict_ssh_layer(self, generator):
        """Enhanced values become a SERVICE-rank layer for sshd."""
        enhanced = EnhancedSettings(
            ban_time=Duration("1h"), max_retry=3, find_time=Duration("10m"),
        )
        layers = generator.override_layers(answers(enhanced=enhanced))
        assert len(layers) == 1
        layer = layers[0]
        assert layer.rank == LayerRank.SERVICE
        assert layer.patches[0].target == SSH_JAIL
        assert layer.patches[0].values == {
            "max_retry": 3,
            "find_time": Duration("10m"),
            "ban_time": Duration("1h"),
        }

    def test_permanent_ban_time_preserved(self, generator):
        """A permanent ban time should stay as the -1 sentinel."""
        enhanced = EnhancedSettings(ban_time=Duration.permanent())
        layer = generator.override_layers(answers(enhanced=enhanced))[0]
        assert layer.patches[0].values["ban_time"].text == "-1"


class TestServiceJails:
    """Tests for opt-in service jails."""
    def test_opt_in_jails_in_catalog_order(self, generator):
        """Opted-in jails should follow sshd in catalog order."""
        _, jails = generator.generate(
            FirewallState.UFW,
            answers(protected_jails=["vsftpd", "apache-auth"]),
        )
        assert [j.name for j in jails] == [SSH_JAIL, "apache-auth", "vsftpd"]
        vsftpd = jails[2]
        assert vsftpd.ports == ("ftp", "ftp-data", "ftps", "ftps-data")
        assert vsftpd.log_paths == (Path("/var/log/vsftpd.log"),)

    def test_unknown_jail(self, generator):
        """A jail outside the catalog should be rejected."""
        with pytest.raises(ValidationError):
            generator.generate(FirewallState.UFW, answers(protected_jails=["exim"]))

    def test_catalog_filter(self):
        """get_service_jails should match category and installed server."""
        found = get_service_jails("http-auth", {"nginx"})
        assert [j.name for j in found] == ["nginx-http-auth"]
        assert get_service_jails("ftp", {"apache"}) == []
        assert set(SERVICE_JAILS) == {"apache-auth", "apache-badbots", "nginx-http-auth", "vsftpd"}


class TestBlocklist:
    """Tests for the blocklist jail and entries."""
    def test_blocklist_jail(self, generator, tmp_path):
        """A blocklist should add a permanent all-ports jail."""
        _, jails = generator.generate(
            FirewallState.UFW, answers(blocklist=["198.51.100.7"]),
        )
        jail = jails[-1]
        assert jail.name == BLOCKLIST_JAIL
        assert jail.ban_time.is_permanent
        assert jail.max_retry == 1
        assert jail.ban_action is BanAction.ALLPORTS
        assert jail.filter_id == "custom-blocklist"
        assert jail.log_paths == (tmp_path / "ip.blocklist.d" / "custom.conf",)

    def test_entries_deduplicated(self, generator):
        """Repeated blocklist entries should appear once."""
        entries = generator.blocklist(
            answers(blocklist=["198.51.100.7", "203.0.113.0/24", "198.51.100.7"]),
        )
        assert [e.address for e in entries] == ["198.51.100.7", "203.0.113.0/24"]

    def test_no_blocklist_no_jail(self, generator):
        """Without entries there should be no blocklist jail."""
        _, jails = generator.generate(FirewallState.UFW, answers())
        assert BLOCKLIST_JAIL not in [j.name for j in jails]


class TestSshPort:
    """Tests for the SSH jail port value."""
    def test_default_port_uses_service_name(self):
        """Port 22 should be written as the ssh service name."""
        assert ssh_port_spec(22) == "ssh"

    def test_custom_port(self, generator):
        """A custom port should be written as a number."""
        assert ssh_port_spec(2222) == "2222"
        _, jails = generator.generate(FirewallState.UFW, answers(ssh_port=2222))
        assert jails[0].ports == ("2222",)


class TestConfigLayers:
    """Tests for layers built from the config file."""
    def test_local_and_jail_layers(self, generator):
        """Config overrides should become LOCAL and SERVICE layers in order."""
        layers = generator.override_layers(
            answers(),
            local={"DEFAULT": {"bantime": "1h"}},
            jails={"sshd": {"maxretry": 2}},
        )
        assert [(l.rank, l.name) for l in layers] == [
            (LayerRank.LOCAL, "config-local"),
            (LayerRank.SERVICE, "config-jails"),
        ]
