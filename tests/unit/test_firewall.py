"""Unit tests for firewall detection and activation."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from f2b.core.executor import CommandResult
from f2b.policy.models import FirewallState
from f2b.services.firewall import (
    DEFAULT_SSH_PORT,
    FirewallDetector,
    detect_ssh_port,
    fail2ban_chains,
    get_ssh_client_ip,
)


def result(stdout: str = "", code: int = 0) -> CommandResult:
    return CommandResult(command=[], return_code=code, stdout=stdout, stderr="")


@pytest.fixture
def executor() -> MagicMock:
    mock = MagicMock()
    mock.run.return_value = result()
    return mock


@pytest.fixture
def systemd() -> MagicMock:
    return MagicMock()


@pytest.fixture
def sshd_config(tmp_path: Path) -> Path:
    return tmp_path / "sshd_config"


def commands(executor: MagicMock) -> list[list[str]]:
    return [c.args[0] for c in executor.run.call_args_list]


class TestDetectSshPort:
    """Tests for reading the SSH port from sshd_config."""
    def test_missing_file(self, sshd_config):
        """A missing sshd_config should give the default port."""
        assert detect_ssh_port(sshd_config) == DEFAULT_SSH_PORT

    def test_custom_port(self, sshd_config):
        """The uncommented Port directive should win."""
        sshd_config.write_text("#Port 22\nPermitRootLogin no\nPort 2222\n")
        assert detect_ssh_port(sshd_config) == 2222

    def test_invalid_port(self, sshd_config):
        """A non-numeric Port should fall back to the default."""
        sshd_config.write_text("Port ssh\n")
        assert detect_ssh_port(sshd_config) == DEFAULT_SSH_PORT


class TestSshClientIp:
    """Tests for finding the operator's SSH client address."""
    def test_from_environment(self, monkeypatch):
        """The client address should come from SSH_CONNECTION."""
        monkeypatch.setenv("SSH_CONNECTION", "198.51.100.20 51234 10.0.0.5 22")
        assert get_ssh_client_ip() == "198.51.100.20"

    def test_not_over_ssh(self, monkeypatch):
        """Without SSH_CONNECTION there should be no client address."""
        monkeypatch.delenv("SSH_CONNECTION", raising=False)
        assert get_ssh_client_ip() is None


class TestFail2banChains:
    """Tests for filtering iptables output down to fail2ban chains."""
    def test_keeps_only_f2b_chains(self):
        """Only f2b-* chains should be kept."""
        output = (
            "Chain INPUT (policy ACCEPT)\n"
            "target     prot opt source               destination\n"
            "f2b-sshd   tcp  --  0.0.0.0/0            0.0.0.0/0\n"
            "\n"
            "Chain f2b-sshd (1 references)\n"
            "target     prot opt source               destination\n"
            "REJECT     all  --  203.0.113.7          0.0.0.0/0\n"
            "RETURN     all  --  0.0.0.0/0            0.0.0.0/0\n"
        )
        chains = fail2ban_chains(output)
        assert chains.splitlines()[0] == "Chain f2b-sshd (1 references)"
        assert "203.0.113.7" in chains
        assert "Chain INPUT" not in chains

    def test_no_chains(self):
        """Output without f2b chains should give an empty string."""
        assert fail2ban_chains("Chain INPUT (policy ACCEPT)\n") == ""


class TestDetect:
    """Tests for FirewallDetector.detect."""
    def test_active_ufw(self, ctx, executor, systemd, sshd_config):
        """An active ufw should be detected without changes."""
        executor.which.side_effect = lambda name: name == "ufw"
        executor.run.return_value = result("Status: active\n")

        detector = FirewallDetector(ctx, executor, systemd, sshd_config)

        assert detector.detect() is FirewallState.UFW
        assert detector.activated is False
        assert commands(executor) == [["ufw", "status"]]

    def test_inactive_ufw_allows_ssh_before_enabling(self, ctx, executor, systemd, sshd_config):
        """Inactive ufw should open the SSH port before it is enabled."""
        sshd_config.write_text("Port 2222\n")
        executor.which.side_effect = lambda name: name == "ufw"
        executor.run.return_value = result("Status: inactive\n")

        detector = FirewallDetector(ctx, executor, systemd, sshd_config)

        assert detector.detect() is FirewallState.UFW
        assert detector.activated is True
        assert commands(executor) == [
            ["ufw", "status"],
            ["ufw", "allow", "2222/tcp"],
            ["ufw", "--force", "enable"],
        ]

    def test_inactive_firewalld(self, ctx, executor, systemd, sshd_config):
        """Inactive firewalld should get ssh allowed, then be enabled and started."""
        executor.which.side_effect = lambda name: name == "firewall-cmd"
        systemd.is_active.return_value = False

        detector = FirewallDetector(ctx, executor, systemd, sshd_config)

        assert detector.detect() is FirewallState.FIREWALLD
        assert commands(executor) == [
            ["firewall-offline-cmd", "--add-service=ssh"],
            ["firewall-cmd", "--reload"],
        ]
        systemd.enable.assert_called_once()
        assert systemd.enable.call_args.args == ("firewalld",)
        assert systemd.enable.call_args.kwargs["start"] is True

    def test_active_firewalld(self, ctx, executor, systemd, sshd_config):
        """An active firewalld should be left alone."""
        executor.which.side_effect = lambda name: name == "firewall-cmd"
        systemd.is_active.return_value = True

        detector = FirewallDetector(ctx, executor, systemd, sshd_config)

        assert detector.detect() is FirewallState.FIREWALLD
        executor.run.assert_not_called()
        systemd.enable.assert_not_called()

    def test_ufw_preferred(self, ctx, executor, systemd, sshd_config):
        """ufw should win when both front-ends are installed."""
        executor.which.return_value = True
        executor.run.return_value = result("Status: active\n")

        detector = FirewallDetector(ctx, executor, systemd, sshd_config)

        assert detector.detect() is FirewallState.UFW
        systemd.is_active.assert_not_called()

    def test_none(self, ctx, executor, systemd, sshd_config):
        """A host with no front-end should report NONE."""
        executor.which.return_value = False
        detector = FirewallDetector(ctx, executor, systemd, sshd_config)
        assert detector.detect() is FirewallState.NONE


class TestInstallUfw:
    """Tests for installing ufw on a bare host."""
    def test_install_then_enable(self, ctx, executor, systemd, sshd_config):
        """ufw should be installed, then SSH allowed, then enabled."""
        detector = FirewallDetector(ctx, executor, systemd, sshd_config)

        assert detector.install_ufw() is FirewallState.UFW
        assert executor.apt_install.call_args.args == (["ufw"],)
        assert commands(executor) == [
            ["ufw", "allow", "22/tcp"],
            ["ufw", "--force", "enable"],
        ]


class TestShowRules:
    """Tests for the post-run rule listing."""
    def test_ufw_rules_and_chains(self, ctx, executor, systemd, sshd_config):
        """The listing should include ufw rules and fail2ban chains."""
        executor.run.side_effect = [
            result("Status: active\n22/tcp ALLOW Anywhere"),
            result("Chain f2b-sshd (1 references)\nRETURN all"),
        ]
        detector = FirewallDetector(ctx, executor, systemd, sshd_config)

        rules = detector.show_rules(FirewallState.UFW)

        assert "22/tcp ALLOW Anywhere" in rules
        assert "Chain f2b-sshd" in rules
        assert commands(executor)[1] == ["iptables", "-L", "-n"]
