"""Unit tests for web and FTP server discovery."""

from unittest.mock import MagicMock

from f2b.services.discovery import DiscoveredServices, ServiceDiscovery


class TestServiceDiscovery:
    """Tests for ServiceDiscovery."""
    def test_binary_or_unit(self):
        """A server should be found by its binary or by its systemd unit."""
        executor = MagicMock()
        executor.which.side_effect = lambda name: name == "nginx"
        systemd = MagicMock()
        systemd.exists.side_effect = lambda unit: unit == "vsftpd"

        found = ServiceDiscovery(executor, systemd).discover()

        assert found.servers == {"nginx", "vsftpd"}

    def test_nothing_installed(self):
        """A bare host should report no servers."""
        executor = MagicMock()
        executor.which.return_value = False
        systemd = MagicMock()
        systemd.exists.return_value = False

        assert ServiceDiscovery(executor, systemd).discover().servers == set()


class TestDiscoveredServices:
    """Tests for jail suggestions from discovered servers."""
    def test_apache_offers(self):
        """Apache should be offered the auth and bad-bot jails."""
        found = DiscoveredServices(servers={"apache"})
        assert [j.name for j in found.http_auth] == ["apache-auth"]
        assert [j.name for j in found.bad_bots] == ["apache-badbots"]
        assert found.ftp == []

    def test_nginx_has_no_bad_bots_jail(self):
        """nginx should only be offered the HTTP auth jail."""
        found = DiscoveredServices(servers={"nginx"})
        assert [j.name for j in found.http_auth] == ["nginx-http-auth"]
        assert found.bad_bots == []
