"""Unit tests for the ban-policy data model."""

from pathlib import Path

import pytest

from f2b.core.exceptions import ValidationError
from f2b.policy.models import (
    DEFAULT_FIELDS,
    JAIL_FIELDS,
    Backend,
    BanAction,
    Duration,
    FirewallState,
    LayerRank,
    OverrideLayer,
    coerce_value,
    lookup_field,
)


class TestDuration:
    """Tests for the Duration value type."""

    def test_parse_keeps_text(self):
        """Parsing should keep the text as written."""
        assert Duration.parse("10m").text == "10m"
        assert str(Duration.parse("1h")) == "1h"

    def test_parse_integer_seconds(self):
        """An integer should be kept as plain seconds."""
        assert Duration.parse(600).text == "600"

    def test_seconds(self):
        """seconds should add up every unit part."""
        assert Duration("600").seconds == 600
        assert Duration("10m").seconds == 600
        assert Duration("1h30m").seconds == 5400
        assert Duration("1w").seconds == 604800

    def test_permanent_sentinel_preserved(self):
        """-1 stays -1 and never becomes a number of seconds."""
        duration = Duration.parse("-1", allow_permanent=True)
        assert duration.is_permanent
        assert duration.text == "-1"
        assert duration.seconds is None
        assert duration == Duration.permanent()

    def test_permanent_rejected_where_not_allowed(self):
        """-1 should be rejected outside ban times."""
        with pytest.raises(ValidationError):
            Duration.parse("-1")
        with pytest.raises(ValidationError):
            Duration.parse(Duration.permanent())

    def test_bool_rejected(self):
        """A boolean should not be taken as a duration."""
        with pytest.raises(ValidationError):
            Duration.parse(True)

    def test_from_seconds_compact(self):
        """Should pick the largest unit that divides evenly."""
        assert Duration.from_seconds(600).text == "10m"
        assert Duration.from_seconds(300).text == "5m"
        assert Duration.from_seconds(3600).text == "1h"
        assert Duration.from_seconds(90).text == "90s"
        assert Duration.from_seconds(86400 * 7).text == "1w"

    def test_from_seconds_rejects_zero(self):
        """A zero length should be rejected."""
        with pytest.raises(ValidationError):
            Duration.from_seconds(0)


class TestBanAction:
    """Tests for ban action naming."""

    def test_iptables_names(self):
        """ufw and no-firewall hosts should use the iptables actions."""
        assert BanAction.MULTIPORT.action_name(FirewallState.UFW) == "iptables-multiport"
        assert BanAction.ALLPORTS.action_name(FirewallState.NONE) == "iptables-allports"

    def test_firewalld_names(self):
        """firewalld hosts should use the firewallcmd actions."""
        assert BanAction.MULTIPORT.action_name(FirewallState.FIREWALLD) == "firewallcmd-multiport"
        assert BanAction.ALLPORTS.action_name(FirewallState.FIREWALLD) == "firewallcmd-allports"

    def test_from_action_name(self):
        """Bare and prefixed action names should both parse."""
        assert BanAction.from_action_name("allports") is BanAction.ALLPORTS
        assert BanAction.from_action_name("iptables-allports") is BanAction.ALLPORTS
        assert BanAction.from_action_name("firewallcmd-multiport") is BanAction.MULTIPORT

    def test_unknown_action(self):
        """An unsupported action should raise ValidationError."""
        with pytest.raises(ValidationError):
            BanAction.from_action_name("nftables-drop")


class TestFieldLookup:
    """Tests for the field schema."""

    def test_lookup_by_attr_and_key(self):
        """Fields should be found by attribute or fail2ban key."""
        assert lookup_field(DEFAULT_FIELDS, "max_retry").key == "maxretry"
        assert lookup_field(DEFAULT_FIELDS, "maxretry").attr == "max_retry"
        assert lookup_field(JAIL_FIELDS, "logpath").attr == "log_paths"

    def test_unknown_field(self):
        """An unknown name should raise ValidationError."""
        with pytest.raises(ValidationError) as exc:
            lookup_field(JAIL_FIELDS, "maxretries")
        assert "Unknown policy field" in str(exc.value)


class TestCoerceValue:
    """Tests for override value coercion."""

    def test_int(self):
        """Integers should accept strings and reject zero or words."""
        spec = lookup_field(JAIL_FIELDS, "maxretry")
        assert coerce_value(spec, "3") == 3
        assert coerce_value(spec, 4) == 4
        with pytest.raises(ValidationError):
            coerce_value(spec, "three")
        with pytest.raises(ValidationError):
            coerce_value(spec, 0)

    def test_durations(self):
        """Durations should parse, allowing -1 only for ban times."""
        assert coerce_value(lookup_field(JAIL_FIELDS, "findtime"), "30m") == Duration("30m")
        assert coerce_value(lookup_field(JAIL_FIELDS, "bantime"), "-1").is_permanent
        with pytest.raises(ValidationError):
            coerce_value(lookup_field(JAIL_FIELDS, "findtime"), "-1")

    def test_bool(self):
        """Booleans should accept the usual yes/no spellings."""
        spec = lookup_field(JAIL_FIELDS, "enabled")
        assert coerce_value(spec, "true") is True
        assert coerce_value(spec, "no") is False
        assert coerce_value(spec, False) is False
        with pytest.raises(ValidationError):
            coerce_value(spec, "maybe")

    def test_ports_and_paths(self):
        """Ports should split on commas and paths on whitespace."""
        assert coerce_value(lookup_field(JAIL_FIELDS, "port"), "http, https") == ("http", "https")
        assert coerce_value(lookup_field(JAIL_FIELDS, "logpath"), "/a.log /b.log") == (
            Path("/a.log"), Path("/b.log"),
        )
        assert coerce_value(lookup_field(JAIL_FIELDS, "logpath"), ["/a.log"]) == (Path("/a.log"),)

    def test_cidrs_validated(self):
        """Every CIDR in the list should be validated."""
        spec = lookup_field(DEFAULT_FIELDS, "ignoreip")
        assert coerce_value(spec, "127.0.0.1/8 10.0.0.0/8") == ("127.0.0.1/8", "10.0.0.0/8")
        with pytest.raises(ValidationError):
            coerce_value(spec, "127.0.0.1/8 nonsense")

    def test_enums(self):
        """Ban actions and backends should parse from their names."""
        assert coerce_value(lookup_field(DEFAULT_FIELDS, "banaction"), "allports") is BanAction.ALLPORTS
        assert coerce_value(lookup_field(DEFAULT_FIELDS, "backend"), "pyinotify") is Backend.EVENT_DRIVEN
        assert coerce_value(lookup_field(DEFAULT_FIELDS, "backend"), "auto") is Backend.AUTO
        with pytest.raises(ValidationError):
            coerce_value(lookup_field(DEFAULT_FIELDS, "backend"), "gamin")

    def test_scalar_list_values(self):
        """A bare number or path should become a one-element tuple."""
        assert coerce_value(lookup_field(JAIL_FIELDS, "port"), 2222) == ("2222",)
        assert coerce_value(lookup_field(JAIL_FIELDS, "logpath"), Path("/a.log")) == (Path("/a.log"),)
        with pytest.raises(ValidationError):
            coerce_value(lookup_field(JAIL_FIELDS, "port"), {"a": 1})
        with pytest.raises(ValidationError):
            coerce_value(lookup_field(DEFAULT_FIELDS, "ignoreip"), True)

    def test_jail_backend(self):
        """Jails should accept their own backend."""
        spec = lookup_field(JAIL_FIELDS, "backend")
        assert spec.attr == "backend"
        assert coerce_value(spec, "pyinotify") is Backend.EVENT_DRIVEN

    def test_none_passes_through(self):
        """None should be passed through unchanged."""
        assert coerce_value(lookup_field(JAIL_FIELDS, "maxretry"), None) is None


class TestOverrideLayer:
    """Tests for building override layers."""
    def test_add_chains(self):
        """add should append patches and return the layer."""
        layer = OverrideLayer(rank=LayerRank.LOCAL, name="test").add("sshd", max_retry=3).add("DEFAULT", bantime="1h")
        assert [p.target for p in layer.patches] == ["sshd", "DEFAULT"]
        assert layer.patches[0].values == {"max_retry": 3}

    def test_from_mapping(self):
        """from_mapping should turn each target into a patch."""
        layer = OverrideLayer.from_mapping(LayerRank.SERVICE, "cfg", {"sshd": {"maxretry": 2}})
        assert layer.rank == LayerRank.SERVICE
        assert layer.patches[0].target == "sshd"
        assert layer.patches[0].values == {"maxretry": 2}
