"""Ban-policy data model.

Typed values for everything a provisioning run decides: the detected
firewall, global defaults, per-service jails, override layers and the
resolved policy that is finally written to /etc/fail2ban.
"""

import re
import socket
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any, Mapping, Optional

from f2b.core.exceptions import ValidationError
from f2b.core.validation import (
    PERMANENT_SENTINEL,
    validate_cidr,
    validate_duration,
    validate_max_retry,
)


DEFAULT_SECTION = "DEFAULT"
LOOPBACK_CIDR = "127.0.0.1/8"

UNIT_SECONDS = {"w": 604800, "d": 86400, "h": 3600, "m": 60, "s": 1}
DURATION_PART = re.compile(r"(\d+)([smhdw]?)")


class FirewallState(Enum):
    """Packet-filtering front-end found on the host."""
    NONE = "none"
    UFW = "ufw"
    FIREWALLD = "firewalld"

    @property
    def display_name(self) -> str:
        return {
            FirewallState.NONE: "none",
            FirewallState.UFW: "UFW",
            FirewallState.FIREWALLD: "FirewallD",
        }[self]


class BanAction(Enum):
    """Enforcement strategy when a threshold is crossed."""
    MULTIPORT = "multiport"
    ALLPORTS = "allports"

    def action_name(self, firewall: FirewallState) -> str:
        """Concrete fail2ban action.d name for the given firewall."""
        prefix = "firewallcmd" if firewall is FirewallState.FIREWALLD else "iptables"
        return f"{prefix}-{self.value}"

    @classmethod
    def from_action_name(cls, name: str) -> "BanAction":
        """Parse 'allports', 'iptables-allports', 'firewallcmd-multiport' ..."""
        suffix = name.strip().lower().rsplit("-", 1)[-1]
        try:
            return cls(suffix)
        except ValueError:
            raise ValidationError(
                f"Unsupported ban action: {name}",
                hint="Use multiport or allports",
            )


class Backend(Enum):
    """How the daemon notices new log lines."""
    AUTO = "auto"
    EVENT_DRIVEN = "pyinotify"


@dataclass(frozen=True)
class Duration:
    """A fail2ban time value, or the permanent-ban sentinel.

    The text is kept exactly as fail2ban should see it, so "-1" is never
    turned into a number of seconds.
    """

    text: str

    @classmethod
    def parse(cls, value: Any, *, allow_permanent: bool = False) -> "Duration":
        if isinstance(value, Duration):
            if value.is_permanent and not allow_permanent:
                validate_duration(value.text)
            return value
        if isinstance(value, bool):
            raise ValidationError(f"Invalid duration: {value}")
        if isinstance(value, int):
            value = str(value)
        if not isinstance(value, str):
            raise ValidationError(f"Invalid duration: {value!r}")
        return cls(validate_duration(value, allow_permanent=allow_permanent))

    @classmethod
    def permanent(cls) -> "Duration":
        return cls(PERMANENT_SENTINEL)

    @classmethod
    def from_seconds(cls, seconds: int) -> "Duration":
        """Build the most compact representation ("600" -> "10m")."""
        if seconds <= 0:
            raise ValidationError(f"Duration must be positive: {seconds}")
        for unit, size in UNIT_SECONDS.items():
            if seconds % size == 0:
                return cls(f"{seconds // size}{unit}")
        return cls(f"{seconds}s")

    @property
    def is_permanent(self) -> bool:
        return self.text == PERMANENT_SENTINEL

    @property
    def seconds(self) -> Optional[int]:
        """Length in seconds, or None for a permanent ban."""
        if self.is_permanent:
            return None
        return sum(
            int(amount) * UNIT_SECONDS.get(unit or "s", 1)
            for amount, unit in DURATION_PART.findall(self.text)
        )

    def __str__(self) -> str:
        return self.text


@dataclass(frozen=True)
class PolicyDefaults:
    """Global ban policy ([DEFAULT] stanza)."""

    ignore_list: tuple[str, ...] = (LOOPBACK_CIDR,)
    ban_time: Duration = Duration("10m")
    find_time: Duration = Duration("10m")
    max_retry: int = 5
    ban_action: BanAction = BanAction.MULTIPORT
    backend: Backend = Backend.AUTO
    persist_path: Optional[Path] = None
    dest_email: Optional[str] = None
    sender: Optional[str] = None
    mta: Optional[str] = None
    action: Optional[str] = None
    firewall: FirewallState = FirewallState.NONE


@dataclass(frozen=True)
class JailDefinition:
    """One protected service.

    Only `name` is required: a jail created lazily by an override layer
    carries nothing but the fields that layer set.
    """

    name: str
    enabled: Optional[bool] = None
    ports: tuple[str, ...] = ()
    filter_id: Optional[str] = None
    log_paths: tuple[Path, ...] = ()
    ban_action: Optional[BanAction] = None
    max_retry: Optional[int] = None
    find_time: Optional[Duration] = None
    ban_time: Optional[Duration] = None
    backend: Optional[Backend] = None


@dataclass(frozen=True)
class BlocklistEntry:
    """An address or range that is always banned."""
    address: str


# =============================================================================
# Field schema shared by the resolver (coercion) and serializer (key order)
# =============================================================================

@dataclass(frozen=True)
class FieldSpec:
    """Maps a dataclass attribute to its fail2ban key and value kind."""
    attr: str
    key: str
    kind: str
    multiline: bool = False


DEFAULT_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("ignore_list", "ignoreip", "cidrs"),
    FieldSpec("ban_time", "bantime", "ban_duration"),
    FieldSpec("find_time", "findtime", "duration"),
    FieldSpec("max_retry", "maxretry", "int"),
    FieldSpec("ban_action", "banaction", "ban_action"),
    FieldSpec("backend", "backend", "backend"),
    FieldSpec("persist_path", "dbfile", "path"),
    FieldSpec("dest_email", "destemail", "str"),
    FieldSpec("sender", "sender", "str"),
    FieldSpec("mta", "mta", "str"),
    FieldSpec("action", "action", "str"),
)

JAIL_FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec("enabled", "enabled", "bool"),
    FieldSpec("ports", "port", "ports"),
    FieldSpec("filter_id", "filter", "str"),
    FieldSpec("log_paths", "logpath", "paths", multiline=True),
    FieldSpec("ban_action", "banaction", "ban_action"),
    FieldSpec("max_retry", "maxretry", "int"),
    FieldSpec("find_time", "findtime", "duration"),
    FieldSpec("ban_time", "bantime", "ban_duration"),
    FieldSpec("backend", "backend", "backend"),
)


def lookup_field(fields: tuple[FieldSpec, ...], name: str) -> FieldSpec:
    """Find a field by attribute name or fail2ban key.

    Raises:
        ValidationError: If the name is not part of the schema
    """
    for spec in fields:
        if name in (spec.attr, spec.key):
            return spec
    known = ", ".join(spec.key for spec in fields)
    raise ValidationError(
        f"Unknown policy field: {name}",
        hint=f"Known fields: {known}",
    )


def _split(value: Any, pattern: str) -> list[str]:
    # YAML turns "port: 2222" into an int
    if isinstance(value, (int, float, Path)) and not isinstance(value, bool):
        value = str(value)
    if isinstance(value, str):
        return [item for item in re.split(pattern, value.strip()) if item]
    if not isinstance(value, (list, tuple)):
        raise ValidationError(
            f"Invalid list value: {value!r}",
            hint="Use a comma or space separated string, or a YAML list",
        )
    return [str(item).strip() for item in value if str(item).strip()]


def coerce_value(spec: FieldSpec, value: Any) -> Any:
    """Convert a raw override value to the attribute's type.

    Accepts both typed values and the strings an operator would put in
    a YAML config file ("1h", "true", "http,https" ...).
    """
    if value is None:
        return None

    kind = spec.kind
    if kind == "int":
        if isinstance(value, bool):
            raise ValidationError(f"Invalid value for {spec.key}: {value}")
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid value for {spec.key}: {value}")
        return validate_max_retry(number)
    if kind == "duration":
        return Duration.parse(value)
    if kind == "ban_duration":
        return Duration.parse(value, allow_permanent=True)
    if kind == "bool":
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ("true", "yes", "1", "on"):
            return True
        if text in ("false", "no", "0", "off"):
            return False
        raise ValidationError(f"Invalid value for {spec.key}: {value}")
    if kind == "cidrs":
        return tuple(dict.fromkeys(validate_cidr(c) for c in _split(value, r"[\s,]+")))
    if kind == "ports":
        return tuple(dict.fromkeys(_split(value, r"\s*,\s*")))
    if kind == "paths":
        return tuple(Path(p) for p in dict.fromkeys(_split(value, r"\s+")))
    if kind == "path":
        return Path(value)
    if kind == "ban_action":
        if isinstance(value, BanAction):
            return value
        return BanAction.from_action_name(str(value))
    if kind == "backend":
        if isinstance(value, Backend):
            return value
        text = str(value).strip().lower()
        if text in ("event-driven", "event_driven"):
            return Backend.EVENT_DRIVEN
        try:
            return Backend(text)
        except ValueError:
            raise ValidationError(
                f"Unsupported backend: {value}",
                hint="Use auto or pyinotify",
            )
    return str(value)


# =============================================================================
# Override layers
# =============================================================================

class LayerRank(IntEnum):
    """Well-known precedence ranks (higher wins)."""
    BASE = 0          # generated policy
    LOCAL = 1         # jail.local global overrides
    SERVICE = 2       # jail.d/<jail>.local
    REMEDIATION = 3   # verification tightening


@dataclass(frozen=True)
class Patch:
    """Partial update of DEFAULT or one jail."""
    target: str
    values: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class OverrideLayer:
    """Ordered patches sharing one precedence rank."""

    rank: int
    name: str
    patches: list[Patch] = field(default_factory=list)

    def add(self, target: str, **values: Any) -> "OverrideLayer":
        """Append a patch and return self for chaining."""
        self.patches.append(Patch(target=target, values=dict(values)))
        return self

    @classmethod
    def from_mapping(
        cls,
        rank: int,
        name: str,
        mapping: Mapping[str, Mapping[str, Any]],
    ) -> "OverrideLayer":
        """Build a layer from {target: {field: value}} (YAML shape)."""
        layer = cls(rank=rank, name=name)
        for target, values in mapping.items():
            layer.patches.append(Patch(target=target, values=dict(values)))
        return layer


@dataclass(frozen=True)
class EffectivePolicy:
    """Fully resolved, conflict-free policy.

    `provenance` maps (target, attr) to the rank of the layer that set
    the field last; the writer uses it to route fields between
    jail.local and jail.d.
    """

    defaults: PolicyDefaults
    jails: tuple[JailDefinition, ...] = ()
    blocklist: tuple[BlocklistEntry, ...] = ()
    provenance: Mapping[tuple[str, str], int] = field(default_factory=dict)

    def jail(self, name: str) -> Optional[JailDefinition]:
        for jail in self.jails:
            if jail.name == name:
                return jail
        return None

    @property
    def jail_names(self) -> list[str]:
        return [jail.name for jail in self.jails]

    @property
    def enabled_jails(self) -> list[JailDefinition]:
        return [jail for jail in self.jails if jail.enabled]

    def rank_of(self, target: str, attr: str) -> Optional[int]:
        return self.provenance.get((target, attr))


# =============================================================================
# Operator answers
# =============================================================================

@dataclass
class EnhancedSettings:
    """Answers from the enhanced-security step."""

    ban_time: Duration = Duration("1h")
    max_retry: int = 3
    find_time: Duration = Duration("10m")
    aggressive: bool = False
    alert_email: Optional[str] = None
    persistent: bool = False


@dataclass
class OperatorAnswers:
    """Everything the interactive prompts collect.

    Built up front so policy generation never touches the terminal.
    """

    trusted_cidrs: list[str] = field(default_factory=list)
    enhanced: Optional[EnhancedSettings] = None
    protected_jails: list[str] = field(default_factory=list)
    blocklist: list[str] = field(default_factory=list)
    probe_address: Optional[str] = None
    ssh_port: int = 22
    hostname: str = field(default_factory=socket.gethostname)
