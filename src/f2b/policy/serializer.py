"""Rendering of an EffectivePolicy into fail2ban configuration text.

Output is deterministic: fixed key order, unset fields omitted and no
timestamps, so resolving the same input twice yields identical bytes.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from jinja2 import Environment, PackageLoader, select_autoescape

from f2b.policy.models import (
    DEFAULT_FIELDS,
    DEFAULT_SECTION,
    JAIL_FIELDS,
    BanAction,
    Backend,
    EffectivePolicy,
    FieldSpec,
    FirewallState,
    JailDefinition,
    LayerRank,
)


MANAGED_HEADER = "Managed by f2b. Manual changes are replaced on the next run."

JAIL_LOCAL = "jail.local"
JAIL_D = "jail.d"
BLOCKLIST_FILE = "ip.blocklist.d/custom.conf"
BLOCKLIST_FILTER_FILE = "filter.d/custom-blocklist.conf"


def get_jinja_env() -> Environment:
    """Get Jinja2 environment for templates."""
    return Environment(
        loader=PackageLoader("f2b", "templates"),
        autoescape=select_autoescape(),
        trim_blocks=True,
        lstrip_blocks=True,
    )


@dataclass
class Section:
    """One [name] stanza with ordered key/value entries."""
    name: str
    entries: list[tuple[str, str]] = field(default_factory=list)


def encode_value(spec: FieldSpec, value: Any, firewall: FirewallState) -> Optional[str]:
    """Encode a typed field value as fail2ban text, or None when unset."""
    if value is None or value == ():
        return None

    if spec.kind == "cidrs":
        return " ".join(value)
    if spec.kind == "ports":
        return ",".join(value)
    if spec.multiline:
        indent = "\n" + " " * len(f"{spec.key} = ")
        return indent.join(str(path) for path in value)
    if spec.kind == "bool":
        return "true" if value else "false"
    if isinstance(value, BanAction):
        return value.action_name(firewall)
    if isinstance(value, Backend):
        return value.value
    return str(value)


def _section(
    name: str,
    schema: tuple[FieldSpec, ...],
    obj: Any,
    firewall: FirewallState,
    include: Any = None,
) -> Section:
    section = Section(name=name)
    for spec in schema:
        if include is not None and not include(spec):
            continue
        text = encode_value(spec, getattr(obj, spec.attr), firewall)
        if text is not None:
            section.entries.append((spec.key, text))
    return section


class PolicySerializer:
    """Renders every artifact of an EffectivePolicy.

    Jail fields set at SERVICE rank or above go to jail.d/<jail>.local,
    which fail2ban reads after jail.local. Everything else, including the
    whole [DEFAULT] stanza, goes to jail.local.
    """

    def __init__(self, blocklist_file: Optional[Path] = None) -> None:
        self.jinja = get_jinja_env()
        self.blocklist_file = blocklist_file or Path("/etc/fail2ban") / BLOCKLIST_FILE

    def routed_to_service_file(self, policy: EffectivePolicy, jail: str, attr: str) -> bool:
        rank = policy.rank_of(jail, attr)
        return rank is not None and rank >= LayerRank.SERVICE

    def jail_local_sections(self, policy: EffectivePolicy) -> list[Section]:
        firewall = policy.defaults.firewall
        sections = [_section(DEFAULT_SECTION, DEFAULT_FIELDS, policy.defaults, firewall)]
        for jail in policy.jails:
            section = _section(
                jail.name, JAIL_FIELDS, jail, firewall,
                include=lambda spec, j=jail: not self.routed_to_service_file(policy, j.name, spec.attr),
            )
            if section.entries:
                sections.append(section)
        return sections

    def service_section(self, policy: EffectivePolicy, jail: JailDefinition) -> Optional[Section]:
        section = _section(
            jail.name, JAIL_FIELDS, jail, policy.defaults.firewall,
            include=lambda spec: self.routed_to_service_file(policy, jail.name, spec.attr),
        )
        return section if section.entries else None

    def render_jail_local(self, policy: EffectivePolicy) -> str:
        return self._render_sections(JAIL_LOCAL, self.jail_local_sections(policy))

    def render_service_file(self, policy: EffectivePolicy, jail: JailDefinition) -> Optional[str]:
        section = self.service_section(policy, jail)
        if section is None:
            return None
        return self._render_sections(f"{JAIL_D}/{jail.name}.local", [section])

    def render_blocklist(self, policy: EffectivePolicy) -> str:
        return self.jinja.get_template("fail2ban/blocklist.j2").render(
            header=MANAGED_HEADER,
            entries=policy.blocklist,
        )

    def render_blocklist_filter(self) -> str:
        return self.jinja.get_template("fail2ban/custom-blocklist.conf.j2").render(
            header=MANAGED_HEADER,
            blocklist_file=self.blocklist_file,
        )

    def render(self, policy: EffectivePolicy) -> dict[str, str]:
        """Render all artifacts.

        Returns:
            Mapping of path (relative to the fail2ban directory) to content,
            in write order
        """
        artifacts = {JAIL_LOCAL: self.render_jail_local(policy)}

        for jail in policy.jails:
            content = self.render_service_file(policy, jail)
            if content is not None:
                artifacts[f"{JAIL_D}/{jail.name}.local"] = content

        if policy.blocklist:
            artifacts[BLOCKLIST_FILE] = self.render_blocklist(policy)
            artifacts[BLOCKLIST_FILTER_FILE] = self.render_blocklist_filter()

        return artifacts

    def _render_sections(self, source: str, sections: list[Section]) -> str:
        return self.jinja.get_template("fail2ban/policy.conf.j2").render(
            header=MANAGED_HEADER,
            source=source,
            sections=sections,
        )
