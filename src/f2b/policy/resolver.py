"""Layered override resolution.

Applies override layers on top of the generated policy in ascending
rank order. Layers of equal rank keep their given order, so the later
one wins. Patches only touch the fields they name.
"""

import re
from dataclasses import fields, replace
from typing import Iterable, Sequence

from f2b.core.exceptions import ValidationError
from f2b.policy.models import (
    DEFAULT_FIELDS,
    DEFAULT_SECTION,
    JAIL_FIELDS,
    BlocklistEntry,
    EffectivePolicy,
    FieldSpec,
    JailDefinition,
    LayerRank,
    OverrideLayer,
    Patch,
    PolicyDefaults,
    coerce_value,
    lookup_field,
)


JAIL_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

EMPTY_KINDS = ("cidrs", "ports", "paths")


def _is_set(value: object) -> bool:
    return value is not None and value != ()


class _Resolution:
    """Mutable working copy used while layers are applied."""

    def __init__(
        self,
        defaults: PolicyDefaults,
        jails: Iterable[JailDefinition],
        provenance: dict[tuple[str, str], int],
    ) -> None:
        self.defaults = defaults
        self.jails: dict[str, JailDefinition] = {}
        self.provenance = provenance
        for jail in jails:
            if jail.name in self.jails:
                raise ValidationError(f"Duplicate jail: {jail.name}")
            self.jails[jail.name] = jail

    def apply(self, rank: int, patch: Patch) -> None:
        if patch.target == DEFAULT_SECTION:
            values = self._coerce(DEFAULT_FIELDS, patch.values)
            self.defaults = replace(self.defaults, **values)
        else:
            name = patch.target
            if not JAIL_NAME_PATTERN.match(name):
                raise ValidationError(
                    f"Invalid jail name: {name!r}",
                    hint="Use letters, digits, '.', '_' and '-' only",
                )
            values = self._coerce(JAIL_FIELDS, patch.values)
            jail = self.jails.get(name) or JailDefinition(name=name)
            self.jails[name] = replace(jail, **values)

        for attr in values:
            self.provenance[(patch.target, attr)] = rank

    def _coerce(self, schema: tuple[FieldSpec, ...], raw: dict) -> dict:
        values = {}
        for name, value in raw.items():
            spec = lookup_field(schema, name)
            if value is None and spec.kind in EMPTY_KINDS:
                value = ()
            values[spec.attr] = coerce_value(spec, value)
        return values

    def result(self, blocklist: Sequence[BlocklistEntry]) -> EffectivePolicy:
        return EffectivePolicy(
            defaults=self.defaults,
            jails=tuple(self.jails.values()),
            blocklist=tuple(blocklist),
            provenance=dict(self.provenance),
        )


class OverrideResolver:
    """Merges the generated policy with override layers.

    Example:
        resolver = OverrideResolver()
        policy = resolver.resolve(defaults, jails, layers)
        policy = resolver.extend(policy, [remediation_layer])
    """

    def resolve(
        self,
        defaults: PolicyDefaults,
        jails: Sequence[JailDefinition],
        layers: Sequence[OverrideLayer],
        blocklist: Sequence[BlocklistEntry] = (),
    ) -> EffectivePolicy:
        """Resolve the generated policy and layers into one effective policy.

        Args:
            defaults: Generated global defaults
            jails: Generated jails, in output order
            layers: Override layers in any order
            blocklist: Addresses that are always banned

        Returns:
            EffectivePolicy with per-field provenance

        Raises:
            ValidationError: On unknown fields, bad values or bad jail names
        """
        provenance: dict[tuple[str, str], int] = {}
        for spec in DEFAULT_FIELDS:
            if _is_set(getattr(defaults, spec.attr)):
                provenance[(DEFAULT_SECTION, spec.attr)] = LayerRank.BASE
        for jail in jails:
            for spec in JAIL_FIELDS:
                if _is_set(getattr(jail, spec.attr)):
                    provenance[(jail.name, spec.attr)] = LayerRank.BASE

        resolution = _Resolution(defaults, jails, provenance)
        self._apply_layers(resolution, layers)
        return resolution.result(blocklist)

    def extend(
        self,
        policy: EffectivePolicy,
        layers: Sequence[OverrideLayer],
    ) -> EffectivePolicy:
        """Apply further layers to an already resolved policy."""
        resolution = _Resolution(policy.defaults, policy.jails, dict(policy.provenance))
        self._apply_layers(resolution, layers)
        return resolution.result(policy.blocklist)

    def _apply_layers(self, resolution: _Resolution, layers: Sequence[OverrideLayer]) -> None:
        # sorted() is stable: equal ranks keep caller order
        for layer in sorted(layers, key=lambda layer: layer.rank):
            for patch in layer.patches:
                resolution.apply(layer.rank, patch)


def changed_fields(before: EffectivePolicy, after: EffectivePolicy) -> list[tuple[str, str]]:
    """(target, attr) pairs whose values differ between two policies."""
    changes = []
    for f in fields(PolicyDefaults):
        if getattr(before.defaults, f.name) != getattr(after.defaults, f.name):
            changes.append((DEFAULT_SECTION, f.name))
    for jail in after.jails:
        old = before.jail(jail.name) or JailDefinition(name=jail.name)
        for f in fields(JailDefinition):
            if getattr(old, f.name) != getattr(jail, f.name):
                changes.append((jail.name, f.name))
    return changes
