"""Ban-policy generation, override resolution and rendering."""

from f2b.policy.models import (
    DEFAULT_SECTION,
    Backend,
    BanAction,
    BlocklistEntry,
    Duration,
    EffectivePolicy,
    EnhancedSettings,
    FirewallState,
    JailDefinition,
    LayerRank,
    OperatorAnswers,
    OverrideLayer,
    Patch,
    PolicyDefaults,
)
from f2b.policy.generator import PolicyGenerator
from f2b.policy.resolver import OverrideResolver
from f2b.policy.serializer import PolicySerializer

__all__ = [
    "DEFAULT_SECTION",
    "Backend",
    "BanAction",
    "BlocklistEntry",
    "Duration",
    "EffectivePolicy",
    "EnhancedSettings",
    "FirewallState",
    "JailDefinition",
    "LayerRank",
    "OperatorAnswers",
    "OverrideLayer",
    "Patch",
    "PolicyDefaults",
    "PolicyGenerator",
    "OverrideResolver",
    "PolicySerializer",
]
