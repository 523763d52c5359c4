"""
Feature Gate.

Pure eligibility predicate over a manifest's activation rule and the set of
enabled features. Precedence follows the rule's tag:
- ALWAYS_ON: always eligible
- FEATURE: eligible when its single activating feature is enabled
- LEGACY: eligible when every required feature is enabled

Enhancing (and legacy optional) features never affect eligibility.
"""

from collections.abc import Iterable, Set

from modula.module.manifest import ActivationKind, ActivationRule, ModuleManifest


def _rule(target: ActivationRule | ModuleManifest) -> ActivationRule:
    if isinstance(target, ModuleManifest):
        return target.activation
    return target


def is_eligible(
    target: ActivationRule | ModuleManifest, enabled_features: Set[str]
) -> bool:
    """
    Evaluate an activation rule against the enabled features.

    Args:
        target: Manifest or its activation rule
        enabled_features: Currently enabled feature ids (a set)

    Returns:
        True if the module should be active
    """
    rule = _rule(target)
    if rule.kind is ActivationKind.ALWAYS_ON:
        return True
    if rule.kind is ActivationKind.FEATURE:
        return rule.activated_by in enabled_features
    return all(feature in enabled_features for feature in rule.required_features)


def enhancements(
    target: ActivationRule | ModuleManifest, enabled_features: Set[str]
) -> frozenset[str]:
    """Enhancing features of a module that are currently enabled."""
    rule = _rule(target)
    return frozenset(f for f in rule.enhancing_features if f in enabled_features)


class FeatureGate:
    """An immutable enabled-feature set with the gate bound to it."""

    def __init__(self, enabled_features: Iterable[str] = ()):
        self.enabled = frozenset(enabled_features)

    def evaluate(self, target: ActivationRule | ModuleManifest) -> bool:
        return is_eligible(target, self.enabled)

    def enhancements(self, target: ActivationRule | ModuleManifest) -> frozenset[str]:
        return enhancements(target, self.enabled)

    def has_feature(self, feature_id: str) -> bool:
        return feature_id in self.enabled

    def __repr__(self) -> str:
        return f"FeatureGate({sorted(self.enabled)})"
