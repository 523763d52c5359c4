"""
Module Manifest System.

This module provides the manifest model and its parsing and validation.

Key features:
- One tagged activation rule for the current and legacy activation shapes
- Validation of JSON-shaped manifest data (camelCase keys)
- Legacy-to-current activation migration (idempotent)
"""

import json
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from modula.core.event_bus import PatternError, validate_pattern
from modula.module.errors import ConfigurationError

MODULE_ID_PATTERN = re.compile(r"^[a-z0-9]+([._-][a-z0-9]+)*$")
VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")
ENTRY_PATTERN = re.compile(r"^[A-Za-z_][\w.]*:[A-Za-z_]\w*$")

ACTIVATION_KEYS = (
    "alwaysOn",
    "activatedBy",
    "enhancedBy",
    "requiredFeatures",
    "optionalFeatures",
)
LEGACY_KEYS = ("requiredFeatures", "optionalFeatures")


class ActivationKind(Enum):
    """Activation rule variants."""

    ALWAYS_ON = "always_on"
    FEATURE = "feature"
    LEGACY = "legacy"


@dataclass(frozen=True)
class ActivationRule:
    """
    Tagged activation rule.

    Attributes:
        kind: Which variant this rule is
        activated_by: The single gating feature (FEATURE)
        enhanced_by: Features that only enhance the module (ALWAYS_ON, FEATURE)
        required_features: Features that must all be enabled (LEGACY)
        optional_features: Enhancing features in the legacy shape (LEGACY)
    """

    kind: ActivationKind = ActivationKind.ALWAYS_ON
    activated_by: str | None = None
    enhanced_by: tuple[str, ...] = ()
    required_features: tuple[str, ...] = ()
    optional_features: tuple[str, ...] = ()

    @classmethod
    def always_on(cls, enhanced_by: tuple[str, ...] = ()) -> "ActivationRule":
        return cls(ActivationKind.ALWAYS_ON, enhanced_by=tuple(enhanced_by))

    @classmethod
    def feature(
        cls, activated_by: str, enhanced_by: tuple[str, ...] = ()
    ) -> "ActivationRule":
        return cls(
            ActivationKind.FEATURE,
            activated_by=activated_by,
            enhanced_by=tuple(enhanced_by),
        )

    @classmethod
    def legacy(
        cls, required: tuple[str, ...], optional: tuple[str, ...] = ()
    ) -> "ActivationRule":
        return cls(
            ActivationKind.LEGACY,
            required_features=tuple(required),
            optional_features=tuple(optional),
        )

    @property
    def enhancing_features(self) -> tuple[str, ...]:
        """Features that never gate the module, whatever the shape."""
        if self.kind is ActivationKind.LEGACY:
            return self.optional_features
        return self.enhanced_by

    def to_data(self) -> dict[str, Any]:
        """Render the rule in its external (camelCase) shape."""
        if self.kind is ActivationKind.LEGACY:
            return {
                "requiredFeatures": list(self.required_features),
                "optionalFeatures": list(self.optional_features),
            }
        data: dict[str, Any] = {}
        if self.kind is ActivationKind.ALWAYS_ON:
            data["alwaysOn"] = True
        else:
            data["activatedBy"] = self.activated_by
        if self.enhanced_by:
            data["enhancedBy"] = list(self.enhanced_by)
        return data

    def migrated(self) -> "ActivationRule":
        """Return the current-shape equivalent of a legacy rule."""
        if self.kind is not ActivationKind.LEGACY:
            return self
        return parse_activation(migrate_activation(self.to_data()))


@dataclass
class ModuleManifest:
    """
    Static description of one module.

    Attributes:
        id: Unique module identifier
        version: Semantic version string
        depends_on: Ids of modules that must be active first
        activation: Activation rule evaluated by the feature gate
        provides: Hook-point ids this module exposes to others
        consumes: Event patterns this module listens to
        setup: Called with the module's context on activation (sync or async)
        teardown: Called with no arguments on deactivation (sync or async)
        exports: Capability map published while the module is active
        entry: Optional "package.module:attribute" implementation factory
        name: Human-readable name (defaults to id)
        description: Free-form description
    """

    id: str
    version: str = "1.0.0"
    depends_on: tuple[str, ...] = ()
    activation: ActivationRule = field(default_factory=ActivationRule)
    provides: tuple[str, ...] = ()
    consumes: tuple[str, ...] = ()
    setup: Callable[[Any], Any] | None = None
    teardown: Callable[[], Any] | None = None
    exports: dict[str, Any] = field(default_factory=dict)
    entry: str | None = None
    name: str = ""
    description: str = ""

    def __post_init__(self):
        for attr in ("depends_on", "provides", "consumes"):
            value = getattr(self, attr)
            if isinstance(value, str):
                raise ConfigurationError(
                    f"'{attr}' must be a sequence of strings, not a string",
                    module_id=self.id if isinstance(self.id, str) else None,
                )
            # De-duplicate while keeping declaration order
            setattr(self, attr, tuple(dict.fromkeys(value)))
        if not self.name:
            self.name = self.id

    @property
    def is_foundation(self) -> bool:
        """True for modules that declare no dependencies."""
        return not self.depends_on

    def to_data(self) -> dict[str, Any]:
        """Render the manifest in its JSON shape (callables are omitted)."""
        data: dict[str, Any] = {
            "id": self.id,
            "version": self.version,
            "name": self.name,
            "dependsOn": list(self.depends_on),
            "activation": self.activation.to_data(),
            "hooks": {"provide": list(self.provides), "consume": list(self.consumes)},
            "exports": dict(self.exports),
        }
        if self.description:
            data["description"] = self.description
        if self.entry:
            data["entry"] = self.entry
        return data


def validate_manifest(manifest: ModuleManifest) -> None:
    """
    Validate a manifest built in code.

    Args:
        manifest: Manifest to check

    Raises:
        ConfigurationError: If any field is malformed
    """
    module_id = manifest.id
    if not isinstance(module_id, str) or not MODULE_ID_PATTERN.match(module_id):
        raise ConfigurationError(
            f"Invalid module id: {module_id!r}. "
            f"Must be lowercase alphanumeric segments joined by '.', '_' or '-'."
        )

    if not isinstance(manifest.version, str) or not VERSION_PATTERN.match(
        manifest.version
    ):
        raise ConfigurationError(
            f"Invalid version for '{module_id}': {manifest.version!r}. "
            f"Must be semantic version (e.g., '1.0.0')",
            module_id=module_id,
        )

    for dep in manifest.depends_on:
        if not isinstance(dep, str) or not dep:
            raise ConfigurationError(
                f"Dependency of '{module_id}' must be a non-empty string: {dep!r}",
                module_id=module_id,
            )

    if not isinstance(manifest.activation, ActivationRule):
        raise ConfigurationError(
            f"Activation of '{module_id}' must be an ActivationRule",
            module_id=module_id,
        )
    if (
        manifest.activation.kind is ActivationKind.FEATURE
        and not manifest.activation.activated_by
    ):
        raise ConfigurationError(
            f"Module '{module_id}' is feature-gated but names no feature",
            module_id=module_id,
        )

    for hook_point in manifest.provides:
        if not isinstance(hook_point, str) or not hook_point:
            raise ConfigurationError(
                f"Provided hook point of '{module_id}' must be a non-empty string",
                module_id=module_id,
            )

    for pattern in manifest.consumes:
        try:
            validate_pattern(pattern)
        except PatternError as e:
            raise ConfigurationError(
                f"Invalid consumed pattern for '{module_id}': {e}",
                module_id=module_id,
            ) from e

    if manifest.setup is not None and not callable(manifest.setup):
        raise ConfigurationError(
            f"setup of '{module_id}' must be callable", module_id=module_id
        )
    if manifest.teardown is not None and not callable(manifest.teardown):
        raise ConfigurationError(
            f"teardown of '{module_id}' must be callable", module_id=module_id
        )

    if not isinstance(manifest.exports, Mapping):
        raise ConfigurationError(
            f"exports of '{module_id}' must be a mapping", module_id=module_id
        )

    if manifest.entry is not None and (
        not isinstance(manifest.entry, str) or not ENTRY_PATTERN.match(manifest.entry)
    ):
        raise ConfigurationError(
            f"Invalid entry for '{module_id}': {manifest.entry!r}. "
            f"Expected 'package.module:attribute'",
            module_id=module_id,
        )


def _string_list(data: Mapping[str, Any], key: str, owner: str) -> tuple[str, ...]:
    value = data.get(key, [])
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ConfigurationError(f"'{key}' field of '{owner}' must be a list")
    for item in value:
        if not isinstance(item, str) or not item:
            raise ConfigurationError(
                f"'{key}' entries of '{owner}' must be non-empty strings: {item!r}"
            )
    return tuple(value)


def parse_activation(data: Mapping[str, Any] | None, owner: str = "?") -> ActivationRule:
    """
    Parse the external activation shape into an ActivationRule.

    Precedence: alwaysOn, then activatedBy, then the legacy requiredFeatures.
    A shape with none of them is always-on.

    Raises:
        ConfigurationError: If the shape is malformed
    """
    if data is None:
        return ActivationRule.always_on()
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"'activation' field of '{owner}' must be an object")

    always_on = data.get("alwaysOn", False)
    if not isinstance(always_on, bool):
        raise ConfigurationError(f"'alwaysOn' field of '{owner}' must be a boolean")

    activated_by = data.get("activatedBy")
    if activated_by is not None and (
        not isinstance(activated_by, str) or not activated_by
    ):
        raise ConfigurationError(
            f"'activatedBy' field of '{owner}' must be a non-empty string"
        )

    enhanced_by = _string_list(data, "enhancedBy", owner)
    required = _string_list(data, "requiredFeatures", owner)
    optional = _string_list(data, "optionalFeatures", owner)

    if always_on:
        return ActivationRule.always_on(enhanced_by)
    if activated_by is not None:
        return ActivationRule.feature(activated_by, enhanced_by)
    if "requiredFeatures" in data:
        return ActivationRule.legacy(required, optional)
    return ActivationRule.always_on(enhanced_by or optional)


def migrate_activation(activation: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Convert a legacy activation shape into the current one.

    The first required feature becomes activatedBy; the remaining required
    features and then the optional ones become enhancedBy. Shapes that already
    carry alwaysOn or activatedBy, or have no legacy keys, come back unchanged,
    so applying the transform twice equals applying it once.

    Args:
        activation: External activation shape

    Returns:
        A new dict in the current shape
    """
    data = dict(activation or {})
    if not any(key in data for key in LEGACY_KEYS):
        return data
    if data.get("alwaysOn") or data.get("activatedBy"):
        return data

    required = list(data.pop("requiredFeatures", None) or [])
    optional = list(data.pop("optionalFeatures", None) or [])
    enhanced = list(data.get("enhancedBy", None) or [])

    if required:
        data["activatedBy"] = required[0]
    else:
        data["alwaysOn"] = True

    for feature in required[1:] + optional:
        if feature not in enhanced:
            enhanced.append(feature)
    data["enhancedBy"] = enhanced
    return data


def migrate_manifest_data(data: Mapping[str, Any]) -> dict[str, Any]:
    """
    Migrate a manifest's activation to the current shape.

    Flat activation keys (the oldest manifests declared requiredFeatures next
    to id) are folded into the nested "activation" object first.
    """
    migrated = dict(data)
    activation = dict(migrated.get("activation") or {})
    for key in ACTIVATION_KEYS:
        if key in migrated:
            activation.setdefault(key, migrated.pop(key))
    if activation or "activation" in migrated:
        migrated["activation"] = migrate_activation(activation)
    return migrated


def validate_manifest_data(data: Any) -> None:
    """
    Validate JSON-shaped manifest data.

    Args:
        data: Parsed manifest data

    Raises:
        ConfigurationError: If the structure is invalid
    """
    if not isinstance(data, Mapping):
        raise ConfigurationError(f"Manifest must be an object, got {type(data).__name__}")

    required_fields = ["id", "version"]
    for field_name in required_fields:
        if field_name not in data:
            raise ConfigurationError(
                f"Missing required field: {field_name}", module_id=data.get("id")
            )

    owner = data["id"]
    if "dependsOn" in data and "depends" in data:
        raise ConfigurationError(
            f"Manifest '{owner}' declares both 'dependsOn' and 'depends'",
            module_id=owner,
        )

    for key in ("name", "description", "entry"):
        if key in data and not isinstance(data[key], str):
            raise ConfigurationError(
                f"'{key}' field of '{owner}' must be a string", module_id=owner
            )

    if "hooks" in data and not isinstance(data["hooks"], Mapping):
        raise ConfigurationError(
            f"'hooks' field of '{owner}' must be an object", module_id=owner
        )

    if "exports" in data and not isinstance(data["exports"], Mapping):
        raise ConfigurationError(
            f"'exports' field of '{owner}' must be an object", module_id=owner
        )


def parse_manifest_data(data: Mapping[str, Any]) -> ModuleManifest:
    """
    Build a ModuleManifest from JSON-shaped data.

    Args:
        data: Manifest data (camelCase keys)

    Returns:
        Validated ModuleManifest

    Raises:
        ConfigurationError: If the data is malformed
    """
    validate_manifest_data(data)
    owner = data["id"]

    depends_key = "depends" if "depends" in data else "dependsOn"
    depends_on = _string_list(data, depends_key, owner)

    activation_data = dict(data.get("activation") or {})
    for key in ACTIVATION_KEYS:
        if key in data:
            activation_data.setdefault(key, data[key])
    activation = parse_activation(activation_data or None, owner)

    hooks = data.get("hooks") or {}
    manifest = ModuleManifest(
        id=owner,
        version=data["version"],
        depends_on=depends_on,
        activation=activation,
        provides=_string_list(hooks, "provide", owner),
        consumes=_string_list(hooks, "consume", owner),
        exports=dict(data.get("exports") or {}),
        entry=data.get("entry"),
        name=data.get("name", ""),
        description=data.get("description", ""),
    )
    validate_manifest(manifest)
    return manifest


def parse_manifest(manifest_path: Path) -> ModuleManifest:
    """
    Parse a manifest.json file.

    Raises:
        ConfigurationError: If the file cannot be read or is invalid
    """
    try:
        with open(manifest_path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Manifest file not found: {manifest_path}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Failed to parse manifest JSON: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read manifest file: {e}") from e

    return parse_manifest_data(data)
